from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List


class TransportError(RuntimeError):
    """Backend unreachable, non-success status, or stream aborted mid-read."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class ByteSource(ABC):
    """Single-pass async source of raw response chunks owning one read resource."""

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[bytes]:
        pass

    @abstractmethod
    async def aclose(self) -> None:
        """Release the underlying resource. Safe to call more than once."""
        pass


class BaseChatBackend(ABC):
    """Abstract base class for streaming chat backends"""

    model_id: str

    @abstractmethod
    def build_request_body(self, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        """Build the request payload for the given conversation"""
        pass

    @abstractmethod
    async def open_stream(self, messages: List[Dict[str, str]]) -> ByteSource:
        """Submit the conversation and return the response byte stream once headers arrive"""
        pass

    @abstractmethod
    def list_models(self) -> List[str]:
        """Return the model identifiers the backend can serve"""
        pass
