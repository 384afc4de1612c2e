"""Replay-only chat backend that serves pre-recorded response chunks."""
from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Union

from .base_llm_client import BaseChatBackend, ByteSource


def ndjson_chunks(tokens: Iterable[str], model_id: str = "replay", done: bool = True) -> List[bytes]:
    """Encode tokens as Ollama-style NDJSON lines, one record per chunk."""
    chunks = []
    for token in tokens:
        record = {"model": model_id, "message": {"role": "assistant", "content": token}, "done": False}
        chunks.append((json.dumps(record, ensure_ascii=False) + "\n").encode("utf-8"))
    if done:
        record = {"model": model_id, "message": {"role": "assistant", "content": ""}, "done": True}
        chunks.append((json.dumps(record, ensure_ascii=False) + "\n").encode("utf-8"))
    return chunks


class ReplaySource(ByteSource):
    def __init__(self, chunks: List[bytes], delay_s: float = 0.0, error: Optional[BaseException] = None):
        self._chunks = chunks
        self._delay = delay_s
        self._error = error
        self.close_count = 0

    @property
    def closed(self) -> bool:
        return self.close_count > 0

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            # every pull is a suspension point, as with a real socket
            await asyncio.sleep(self._delay)
            yield chunk
        if self._error is not None:
            raise self._error

    async def aclose(self) -> None:
        self.close_count += 1


class ReplayClient(BaseChatBackend):
    """Backend that replays the same recorded chunks for every request.

    Raw chunk boundaries are kept exactly as given, so tests can split records
    (or multi-byte characters) anywhere.
    """

    def __init__(
        self,
        chunks: Iterable[Union[bytes, str]],
        model_id: str = "replay",
        delay_s: float = 0.0,
        error: Optional[BaseException] = None,
    ):
        self._chunks = [c.encode("utf-8") if isinstance(c, str) else c for c in chunks]
        self.model_id = model_id
        self.delay_s = delay_s
        self.error = error
        self.requests: List[Dict[str, Any]] = []
        self.sources: List[ReplaySource] = []

    @classmethod
    def from_tokens(cls, tokens: Iterable[str], **kwargs) -> "ReplayClient":
        return cls(ndjson_chunks(tokens, model_id=kwargs.get("model_id", "replay")), **kwargs)

    @classmethod
    def from_file(cls, path: Union[str, Path], chunk_size: int = 64, **kwargs) -> "ReplayClient":
        """Replay a recorded NDJSON response body in fixed-size byte chunks."""
        data = Path(path).read_bytes()
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        return cls([data[i : i + chunk_size] for i in range(0, len(data), chunk_size)], **kwargs)

    def build_request_body(self, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        return {"model": self.model_id, "messages": list(messages), "stream": True}

    async def open_stream(self, messages: List[Dict[str, str]]) -> ReplaySource:
        self.requests.append(self.build_request_body(messages))
        source = ReplaySource(list(self._chunks), delay_s=self.delay_s, error=self.error)
        self.sources.append(source)
        return source

    def list_models(self) -> List[str]:
        return [self.model_id]


__all__ = ["ReplayClient", "ReplaySource", "ndjson_chunks"]
