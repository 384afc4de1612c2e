"""Running text buffer for one streaming session."""
from __future__ import annotations


class ResponseAccumulator:
    """Append incremental tokens and hand out the cumulative string.

    Consumers always receive the full string so far, never the token alone.
    """

    def __init__(self) -> None:
        self._count = 0
        self._text = ""

    @property
    def text(self) -> str:
        return self._text

    @property
    def token_count(self) -> int:
        return self._count

    def append(self, token: str) -> str:
        if token:
            self._count += 1
            self._text += token
        return self._text


__all__ = ["ResponseAccumulator"]
