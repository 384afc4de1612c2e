"""Parse newline-delimited JSON records from decoded stream text.

Ollama streams one JSON object per line, but the transport is free to deliver
a line in several chunks or several lines in one chunk. The parser therefore
buffers text and only parses complete lines; the unterminated tail waits for
the next chunk (or for :meth:`FragmentParser.flush` once the stream closes).
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

ON_MALFORMED_CHOICES = ("raise", "skip")


class MalformedFragmentError(ValueError):
    """A complete line from the stream was not a valid JSON record."""

    def __init__(self, line: str, reason: str):
        super().__init__(f"Malformed stream fragment ({reason}): {line[:100]!r}")
        self.line = line
        self.reason = reason


class BackendError(RuntimeError):
    """The backend reported an error record in the middle of the stream."""


@dataclass(frozen=True)
class Fragment:
    token: str
    done: bool = False
    record: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


def extract_token(record: Dict[str, Any]) -> str:
    """Return the incremental content token at ``message.content``."""
    msg = record.get("message") or {}
    if not isinstance(msg, dict):
        raise MalformedFragmentError(json.dumps(record), "'message' is not an object")
    content = msg.get("content") or ""
    if not isinstance(content, str):
        raise MalformedFragmentError(json.dumps(record), "'message.content' is not a string")
    return content


class FragmentParser:
    """Reassemble NDJSON records across chunk boundaries and extract tokens."""

    def __init__(self, on_malformed: str = "raise") -> None:
        if on_malformed not in ON_MALFORMED_CHOICES:
            raise ValueError(f"on_malformed must be one of {ON_MALFORMED_CHOICES}")
        self.on_malformed = on_malformed
        self._buf = ""
        self.malformed: List[MalformedFragmentError] = []

    @property
    def pending(self) -> str:
        """Buffered text that does not yet form a complete line."""
        return self._buf

    def feed(self, text: str) -> List[Fragment]:
        self._buf += text
        *lines, self._buf = self._buf.split("\n")
        return self._parse_lines(lines)

    def flush(self) -> List[Fragment]:
        """Parse whatever is left once the stream has closed."""
        rest, self._buf = self._buf, ""
        return self._parse_lines([rest])

    def _parse_lines(self, lines: List[str]) -> List[Fragment]:
        fragments = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                fragments.append(self.parse_line(line))
            except MalformedFragmentError as e:
                if self.on_malformed == "raise":
                    raise
                self.malformed.append(e)
                logger.warning(f"Skipping malformed fragment: {e}")
        return fragments

    @staticmethod
    def parse_line(line: str) -> Fragment:
        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            raise MalformedFragmentError(line, str(e)) from e
        if not isinstance(record, dict):
            raise MalformedFragmentError(line, "record is not a JSON object")
        if record.get("error"):
            raise BackendError(f"Backend reported an error: {record['error']}")
        return Fragment(token=extract_token(record), done=bool(record.get("done")), record=record)


__all__ = [
    "ON_MALFORMED_CHOICES",
    "BackendError",
    "Fragment",
    "FragmentParser",
    "MalformedFragmentError",
    "extract_token",
]
