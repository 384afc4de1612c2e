"""Turn raw byte-chunk sources into decoded text fragments.

Chunk boundaries from the transport are arbitrary, so a multi-byte UTF-8
character may arrive split over two chunks. An incremental decoder carries the
partial bytes forward instead of decoding each chunk on its own.
"""
from __future__ import annotations

import codecs
import logging
from typing import AsyncIterable, AsyncIterator

from core.fragments import MalformedFragmentError

logger = logging.getLogger(__name__)

ENCODING = "utf-8"


def _new_decoder():
    # errors="strict": a truncated trailing sequence must fail, not become U+FFFD
    return codecs.getincrementaldecoder(ENCODING)(errors="strict")


def _undecodable(e: UnicodeDecodeError) -> MalformedFragmentError:
    context = e.object[max(e.start - 40, 0):e.end + 40]
    return MalformedFragmentError(
        context.decode(ENCODING, errors="backslashreplace"),
        f"undecodable {ENCODING} bytes: {e.reason}",
    )


async def aiter_text(source: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Yield decoded text from an async byte-chunk source.

    Single pass. The source is closed exactly once when the sequence ends,
    fails, or the consumer stops early. Read errors propagate unchanged;
    invalid or truncated UTF-8 raises :class:`MalformedFragmentError`.
    """
    decoder = _new_decoder()
    try:
        async for chunk in source:
            if not chunk:
                continue
            try:
                text = decoder.decode(chunk)
            except UnicodeDecodeError as e:
                raise _undecodable(e) from e
            if text:
                yield text
        try:
            tail = decoder.decode(b"", final=True)
        except UnicodeDecodeError as e:
            raise _undecodable(e) from e
        if tail:
            yield tail
    finally:
        aclose = getattr(source, "aclose", None)
        if aclose is not None:
            await aclose()
            logger.debug("Released byte source")


__all__ = ["aiter_text", "ENCODING"]
