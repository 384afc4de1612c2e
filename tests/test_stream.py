from pathlib import Path
import asyncio
import sys

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from clients.replay_client import ReplaySource
from core.fragments import MalformedFragmentError
from core.stream import aiter_text


async def _collect(source):
    return [text async for text in aiter_text(source)]


def test_multibyte_character_split_across_chunks():
    # "é" is b"\xc3\xa9", "👋" is four bytes
    source = ReplaySource([b"caf\xc3", b"\xa9 \xf0\x9f", b"\x91", b"\x8b"])
    parts = asyncio.run(_collect(source))
    assert "".join(parts) == "café 👋"
    assert all("�" not in part for part in parts)


def test_empty_chunks_are_skipped():
    source = ReplaySource([b"", b"ab", b"", b"c"])
    assert asyncio.run(_collect(source)) == ["ab", "c"]


def test_source_released_once_on_completion():
    source = ReplaySource([b"one", b"two"])
    asyncio.run(_collect(source))
    assert source.close_count == 1


def test_read_error_propagates_and_releases_source():
    source = ReplaySource([b"partial"], error=ConnectionResetError("reset by peer"))
    with pytest.raises(ConnectionResetError):
        asyncio.run(_collect(source))
    assert source.close_count == 1


def test_truncated_trailing_character_is_an_error():
    source = ReplaySource([b"ok \xc3"])
    with pytest.raises(MalformedFragmentError, match="undecodable") as excinfo:
        asyncio.run(_collect(source))
    assert isinstance(excinfo.value.__cause__, UnicodeDecodeError)
    assert source.close_count == 1


def test_invalid_byte_is_a_malformed_fragment():
    source = ReplaySource([b'{"message": {"content": "ok', b'\xff"}}\n'])
    with pytest.raises(MalformedFragmentError) as excinfo:
        asyncio.run(_collect(source))
    assert "\\xff" in excinfo.value.line
    assert source.close_count == 1


def test_source_released_when_consumer_stops_early():
    source = ReplaySource([b"first", b"second", b"third"])

    async def consume_one():
        fragments = aiter_text(source)
        first = await fragments.__anext__()
        await fragments.aclose()
        return first

    assert asyncio.run(consume_one()) == "first"
    assert source.close_count == 1

