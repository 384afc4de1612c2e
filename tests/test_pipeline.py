"""Pipeline tests driven by the replay backend (no Ollama needed).

Run with: pytest tests/test_pipeline.py
"""
from pathlib import Path
import asyncio
import json
import sys
from unittest.mock import AsyncMock, Mock

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from clients.base_llm_client import TransportError
from clients.replay_client import ReplayClient, ndjson_chunks
from core.conversation import ConversationState, SessionBusyError
from core.fragments import BackendError, MalformedFragmentError
from core.pipeline import ChatPipeline, run_submit
from core.schema import Turn


def _rechunk(chunks, size):
    blob = b"".join(chunks)
    return [blob[i : i + size] for i in range(0, len(blob), size)]


def test_end_to_end_thinking_then_answer():
    backend = ReplayClient.from_tokens(["<think>", "hmm</think>", "hello"])
    pipeline = ChatPipeline(backend)
    views = []

    result = asyncio.run(pipeline.submit("hi", on_update=views.append))

    assert pipeline.state.history == (Turn("user", "hi"), Turn("assistant", "<think>hmm</think>hello"))
    assert (result.reasoning_complete, result.reasoning_text, result.answer_text) == (True, "hmm", "hello")
    assert [(v.reasoning_complete, v.reasoning_text, v.answer_text) for v in views] == [
        (False, "", ""),
        (True, "hmm", ""),
        (True, "hmm", "hello"),
    ]
    assert backend.requests[0]["messages"] == [{"role": "user", "content": "hi"}]
    assert pipeline.busy is False
    assert backend.sources[0].close_count == 1


@pytest.mark.parametrize("chunk_size", [1, 2, 5, 17, 4096])
def test_chunking_is_transparent(chunk_size):
    tokens = ["<think>", "Überlegung ", "🤔", "</think>", "Antwort: ", "naïve café"]
    backend = ReplayClient(_rechunk(ndjson_chunks(tokens), chunk_size))
    pipeline = ChatPipeline(backend)

    result = asyncio.run(pipeline.submit("frage"))

    assert pipeline.state.history[-1].content == "".join(tokens)
    assert result.reasoning_text == "Überlegung 🤔"
    assert result.answer_text == "Antwort: naïve café"


def test_record_split_over_chunks_without_trailing_newline():
    body = b"".join(ndjson_chunks(["a", "b"], done=False)).rstrip(b"\n")
    backend = ReplayClient([body[:10], body[10:]])
    pipeline = ChatPipeline(backend)
    asyncio.run(pipeline.submit("x"))
    assert pipeline.state.history[-1].content == "ab"


def test_usage_from_done_record():
    chunks = ndjson_chunks(["ok"], done=False)
    chunks.append(
        (json.dumps({"message": {"content": ""}, "done": True, "prompt_eval_count": 12,
                     "eval_count": 30, "total_duration": 2_500_000_000}) + "\n").encode()
    )
    pipeline = ChatPipeline(ReplayClient(chunks))
    asyncio.run(pipeline.submit("x"))
    usage = pipeline.session.usage
    assert usage["prompt_tokens"] == 12
    assert usage["completion_tokens"] == 30
    assert usage["total_tokens"] == 42
    assert usage["total_duration_ms"] == 2500


def test_premise_is_sent_with_history():
    backend = ReplayClient.from_tokens(["fine"])
    pipeline = ChatPipeline(backend, state=ConversationState(premise_policy="every_turn"))
    run_submit(pipeline, "one", premise="Be brief.")
    run_submit(pipeline, "two", premise="Be brief.")
    assert [m["role"] for m in backend.requests[1]["messages"]] == ["system", "user", "assistant", "system", "user"]


def test_second_submit_while_streaming_is_rejected():
    backend = ReplayClient.from_tokens(["a", "b", "c"], delay_s=0.01)
    pipeline = ChatPipeline(backend)

    async def scenario():
        first = asyncio.ensure_future(pipeline.submit("first"))
        await asyncio.sleep(0)
        assert pipeline.busy is True
        with pytest.raises(SessionBusyError):
            await pipeline.submit("second")
        return await first

    result = asyncio.run(scenario())
    assert result.answer_text == ""
    assert [t.content for t in pipeline.state.history] == ["first", "abc"]
    assert len(backend.requests) == 1


def test_cancel_keeps_partial_turn_and_releases_source():
    backend = ReplayClient.from_tokens(["<think>", "one", "two", "three"])
    pipeline = ChatPipeline(backend)

    def cancel_after_first(view):
        pipeline.cancel()

    async def scenario():
        with pytest.raises(asyncio.CancelledError):
            await pipeline.submit("hi", on_update=cancel_after_first)

    asyncio.run(scenario())
    assert pipeline.state.history[-1] == Turn("assistant", "<think>")
    assert pipeline.busy is False
    assert isinstance(pipeline.state.last_error, asyncio.CancelledError)
    assert backend.sources[0].close_count == 1
    assert pipeline.cancel() is False


def test_transport_failure_mid_stream():
    backend = ReplayClient(ndjson_chunks(["<think>", "partial"], done=False), error=TransportError("aborted"))
    pipeline = ChatPipeline(backend)

    with pytest.raises(TransportError):
        run_submit(pipeline, "hi")

    assert pipeline.state.history[-1] == Turn("assistant", "<think>partial")
    assert pipeline.busy is False
    assert backend.sources[0].close_count == 1

    # a new submission is allowed afterwards
    backend.error = None
    run_submit(pipeline, "again")
    assert pipeline.state.history[-2] == Turn("user", "again")


def test_backend_unreachable():
    backend = Mock()
    backend.model_id = "deepseek-r1:1.5b"
    backend.open_stream = AsyncMock(side_effect=TransportError("connection refused"))
    pipeline = ChatPipeline(backend)

    with pytest.raises(TransportError):
        run_submit(pipeline, "hi")

    assert pipeline.state.history == (Turn("user", "hi"),)
    assert pipeline.busy is False
    backend.open_stream.assert_called_once()


def test_malformed_fragment_ends_session():
    chunks = ndjson_chunks(["ok "], done=False) + [b"{broken\n"] + ndjson_chunks(["lost"])
    backend = ReplayClient(chunks)
    pipeline = ChatPipeline(backend)

    with pytest.raises(MalformedFragmentError):
        run_submit(pipeline, "hi")
    assert pipeline.state.history[-1] == Turn("assistant", "ok ")
    assert backend.sources[0].close_count == 1


def test_undecodable_bytes_fail_session_as_malformed():
    chunks = ndjson_chunks(["<think>ok"], done=False) + [b'{"message": {"content": "\xff"}}\n']
    backend = ReplayClient(chunks)
    pipeline = ChatPipeline(backend)

    with pytest.raises(MalformedFragmentError):
        run_submit(pipeline, "hi")
    assert pipeline.state.history[-1] == Turn("assistant", "<think>ok")
    assert isinstance(pipeline.state.last_error, MalformedFragmentError)
    assert pipeline.busy is False
    assert backend.sources[0].close_count == 1


def test_malformed_fragment_skipped_when_configured():
    chunks = ndjson_chunks(["ok "], done=False) + [b"{broken\n"] + ndjson_chunks(["kept"])
    pipeline = ChatPipeline(ReplayClient(chunks), on_malformed="skip")
    run_submit(pipeline, "hi")
    assert pipeline.state.history[-1] == Turn("assistant", "ok kept")
    assert len(pipeline.session.parser.malformed) == 1


def test_backend_error_record():
    chunks = ndjson_chunks(["<think>"], done=False) + [b'{"error": "out of memory"}\n']
    pipeline = ChatPipeline(ReplayClient(chunks))
    with pytest.raises(BackendError):
        run_submit(pipeline, "hi")
    assert pipeline.busy is False


def test_callback_error_fails_session():
    pipeline = ChatPipeline(ReplayClient.from_tokens(["a", "b"]))

    def broken(view):
        raise RuntimeError("display went away")

    with pytest.raises(RuntimeError, match="display went away"):
        run_submit(pipeline, "hi", on_update=broken)
    assert pipeline.busy is False
    assert pipeline.state.history[-1] == Turn("assistant", "a")


def test_empty_response_adds_no_assistant_turn():
    pipeline = ChatPipeline(ReplayClient.from_tokens([]))
    result = run_submit(pipeline, "hi")
    assert pipeline.state.history == (Turn("user", "hi"),)
    assert result.reasoning_complete is False
    assert result.answer_text == ""
