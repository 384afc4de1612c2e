"""Streaming pipeline: submit history, consume the byte stream, update the conversation.

Data flow per submission::

    ConversationState.submit -> backend.open_stream -> aiter_text
        -> FragmentParser -> ResponseAccumulator -> ConversationState.apply_increment
        -> on_update(decorated assistant turn)

Everything between two awaits (one chunk pull) runs synchronously, so state
updates are never interleaved.
"""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable, Dict, Optional

from clients.base_llm_client import BaseChatBackend, ByteSource
from core.accumulator import ResponseAccumulator
from core.conversation import ConversationState
from core.fragments import Fragment, FragmentParser
from core.schema import DecoratedTurn, Turn
from core.segmenter import decorate
from core.stream import aiter_text

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[DecoratedTurn], None]


def usage_from_done(done_obj: Dict[str, Any], elapsed: float) -> Dict[str, Any]:
    """Token counts and timings from the backend's final ``done`` record."""
    return {
        "prompt_tokens": done_obj.get("prompt_eval_count", 0),
        "completion_tokens": done_obj.get("eval_count", 0),
        "total_tokens": done_obj.get("prompt_eval_count", 0) + done_obj.get("eval_count", 0),
        "total_duration_ms": done_obj.get("total_duration", 0) // 1_000_000,  # ns to ms
        "load_duration_ms": done_obj.get("load_duration", 0) // 1_000_000,
        "elapsed_s": elapsed,
    }


class StreamingSession:
    """Transient state for one request/stream cycle. Never reused."""

    def __init__(self, on_malformed: str = "raise") -> None:
        self.parser = FragmentParser(on_malformed=on_malformed)
        self.accumulator = ResponseAccumulator()
        self.done_obj: Dict[str, Any] = {}
        self.usage: Dict[str, Any] = {}
        self._started = False

    @property
    def text(self) -> str:
        return self.accumulator.text

    def _apply(self, fragment: Fragment) -> Optional[str]:
        if fragment.done:
            self.done_obj = fragment.record
        if not fragment.token:
            return None
        return self.accumulator.append(fragment.token)

    async def run(self, source: ByteSource) -> AsyncIterator[str]:
        """Yield the cumulative response string after every content token.

        The byte source is released when this generator finishes, fails or
        is closed early.
        """
        if self._started:
            raise RuntimeError("StreamingSession cannot be reused")
        self._started = True

        t0 = time.time()
        async with aclosing(aiter_text(source)) as fragments:
            async for text in fragments:
                for fragment in self.parser.feed(text):
                    cumulative = self._apply(fragment)
                    if cumulative is not None:
                        yield cumulative
        for fragment in self.parser.flush():
            cumulative = self._apply(fragment)
            if cumulative is not None:
                yield cumulative

        self.usage = usage_from_done(self.done_obj, time.time() - t0)
        logger.debug(f"Session stream closed after {self.accumulator.token_count} tokens")


class ChatPipeline:
    """Runs submissions against a backend, one at a time.

    A second ``submit`` while one is pending raises ``SessionBusyError`` from
    the state container before anything is sent.
    """

    def __init__(
        self,
        backend: BaseChatBackend,
        state: Optional[ConversationState] = None,
        on_malformed: str = "raise",
    ) -> None:
        self.backend = backend
        self.state = state if state is not None else ConversationState()
        self.on_malformed = on_malformed
        self.session: Optional[StreamingSession] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def busy(self) -> bool:
        return self.state.busy

    async def submit(
        self,
        user_text: str,
        premise: Optional[str] = None,
        on_update: Optional[UpdateCallback] = None,
    ) -> DecoratedTurn:
        """Send ``user_text`` and stream the reply into the conversation.

        Returns the final decorated assistant turn. Transport, backend and
        parse errors propagate after the session is failed; the partial
        assistant turn stays in history. No retries.
        """
        self.state.submit(user_text, premise)
        session = StreamingSession(on_malformed=self.on_malformed)
        self.session = session
        logger.info(f"Submitting {len(self.state.history)} turns to {self.backend.model_id}")

        self._task = asyncio.ensure_future(self._stream(session, on_update))
        try:
            await self._task
        except BaseException as e:  # includes cancellation
            self.state.fail_session(e)
            raise
        finally:
            self._task = None

        self.state.complete_session()
        final = decorate(Turn("assistant", session.text), self.state.markers)
        logger.info(
            f"✓ Response: {len(final.answer_text)} chars, "
            f"reasoning: {len(final.reasoning_text or '')} chars, "
            f"time: {session.usage.get('elapsed_s', 0):.1f}s"
        )
        return final

    async def _stream(self, session: StreamingSession, on_update: Optional[UpdateCallback]) -> None:
        source = await self.backend.open_stream(self.state.messages())
        async with aclosing(session.run(source)) as updates:
            async for cumulative in updates:
                turn = self.state.apply_increment(cumulative)
                if on_update is not None:
                    on_update(decorate(turn, self.state.markers))

    def cancel(self) -> bool:
        """Abort the in-flight submission. Returns False if nothing was running."""
        if self._task is None or self._task.done():
            return False
        logger.info("Cancelling in-flight response")
        self._task.cancel()
        return True


def run_submit(pipeline: ChatPipeline, user_text: str, premise: Optional[str] = None, on_update=None):
    """Blocking wrapper around :meth:`ChatPipeline.submit` for synchronous callers."""
    return asyncio.run(pipeline.submit(user_text, premise=premise, on_update=on_update))


__all__ = ["ChatPipeline", "StreamingSession", "run_submit", "usage_from_done"]
