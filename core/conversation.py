"""Conversation history and the busy flag, as an explicit state container.

Transitions: ``submit`` -> ``apply_increment`` (any number of times) ->
``complete_session`` or ``fail_session``. History only ever grows, except that
the trailing in-flight assistant turn is swapped for a new Turn on each
increment.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from core.schema import DecoratedTurn, Turn
from core.segmenter import THINK_MARKERS, ThinkMarkers, decorate

logger = logging.getLogger(__name__)

PREMISE_POLICIES = ("every_turn", "once", "never")
DISPLAY_ROLES = ("user", "assistant")


class SessionBusyError(RuntimeError):
    """A submission was attempted while a streaming session is still pending."""


class ConversationState:
    def __init__(
        self,
        premise_policy: str = "once",
        markers: ThinkMarkers = THINK_MARKERS,
    ) -> None:
        if premise_policy not in PREMISE_POLICIES:
            raise ValueError(f"premise_policy must be one of {PREMISE_POLICIES}")
        self.premise_policy = premise_policy
        self.markers = markers
        self._history: List[Turn] = []
        self._busy = False
        self._in_flight = False
        self.last_error: Optional[BaseException] = None

    @property
    def history(self) -> Tuple[Turn, ...]:
        return tuple(self._history)

    @property
    def busy(self) -> bool:
        return self._busy

    def messages(self):
        """History in the wire shape the backend expects."""
        return [turn.to_dict() for turn in self._history]

    def _should_add_premise(self, premise: Optional[str]) -> bool:
        if not premise or self.premise_policy == "never":
            return False
        if self.premise_policy == "every_turn":
            return True
        last_system = next((t for t in reversed(self._history) if t.role == "system"), None)
        return last_system is None or last_system.content != premise

    def submit(self, user_text: str, premise: Optional[str] = None) -> Tuple[Turn, ...]:
        if self._busy:
            raise SessionBusyError("A response is still streaming; wait for it or cancel it first")
        if not user_text or not user_text.strip():
            raise ValueError("user_text must be a non-empty string")

        if self._should_add_premise(premise):
            self._history.append(Turn("system", premise))
        self._history.append(Turn("user", user_text))
        self._busy = True
        self._in_flight = False
        self.last_error = None
        logger.debug(f"Submitted turn #{len(self._history)} (policy={self.premise_policy})")
        return self.history

    def apply_increment(self, cumulative: str) -> Turn:
        if not self._busy:
            raise RuntimeError("apply_increment called with no active session")
        turn = Turn("assistant", cumulative)
        if self._in_flight:
            self._history[-1] = turn
        else:
            self._history.append(turn)
            self._in_flight = True
        return turn

    def complete_session(self) -> None:
        self._busy = False
        self._in_flight = False

    def fail_session(self, error: BaseException) -> None:
        # the partial assistant turn, if any, stays in history as last received
        self.last_error = error
        self._busy = False
        self._in_flight = False
        logger.warning(f"Session failed: {error!r}")

    def reset(self) -> None:
        if self._busy:
            raise SessionBusyError("Cannot clear the conversation while a response is streaming")
        self._history.clear()
        self.last_error = None

    def decorated(self) -> List[DecoratedTurn]:
        return [decorate(turn, self.markers) for turn in self._history]

    def visible_turns(self) -> List[DecoratedTurn]:
        return [d for d in self.decorated() if d.role in DISPLAY_ROLES]


__all__ = ["ConversationState", "SessionBusyError", "PREMISE_POLICIES", "DISPLAY_ROLES"]
