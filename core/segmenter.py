"""Split cumulative assistant text into ``<think>`` reasoning and the final answer."""
from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple

from core.schema import DecoratedTurn, Turn

REASONING = "REASONING"
FINISHED = "FINISHED"


class ThinkMarkers(NamedTuple):
    open: str
    close: str


THINK_MARKERS = ThinkMarkers("<think>", "</think>")


@dataclass(frozen=True)
class Segmentation:
    reasoning_complete: bool
    reasoning_text: str
    answer_text: str

    @property
    def state(self) -> str:
        return FINISHED if self.reasoning_complete else REASONING


def segment(text: str, markers: ThinkMarkers = THINK_MARKERS) -> Segmentation:
    """Classify the cumulative string into reasoning and answer.

    The result depends only on ``text``, so it can be recomputed from scratch
    on every streamed update. Only the first closing marker is significant:
    anything after it, including further closing markers, is answer text.
    The opening marker is optional.
    """
    if not markers.open or not markers.close:
        raise ValueError("Think markers must be non-empty strings")

    head, sep, tail = text.partition(markers.close)
    reasoning = head.replace(markers.open, "", 1)
    if not sep:
        return Segmentation(reasoning_complete=False, reasoning_text=reasoning, answer_text="")
    return Segmentation(reasoning_complete=True, reasoning_text=reasoning, answer_text=tail)


def decorate(turn: Turn, markers: ThinkMarkers = THINK_MARKERS) -> DecoratedTurn:
    """Project a turn onto its display view. Pure; nothing is stored on ``turn``."""
    if turn.role != "assistant":
        return DecoratedTurn(role=turn.role, content=turn.content, answer_text=turn.content)
    split = segment(turn.content, markers)
    return DecoratedTurn(
        role=turn.role,
        content=turn.content,
        answer_text=split.answer_text,
        reasoning_complete=split.reasoning_complete,
        reasoning_text=split.reasoning_text,
    )


__all__ = [
    "REASONING",
    "FINISHED",
    "ThinkMarkers",
    "THINK_MARKERS",
    "Segmentation",
    "segment",
    "decorate",
]
