"""Terminal chat against a local Ollama reasoning model."""
from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional, TextIO

from client_config import ChatConfig, build_pipeline, load_config
from clients.base_llm_client import TransportError
from clients.client_factory import create_chat_backend
from core.conversation import SessionBusyError
from core.fragments import BackendError, MalformedFragmentError
from core.pipeline import ChatPipeline, run_submit
from core.schema import DecoratedTurn
from core.segmenter import THINK_MARKERS, ThinkMarkers


COMMANDS = {
    "/quit": "leave the chat",
    "/reset": "clear the conversation",
    "/help": "show this help",
}


def _partial_marker_len(text: str, marker: str) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of ``marker``."""
    for k in range(min(len(text), len(marker) - 1), 0, -1):
        if text.endswith(marker[:k]):
            return k
    return 0


class LivePrinter:
    """Print the growing reasoning/answer view as on_update callbacks arrive.

    While reasoning is open, a trailing piece of a think marker is held back
    until the next token shows whether the marker completes.
    """

    def __init__(self, out: Optional[TextIO] = None, show_thinking: bool = True,
                 markers: ThinkMarkers = THINK_MARKERS):
        self.out = out if out is not None else sys.stdout
        self.show_thinking = show_thinking
        self.markers = markers
        self._reasoning = ""
        self._pending = ""
        self._answer = ""
        self._answer_started = False

    def _write_delta(self, shown: str, current: str) -> str:
        if current.startswith(shown):
            self.out.write(current[len(shown):])
        else:
            # text already printed was part of a marker; reprint the segment
            self.out.write("\n" + current)
        self.out.flush()
        return current

    def _write_reasoning(self, reasoning: str) -> None:
        if not self._reasoning:
            self.out.write("[thinking] ")
        self._reasoning = self._write_delta(self._reasoning, reasoning)

    def __call__(self, view: DecoratedTurn) -> None:
        reasoning = view.reasoning_text or ""
        self._pending = ""
        if reasoning and not view.reasoning_complete:
            held = _partial_marker_len(reasoning, self.markers.close)
            if self.markers.open not in view.content:
                held = max(held, _partial_marker_len(reasoning, self.markers.open))
            reasoning, self._pending = reasoning[:len(reasoning) - held], reasoning[len(reasoning) - held:]
        if self.show_thinking and reasoning:
            self._write_reasoning(reasoning)
        if view.reasoning_complete:
            if not self._answer_started:
                self.out.write("\n\n" if self.show_thinking else "")
                self._answer_started = True
            self._answer = self._write_delta(self._answer, view.answer_text)

    def finish(self) -> None:
        # the stream ended inside the reasoning; what was held back is plain text
        if self.show_thinking and self._pending:
            self._write_reasoning(self._reasoning + self._pending)
            self._pending = ""
        self.out.write("\n")
        self.out.flush()


def ask(pipeline: ChatPipeline, text: str, premise: str, show_thinking: bool = True) -> Optional[DecoratedTurn]:
    printer = LivePrinter(show_thinking=show_thinking, markers=pipeline.state.markers)
    try:
        return run_submit(pipeline, text, premise=premise, on_update=printer)
    except (TransportError, BackendError, MalformedFragmentError) as e:
        print(f"\n❌ Error: {e}", file=sys.stderr)
        return None
    except SessionBusyError as e:
        print(f"\n⚠️  {e}", file=sys.stderr)
        return None
    finally:
        printer.finish()


def repl(pipeline: ChatPipeline, config: ChatConfig, show_thinking: bool = True) -> None:
    print(f"Chatting with {config.model} at {config.base_url}. Type /help for commands.")
    while True:
        try:
            text = input("> ").strip()
        except EOFError:
            break
        if not text:
            continue
        if text == "/quit":
            break
        if text == "/help":
            for cmd, desc in COMMANDS.items():
                print(f"  {cmd:8} {desc}")
            continue
        if text == "/reset":
            pipeline.state.reset()
            print("Conversation cleared.")
            continue
        try:
            ask(pipeline, text, config.premise, show_thinking=show_thinking)
        except KeyboardInterrupt:
            print("\n[cancelled]")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Chat with a local reasoning model through Ollama.")
    parser.add_argument("--config", help="Path to YAML config file")
    parser.add_argument("--model", help="Override the model identifier")
    parser.add_argument("--replay", help="Replay a recorded NDJSON response body instead of calling Ollama")
    parser.add_argument("--chunk-size", type=int, default=64, help="Byte chunk size used with --replay")
    parser.add_argument("--hide-thinking", action="store_true", help="Only print the final answer")
    parser.add_argument("--once", metavar="TEXT", help="Send a single message and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    config = load_config(args.config)
    if args.model:
        config.model = args.model

    backend = None
    if args.replay:
        backend = create_chat_backend("replay", path=args.replay, chunk_size=args.chunk_size, model_id=config.model)
    pipeline = build_pipeline(config, backend=backend)
    show_thinking = not args.hide_thinking

    if args.once:
        result = ask(pipeline, args.once, config.premise, show_thinking=show_thinking)
        return 0 if result is not None else 1

    repl(pipeline, config, show_thinking=show_thinking)
    return 0


if __name__ == "__main__":
    sys.exit(main())
