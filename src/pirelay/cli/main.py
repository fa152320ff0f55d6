# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Command line entry points for the ``pirelay`` executable."""

from __future__ import annotations

import argparse
import itertools
import json
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, cast

from ..errors import DecodeError
from ..protocol.decoder import decode_event
from ..protocol.messages import Message, parse_message
from ..runtime.logging import StructuredLogger, configure_logging, get_logger
from ..transcript.history import reconcile_history
from ..transcript.model import ReducerState, Transcript
from ..transcript.reducer import ReducerContext, reduce_event
from ..transcript.serde import dump_streaming, dump_transcript


class InputError(Exception):
    """Raised when an input file cannot be read or parsed."""


def main(argv: Sequence[str] | None = None) -> int:
    """Run the pirelay CLI."""

    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit as exc:  # argparse exits with code 2 on errors
        code = exc.code if isinstance(exc.code, int) else 2
        return int(code)

    configure_logging(level=args.log_level, json_mode=args.json_logs)
    logger = get_logger(__name__, context={"component": "cli"})

    try:
        if args.command == "history":
            return _run_history(args, logger)
        if args.command == "replay":
            return _run_replay(args, logger)
    except InputError as error:
        logger.error(
            "Cannot read input.",
            event="cli.input_error",
            context={"error": str(error)},
        )
        return 2

    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pirelay",
        description="Rebuild agent conversation transcripts from relay data.",
    )
    _ = parser.add_argument(
        "--log-level",
        choices=("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"),
        default=None,
        help="Override the log level emitted by the CLI.",
    )
    _ = parser.add_argument(
        "--json-logs",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Emit structured JSON logs (disable with --no-json-logs).",
    )

    subcommands = parser.add_subparsers(dest="command", required=True)

    history_parser = subcommands.add_parser(
        "history",
        help="Print the transcript reconciled from stored session messages.",
    )
    _ = history_parser.add_argument(
        "messages_path",
        help="JSON file holding a message list or a get_messages response.",
    )

    replay_parser = subcommands.add_parser(
        "replay",
        help="Fold a recorded event log through the streaming reducer.",
    )
    _ = replay_parser.add_argument(
        "events_path",
        help="JSONL file with one relay event per line.",
    )
    _ = replay_parser.add_argument(
        "--history",
        dest="history_path",
        default=None,
        help="Seed the transcript from this message file before replaying.",
    )

    return parser


def _emit(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as error:
        raise InputError(f"{path}: {error}") from error


def load_history(path: Path, logger: StructuredLogger) -> Transcript:
    """Parse a stored message file and reconcile it into a transcript.

    Undecodable messages are logged and skipped.
    """

    try:
        loaded: Any = json.loads(_read_text(path))
    except json.JSONDecodeError as error:
        raise InputError(f"{path}: {error}") from error
    if isinstance(loaded, dict):
        loaded = cast(dict[str, Any], loaded).get("messages")
    if not isinstance(loaded, list):
        raise InputError(f"{path}: expected a list of messages")

    messages: list[Message] = []
    for index, raw in enumerate(cast(list[object], loaded)):
        if not isinstance(raw, dict):
            logger.warning(
                "Skipping non-object history entry.",
                event="cli.history.skipped",
                context={"index": index},
            )
            continue
        try:
            messages.append(parse_message(cast(dict[str, object], raw), index=index))
        except DecodeError as error:
            logger.warning(
                "Skipping undecodable history message.",
                event="cli.history.skipped",
                context={"index": index, "error": str(error)},
            )
    return reconcile_history(messages)


def _counter_ids(prefix: str) -> Callable[[], str]:
    counter = itertools.count(1)
    return lambda: f"{prefix}-{next(counter)}"


def _run_history(args: argparse.Namespace, logger: StructuredLogger) -> int:
    transcript = load_history(Path(args.messages_path), logger)
    _emit(dump_transcript(transcript))
    return 0


def _run_replay(args: argparse.Namespace, logger: StructuredLogger) -> int:
    transcript = (
        load_history(Path(args.history_path), logger)
        if args.history_path is not None
        else Transcript()
    )
    state = ReducerState(transcript=transcript)
    context = ReducerContext(new_id=_counter_ids("item"))

    for line_number, line in enumerate(
        _read_text(Path(args.events_path)).splitlines(), start=1
    ):
        if not line.strip():
            continue
        try:
            event = decode_event(line)
        except DecodeError as error:
            logger.warning(
                "Skipping undecodable event.",
                event="cli.replay.decode_failed",
                context={"line": line_number, "error": str(error)},
            )
            continue
        result = reduce_event(state, event, context=context)
        state = result.state
        for failure in result.failures:
            logger.warning(
                "Agent reported a failure.",
                event="cli.replay.agent_failed",
                context={
                    "line": line_number,
                    "source": failure.source,
                    "error": str(failure),
                },
            )

    _emit(
        {
            "items": dump_transcript(state.transcript),
            "streaming": dump_streaming(state.streaming),
            "model": state.model_name,
        }
    )
    return 0


__all__ = ["InputError", "load_history", "main"]
