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

"""Decode raw relay messages into typed :mod:`pirelay.protocol.events`.

Two wire layouts are accepted:

- the relay envelope ``{"kind": "event", "sessionId": ..., "seq": ...,
  "type": "agent_start", "payload": {...}}``;
- the flat stdio layout ``{"type": "agent_start", ...fields}``.

Missing optional fields fall back to defaults. Fields that are present with
the wrong JSON type, invalid JSON, non-object messages and a missing
``type`` raise :class:`~pirelay.errors.DecodeError`. Unknown event types are
not errors; they decode to :class:`~pirelay.protocol.events.UnknownEvent`.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping, Sequence
from typing import Final, cast

from ..dataclasses import FrozenDataclass
from ..errors import DecodeError
from ..runtime.logging import StructuredLogger, get_logger
from ..types import RawMessage
from .events import (
    AgentEnd,
    AgentStart,
    AssistantEvent,
    AssistantMessageEnd,
    AssistantMessageStart,
    AutoCompactionEnd,
    AutoCompactionStart,
    AutoRetryEnd,
    AutoRetryStart,
    ContentBlockEnd,
    ContentBlockStart,
    Event,
    HookError,
    MessageEnd,
    MessageStart,
    MessageUpdate,
    ModelChanged,
    ModelInfo,
    RpcErrorInfo,
    StateUpdate,
    TextDelta,
    ThinkingDelta,
    ToolExecutionEnd,
    ToolExecutionStart,
    ToolExecutionStatus,
    ToolExecutionUpdate,
    ToolUseEnd,
    ToolUseInputDelta,
    ToolUseStart,
    TurnEnd,
    TurnStart,
    UnknownAssistantEvent,
    UnknownEvent,
)

logger: StructuredLogger = get_logger(__name__, context={"component": "decoder"})

_TOOL_STATUSES: Final[frozenset[str]] = frozenset({"success", "error", "cancelled"})


@FrozenDataclass()
class EventEnvelope:
    """A decoded event plus the relay metadata that accompanied it.

    ``session_id`` and ``seq`` are ``None`` for the flat stdio layout.
    """

    event: Event
    session_id: str | None = None
    seq: int | None = None


class _Fields:
    """Typed accessors over one message's JSON object."""

    __slots__ = ("_data", "_event_type")

    def __init__(self, data: Mapping[str, object], event_type: str) -> None:
        super().__init__()
        self._data = data
        self._event_type = event_type

    def _fail(self, key: str, expected: str) -> DecodeError:
        actual = type(self._data[key]).__name__
        return DecodeError(
            f"Field '{key}' of '{self._event_type}' must be {expected}, got {actual}.",
            event_type=self._event_type,
        )

    @property
    def data(self) -> Mapping[str, object]:
        return self._data

    def raw(self, key: str) -> object:
        return self._data.get(key)

    def string(self, key: str) -> str | None:
        value = self._data.get(key)
        if value is None:
            return None
        if not isinstance(value, str):
            raise self._fail(key, "a string")
        return value

    def boolean(self, key: str) -> bool | None:
        value = self._data.get(key)
        if value is None:
            return None
        if not isinstance(value, bool):
            raise self._fail(key, "a boolean")
        return value

    def integer(self, key: str) -> int | None:
        value = self._data.get(key)
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise self._fail(key, "a number")
        return int(value)

    def mapping(self, key: str) -> Mapping[str, object] | None:
        value = self._data.get(key)
        if value is None:
            return None
        if not isinstance(value, Mapping):
            raise self._fail(key, "an object")
        return cast(Mapping[str, object], value)


def _load(raw: RawMessage) -> Mapping[str, object]:
    if isinstance(raw, Mapping):
        return raw
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as error:
            raise DecodeError(f"Message is not valid UTF-8: {error}") from error
    try:
        loaded: object = json.loads(raw)
    except json.JSONDecodeError as error:
        raise DecodeError(f"Message is not valid JSON: {error.msg}") from error
    if not isinstance(loaded, Mapping):
        raise DecodeError(
            f"Message must be a JSON object, got {type(loaded).__name__}."
        )
    return cast(Mapping[str, object], loaded)


def _render_args(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def _joined_content_text(container: Mapping[str, object] | None) -> str | None:
    if container is None:
        return None
    content = container.get("content")
    if not isinstance(content, Sequence) or isinstance(content, str):
        return None
    parts: list[str] = []
    for entry in cast(Sequence[object], content):
        if isinstance(entry, Mapping):
            text = cast(Mapping[str, object], entry).get("text")
            if isinstance(text, str):
                parts.append(text)
    return "".join(parts)


def parse_model_info(value: Mapping[str, object], *, event_type: str) -> ModelInfo:
    """Decode a model description such as ``{"id", "name", "provider"}``.

    ``name`` falls back to ``id`` for agents that only report the latter.
    """

    fields = _Fields(value, event_type)
    model_id = fields.string("id")
    name = fields.string("name") or model_id
    if model_id is None or name is None:
        raise DecodeError(
            f"Model in '{event_type}' requires an 'id'.", event_type=event_type
        )
    return ModelInfo(id=model_id, name=name, provider=fields.string("provider") or "")


def _decode_tool_use_start(fields: _Fields) -> ToolUseStart:
    tool_call_id = fields.string("toolCallId")
    tool_name = fields.string("toolName")
    if tool_call_id is None or tool_name is None:
        partial = fields.mapping("partial")
        index = fields.integer("contentIndex") or 0
        content = partial.get("content") if partial is not None else None
        if isinstance(content, Sequence) and not isinstance(content, str):
            blocks = cast(Sequence[object], content)
            if 0 <= index < len(blocks) and isinstance(blocks[index], Mapping):
                block = cast(Mapping[str, object], blocks[index])
                if block.get("type") == "toolCall":
                    block_id = block.get("id")
                    block_name = block.get("name")
                    if tool_call_id is None and isinstance(block_id, str):
                        tool_call_id = block_id
                    if tool_name is None and isinstance(block_name, str):
                        tool_name = block_name
    return ToolUseStart(tool_call_id=tool_call_id or "", tool_name=tool_name or "")


def _decode_assistant_event(data: Mapping[str, object]) -> AssistantEvent:
    event_type = data.get("type")
    if event_type is None:
        return UnknownAssistantEvent(type="unknown")
    if not isinstance(event_type, str):
        raise DecodeError("Assistant event 'type' must be a string.")
    fields = _Fields(data, event_type)

    match event_type:
        case "text_delta":
            return TextDelta(delta=fields.string("delta") or "")
        case "text_start" | "text_end":
            return TextDelta(delta="")
        case "thinking_delta":
            return ThinkingDelta(delta=fields.string("delta") or "")
        case "thinking_start" | "thinking_end":
            return ThinkingDelta(delta="")
        case "tool_use_start" | "toolcall_start":
            return _decode_tool_use_start(fields)
        case "tool_use_input_delta" | "toolcall_delta":
            return ToolUseInputDelta(
                tool_call_id=fields.string("toolCallId") or "",
                delta=fields.string("delta") or "",
            )
        case "tool_use_end" | "toolcall_end":
            return ToolUseEnd(tool_call_id=fields.string("toolCallId") or "")
        case "message_start" | "start":
            return AssistantMessageStart(message_id=fields.string("messageId") or "")
        case "message_end" | "done":
            return AssistantMessageEnd(stop_reason=fields.string("stopReason"))
        case "error":
            return AssistantMessageEnd(stop_reason="error")
        case "content_block_start":
            return ContentBlockStart(
                index=fields.integer("index") or 0,
                block_type=fields.string("blockType") or "text",
            )
        case "content_block_end":
            return ContentBlockEnd(index=fields.integer("index") or 0)
        case _:
            return UnknownAssistantEvent(type=event_type)


def _decode_message_update(fields: _Fields) -> MessageUpdate:
    nested = fields.raw("assistantMessageEvent")
    if not isinstance(nested, Mapping):
        nested = fields.raw("event")
    source = (
        cast(Mapping[str, object], nested)
        if isinstance(nested, Mapping)
        else fields.data
    )
    return MessageUpdate(assistant_event=_decode_assistant_event(source))


def _decode_agent_end(fields: _Fields) -> AgentEnd:
    success = fields.boolean("success")
    raw_error = fields.raw("error")
    error: RpcErrorInfo | None = None
    if isinstance(raw_error, str):
        error = RpcErrorInfo(message=raw_error)
    elif raw_error is not None:
        error_fields = _Fields(fields.mapping("error") or {}, "agent_end.error")
        error = RpcErrorInfo(
            message=error_fields.string("message") or "Unknown error",
            code=error_fields.string("code"),
            details=error_fields.string("details"),
        )
    return AgentEnd(success=True if success is None else success, error=error)


def _decode_tool_execution_end(fields: _Fields, event_type: str) -> ToolExecutionEnd:
    output = fields.string("output")
    if output is None:
        output = _joined_content_text(fields.mapping("result"))
    status_value = fields.string("status")
    status: ToolExecutionStatus
    if status_value is not None:
        if status_value not in _TOOL_STATUSES:
            raise DecodeError(
                f"Unknown tool status '{status_value}'.", event_type=event_type
            )
        status = cast(ToolExecutionStatus, status_value)
    else:
        status = "error" if fields.boolean("isError") else "success"
    return ToolExecutionEnd(
        tool_call_id=fields.string("toolCallId") or "",
        output=output,
        status=status,
    )


def _decode_model_changed(fields: _Fields, event_type: str) -> ModelChanged:
    model = fields.mapping("model")
    if model is None:
        raise DecodeError(
            f"'{event_type}' requires a 'model' object.", event_type=event_type
        )
    return ModelChanged(model=parse_model_info(model, event_type=event_type))


def _decode_hook_error(fields: _Fields) -> HookError:
    hook_event = fields.raw("event")
    return HookError(
        message=fields.string("error") or fields.string("message"),
        extension_path=fields.string("extensionPath"),
        hook_event=hook_event if isinstance(hook_event, str) else None,
    )


def _simple(factory: Callable[[], Event]) -> Callable[[_Fields, str], Event]:
    return lambda _fields, _event_type: factory()


_DECODERS: Final[dict[str, Callable[[_Fields, str], Event]]] = {
    "agent_start": _simple(AgentStart),
    "agent_end": lambda f, _t: _decode_agent_end(f),
    "turn_start": _simple(TurnStart),
    "turn_end": _simple(TurnEnd),
    "message_start": lambda f, _t: MessageStart(message_id=f.string("messageId")),
    "message_end": lambda f, _t: MessageEnd(stop_reason=f.string("stopReason")),
    "message_update": lambda f, _t: _decode_message_update(f),
    "tool_execution_start": lambda f, _t: ToolExecutionStart(
        tool_call_id=f.string("toolCallId") or "",
        tool_name=f.string("toolName") or "",
        args=_render_args(f.raw("args")),
    ),
    "tool_execution_update": lambda f, _t: ToolExecutionUpdate(
        tool_call_id=f.string("toolCallId") or "",
        output=(
            f.string("output")
            if f.raw("output") is not None
            else _joined_content_text(f.mapping("partialResult"))
        ),
    ),
    "tool_execution_end": _decode_tool_execution_end,
    "auto_compaction_start": _simple(AutoCompactionStart),
    "auto_compaction_end": _simple(AutoCompactionEnd),
    "auto_retry_start": lambda f, _t: AutoRetryStart(
        attempt=f.integer("attempt") or 0,
        max_attempts=f.integer("maxAttempts") or 0,
        delay_ms=f.integer("delayMs") or 0,
        error_message=f.string("errorMessage") or "",
    ),
    "auto_retry_end": lambda f, _t: AutoRetryEnd(
        success=f.boolean("success") is not False,
        attempt=f.integer("attempt") or 0,
        final_error=f.string("finalError"),
    ),
    "hook_error": lambda f, _t: _decode_hook_error(f),
    "extension_error": lambda f, _t: _decode_hook_error(f),
    "state_update": lambda f, _t: StateUpdate(context=f.mapping("context")),
    "model_changed": _decode_model_changed,
}


def decode_envelope(raw: RawMessage) -> EventEnvelope:
    """Decode ``raw`` into an :class:`EventEnvelope`.

    Raises:
        DecodeError: If the message is malformed.
    """

    message = _load(raw)
    event_type = message.get("type")
    if event_type is None:
        raise DecodeError("Message has no 'type'.")
    if not isinstance(event_type, str) or not event_type:
        raise DecodeError("Message 'type' must be a non-empty string.")

    envelope = _Fields(message, event_type)
    kind = envelope.string("kind")
    if kind is not None and kind != "event":
        raise DecodeError(
            f"Expected an event message, got kind '{kind}'.", event_type=event_type
        )

    payload = envelope.mapping("payload") if kind == "event" else None
    fields = _Fields(payload if payload is not None else message, event_type)

    decoder = _DECODERS.get(event_type)
    if decoder is None:
        logger.debug(
            "Forwarding unrecognized relay event.",
            event="decoder.unknown_type",
            context={"type": event_type},
        )
        event: Event = UnknownEvent(type=event_type)
    else:
        event = decoder(fields, event_type)

    return EventEnvelope(
        event=event,
        session_id=envelope.string("sessionId"),
        seq=envelope.integer("seq"),
    )


def decode_event(raw: RawMessage) -> Event:
    """Decode ``raw`` into a single :data:`~pirelay.protocol.events.Event`.

    Raises:
        DecodeError: If the message is malformed.
    """

    return decode_envelope(raw).event


__all__ = ["EventEnvelope", "decode_envelope", "decode_event", "parse_model_info"]
