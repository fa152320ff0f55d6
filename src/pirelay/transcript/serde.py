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

"""JSON rendering of transcript items for display layers and tooling."""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping, Sequence
from typing import Final, cast

from ..types import JSONObject, JSONValue
from .items import (
    AssistantText,
    ConversationItem,
    ModelSwitch,
    RichContent,
    SystemEvent,
    ToolCall,
    UserMessage,
)
from .model import StreamingState, Transcript

_KINDS: Final[Mapping[type[object], str]] = {
    UserMessage: "userMessage",
    AssistantText: "assistantText",
    ToolCall: "toolCall",
    SystemEvent: "systemEvent",
    RichContent: "richContent",
    ModelSwitch: "modelSwitch",
}


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _serialize(value: object) -> JSONValue:
    if value is None or isinstance(value, str | bool | int | float):
        return value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        payload: dict[str, JSONValue] = {}
        kind = _KINDS.get(type(value))
        if kind is not None:
            payload["kind"] = kind
        for field in dataclasses.fields(value):
            payload[camel_case(field.name)] = _serialize(getattr(value, field.name))
        return payload
    if isinstance(value, Mapping):
        mapping = cast(Mapping[object, object], value)
        return {str(key): _serialize(item) for key, item in mapping.items()}
    if isinstance(value, Sequence) and not isinstance(value, bytes | bytearray):
        return [_serialize(item) for item in cast(Sequence[object], value)]
    raise TypeError(f"Cannot serialize {type(value).__name__} to JSON")


def dump_item(item: ConversationItem) -> JSONObject:
    """Render one item as a JSON object tagged with its ``kind``.

    Field names are camelCased, e.g. ``queuedBehavior``.
    """

    return cast(JSONObject, _serialize(item))


def dump_transcript(transcript: Transcript) -> list[JSONObject]:
    return [dump_item(item) for item in transcript]


def dump_streaming(streaming: StreamingState) -> JSONObject | None:
    """Render the unflushed text buffer, or ``None`` when nothing is pending."""

    peek = streaming.peek()
    if peek is None:
        return None
    return {"bufferId": peek.buffer_id, "text": peek.text}


__all__ = ["camel_case", "dump_item", "dump_streaming", "dump_transcript"]
