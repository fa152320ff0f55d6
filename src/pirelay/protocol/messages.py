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

"""Persisted conversation messages as returned by the agent's history call."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Final, Literal, cast

from ..dataclasses import FrozenDataclass
from ..errors import DecodeError
from ..types import RawMessage

type MessageRole = Literal["user", "assistant", "system", "tool", "toolResult"]

type ContentBlockKind = Literal["text", "thinking", "tool_use", "toolCall", "tool_result"]

_ROLES: Final[frozenset[str]] = frozenset(
    {"user", "assistant", "system", "tool", "toolResult"}
)
_BLOCK_KINDS: Final[frozenset[str]] = frozenset(
    {"text", "thinking", "tool_use", "toolCall", "tool_result"}
)
TOOL_BLOCK_KINDS: Final[frozenset[str]] = frozenset({"tool_use", "toolCall"})


@FrozenDataclass()
class ContentBlock:
    """One block of structured message content.

    ``input`` holds tool arguments rendered as a JSON string.
    """

    type: ContentBlockKind
    text: str | None = None
    thinking: str | None = None
    tool_call_id: str | None = None
    tool_name: str | None = None
    input: str | None = None
    output: str | None = None


@FrozenDataclass()
class Message:
    """A stored message; ``content`` is plain text or a tuple of blocks."""

    id: str
    role: MessageRole
    content: str | tuple[ContentBlock, ...] | None = None
    tool_call_id: str | None = None
    tool_name: str | None = None
    model: str | None = None

    def text(self) -> str:
        """Return the message's text, joining text blocks with newlines."""

        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(
            block.text
            for block in self.content
            if block.type == "text" and block.text is not None
        )


def _load(raw: RawMessage, index: int) -> Mapping[str, object]:
    if isinstance(raw, Mapping):
        return raw
    try:
        loaded: object = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as error:
        raise DecodeError(f"History message {index} is not valid JSON.") from error
    if not isinstance(loaded, Mapping):
        raise DecodeError(f"History message {index} must be a JSON object.")
    return cast(Mapping[str, object], loaded)


def _optional_str(data: Mapping[str, object], key: str, where: str) -> str | None:
    value = data.get(key)
    if value is None or isinstance(value, str):
        return value
    raise DecodeError(f"Field '{key}' of {where} must be a string.")


def _first_str(data: Mapping[str, object], keys: Sequence[str], where: str) -> str | None:
    for key in keys:
        value = _optional_str(data, key, where)
        if value is not None:
            return value
    return None


def _message_id(data: Mapping[str, object], index: int) -> str:
    where = f"history message {index}"
    message_id = _optional_str(data, "id", where)
    if message_id:
        return message_id
    timestamp = data.get("timestamp")
    if isinstance(timestamp, str) and timestamp:
        return timestamp
    if isinstance(timestamp, int | float) and not isinstance(timestamp, bool):
        return f"{timestamp:.0f}"
    return f"message-{index}"


def _block_output(data: Mapping[str, object], kind: str, where: str) -> str | None:
    output = _optional_str(data, "output", where)
    if output is not None or kind != "tool_result":
        return output
    content = data.get("content")
    if content is None or isinstance(content, str):
        return content
    if not isinstance(content, Sequence):
        raise DecodeError(f"Tool result content of {where} must be text or a list.")
    parts: list[str] = []
    for entry in cast(Sequence[object], content):
        if isinstance(entry, Mapping):
            text = cast(Mapping[str, object], entry).get("text")
            if isinstance(text, str):
                parts.append(text)
    return "\n".join(parts)


def _parse_block(value: object, where: str) -> ContentBlock | None:
    if not isinstance(value, Mapping):
        raise DecodeError(f"Content blocks of {where} must be objects.")
    data = cast(Mapping[str, object], value)
    kind = _optional_str(data, "type", where)
    if kind not in _BLOCK_KINDS:
        return None
    raw_input = data["input"] if data.get("input") is not None else data.get("arguments")
    rendered_input = (
        raw_input
        if raw_input is None or isinstance(raw_input, str)
        else json.dumps(raw_input, separators=(",", ":"), sort_keys=True)
    )
    return ContentBlock(
        type=cast(ContentBlockKind, kind),
        text=_optional_str(data, "text", where),
        thinking=_optional_str(data, "thinking", where),
        tool_call_id=_first_str(data, ("toolCallId", "id", "tool_use_id"), where),
        tool_name=_first_str(data, ("toolName", "name"), where),
        input=rendered_input,
        output=_block_output(data, kind, where),
    )


def _parse_content(
    value: object, where: str
) -> str | tuple[ContentBlock, ...] | None:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, Sequence):
        blocks = (_parse_block(entry, where) for entry in cast(Sequence[object], value))
        return tuple(block for block in blocks if block is not None)
    raise DecodeError(f"Content of {where} must be a string or a list of blocks.")


def parse_message(raw: RawMessage, *, index: int) -> Message:
    """Decode one persisted message.

    ``index`` is the message's position in the history list; it names the
    message in errors and serves as the last-resort id so the same history
    always yields the same ids. Unrecognized content block types are dropped.

    Raises:
        DecodeError: If the message is malformed or has an unknown role.
    """

    data = _load(raw, index)
    where = f"history message {index}"
    role = data.get("role")
    if not isinstance(role, str) or role not in _ROLES:
        raise DecodeError(f"History message {index} has invalid role {role!r}.")
    return Message(
        id=_message_id(data, index),
        role=cast(MessageRole, role),
        content=_parse_content(data.get("content"), where),
        tool_call_id=_first_str(data, ("toolCallId", "tool_use_id"), where),
        tool_name=_optional_str(data, "toolName", where),
        model=_optional_str(data, "model", where),
    )


__all__ = [
    "TOOL_BLOCK_KINDS",
    "ContentBlock",
    "ContentBlockKind",
    "Message",
    "MessageRole",
    "parse_message",
]
