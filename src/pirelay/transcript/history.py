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

"""Reconcile persisted history into transcript items.

The reconciler produces the same item shapes the streaming reducer builds
live, so a freshly attached session renders exactly like one that was
watched from the start. Output depends only on the input messages: the same
history always yields the same transcript.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from ..dbc import ensure, pure
from ..protocol.messages import TOOL_BLOCK_KINDS, ContentBlock, Message
from .items import AssistantText, ConversationItem, ToolCall, UserMessage
from .model import Transcript

_TOOL_ROLES = frozenset({"tool", "toolResult"})
UNKNOWN_TOOL_NAME = "unknown"


def collect_tool_outputs(messages: Sequence[Message]) -> Mapping[str, str]:
    """Map tool call ids to the text of their result messages.

    A result message either names its tool call itself or carries
    ``tool_result`` blocks that each name one. Empty outputs are not
    recorded.
    """

    outputs: dict[str, str] = {}
    for message in messages:
        if message.role not in _TOOL_ROLES:
            continue
        if message.tool_call_id is not None:
            text = message.text()
            if text:
                outputs[message.tool_call_id] = text
            continue
        if isinstance(message.content, str) or message.content is None:
            continue
        for block in message.content:
            if block.type == "tool_result" and block.tool_call_id and block.output:
                outputs[block.tool_call_id] = block.output
    return outputs


class _ItemCollector:
    """Accumulates items and keeps their ids unique."""

    def __init__(self) -> None:
        super().__init__()
        self.items: list[ConversationItem] = []
        self._seen: set[str] = set()

    def unique_id(self, item_id: str, message_index: int) -> str:
        while item_id in self._seen:
            item_id = f"{item_id}-{message_index}"
        self._seen.add(item_id)
        return item_id

    def text(self, item_id: str, text: str, message_index: int) -> None:
        if text:
            self.items.append(
                AssistantText(id=self.unique_id(item_id, message_index), text=text)
            )


def _assistant_blocks(
    collector: _ItemCollector,
    message: Message,
    blocks: Sequence[ContentBlock],
    outputs: Mapping[str, str],
    message_index: int,
) -> None:
    pending: list[str] = []
    for block_index, block in enumerate(blocks):
        if block.type == "text":
            if block.text:
                pending.append(block.text)
            continue
        if block.type not in TOOL_BLOCK_KINDS:
            continue
        if pending:
            collector.text(
                f"{message.id}-text-{block_index}", "\n".join(pending), message_index
            )
            pending = []
        if not block.tool_call_id:
            continue
        collector.items.append(
            ToolCall(
                id=collector.unique_id(block.tool_call_id, message_index),
                name=block.tool_name or UNKNOWN_TOOL_NAME,
                args=block.input,
                output=outputs.get(block.tool_call_id),
                status="success",
            )
        )
    if pending:
        collector.text(f"{message.id}-text-final", "\n".join(pending), message_index)


def _ids_are_unique(
    messages: Sequence[Message], *, result: Transcript
) -> tuple[bool, str]:
    ids = result.ids
    return len(ids) == len(set(ids)), f"ids={ids!r}"


@ensure(_ids_are_unique)
@pure
def reconcile_history(messages: Sequence[Message]) -> Transcript:
    """Convert stored messages into a transcript.

    Tool results are attached to the tool call that requested them; system,
    tool and tool-result messages are never emitted on their own. User
    messages carry no queued behavior. Empty text is dropped.
    """

    outputs = collect_tool_outputs(messages)
    collector = _ItemCollector()

    for message_index, message in enumerate(messages):
        if message.role == "user":
            text = message.text()
            if text:
                collector.items.append(
                    UserMessage(id=collector.unique_id(message.id, message_index), text=text)
                )
        elif message.role == "assistant":
            if isinstance(message.content, str):
                collector.text(message.id, message.content, message_index)
            elif message.content is not None:
                _assistant_blocks(
                    collector, message, message.content, outputs, message_index
                )

    return Transcript(items=tuple(collector.items))


__all__ = ["UNKNOWN_TOOL_NAME", "collect_tool_outputs", "reconcile_history"]
