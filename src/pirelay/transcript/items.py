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

"""Conversation items: the units a transcript is made of."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Literal, cast

from ..dataclasses import FrozenDataclass

type QueuedBehavior = Literal["steer", "followUp"]
"""Delivery policy for a prompt sent while the agent is busy.

``steer`` interrupts the current generation, ``followUp`` waits for it to
finish. ``None`` means the prompt was sent to an idle agent.
"""

type ToolCallStatus = Literal["running", "success", "error"]

TERMINAL_TOOL_STATUSES: frozenset[ToolCallStatus] = frozenset({"success", "error"})


@FrozenDataclass()
class UserMessage:
    id: str
    text: str
    queued_behavior: QueuedBehavior | None = None


@FrozenDataclass()
class AssistantText:
    """A finalized block of assistant prose."""

    id: str
    text: str


@FrozenDataclass()
class ToolCall:
    """A tool invocation and its (possibly partial) output.

    ``args`` is the raw argument string, kept verbatim even when it is not
    valid JSON. Once ``status`` leaves ``running`` it never returns to it.
    """

    id: str
    name: str
    args: str | None = None
    output: str | None = None
    status: ToolCallStatus = "running"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TOOL_STATUSES


@FrozenDataclass()
class ModelSwitch:
    """The active model changed from ``from_model`` to ``to_model``."""

    from_model: str | None
    to_model: str


type SystemNotice = ModelSwitch


@FrozenDataclass()
class SystemEvent:
    id: str
    event: SystemNotice


@FrozenDataclass()
class RichContent:
    """Structured display payload (chart, map, ...) with a text fallback.

    The payload is opaque to the transcript; display layers interpret it.
    """

    id: str
    payload: Mapping[str, object]
    summary: str = ""


type ConversationItem = UserMessage | AssistantText | ToolCall | SystemEvent | RichContent


def rich_content_from_envelope(
    envelope: Mapping[str, object], *, item_id: str
) -> RichContent | None:
    """Build a :class:`RichContent` from a native tool's display envelope.

    The envelope looks like ``{"_display": {"type": "chart", ...},
    "summary": "Chart displayed"}``. Returns ``None`` when it carries no
    display payload.
    """

    display = envelope.get("_display")
    if not isinstance(display, Mapping):
        return None
    summary = envelope.get("summary")
    return RichContent(
        id=item_id,
        payload=dict(cast(Mapping[str, object], display)),
        summary=summary if isinstance(summary, str) else "",
    )


__all__ = [
    "TERMINAL_TOOL_STATUSES",
    "AssistantText",
    "ConversationItem",
    "ModelSwitch",
    "QueuedBehavior",
    "RichContent",
    "SystemEvent",
    "SystemNotice",
    "ToolCall",
    "ToolCallStatus",
    "UserMessage",
    "rich_content_from_envelope",
]
