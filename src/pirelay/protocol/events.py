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

"""Typed protocol events emitted by the agent relay.

Every inbound message decodes to exactly one variant of :data:`Event`. The
variants mirror the agent's lifecycle (``agent_start`` .. ``agent_end``),
streamed assistant output (``message_update`` wrapping an
:data:`AssistantEvent`), tool execution, and housekeeping notices such as
auto-compaction or retries.

Unrecognized top-level types become :class:`UnknownEvent` and unrecognized
assistant events become :class:`UnknownAssistantEvent`; both are forwarded
so consumers can ignore them instead of failing.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Literal

from ..dataclasses import FrozenDataclass

type ToolExecutionStatus = Literal["success", "error", "cancelled"]
"""Terminal status reported by ``tool_execution_end``.

``cancelled`` is a transport-level status; the transcript records it as
``error``.
"""


@FrozenDataclass()
class ModelInfo:
    """Model identity reported by the agent on attach or model change."""

    id: str
    name: str
    provider: str = ""


@FrozenDataclass()
class RpcErrorInfo:
    """Error detail attached to a failed ``agent_end``."""

    message: str
    code: str | None = None
    details: str | None = None


# Assistant events nested inside ``message_update``.


@FrozenDataclass()
class TextDelta:
    delta: str


@FrozenDataclass()
class ThinkingDelta:
    delta: str


@FrozenDataclass()
class ToolUseStart:
    """The model started emitting a tool call.

    ``tool_call_id`` may be empty on transports that only assign ids later.
    """

    tool_call_id: str
    tool_name: str


@FrozenDataclass()
class ToolUseInputDelta:
    """A fragment of the tool call's JSON arguments."""

    tool_call_id: str
    delta: str


@FrozenDataclass()
class ToolUseEnd:
    tool_call_id: str


@FrozenDataclass()
class AssistantMessageStart:
    message_id: str = ""


@FrozenDataclass()
class AssistantMessageEnd:
    stop_reason: str | None = None


@FrozenDataclass()
class ContentBlockStart:
    index: int = 0
    block_type: str = "text"


@FrozenDataclass()
class ContentBlockEnd:
    index: int = 0


@FrozenDataclass()
class UnknownAssistantEvent:
    type: str


type AssistantEvent = (
    TextDelta
    | ThinkingDelta
    | ToolUseStart
    | ToolUseInputDelta
    | ToolUseEnd
    | AssistantMessageStart
    | AssistantMessageEnd
    | ContentBlockStart
    | ContentBlockEnd
    | UnknownAssistantEvent
)
"""Closed set of streamed assistant output events."""


# Top-level events.


@FrozenDataclass()
class AgentStart:
    """The agent began processing a prompt."""


@FrozenDataclass()
class AgentEnd:
    """The agent finished processing; ``error`` is set when ``success`` is false."""

    success: bool = True
    error: RpcErrorInfo | None = None


@FrozenDataclass()
class TurnStart:
    pass


@FrozenDataclass()
class TurnEnd:
    pass


@FrozenDataclass()
class MessageStart:
    message_id: str | None = None


@FrozenDataclass()
class MessageEnd:
    stop_reason: str | None = None


@FrozenDataclass()
class MessageUpdate:
    assistant_event: AssistantEvent


@FrozenDataclass()
class ToolExecutionStart:
    """A tool began executing.

    ``args`` holds the arguments rendered as a JSON string so they can be
    merged with streamed input deltas.
    """

    tool_call_id: str
    tool_name: str
    args: str | None = None


@FrozenDataclass()
class ToolExecutionUpdate:
    """Partial tool output.

    ``output`` is the accumulated output so far; it replaces what the
    transcript holds rather than appending to it.
    """

    tool_call_id: str
    output: str | None = None


@FrozenDataclass()
class ToolExecutionEnd:
    tool_call_id: str
    output: str | None = None
    status: ToolExecutionStatus = "success"


@FrozenDataclass()
class AutoCompactionStart:
    pass


@FrozenDataclass()
class AutoCompactionEnd:
    pass


@FrozenDataclass()
class AutoRetryStart:
    attempt: int = 0
    max_attempts: int = 0
    delay_ms: int = 0
    error_message: str = ""


@FrozenDataclass()
class AutoRetryEnd:
    success: bool = True
    attempt: int = 0
    final_error: str | None = None


@FrozenDataclass()
class HookError:
    """An agent extension hook failed.

    Also produced for ``extension_error``, which newer agents emit for the
    same condition.
    """

    message: str | None = None
    extension_path: str | None = None
    hook_event: str | None = None


@FrozenDataclass()
class StateUpdate:
    """Snapshot of agent state; carried verbatim and never folded."""

    context: Mapping[str, object] | None = None


@FrozenDataclass()
class ModelChanged:
    model: ModelInfo


@FrozenDataclass()
class UnknownEvent:
    """A top-level event type this client does not recognize."""

    type: str


type Event = (
    AgentStart
    | AgentEnd
    | TurnStart
    | TurnEnd
    | MessageStart
    | MessageEnd
    | MessageUpdate
    | ToolExecutionStart
    | ToolExecutionUpdate
    | ToolExecutionEnd
    | AutoCompactionStart
    | AutoCompactionEnd
    | AutoRetryStart
    | AutoRetryEnd
    | HookError
    | StateUpdate
    | ModelChanged
    | UnknownEvent
)
"""Closed set of top-level relay events."""


__all__ = [
    "AgentEnd",
    "AgentStart",
    "AssistantEvent",
    "AssistantMessageEnd",
    "AssistantMessageStart",
    "AutoCompactionEnd",
    "AutoCompactionStart",
    "AutoRetryEnd",
    "AutoRetryStart",
    "ContentBlockEnd",
    "ContentBlockStart",
    "Event",
    "HookError",
    "MessageEnd",
    "MessageStart",
    "MessageUpdate",
    "ModelChanged",
    "ModelInfo",
    "RpcErrorInfo",
    "StateUpdate",
    "TextDelta",
    "ThinkingDelta",
    "ToolExecutionEnd",
    "ToolExecutionStart",
    "ToolExecutionStatus",
    "ToolExecutionUpdate",
    "ToolUseEnd",
    "ToolUseInputDelta",
    "ToolUseStart",
    "TurnEnd",
    "TurnStart",
    "UnknownAssistantEvent",
    "UnknownEvent",
]
