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

"""Relay wire protocol: typed events, the envelope decoder and stored messages."""

from __future__ import annotations

from .decoder import EventEnvelope, decode_envelope, decode_event, parse_model_info
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
from .messages import ContentBlock, ContentBlockKind, Message, MessageRole, parse_message

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
    "ContentBlock",
    "ContentBlockEnd",
    "ContentBlockKind",
    "ContentBlockStart",
    "Event",
    "EventEnvelope",
    "HookError",
    "Message",
    "MessageEnd",
    "MessageRole",
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
    "decode_envelope",
    "decode_event",
    "parse_message",
    "parse_model_info",
]
