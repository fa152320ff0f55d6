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

"""Transcript model, streaming reducer and history reconciler."""

from __future__ import annotations

from .history import UNKNOWN_TOOL_NAME, collect_tool_outputs, reconcile_history
from .items import (
    AssistantText,
    ConversationItem,
    ModelSwitch,
    QueuedBehavior,
    RichContent,
    SystemEvent,
    SystemNotice,
    ToolCall,
    ToolCallStatus,
    UserMessage,
    rich_content_from_envelope,
)
from .model import ReducerState, StreamingPeek, StreamingState, Transcript
from .reducer import (
    LocalEvent,
    PromptSubmitted,
    ReduceResult,
    ReducerContext,
    ReducibleEvent,
    RichContentReceived,
    reduce_event,
    reduce_events,
)
from .serde import dump_item, dump_streaming, dump_transcript

__all__ = [
    "UNKNOWN_TOOL_NAME",
    "AssistantText",
    "ConversationItem",
    "LocalEvent",
    "ModelSwitch",
    "PromptSubmitted",
    "QueuedBehavior",
    "ReduceResult",
    "ReducerContext",
    "ReducerState",
    "ReducibleEvent",
    "RichContent",
    "RichContentReceived",
    "StreamingPeek",
    "StreamingState",
    "SystemEvent",
    "SystemNotice",
    "ToolCall",
    "ToolCallStatus",
    "Transcript",
    "UserMessage",
    "collect_tool_outputs",
    "dump_item",
    "dump_streaming",
    "dump_transcript",
    "reconcile_history",
    "reduce_event",
    "reduce_events",
    "rich_content_from_envelope",
]
