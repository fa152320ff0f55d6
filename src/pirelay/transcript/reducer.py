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

"""Streaming reducer folding live relay events into a transcript.

:func:`reduce_event` is a pure function of ``(state, event, context)``. It
keeps a single in-flight text buffer that is materialized as an
:class:`AssistantText` on flush, and correlates tool lifecycle events by id,
inventing one when the transport sends an empty id.

Failures reported by the agent (``agent_end`` with ``success: false`` and
``hook_error``) are returned as :class:`~pirelay.errors.AgentError` values in
:attr:`ReduceResult.failures`; the reducer never raises for decoded input.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Self

from ..dataclasses import FrozenDataclass
from ..dbc import pure
from ..errors import AgentError
from ..protocol.events import (
    AgentEnd,
    AgentStart,
    Event,
    HookError,
    MessageEnd,
    MessageUpdate,
    ModelChanged,
    TextDelta,
    ToolExecutionEnd,
    ToolExecutionStart,
    ToolExecutionUpdate,
    ToolUseInputDelta,
    ToolUseStart,
)
from .items import (
    AssistantText,
    ModelSwitch,
    QueuedBehavior,
    RichContent,
    SystemEvent,
    ToolCall,
    ToolCallStatus,
    UserMessage,
)
from .model import ReducerState, StreamingState


@FrozenDataclass()
class ReducerContext:
    """Source of fresh item ids for the reducer.

    Passing the id source explicitly keeps :func:`reduce_event` free of
    hidden state; tests inject a deterministic counter.
    """

    new_id: Callable[[], str]

    def __deepcopy__(self, memo: dict[int, object]) -> Self:
        return self


@FrozenDataclass()
class ReduceResult:
    state: ReducerState
    failures: tuple[AgentError, ...] = ()


@FrozenDataclass()
class PromptSubmitted:
    """The local user submitted a prompt."""

    item_id: str
    text: str
    queued_behavior: QueuedBehavior | None = None


@FrozenDataclass()
class RichContentReceived:
    """A native tool produced displayable rich content."""

    item: RichContent


type LocalEvent = PromptSubmitted | RichContentReceived
type ReducibleEvent = Event | LocalEvent


def _fresh_id(state: ReducerState, context: ReducerContext) -> str:
    item_id = context.new_id()
    while state.transcript.index_of(item_id) is not None:
        item_id = context.new_id()
    return item_id


def _flush(state: ReducerState, context: ReducerContext) -> ReducerState:
    streaming = state.streaming
    if not streaming.buffer_text:
        return state
    item_id = streaming.buffer_id
    if not item_id or state.transcript.index_of(item_id) is not None:
        item_id = _fresh_id(state, context)
    return state.update(
        transcript=state.transcript.append(
            AssistantText(id=item_id, text=streaming.buffer_text)
        ),
        streaming=streaming.update(buffer_text="", buffer_id=None),
    )


def _resolve_existing(state: ReducerState, tool_call_id: str) -> str | None:
    return tool_call_id or state.streaming.last_synthetic_tool_call_id


def _start_tool(
    state: ReducerState,
    context: ReducerContext,
    *,
    tool_call_id: str,
    tool_name: str,
    args: str | None,
) -> ReducerState:
    state = _flush(state, context)
    if tool_call_id:
        resolved = tool_call_id
        streaming = state.streaming.update(last_synthetic_tool_call_id=None)
    else:
        resolved = _fresh_id(state, context)
        streaming = state.streaming.update(last_synthetic_tool_call_id=resolved)
    state = state.update(streaming=streaming)

    existing = state.transcript.get(resolved)
    if existing is None:
        return state.update(
            transcript=state.transcript.append(
                ToolCall(id=resolved, name=tool_name, args=args)
            )
        )
    if isinstance(existing, ToolCall) and not existing.is_terminal and args is not None:
        return state.update(
            transcript=state.transcript.replace(existing.update(args=args))
        )
    return state


def _update_tool(
    state: ReducerState,
    tool_call_id: str,
    change: Callable[[ToolCall], ToolCall],
) -> ReducerState:
    resolved = _resolve_existing(state, tool_call_id)
    if resolved is None:
        return state
    existing = state.transcript.get(resolved)
    if not isinstance(existing, ToolCall) or existing.is_terminal:
        return state
    return state.update(transcript=state.transcript.replace(change(existing)))


def _end_status(status: str) -> ToolCallStatus:
    return "success" if status == "success" else "error"


def _reduce_text_delta(
    state: ReducerState, delta: str, context: ReducerContext
) -> ReducerState:
    if not delta:
        return state
    streaming = state.streaming
    return state.update(
        streaming=streaming.update(
            buffer_text=streaming.buffer_text + delta,
            buffer_id=streaming.buffer_id or context.new_id(),
        )
    )


def _reduce_message_update(
    state: ReducerState, event: MessageUpdate, context: ReducerContext
) -> ReducerState:
    match event.assistant_event:
        case TextDelta(delta=delta):
            return _reduce_text_delta(state, delta, context)
        case ToolUseStart(tool_call_id=tool_call_id, tool_name=tool_name):
            return _start_tool(
                state,
                context,
                tool_call_id=tool_call_id,
                tool_name=tool_name,
                args=None,
            )
        case ToolUseInputDelta(tool_call_id=tool_call_id, delta=delta):
            return _update_tool(
                state,
                tool_call_id,
                lambda item: item.update(args=(item.args or "") + delta),
            )
        case _:
            return state


@pure
def reduce_event(
    state: ReducerState,
    event: ReducibleEvent,
    *,
    context: ReducerContext,
) -> ReduceResult:
    """Fold ``event`` into ``state`` and return the successor state.

    Events are applied strictly in call order; the only buffering is the
    single streaming text buffer. Tool updates and ends that match no
    running tool call are ignored as late or duplicate deliveries.
    """

    match event:
        case AgentStart():
            return ReduceResult(
                state=state.update(
                    streaming=StreamingState(buffer_id=context.new_id())
                )
            )
        case AgentEnd(success=success, error=error):
            flushed = _flush(state, context)
            if success:
                return ReduceResult(state=flushed)
            message = error.message if error is not None else "Agent run failed"
            return ReduceResult(
                state=flushed,
                failures=(AgentError(message, source="agent_end"),),
            )
        case MessageEnd():
            flushed = _flush(state, context)
            return ReduceResult(
                state=flushed.update(
                    streaming=flushed.streaming.update(buffer_id=context.new_id())
                )
            )
        case MessageUpdate():
            return ReduceResult(state=_reduce_message_update(state, event, context))
        case ToolExecutionStart(tool_call_id=tool_call_id, tool_name=name, args=args):
            return ReduceResult(
                state=_start_tool(
                    state, context, tool_call_id=tool_call_id, tool_name=name, args=args
                )
            )
        case ToolExecutionUpdate(tool_call_id=tool_call_id, output=output):
            if output is None:
                return ReduceResult(state=state)
            return ReduceResult(
                state=_update_tool(
                    state, tool_call_id, lambda item: item.update(output=output)
                )
            )
        case ToolExecutionEnd(tool_call_id=tool_call_id, output=output, status=status):
            return ReduceResult(
                state=_update_tool(
                    state,
                    tool_call_id,
                    lambda item: item.update(
                        output=output if output is not None else item.output,
                        status=_end_status(status),
                    ),
                )
            )
        case HookError(message=message):
            if not message:
                return ReduceResult(state=state)
            return ReduceResult(
                state=state, failures=(AgentError(message, source="hook_error"),)
            )
        case ModelChanged(model=model):
            if model.name == state.model_name:
                return ReduceResult(state=state)
            notice = SystemEvent(
                id=_fresh_id(state, context),
                event=ModelSwitch(from_model=state.model_name, to_model=model.name),
            )
            return ReduceResult(
                state=state.update(
                    transcript=state.transcript.append(notice),
                    model_name=model.name,
                )
            )
        case PromptSubmitted(item_id=item_id, text=text, queued_behavior=behavior):
            if state.transcript.index_of(item_id) is not None:
                return ReduceResult(state=state)
            return ReduceResult(
                state=state.update(
                    transcript=state.transcript.append(
                        UserMessage(id=item_id, text=text, queued_behavior=behavior)
                    )
                )
            )
        case RichContentReceived(item=item):
            if state.transcript.index_of(item.id) is not None:
                return ReduceResult(state=state)
            return ReduceResult(
                state=state.update(transcript=state.transcript.append(item))
            )
        case _:
            return ReduceResult(state=state)


def reduce_events(
    state: ReducerState,
    events: Iterable[ReducibleEvent],
    *,
    context: ReducerContext,
) -> ReduceResult:
    """Fold a sequence of events, collecting every reported failure."""

    failures: list[AgentError] = []
    for event in events:
        result = reduce_event(state, event, context=context)
        state = result.state
        failures.extend(result.failures)
    return ReduceResult(state=state, failures=tuple(failures))


__all__ = [
    "LocalEvent",
    "PromptSubmitted",
    "ReduceResult",
    "ReducerContext",
    "ReducibleEvent",
    "RichContentReceived",
    "reduce_event",
    "reduce_events",
]
