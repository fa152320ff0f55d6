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

"""Session lifecycle controller.

:class:`SessionController` owns the transcript of exactly one attached
session. It seeds the transcript from history on attach, pumps the live
event feed through the streaming reducer in a single background task, and
discards everything on detach or switch.

Lifecycle operations are serialized by a lock. Before the transcript is
touched again the previous feed task is cancelled and awaited, and a
generation counter is bumped so an event that was already in flight from a
superseded feed is dropped instead of applied.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Final

from ..dataclasses import FrozenDataclass
from ..errors import DecodeError, RelayError, SessionStateError, TransportError
from ..protocol.decoder import decode_envelope
from ..protocol.events import AgentEnd, AgentStart, ModelInfo
from ..protocol.messages import Message, parse_message
from ..runtime.logging import StructuredLogger, get_logger
from ..transcript.history import reconcile_history
from ..transcript.items import (
    ConversationItem,
    QueuedBehavior,
    RichContent,
    rich_content_from_envelope,
)
from ..transcript.model import ReducerState, StreamingPeek, Transcript
from ..transcript.reducer import (
    PromptSubmitted,
    ReducerContext,
    ReducibleEvent,
    RichContentReceived,
    reduce_event,
)
from ..types import RawMessage
from .config import SessionControllerConfig
from .transport import Transport

logger: StructuredLogger = get_logger(__name__, context={"component": "session"})


class SessionState(Enum):
    """Lifecycle states of a :class:`SessionController`."""

    DETACHED = "detached"
    ATTACHING = "attaching"
    ATTACHED = "attached"
    DETACHING = "detaching"


_TRANSITIONS: Final[Mapping[SessionState, frozenset[SessionState]]] = {
    SessionState.DETACHED: frozenset({SessionState.ATTACHING}),
    SessionState.ATTACHING: frozenset({SessionState.ATTACHED, SessionState.DETACHED}),
    SessionState.ATTACHED: frozenset({SessionState.DETACHING}),
    SessionState.DETACHING: frozenset({SessionState.DETACHED}),
}


@FrozenDataclass()
class SessionView:
    """Immutable snapshot handed to display layers."""

    state: SessionState
    session_id: str | None
    items: tuple[ConversationItem, ...]
    streaming: StreamingPeek | None
    model_name: str | None
    is_processing: bool
    last_error: str | None


type SessionListener = Callable[[SessionView], None]


class SessionController:
    """Attach to sessions and keep their transcript current.

    Example::

        controller = SessionController(PiRpcTransport(client))
        _ = controller.add_listener(render)
        await controller.attach("session-1")
        await controller.send("list the files")

    All failures are recovered here: they are logged and the latest message
    is exposed as :attr:`last_error`. None of them reset the transcript.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        config: SessionControllerConfig | None = None,
    ) -> None:
        super().__init__()
        self._transport = transport
        self._config = config if config is not None else SessionControllerConfig()
        self._context = ReducerContext(new_id=self._config.id_factory)
        self._lock = asyncio.Lock()
        self._state = SessionState.DETACHED
        self._session_id: str | None = None
        self._reducer_state = ReducerState()
        self._is_processing = False
        self._last_error: str | None = None
        self._feed_task: asyncio.Task[None] | None = None
        self._generation = 0
        self._listeners: list[SessionListener] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def transcript(self) -> Transcript:
        return self._reducer_state.transcript

    @property
    def model_name(self) -> str | None:
        return self._reducer_state.model_name

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    @property
    def last_error(self) -> str | None:
        return self._last_error

    def view(self) -> SessionView:
        return SessionView(
            state=self._state,
            session_id=self._session_id,
            items=self._reducer_state.transcript.items,
            streaming=self._reducer_state.streaming.peek(),
            model_name=self._reducer_state.model_name,
            is_processing=self._is_processing,
            last_error=self._last_error,
        )

    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        """Call ``listener`` with a fresh view after every change.

        Returns a callable that removes the listener again.
        """

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def clear_error(self) -> None:
        if self._last_error is not None:
            self._last_error = None
            self._notify()

    # Lifecycle

    async def attach(self, session_id: str) -> bool:
        """Attach to ``session_id``, detaching from the current session first.

        Returns ``True`` once the controller is attached, even if history
        could not be loaded. Returns ``False`` when the transport refused the
        attach; the controller is then detached.
        """

        async with self._lock:
            if self._state is SessionState.ATTACHED:
                await self._detach_locked()
            return await self._attach_locked(session_id)

    async def switch(self, session_id: str) -> bool:
        """Detach from the attached session and attach to ``session_id``.

        Raises:
            SessionStateError: If no session is attached.
        """

        async with self._lock:
            if self._state is not SessionState.ATTACHED:
                raise SessionStateError("switch", self._state, SessionState.DETACHING)
            logger.info(
                "Switching session.",
                event="session.switch",
                context={"from": self._session_id, "to": session_id},
            )
            await self._detach_locked()
            return await self._attach_locked(session_id)

    async def detach(self) -> None:
        """Detach from the current session; a no-op when already detached."""

        async with self._lock:
            if self._state is SessionState.DETACHED:
                return
            await self._detach_locked()

    async def _attach_locked(self, session_id: str) -> bool:
        await self._stop_feed()
        self._transition(SessionState.ATTACHING, "attach")
        self._session_id = session_id
        self._reducer_state = ReducerState()
        self._is_processing = False
        self._last_error = None
        self._notify()

        try:
            model = await self._transport.attach(session_id)
        except TransportError as error:
            self._report(error, "Attach failed.", event="session.attach.failed")
            self._abandon_attach()
            return False
        except asyncio.CancelledError:
            self._abandon_attach()
            raise

        try:
            transcript = await self._load_history()
        except asyncio.CancelledError:
            self._abandon_attach()
            raise

        self._reducer_state = ReducerState(
            transcript=transcript, model_name=_model_name(model)
        )
        self._start_feed(session_id)
        self._transition(SessionState.ATTACHED, "attach")
        logger.info(
            "Attached to session.",
            event="session.attached",
            context={"session_id": session_id, "items": len(transcript)},
        )
        self._notify()
        return True

    def _abandon_attach(self) -> None:
        self._session_id = None
        self._reducer_state = ReducerState()
        self._transition(SessionState.DETACHED, "attach")
        self._notify()

    async def _load_history(self) -> Transcript:
        try:
            raw_messages = await self._transport.fetch_history()
        except TransportError as error:
            self._report(error, "History fetch failed.", event="session.history.failed")
            return Transcript()

        messages: list[Message] = []
        for index, raw in enumerate(raw_messages):
            try:
                messages.append(parse_message(raw, index=index))
            except DecodeError as error:
                self._report(
                    error,
                    "Skipping undecodable history message.",
                    event="session.history.decode_failed",
                    context={"index": index},
                )
        return reconcile_history(messages)

    async def _detach_locked(self) -> None:
        self._transition(SessionState.DETACHING, "detach")
        try:
            await self._stop_feed()
            self._reducer_state = ReducerState()
            self._is_processing = False
            self._notify()

            try:
                await self._transport.detach()
            except TransportError as error:
                self._report(error, "Detach failed.", event="session.detach.failed")
        finally:
            logger.info(
                "Detached from session.",
                event="session.detached",
                context={"session_id": self._session_id},
            )
            self._reducer_state = ReducerState()
            self._is_processing = False
            self._session_id = None
            self._transition(SessionState.DETACHED, "detach")
            self._notify()

    def _transition(self, target: SessionState, operation: str) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise SessionStateError(operation, self._state, target)
        logger.debug(
            "Session state changed.",
            event="session.state",
            context={"from": self._state.value, "to": target.value},
        )
        self._state = target

    # Live feed

    def _start_feed(self, session_id: str) -> None:
        self._generation += 1
        self._feed_task = asyncio.create_task(
            self._pump(self._generation, session_id),
            name=f"pirelay-feed-{session_id}",
        )

    async def _stop_feed(self) -> None:
        self._generation += 1
        task, self._feed_task = self._feed_task, None
        if task is None:
            return
        _ = task.cancel()
        done, _pending = await asyncio.wait({task}, timeout=self._config.settle_timeout)
        if not done:
            logger.warning(
                "Event feed did not settle after cancellation.",
                event="session.feed.unsettled",
                context={"timeout": self._config.settle_timeout},
            )

    async def _pump(self, generation: int, session_id: str) -> None:
        try:
            async for raw in self._transport.subscribe():
                if generation != self._generation:
                    logger.debug(
                        "Dropping event from superseded feed.",
                        event="session.feed.stale",
                        context={"session_id": session_id},
                    )
                    return
                self._handle_inbound(raw, session_id)
        except TransportError as error:
            if generation == self._generation:
                self._report(error, "Event feed failed.", event="session.feed.failed")
                self._notify()
            return
        logger.info(
            "Event feed ended.",
            event="session.feed.closed",
            context={"session_id": session_id},
        )

    def _handle_inbound(self, raw: RawMessage, session_id: str) -> None:
        try:
            envelope = decode_envelope(raw)
        except DecodeError as error:
            self._report(
                error,
                "Dropping undecodable event.",
                event="session.event.decode_failed",
                context={"event_type": error.event_type},
            )
            self._notify()
            return
        if envelope.session_id is not None and envelope.session_id != session_id:
            logger.debug(
                "Dropping event for another session.",
                event="session.event.foreign",
                context={"expected": session_id, "actual": envelope.session_id},
            )
            return
        self._apply(envelope.event)

    def _apply(self, event: ReducibleEvent) -> None:
        result = reduce_event(self._reducer_state, event, context=self._context)
        self._reducer_state = result.state
        self._track_processing(event)
        for failure in result.failures:
            self._report(failure, "Agent reported a failure.", event="session.agent.failed")
        self._notify()

    def _track_processing(self, event: ReducibleEvent) -> None:
        match event:
            case AgentStart():
                self._is_processing = True
            case AgentEnd():
                self._is_processing = False
            case _:
                pass

    # Caller actions

    async def send(self, text: str, behavior: QueuedBehavior | None = None) -> bool:
        """Append a user message and forward the prompt to the agent.

        Prompts sent while the agent is processing carry ``behavior`` (or
        the configured default) as their queued behavior. A transport
        failure is reported; the user message stays in the transcript.

        Returns ``True`` when the transport accepted the prompt.
        """

        trimmed = text.strip()
        if not trimmed:
            return False
        if self._state is not SessionState.ATTACHED:
            self._report(
                TransportError("No session attached.", operation="send"),
                "Cannot send prompt.",
                event="session.send.detached",
            )
            self._notify()
            return False

        queued: QueuedBehavior | None = None
        if self._is_processing:
            queued = behavior or self._config.default_streaming_behavior
        self._is_processing = True
        self._last_error = None
        self._apply(
            PromptSubmitted(
                item_id=self._config.id_factory(), text=trimmed, queued_behavior=queued
            )
        )

        generation = self._generation
        try:
            await self._transport.send_prompt(trimmed, queued)
        except TransportError as error:
            if generation == self._generation:
                self._is_processing = False
            self._report(error, "Sending prompt failed.", event="session.send.failed")
            self._notify()
            return False
        return True

    async def abort(self) -> bool:
        """Ask the agent to stop; processing is considered over either way."""

        if self._state is not SessionState.ATTACHED:
            return False
        try:
            await self._transport.abort()
        except TransportError as error:
            self._report(error, "Abort failed.", event="session.abort.failed")
            return False
        finally:
            self._is_processing = False
            self._notify()
        return True

    def add_rich_content(
        self, envelope: Mapping[str, object], *, item_id: str | None = None
    ) -> RichContent | None:
        """Append rich content from a native tool's display envelope.

        Returns the new item, or ``None`` when no session is attached or the
        envelope carries no display payload.
        """

        if self._state is not SessionState.ATTACHED:
            return None
        item = rich_content_from_envelope(
            envelope,
            item_id=item_id if item_id is not None else self._config.id_factory(),
        )
        if item is not None:
            self._apply(RichContentReceived(item=item))
        return item

    # Reporting

    def _report(
        self,
        error: RelayError,
        message: str,
        *,
        event: str,
        context: Mapping[str, object] | None = None,
    ) -> None:
        self._last_error = str(error)
        logger.warning(
            message,
            event=event,
            context={
                "session_id": self._session_id,
                "error": str(error),
                "error_type": type(error).__name__,
                **(context or {}),
            },
        )

    def _notify(self) -> None:
        if not self._listeners:
            return
        view = self.view()
        for listener in tuple(self._listeners):
            try:
                listener(view)
            except Exception:
                logger.exception(
                    "Error delivering session update.",
                    event="session.listener_failed",
                    context={
                        "listener": getattr(listener, "__qualname__", repr(listener))
                    },
                )


def _model_name(model: ModelInfo | None) -> str | None:
    return model.name if model is not None else None


__all__ = [
    "SessionController",
    "SessionListener",
    "SessionState",
    "SessionView",
]
