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

"""Tests for the session lifecycle controller."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import override

import pytest

from pirelay.errors import SessionStateError, TransportError
from pirelay.protocol import ModelInfo, parse_message
from pirelay.session import (
    SessionController,
    SessionControllerConfig,
    SessionState,
    SessionView,
)
from pirelay.transcript import (
    AssistantText,
    ModelSwitch,
    RichContent,
    StreamingPeek,
    SystemEvent,
    ToolCall,
    Transcript,
    UserMessage,
    reconcile_history,
)
from pirelay.types import RawMessage
from tests.helpers import FakeTransport, envelope, text_delta, wire

HISTORY: list[dict[str, object]] = [
    {"id": "u1", "role": "user", "content": "list files"},
    {
        "id": "a1",
        "role": "assistant",
        "content": [
            {"type": "text", "text": "Checking"},
            {"type": "toolCall", "id": "c1", "name": "bash", "arguments": {"cmd": "ls"}},
        ],
    },
    {"id": "r1", "role": "toolResult", "toolCallId": "c1", "content": "a.txt"},
]

HISTORY_ITEMS = (
    UserMessage(id="u1", text="list files"),
    AssistantText(id="a1-text-1", text="Checking"),
    ToolCall(id="c1", name="bash", args='{"cmd":"ls"}', output="a.txt", status="success"),
)


def _controller(
    transport: FakeTransport, id_factory: Callable[[], str]
) -> SessionController:
    return SessionController(
        transport, config=SessionControllerConfig(id_factory=id_factory)
    )


def _texts(controller: SessionController) -> list[str]:
    return [item.text for item in controller.transcript if isinstance(item, AssistantText)]


class _LingeringFeedTransport(FakeTransport):
    """Gives every subscription its own queue; the first one outlives a cancel."""

    def __init__(self) -> None:
        super().__init__()
        self.feeds: list[asyncio.Queue[RawMessage]] = []

    @override
    async def subscribe(self) -> AsyncIterator[RawMessage]:
        queue: asyncio.Queue[RawMessage] = asyncio.Queue()
        self.feeds.append(queue)
        lingering = len(self.feeds) == 1
        while True:
            try:
                message = await queue.get()
            except asyncio.CancelledError:
                if not lingering:
                    raise
                lingering = False
                continue
            queue.task_done()
            yield message


class TestAttach:
    def test_attach_seeds_transcript_from_history(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = FakeTransport(
                model=ModelInfo(id="m-1", name="Model One"), history=HISTORY
            )
            controller = _controller(transport, id_factory)

            assert await controller.attach("s1") is True

            assert controller.state is SessionState.ATTACHED
            assert controller.session_id == "s1"
            assert controller.model_name == "Model One"
            assert controller.transcript.items == HISTORY_ITEMS
            assert controller.last_error is None
            assert transport.calls == [("attach", "s1"), ("fetch_history", None)]

        asyncio.run(_run())

    def test_attach_failure_leaves_controller_detached(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = FakeTransport(history=HISTORY)
            transport.attach_error = TransportError("refused", operation="attach")
            controller = _controller(transport, id_factory)

            assert await controller.attach("s1") is False

            assert controller.state is SessionState.DETACHED
            assert controller.session_id is None
            assert controller.transcript == Transcript()
            assert controller.last_error == "refused"
            assert transport.calls == [("attach", "s1")]
            assert transport.subscriptions == 0

        asyncio.run(_run())

    def test_history_failure_still_attaches(self, id_factory: Callable[[], str]) -> None:
        async def _run() -> None:
            transport = FakeTransport(history=HISTORY)
            transport.history_error = TransportError("history unavailable")
            controller = _controller(transport, id_factory)

            assert await controller.attach("s1") is True

            assert controller.state is SessionState.ATTACHED
            assert controller.transcript == Transcript()
            assert controller.last_error == "history unavailable"

            transport.push(envelope("agent_start"), text_delta("live"), envelope("agent_end"))
            await transport.delivered()

            assert _texts(controller) == ["live"]

        asyncio.run(_run())

    def test_undecodable_history_messages_are_skipped(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = FakeTransport(
                history=[{"id": "x", "role": "narrator"}, *HISTORY]
            )
            controller = _controller(transport, id_factory)

            assert await controller.attach("s1") is True

            assert controller.transcript.items == HISTORY_ITEMS
            assert controller.last_error is not None
            assert "invalid role" in controller.last_error

        asyncio.run(_run())

    def test_attach_while_attached_replaces_session(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = FakeTransport(history=HISTORY)
            controller = _controller(transport, id_factory)
            _ = await controller.attach("s1")

            transport.history = []
            assert await controller.attach("s2") is True

            assert controller.session_id == "s2"
            assert controller.transcript == Transcript()
            assert transport.calls[2:] == [
                ("detach", None),
                ("attach", "s2"),
                ("fetch_history", None),
            ]

        asyncio.run(_run())

    def test_concurrent_attaches_are_serialized(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            transport.attach_gate = asyncio.Event()
            controller = _controller(transport, id_factory)

            first = asyncio.create_task(controller.attach("s1"))
            second = asyncio.create_task(controller.attach("s2"))
            await asyncio.sleep(0)
            assert controller.state is SessionState.ATTACHING

            transport.attach_gate.set()
            assert await first is True
            assert await second is True

            assert controller.session_id == "s2"
            assert controller.state is SessionState.ATTACHED
            assert transport.calls == [
                ("attach", "s1"),
                ("fetch_history", None),
                ("detach", None),
                ("attach", "s2"),
                ("fetch_history", None),
            ]

        asyncio.run(_run())

    def test_cancelled_attach_returns_to_detached(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            transport.attach_gate = asyncio.Event()
            controller = _controller(transport, id_factory)

            task = asyncio.create_task(controller.attach("s1"))
            await asyncio.sleep(0)
            _ = task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            assert controller.state is SessionState.DETACHED
            assert controller.session_id is None

            transport.attach_gate.set()
            assert await controller.attach("s1") is True

        asyncio.run(_run())


class TestDetach:
    def test_detach_discards_transcript(self, id_factory: Callable[[], str]) -> None:
        async def _run() -> None:
            transport = FakeTransport(history=HISTORY)
            controller = _controller(transport, id_factory)
            _ = await controller.attach("s1")

            await controller.detach()

            assert controller.state is SessionState.DETACHED
            assert controller.session_id is None
            assert controller.transcript == Transcript()
            assert controller.view().streaming is None
            assert transport.calls[-1] == ("detach", None)

        asyncio.run(_run())

    def test_detach_failure_is_reported(self, id_factory: Callable[[], str]) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            transport.detach_error = TransportError("socket closed")
            controller = _controller(transport, id_factory)
            _ = await controller.attach("s1")

            await controller.detach()

            assert controller.state is SessionState.DETACHED
            assert controller.last_error == "socket closed"

        asyncio.run(_run())

    def test_cancelled_detach_still_detaches(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = FakeTransport(history=HISTORY)
            transport.detach_gate = asyncio.Event()
            controller = _controller(transport, id_factory)
            _ = await controller.attach("s1")

            task = asyncio.create_task(controller.detach())
            while ("detach", None) not in transport.calls:
                await asyncio.sleep(0)
            assert controller.state is SessionState.DETACHING
            _ = task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            assert controller.state is SessionState.DETACHED
            assert controller.session_id is None
            assert controller.transcript == Transcript()

            transport.detach_gate.set()
            assert await controller.attach("s2") is True
            assert controller.state is SessionState.ATTACHED
            assert controller.transcript.items == HISTORY_ITEMS

        asyncio.run(_run())

    def test_detach_when_detached_is_a_no_op(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            controller = _controller(transport, id_factory)

            await controller.detach()

            assert transport.calls == []
            assert controller.state is SessionState.DETACHED

        asyncio.run(_run())

    def test_reattach_after_mid_stream_detach_shows_history_only(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = FakeTransport(history=HISTORY)
            controller = _controller(transport, id_factory)
            _ = await controller.attach("s1")
            transport.push(
                envelope("agent_start"),
                text_delta("half a sen"),
                envelope("tool_execution_start", toolCallId="t9", toolName="bash"),
                text_delta("tence"),
            )
            await transport.delivered()
            assert controller.view().streaming is not None

            await controller.detach()
            _ = await controller.attach("s1")

            expected = reconcile_history(
                [parse_message(raw, index=index) for index, raw in enumerate(HISTORY)]
            )
            assert controller.transcript == expected
            assert controller.view().streaming is None
            assert controller.is_processing is False

        asyncio.run(_run())


class TestSwitch:
    def test_switch_requires_attached_session(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            controller = _controller(FakeTransport(), id_factory)

            with pytest.raises(SessionStateError) as exc:
                _ = await controller.switch("s2")

            assert exc.value.current_state is SessionState.DETACHED

        asyncio.run(_run())

    def test_events_queued_before_switch_are_not_applied(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            controller = _controller(transport, id_factory)
            _ = await controller.attach("s1")

            transport.push(
                text_delta("old", session_id="s1"),
                envelope(
                    "tool_execution_start",
                    session_id="s1",
                    toolCallId="t-old",
                    toolName="bash",
                ),
            )
            assert await controller.switch("s2") is True
            transport.push(
                text_delta("new", session_id="s2"),
                envelope("message_end", session_id="s2"),
            )
            await transport.delivered()

            assert controller.session_id == "s2"
            assert _texts(controller) == ["new"]
            assert controller.transcript.get("t-old") is None

        asyncio.run(_run())

    def test_superseded_feed_cannot_apply_sessionless_events(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = _LingeringFeedTransport()
            controller = SessionController(
                transport,
                config=SessionControllerConfig(id_factory=id_factory, settle_timeout=0.05),
            )
            _ = await controller.attach("s1")
            await asyncio.sleep(0)

            assert await controller.switch("s2") is True
            await asyncio.sleep(0)
            old_feed, new_feed = transport.feeds

            old_feed.put_nowait(
                wire(
                    "message_update",
                    assistantMessageEvent={"type": "text_delta", "delta": "stale"},
                )
            )
            await old_feed.join()
            assert controller.view().streaming is None

            new_feed.put_nowait(
                wire(
                    "message_update",
                    assistantMessageEvent={"type": "text_delta", "delta": "fresh"},
                )
            )
            new_feed.put_nowait(wire("message_end"))
            await new_feed.join()

            assert controller.session_id == "s2"
            assert _texts(controller) == ["fresh"]

        asyncio.run(_run())

    def test_events_for_other_sessions_are_dropped(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            controller = _controller(transport, id_factory)
            _ = await controller.attach("s1")

            transport.push(
                text_delta("elsewhere", session_id="s9"),
                envelope("message_end", session_id="s9"),
                wire(
                    "message_update",
                    assistantMessageEvent={"type": "text_delta", "delta": "flat"},
                ),
                wire("message_end"),
            )
            await transport.delivered()

            assert _texts(controller) == ["flat"]

        asyncio.run(_run())


class TestLiveFeed:
    def test_streaming_peek_and_processing_flag(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            controller = _controller(transport, id_factory)
            _ = await controller.attach("s1")

            transport.push(envelope("agent_start"), text_delta("Hel"), text_delta("lo"))
            await transport.delivered()

            view = controller.view()
            assert view.is_processing is True
            assert view.streaming == StreamingPeek(buffer_id="id-1", text="Hello")
            assert view.items == ()

            transport.push(envelope("agent_end"))
            await transport.delivered()

            assert controller.is_processing is False
            assert controller.transcript.items == (AssistantText(id="id-1", text="Hello"),)

        asyncio.run(_run())

    def test_agent_failures_are_reported(self, id_factory: Callable[[], str]) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            controller = _controller(transport, id_factory)
            _ = await controller.attach("s1")

            transport.push(
                envelope("agent_start"),
                envelope("hook_error", error="hook crashed"),
            )
            await transport.delivered()
            assert controller.last_error == "hook crashed"

            transport.push(envelope("agent_end", success=False, error="rate limited"))
            await transport.delivered()

            assert controller.last_error == "rate limited"
            assert controller.is_processing is False

            controller.clear_error()
            assert controller.last_error is None

        asyncio.run(_run())

    def test_decode_failures_do_not_stop_the_feed(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            controller = _controller(transport, id_factory)
            _ = await controller.attach("s1")

            transport.push(
                "{not json",
                text_delta("still"),
                envelope("message_end"),
            )
            await transport.delivered()

            assert controller.last_error is not None
            assert "valid JSON" in controller.last_error
            assert _texts(controller) == ["still"]

        asyncio.run(_run())

    def test_model_changes_append_notices(self, id_factory: Callable[[], str]) -> None:
        async def _run() -> None:
            transport = FakeTransport(model=ModelInfo(id="m-1", name="Model One"))
            controller = _controller(transport, id_factory)
            _ = await controller.attach("s1")

            transport.push(
                envelope("model_changed", model={"id": "m-2", "name": "Model Two"})
            )
            await transport.delivered()

            assert controller.model_name == "Model Two"
            assert controller.transcript.items == (
                SystemEvent(
                    id="id-1",
                    event=ModelSwitch(from_model="Model One", to_model="Model Two"),
                ),
            )

        asyncio.run(_run())

    def test_feed_failure_is_reported(self, id_factory: Callable[[], str]) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            transport.feed_error = TransportError("stream reset")
            controller = _controller(transport, id_factory)
            _ = await controller.attach("s1")

            await asyncio.sleep(0)

            assert controller.last_error == "stream reset"
            assert controller.state is SessionState.ATTACHED

        asyncio.run(_run())

    def test_closed_feed_keeps_session_attached(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            controller = _controller(transport, id_factory)
            _ = await controller.attach("s1")

            transport.push(text_delta("bye"))
            transport.close_feed()
            await transport.delivered()

            assert controller.state is SessionState.ATTACHED
            assert controller.view().streaming == StreamingPeek(
                buffer_id="id-1", text="bye"
            )

        asyncio.run(_run())


class TestActions:
    def test_send_appends_user_message(self, id_factory: Callable[[], str]) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            controller = _controller(transport, id_factory)
            _ = await controller.attach("s1")

            assert await controller.send("  hello  ") is True

            assert controller.transcript.items == (UserMessage(id="id-1", text="hello"),)
            assert controller.is_processing is True
            assert transport.calls[-1] == ("send_prompt", ("hello", None))

        asyncio.run(_run())

    def test_send_while_processing_is_queued(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            controller = SessionController(
                transport,
                config=SessionControllerConfig(
                    default_streaming_behavior="followUp", id_factory=id_factory
                ),
            )
            _ = await controller.attach("s1")
            transport.push(envelope("agent_start"))
            await transport.delivered()

            assert await controller.send("after this") is True
            assert await controller.send("right now", "steer") is True

            assert controller.transcript.items == (
                UserMessage(id="id-2", text="after this", queued_behavior="followUp"),
                UserMessage(id="id-3", text="right now", queued_behavior="steer"),
            )
            assert transport.calls[-2:] == [
                ("send_prompt", ("after this", "followUp")),
                ("send_prompt", ("right now", "steer")),
            ]

        asyncio.run(_run())

    def test_blank_prompt_is_ignored(self, id_factory: Callable[[], str]) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            controller = _controller(transport, id_factory)
            _ = await controller.attach("s1")

            assert await controller.send("   ") is False

            assert controller.transcript == Transcript()
            assert ("send_prompt", ("", None)) not in transport.calls

        asyncio.run(_run())

    def test_send_without_session_is_reported(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            controller = _controller(transport, id_factory)

            assert await controller.send("hello") is False

            assert controller.last_error == "No session attached."
            assert transport.calls == []

        asyncio.run(_run())

    def test_send_failure_keeps_user_message(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            transport.send_error = TransportError("write failed", operation="prompt")
            controller = _controller(transport, id_factory)
            _ = await controller.attach("s1")

            assert await controller.send("hello") is False

            assert controller.transcript.items == (UserMessage(id="id-1", text="hello"),)
            assert controller.is_processing is False
            assert controller.last_error == "write failed"

        asyncio.run(_run())

    def test_abort(self, id_factory: Callable[[], str]) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            controller = _controller(transport, id_factory)

            assert await controller.abort() is False

            _ = await controller.attach("s1")
            transport.push(envelope("agent_start"))
            await transport.delivered()

            assert await controller.abort() is True
            assert controller.is_processing is False

            transport.abort_error = TransportError("abort rejected")
            assert await controller.abort() is False
            assert controller.last_error == "abort rejected"
            assert transport.calls.count(("abort", None)) == 2

        asyncio.run(_run())

    def test_add_rich_content(self, id_factory: Callable[[], str]) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            controller = _controller(transport, id_factory)
            display = {"_display": {"type": "chart"}, "summary": "Chart displayed"}

            assert controller.add_rich_content(display) is None

            _ = await controller.attach("s1")
            item = controller.add_rich_content(display, item_id="r1")

            assert item == RichContent(
                id="r1", payload={"type": "chart"}, summary="Chart displayed"
            )
            assert controller.transcript.items == (item,)
            assert controller.add_rich_content({"summary": "text only"}) is None

        asyncio.run(_run())


class TestListeners:
    def test_listeners_receive_views(self, id_factory: Callable[[], str]) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            controller = _controller(transport, id_factory)
            views: list[SessionView] = []
            unsubscribe = controller.add_listener(views.append)

            _ = await controller.attach("s1")

            assert [view.state for view in views] == [
                SessionState.ATTACHING,
                SessionState.ATTACHED,
            ]

            unsubscribe()
            unsubscribe()
            await controller.detach()
            assert len(views) == 2

        asyncio.run(_run())

    def test_failing_listener_does_not_block_others(
        self, id_factory: Callable[[], str]
    ) -> None:
        async def _run() -> None:
            transport = FakeTransport()
            controller = _controller(transport, id_factory)
            seen: list[SessionState] = []

            def broken(view: SessionView) -> None:
                raise RuntimeError("render failed")

            _ = controller.add_listener(broken)
            _ = controller.add_listener(lambda view: seen.append(view.state))

            assert await controller.attach("s1") is True
            assert seen[-1] is SessionState.ATTACHED

        asyncio.run(_run())
