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

"""Session transport backed by :class:`~pirelay.rpc.client.PiRpcClient`."""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any, cast

from ..errors import DecodeError
from ..protocol.decoder import parse_model_info
from ..protocol.events import ModelInfo
from ..runtime.logging import StructuredLogger, get_logger
from ..transcript.items import QueuedBehavior
from ..types import RawMessage
from .client import PiRpcClient, RpcClientError

logger: StructuredLogger = get_logger(__name__, context={"component": "rpc_transport"})


class PiRpcTransport:
    """Map the session transport contract onto agent RPC commands.

    The RPC stream carries no session ids, so attach and detach drop every
    event still queued from the previous session.
    """

    def __init__(self, client: PiRpcClient) -> None:
        super().__init__()
        self._client = client

    async def attach(self, session_id: str) -> ModelInfo | None:
        switched = await self._client.send_command(
            "switch_session", {"sessionPath": session_id}
        )
        if switched.get("cancelled") is True:
            raise RpcClientError(
                f"Switching to session {session_id} was cancelled",
                operation="switch_session",
            )
        state = await self._client.send_command("get_state")
        _ = self._client.drain_events()
        return _model_from_state(state)

    async def detach(self) -> None:
        _ = self._client.drain_events()

    async def fetch_history(self) -> Sequence[RawMessage]:
        data = await self._client.send_command("get_messages")
        messages = data.get("messages")
        if not isinstance(messages, list):
            raise RpcClientError(
                "get_messages returned no message list", operation="get_messages"
            )
        return cast(list[RawMessage], messages)

    def subscribe(self) -> AsyncIterator[RawMessage]:
        return self._client.events()

    async def send_prompt(
        self, text: str, streaming_behavior: QueuedBehavior | None = None
    ) -> None:
        params: dict[str, object] = {"message": text}
        if streaming_behavior is not None:
            params["streamingBehavior"] = streaming_behavior
        _ = await self._client.send_command("prompt", params)

    async def abort(self) -> None:
        _ = await self._client.send_command("abort")


def _model_from_state(state: Mapping[str, Any]) -> ModelInfo | None:
    model = state.get("model")
    if not isinstance(model, Mapping):
        return None
    try:
        return parse_model_info(cast(Mapping[str, object], model), event_type="get_state")
    except DecodeError as error:
        logger.warning(
            "Ignoring malformed model in agent state.",
            event="rpc.state.bad_model",
            context={"error": str(error)},
        )
        return None


__all__ = ["PiRpcTransport"]
