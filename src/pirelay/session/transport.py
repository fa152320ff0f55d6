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

"""Transport contract consumed by the session controller."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import Protocol

from ..protocol.events import ModelInfo
from ..transcript.items import QueuedBehavior
from ..types import RawMessage


class Transport(Protocol):
    """Connection to one agent relay.

    Every coroutine raises :class:`~pirelay.errors.TransportError` on failure.
    Messages are handed over undecoded so the controller can report decode
    failures alongside its other errors.
    """

    async def attach(self, session_id: str) -> ModelInfo | None:
        """Bind the connection to ``session_id`` and return its active model."""
        ...

    async def detach(self) -> None:
        """Release the current session binding."""
        ...

    async def fetch_history(self) -> Sequence[RawMessage]:
        """Return the persisted messages of the attached session, oldest first."""
        ...

    def subscribe(self) -> AsyncIterator[RawMessage]:
        """Yield inbound event messages for the attached session in order.

        The iterator ends when the connection closes. Cancelling the consumer
        stops the subscription.
        """
        ...

    async def send_prompt(
        self, text: str, streaming_behavior: QueuedBehavior | None = None
    ) -> None: ...

    async def abort(self) -> None: ...


__all__ = ["Transport"]
