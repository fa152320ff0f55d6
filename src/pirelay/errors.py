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

"""Base exception hierarchy for :mod:`pirelay`."""

from __future__ import annotations

from enum import Enum
from typing import Literal, override


class RelayError(Exception):
    """Base class for all pirelay exceptions.

    Every error the transcript core produces is recoverable: the session
    controller catches these at the boundary where they occur, logs them and
    surfaces the message as its ``last_error``. None of them unwind or reset
    the transcript.

    Example:
        Catch any pirelay-specific error::

            try:
                event = decode_event(line)
            except RelayError as e:
                logger.warning("relay error: %s", e)
    """


class DecodeError(RelayError, ValueError):
    """Raised when an inbound message cannot be decoded.

    Covers invalid JSON, non-object messages, a missing ``type`` tag and
    fields that are present but carry the wrong JSON type. Unknown event
    *types* are not decode errors; they decode to :class:`UnknownEvent` so
    newer servers keep working with older clients.

    Attributes:
        event_type: The wire ``type`` of the offending message, when known.
    """

    def __init__(self, message: str, *, event_type: str | None = None) -> None:
        super().__init__(message)
        self.event_type = event_type


class TransportError(RelayError, RuntimeError):
    """Raised when a transport call fails.

    Attach, detach, history fetch, prompt and abort failures all surface as
    this type. A transport error never rolls back transcript state that was
    already applied.

    Attributes:
        operation: Name of the failed transport operation.
    """

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        super().__init__(message)
        self.operation = operation


AgentErrorSource = Literal["agent_end", "hook_error"]


class AgentError(RelayError, RuntimeError):
    """Failure reported by the remote agent itself.

    Produced from ``agent_end`` events with ``success: false`` and from
    ``hook_error`` events. The reducer returns these as values instead of
    raising them.
    """

    def __init__(self, message: str, *, source: AgentErrorSource) -> None:
        super().__init__(message)
        self.source: AgentErrorSource = source

    @override
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AgentError):
            return NotImplemented
        return str(self) == str(other) and self.source == other.source

    @override
    def __hash__(self) -> int:
        return hash((str(self), self.source))

    @override
    def __repr__(self) -> str:
        return f"AgentError({str(self)!r}, source={self.source!r})"


class SessionStateError(RelayError, RuntimeError):
    """Lifecycle method invoked from a state that does not allow it.

    Attributes:
        operation: Name of the attempted transition.
        current_state: State the controller was in.
        target_state: State the transition would have entered.
    """

    def __init__(
        self, operation: str, current_state: Enum, target_state: Enum
    ) -> None:
        super().__init__(
            f"{operation}() cannot move session from "
            f"{current_state.name} to {target_state.name}"
        )
        self.operation = operation
        self.current_state = current_state
        self.target_state = target_state


__all__ = [
    "AgentError",
    "AgentErrorSource",
    "DecodeError",
    "RelayError",
    "SessionStateError",
    "TransportError",
]
