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

"""Transcript reconstruction for remote coding-agent relay clients.

The public surface is re-exported here; subsystems live in
:mod:`pirelay.protocol`, :mod:`pirelay.transcript`, :mod:`pirelay.session`
and :mod:`pirelay.rpc`.
"""

from __future__ import annotations

from . import cli, dbc, protocol, rpc, runtime, session, transcript, types
from .errors import (
    AgentError,
    DecodeError,
    RelayError,
    SessionStateError,
    TransportError,
)
from .protocol import Event, EventEnvelope, decode_envelope, decode_event, parse_message
from .rpc import PiRpcClient, PiRpcTransport, RpcClientError
from .session import (
    SessionController,
    SessionControllerConfig,
    SessionState,
    SessionView,
    Transport,
)
from .transcript import (
    ConversationItem,
    ReducerContext,
    ReducerState,
    Transcript,
    reconcile_history,
    reduce_event,
)

__all__ = [
    "AgentError",
    "ConversationItem",
    "DecodeError",
    "Event",
    "EventEnvelope",
    "PiRpcClient",
    "PiRpcTransport",
    "ReducerContext",
    "ReducerState",
    "RelayError",
    "RpcClientError",
    "SessionController",
    "SessionControllerConfig",
    "SessionState",
    "SessionStateError",
    "SessionView",
    "Transcript",
    "Transport",
    "TransportError",
    "cli",
    "dbc",
    "decode_envelope",
    "decode_event",
    "parse_message",
    "protocol",
    "reconcile_history",
    "reduce_event",
    "rpc",
    "runtime",
    "session",
    "transcript",
    "types",
]
