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

"""Explicit configuration for :class:`~pirelay.session.SessionController`."""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import field
from typing import Final, Self, cast
from uuid import uuid4

from ..dataclasses import FrozenDataclass
from ..transcript.items import QueuedBehavior

_STREAMING_BEHAVIOR_ENV: Final = "PIRELAY_STREAMING_BEHAVIOR"
_SETTLE_TIMEOUT_ENV: Final = "PIRELAY_SETTLE_TIMEOUT"
_BEHAVIORS: Final[frozenset[str]] = frozenset({"steer", "followUp"})
_DEFAULT_SETTLE_TIMEOUT: Final = 5.0


def new_item_id() -> str:
    return str(uuid4())


@FrozenDataclass()
class SessionControllerConfig:
    """Settings for one session controller.

    Attributes:
        default_streaming_behavior: Queued behavior applied to prompts sent
            while the agent is processing, unless the caller picks one.
        settle_timeout: Seconds to wait for a cancelled event feed to finish
            before giving up on it.
        id_factory: Source of ids for locally created transcript items.
    """

    default_streaming_behavior: QueuedBehavior = "steer"
    settle_timeout: float = _DEFAULT_SETTLE_TIMEOUT
    id_factory: Callable[[], str] = field(default=new_item_id)

    def __post_init__(self) -> None:
        if self.default_streaming_behavior not in _BEHAVIORS:
            raise ValueError(
                "default_streaming_behavior must be 'steer' or 'followUp', "
                f"got {self.default_streaming_behavior!r}"
            )
        if self.settle_timeout <= 0:
            raise ValueError("settle_timeout must be positive")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Self:
        """Build a config from ``PIRELAY_STREAMING_BEHAVIOR`` and
        ``PIRELAY_SETTLE_TIMEOUT``, defaulting whatever is unset.

        Raises:
            ValueError: If a variable holds an invalid value.
        """

        env = env if env is not None else os.environ
        behavior = env.get(_STREAMING_BEHAVIOR_ENV) or "steer"
        raw_timeout = env.get(_SETTLE_TIMEOUT_ENV)
        try:
            timeout = float(raw_timeout) if raw_timeout else _DEFAULT_SETTLE_TIMEOUT
        except ValueError:
            raise ValueError(
                f"{_SETTLE_TIMEOUT_ENV} must be a number, got {raw_timeout!r}"
            ) from None
        return cls(
            default_streaming_behavior=cast(QueuedBehavior, behavior),
            settle_timeout=timeout,
        )


__all__ = ["SessionControllerConfig", "new_item_id"]
