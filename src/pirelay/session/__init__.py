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

"""Session lifecycle: transport contract, configuration and controller."""

from __future__ import annotations

from .config import SessionControllerConfig, new_item_id
from .controller import SessionController, SessionListener, SessionState, SessionView
from .transport import Transport

__all__ = [
    "SessionController",
    "SessionControllerConfig",
    "SessionListener",
    "SessionState",
    "SessionView",
    "Transport",
    "new_item_id",
]
