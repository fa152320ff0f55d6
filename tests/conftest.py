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

from __future__ import annotations

import itertools
from collections.abc import Callable, Iterator

import pytest

from pirelay.dbc import dbc_enabled
from pirelay.transcript import ReducerContext


@pytest.fixture(autouse=True)
def enable_contracts() -> Iterator[None]:
    """Run every test with design-by-contract checks active."""

    with dbc_enabled():
        yield


@pytest.fixture
def id_factory() -> Callable[[], str]:
    """Return a deterministic id source yielding ``id-1``, ``id-2`` ..."""

    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


@pytest.fixture
def reducer_context(id_factory: Callable[[], str]) -> ReducerContext:
    return ReducerContext(new_id=id_factory)
