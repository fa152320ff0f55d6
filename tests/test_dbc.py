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

"""Tests for the internal design-by-contract helpers."""

from __future__ import annotations

import logging

import pytest

import pirelay.dbc as dbc_module
from pirelay.dbc import (
    dbc_active,
    dbc_enabled,
    disable_dbc,
    enable_dbc,
    ensure,
    pure,
)


def test_ensure_validates_return_values() -> None:
    @ensure(lambda value, result: result >= value)
    def increment(value: int) -> int:
        return value + 1

    assert increment(3) == 4


def test_ensure_reports_detail_on_failure() -> None:
    @ensure(lambda value, result: (result > value, f"result={result}"))
    def stay(value: int) -> int:
        return value

    with pytest.raises(AssertionError) as exc:
        _ = stay(2)

    assert "stay" in str(exc.value)
    assert "result=2" in str(exc.value)


def test_ensure_treats_none_as_failure() -> None:
    @ensure(lambda value, result: None)
    def identity(value: int) -> int:
        return value

    with pytest.raises(AssertionError):
        _ = identity(1)


def test_ensure_rejects_empty_tuple_results() -> None:
    @ensure(lambda value, result: ())
    def identity(value: int) -> int:
        return value

    with pytest.raises(TypeError, match="empty tuples"):
        _ = identity(1)


def test_ensure_requires_a_predicate() -> None:
    with pytest.raises(ValueError, match="at least one predicate"):
        _ = ensure()


def test_ensure_passes_keyword_arguments() -> None:
    seen: list[dict[str, object]] = []

    def record(value: int, *, scale: int, result: int) -> bool:
        seen.append({"value": value, "scale": scale, "result": result})
        return True

    @ensure(record)
    def multiply(value: int, *, scale: int) -> int:
        return value * scale

    assert multiply(2, scale=3) == 6
    assert seen == [{"value": 2, "scale": 3, "result": 6}]


def test_pure_detects_argument_mutation() -> None:
    @pure
    def append_item(values: list[int]) -> int:
        values.append(1)
        return len(values)

    with pytest.raises(AssertionError, match="positional argument 0"):
        _ = append_item([])


def test_pure_detects_keyword_mutation() -> None:
    @pure
    def clear(*, values: dict[str, int]) -> None:
        values.clear()

    with pytest.raises(AssertionError, match="keyword argument 'values'"):
        clear(values={"a": 1})


def test_pure_forbids_logging() -> None:
    noisy = logging.getLogger("tests.dbc.pure")
    noisy.setLevel(logging.DEBUG)

    @pure
    def log_and_return(value: int) -> int:
        noisy.warning("side effect")
        return value

    with pytest.raises(AssertionError, match="forbids logging"):
        _ = log_and_return(1)

    noisy.debug("logging works again")


def test_pure_allows_untouched_inputs() -> None:
    @pure
    def total(values: list[int]) -> int:
        return sum(values)

    assert total([1, 2, 3]) == 6


def test_contracts_skip_when_inactive() -> None:
    @ensure(lambda result: False)
    def always() -> int:
        return 1

    @pure
    def mutate(values: list[int]) -> None:
        values.append(1)

    with dbc_enabled(active=False):
        assert not dbc_active()
        assert always() == 1
        mutate([])

    assert dbc_active()


def test_enable_and_disable_force_state(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PIRELAY_DBC", "1")
    with dbc_enabled():
        disable_dbc()
        assert not dbc_active()
        enable_dbc()
        assert dbc_active()


@pytest.mark.parametrize(
    ("value", "expected"),
    [("1", True), ("yes", True), ("0", False), ("off", False), ("", False)],
)
def test_environment_flag(
    monkeypatch: pytest.MonkeyPatch, value: str, expected: bool
) -> None:
    monkeypatch.setenv("PIRELAY_DBC", value)
    monkeypatch.setattr(dbc_module, "_forced_state", None)

    assert dbc_active() is expected
