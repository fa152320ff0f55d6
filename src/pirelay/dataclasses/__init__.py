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

"""Frozen dataclass helpers."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, fields, replace
from typing import (
    Any,
    Protocol,
    Self,
    TypedDict,
    TypeVar,
    Unpack,
    cast,
    dataclass_transform,
)

__all__ = ["FrozenDataclass", "SupportsUpdate"]

T = TypeVar("T")


class SupportsUpdate(Protocol):
    def update(self, **changes: object) -> Self:
        """Return a modified copy of the dataclass."""
        ...


class DataclassOptions(TypedDict, total=False):
    init: bool
    repr: bool
    eq: bool
    order: bool
    unsafe_hash: bool
    match_args: bool
    kw_only: bool


@dataclass_transform(frozen_default=True)
def FrozenDataclass(
    **dataclass_kwargs: Unpack[DataclassOptions],
) -> Callable[[type[T]], type[T]]:
    """Dataclass decorator with frozen, slotted defaults plus an update helper.

    Transcript items and protocol events are values: the reducer never edits
    one in place, it builds the successor with ``item.update(output=...)``,
    which wraps :func:`dataclasses.replace` and rejects unknown field names
    with a readable message.
    """

    options: dict[str, Any] = {
        "init": True,
        "repr": True,
        "eq": True,
        "order": False,
        "unsafe_hash": False,
        "match_args": True,
        "kw_only": False,
        **dataclass_kwargs,
        "frozen": True,
        "slots": True,
    }

    def decorator(cls: type[T]) -> type[T]:
        dataclass_cls = cast(Callable[[type[T]], type[T]], dataclass(**options))(cls)
        type.__setattr__(dataclass_cls, "update", _build_update_helper(dataclass_cls))
        return dataclass_cls

    return decorator


def _build_update_helper(cls: type[Any]) -> Callable[..., Any]:
    field_names = frozenset(field.name for field in fields(cls) if field.init)

    def update(self: object, **changes: object) -> object:
        unknown = sorted(set(changes) - field_names)
        if unknown:
            raise TypeError(
                f"{cls.__name__}.update() got unknown fields: {', '.join(unknown)}"
            )
        return replace(cast(Any, self), **changes)

    update.__qualname__ = f"{cls.__qualname__}.update"
    return update
