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

"""Transcript model and the ephemeral streaming state folded alongside it."""

from __future__ import annotations

from collections.abc import Iterator

from ..dataclasses import FrozenDataclass
from .items import ConversationItem


@FrozenDataclass()
class Transcript:
    """Ordered, immutable sequence of conversation items.

    Item ids are unique; construction raises :class:`ValueError` otherwise.
    Mutators return a new transcript and leave the receiver untouched.
    """

    items: tuple[ConversationItem, ...] = ()

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for item in self.items:
            if item.id in seen:
                raise ValueError(f"Duplicate transcript item id: {item.id!r}")
            seen.add(item.id)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[ConversationItem]:
        return iter(self.items)

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(item.id for item in self.items)

    def index_of(self, item_id: str) -> int | None:
        for index, item in enumerate(self.items):
            if item.id == item_id:
                return index
        return None

    def get(self, item_id: str) -> ConversationItem | None:
        index = self.index_of(item_id)
        return None if index is None else self.items[index]

    def append(self, item: ConversationItem) -> Transcript:
        return Transcript(items=(*self.items, item))

    def replace(self, item: ConversationItem) -> Transcript:
        """Swap in ``item`` at the position of the item sharing its id.

        Raises:
            KeyError: If no item has that id.
        """

        index = self.index_of(item.id)
        if index is None:
            raise KeyError(item.id)
        return Transcript(items=(*self.items[:index], item, *self.items[index + 1 :]))


@FrozenDataclass()
class StreamingPeek:
    """The unflushed assistant text, for rendering a live last bubble."""

    buffer_id: str
    text: str


@FrozenDataclass()
class StreamingState:
    """In-flight assistant text and tool-call correlation state.

    ``buffer_id`` is the id the buffered text will be materialized under;
    it is ``None`` once that text was flushed. ``last_synthetic_tool_call_id``
    remembers the id invented for a tool call that arrived without one.
    """

    buffer_text: str = ""
    buffer_id: str | None = None
    last_synthetic_tool_call_id: str | None = None

    def peek(self) -> StreamingPeek | None:
        if not self.buffer_text or self.buffer_id is None:
            return None
        return StreamingPeek(buffer_id=self.buffer_id, text=self.buffer_text)


@FrozenDataclass()
class ReducerState:
    """Everything the streaming reducer folds over.

    ``model_name`` is the last known model, used to describe model switches.
    """

    transcript: Transcript = Transcript()
    streaming: StreamingState = StreamingState()
    model_name: str | None = None


__all__ = ["ReducerState", "StreamingPeek", "StreamingState", "Transcript"]
