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

"""Tests for JSON rendering of transcripts."""

from __future__ import annotations

import json

import pytest

from pirelay.transcript import (
    AssistantText,
    ModelSwitch,
    RichContent,
    StreamingState,
    SystemEvent,
    ToolCall,
    Transcript,
    UserMessage,
    dump_item,
    dump_streaming,
    dump_transcript,
)
from pirelay.transcript.serde import camel_case


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("id", "id"),
        ("queued_behavior", "queuedBehavior"),
        ("last_synthetic_tool_call_id", "lastSyntheticToolCallId"),
    ],
)
def test_camel_case(name: str, expected: str) -> None:
    assert camel_case(name) == expected


def test_items_are_tagged_by_kind() -> None:
    transcript = Transcript(
        items=(
            UserMessage(id="u1", text="hi", queued_behavior="followUp"),
            AssistantText(id="a1", text="hello"),
            ToolCall(id="t1", name="bash", args='{"cmd":"ls"}', status="error"),
            SystemEvent(id="s1", event=ModelSwitch(from_model=None, to_model="m2")),
            RichContent(id="r1", payload={"type": "chart", "points": (1, 2)}),
        )
    )

    assert dump_transcript(transcript) == [
        {"kind": "userMessage", "id": "u1", "text": "hi", "queuedBehavior": "followUp"},
        {"kind": "assistantText", "id": "a1", "text": "hello"},
        {
            "kind": "toolCall",
            "id": "t1",
            "name": "bash",
            "args": '{"cmd":"ls"}',
            "output": None,
            "status": "error",
        },
        {
            "kind": "systemEvent",
            "id": "s1",
            "event": {"kind": "modelSwitch", "fromModel": None, "toModel": "m2"},
        },
        {
            "kind": "richContent",
            "id": "r1",
            "payload": {"type": "chart", "points": [1, 2]},
            "summary": "",
        },
    ]


def test_dumped_items_are_json_serializable() -> None:
    item = ToolCall(id="t1", name="bash", output="ok", status="success")

    assert json.loads(json.dumps(dump_item(item))) == dump_item(item)


def test_unserializable_payload_raises() -> None:
    with pytest.raises(TypeError, match="Cannot serialize object"):
        _ = dump_item(RichContent(id="r1", payload={"bad": object()}))


def test_dump_streaming() -> None:
    assert dump_streaming(StreamingState()) is None
    assert dump_streaming(StreamingState(buffer_text="par", buffer_id="b1")) == {
        "bufferId": "b1",
        "text": "par",
    }
