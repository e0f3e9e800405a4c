import json

import pytest

from helmsman.llm import ToolCallDelta
from helmsman.tool_calls import SlotState, StreamToolCallMerger


def merge(*deltas: ToolCallDelta):
    merger = StreamToolCallMerger()
    merger.feed_many(list(deltas))
    return merger.finish()


def test_fragmented_call_with_id_on_first_chunk():
    calls = merge(
        ToolCallDelta(id="c1", name="bash", arguments='{"comm'),
        ToolCallDelta(arguments='and":"date"}'),
    )
    assert len(calls) == 1
    assert calls[0].id == "c1"
    assert calls[0].name == "bash"
    assert calls[0].arguments == '{"command":"date"}'


def test_every_character_split_yields_one_call():
    payload = '{"command":"date"}'
    deltas = [ToolCallDelta(id="c1", name="bash")] + [ToolCallDelta(arguments=ch) for ch in payload]
    calls = merge(*deltas)
    assert len(calls) == 1
    assert calls[0].parsed_arguments == {"command": "date"}


def test_single_nameless_fragment_yields_nothing():
    assert merge(ToolCallDelta(arguments='{"a": 1}')) == []


def test_nameless_slots_are_dropped_but_named_ones_kept():
    calls = merge(
        ToolCallDelta(id="x1", arguments="{}"),
        ToolCallDelta(id="x2", name="read", arguments='{"path":"a"}'),
    )
    assert [call.id for call in calls] == ["x2"]


def test_known_id_routes_back_to_its_slot():
    calls = merge(
        ToolCallDelta(id="a", name="read", arguments='{"pa'),
        ToolCallDelta(id="b", name="write", arguments='{"path":"o",'),
        ToolCallDelta(id="a", arguments='th":"i"}'),
        ToolCallDelta(id="b", arguments='"content":"x"}'),
    )
    assert [(c.id, c.name, c.parsed_arguments) for c in calls] == [
        ("a", "read", {"path": "i"}),
        ("b", "write", {"content": "x", "path": "o"}),
    ]


def test_name_without_id_routes_to_named_slot():
    calls = merge(
        ToolCallDelta(id="c1", name="bash", arguments='{"command":'),
        ToolCallDelta(name="bash", arguments='"ls"}'),
    )
    assert len(calls) == 1
    assert calls[0].parsed_arguments == {"command": "ls"}


def test_index_routes_interleaved_fragments():
    calls = merge(
        ToolCallDelta(index=0, id="a", name="read", arguments='{"path":'),
        ToolCallDelta(index=1, id="b", name="read", arguments='{"path":'),
        ToolCallDelta(index=0, arguments='"one"}'),
        ToolCallDelta(index=1, arguments='"two"}'),
    )
    assert [c.parsed_arguments["path"] for c in calls] == ["one", "two"]


def test_placeholder_is_promoted_by_id_and_name():
    merger = StreamToolCallMerger()
    merger.feed(ToolCallDelta(arguments='{"input":'))
    assert merger.slots == [(SlotState.PARTIAL, "", "")]
    merger.feed(ToolCallDelta(id="w1", name="wikipedia", arguments='"Tunguska"}'))
    assert merger.slots == [(SlotState.NAMED, "w1", "wikipedia")]
    calls = merger.finish()
    assert len(calls) == 1
    assert calls[0].parsed_arguments == {"input": "Tunguska"}


def test_new_name_without_id_opens_a_slot_when_no_placeholder():
    calls = merge(
        ToolCallDelta(name="read", arguments='{"path":"a"}'),
        ToolCallDelta(name="write", arguments='{"path":"b"}'),
    )
    assert [c.name for c in calls] == ["read", "write"]
    assert calls[0].id != calls[1].id
    assert all(c.id.startswith("call_") for c in calls)


def test_earliest_name_is_kept():
    calls = merge(
        ToolCallDelta(id="c1", name="bash", arguments="{}"),
        ToolCallDelta(id="c1", name="shell"),
    )
    assert calls[0].name == "bash"


def test_quoted_fragments_are_unquoted():
    calls = merge(
        ToolCallDelta(id="c1", name="bash", arguments=json.dumps('{"command":')),
        ToolCallDelta(arguments=json.dumps('"date"}')),
    )
    assert calls[0].parsed_arguments == {"command": "date"}


def test_truncated_arguments_become_empty_object():
    calls = merge(ToolCallDelta(id="c1", name="bash", arguments='{"command": "da'))
    assert calls[0].arguments == "{}"


def test_finish_marks_slots_complete_and_blocks_further_feeding():
    merger = StreamToolCallMerger()
    merger.feed(ToolCallDelta(id="c1", name="bash"))
    merger.finish()
    assert merger.slots == [(SlotState.COMPLETE, "c1", "bash")]
    with pytest.raises(RuntimeError):
        merger.feed(ToolCallDelta(arguments="{}"))
