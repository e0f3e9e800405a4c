import json

import pytest

from helmsman.llm.tool_args import (
    EMPTY_ARGUMENTS,
    canonical_arguments,
    generate_tool_call_id,
    normalize_tool_arguments,
)


def test_plain_object_is_canonicalized():
    parsed, canonical = normalize_tool_arguments('{ "b": 1, "a": "x" }')
    assert parsed == {"a": "x", "b": 1}
    assert canonical == '{"a":"x","b":1}'


@pytest.mark.parametrize("raw", ["", "   ", "null", " null ", None, 42, ["a"]])
def test_empty_like_inputs_become_empty_object(raw):
    assert normalize_tool_arguments(raw) == ({}, EMPTY_ARGUMENTS)


@pytest.mark.parametrize("raw", ["not-json", "[1, 2]", "3", "true", '{"unterminated": '])
def test_non_objects_and_garbage_become_empty_object(raw):
    assert normalize_tool_arguments(raw) == ({}, EMPTY_ARGUMENTS)


@pytest.mark.parametrize("raw", ['{"x":NaN}', '{"x":Infinity}', '{"x":-Infinity}', '{"x":1e400}', {"x": float("nan")}])
def test_non_finite_numbers_become_empty_object(raw):
    assert normalize_tool_arguments(raw) == ({}, EMPTY_ARGUMENTS)


def test_string_wrapped_object_is_unwrapped_once():
    wrapped = json.dumps('{"command":"date"}')
    assert normalize_tool_arguments(wrapped) == ({"command": "date"}, '{"command":"date"}')


def test_double_wrapped_object_is_rejected():
    twice = json.dumps(json.dumps('{"command":"date"}'))
    assert normalize_tool_arguments(twice) == ({}, EMPTY_ARGUMENTS)


def test_string_wrapping_equivalence():
    encoded = json.dumps({"x": [1, {"y": None}], "a": "é"})
    assert normalize_tool_arguments(json.dumps(encoded)) == normalize_tool_arguments(encoded)


def test_normalization_is_idempotent():
    for raw in ['{"z": 1, "a": {"c": 2, "b": 3}}', "garbage", '"{\\"k\\": true}"', ""]:
        _, once = normalize_tool_arguments(raw)
        _, twice = normalize_tool_arguments(once)
        assert once == twice


def test_dict_and_bytes_inputs():
    assert canonical_arguments({"b": 2, "a": 1}) == '{"a":1,"b":2}'
    assert canonical_arguments(b'{"path": "/tmp"}') == '{"path":"/tmp"}'


def test_non_ascii_is_kept_verbatim():
    assert canonical_arguments('{"input": "Tunguska \\u00e9v\\u00e9nement"}') == '{"input":"Tunguska événement"}'


def test_generated_ids_are_unique_and_prefixed():
    ids = [generate_tool_call_id() for _ in range(500)]
    assert len(set(ids)) == 500
    for call_id in ids:
        prefix, nanos, seq = call_id.split("_")
        assert prefix == "call"
        assert nanos.isdigit()
        assert seq.isdigit()
