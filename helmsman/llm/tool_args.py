"""Tool-call argument normalization and id generation."""

import itertools
import json
import threading
import time
from typing import Any

EMPTY_ARGUMENTS = "{}"

_id_counter = itertools.count(1)
_id_lock = threading.Lock()


def generate_tool_call_id() -> str:
    """Return a process-unique id of the form ``call_<ns>_<counter>``."""
    with _id_lock:
        seq = next(_id_counter)
    return f"call_{time.monotonic_ns()}_{seq}"


def _canonical(obj: dict[str, Any]) -> tuple[dict[str, Any], str]:
    try:
        encoded = json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except ValueError:
        # NaN and infinities have no JSON spelling.
        return {}, EMPTY_ARGUMENTS
    return json.loads(encoded), encoded


def normalize_tool_arguments(raw: Any, _unwrapped: bool = False) -> tuple[dict[str, Any], str]:
    """Coerce provider-supplied arguments into a JSON object.

    Providers deliver arguments as an object, as JSON text, as JSON text
    wrapped once more in a JSON string, or as garbage. The result is always
    ``(parsed, canonical)`` where ``canonical`` is compact JSON of an object
    with sorted keys. Anything that is not an object becomes ``{}``.
    """
    if isinstance(raw, dict):
        return _canonical(raw)
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str):
        return {}, EMPTY_ARGUMENTS

    text = raw.strip()
    if not text or text == "null":
        return {}, EMPTY_ARGUMENTS

    if text[0] == '"':
        if _unwrapped:
            return {}, EMPTY_ARGUMENTS
        try:
            inner = json.loads(text)
        except ValueError:
            return {}, EMPTY_ARGUMENTS
        if not isinstance(inner, str):
            return {}, EMPTY_ARGUMENTS
        return normalize_tool_arguments(inner, _unwrapped=True)

    try:
        value = json.loads(text)
    except ValueError:
        return {}, EMPTY_ARGUMENTS
    if not isinstance(value, dict):
        return {}, EMPTY_ARGUMENTS
    return _canonical(value)


def canonical_arguments(raw: Any) -> str:
    """Shorthand for the canonical JSON text of ``raw``."""
    return normalize_tool_arguments(raw)[1]
