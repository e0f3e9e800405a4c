"""Tool-call interop: stream delta merging and content-embedded tool calls.

Providers disagree on how they request tools. Structured calls arrive on
``Message.tool_calls`` (possibly fragmented across stream chunks); some
models instead write a bare JSON object into the text, and gpt-oss style
models use channel markup::

    <|channel|>analysis<|message|>...<|end|>
    <|start|>assistant<|channel|>commentary to=functions.wikipedia
    <|constrain|>json<|message|>{"input":"Tunguska incident"}<|call|>

Every path ends in the same canonical :class:`ToolCall`.
"""

import json
import re
from dataclasses import dataclass, field, replace
from enum import Enum, StrEnum

from helmsman.llm.tool_args import generate_tool_call_id, normalize_tool_arguments
from helmsman.llm.types import Message, ToolCall, ToolCallDelta
from helmsman.logging import get_logger

log = get_logger(__name__)

__all__ = [
    "ChannelMarkup",
    "SlotState",
    "StreamToolCallMerger",
    "ToolCallDialect",
    "detect_dialect",
    "extract_tool_calls",
    "generate_tool_call_id",
    "looks_like_channel_markup",
    "parse_bare_json_tool_calls",
    "parse_channel_markup",
    "resolve_content_tool_calls",
]


# Stream delta merger


class SlotState(Enum):
    PARTIAL = "partial"
    NAMED = "named"
    COMPLETE = "complete"


@dataclass
class _Slot:
    index: int | None = None
    id: str = ""
    type: str = ""
    name: str = ""
    fragments: list[str] = field(default_factory=list)
    quoted: bool | None = None
    state: SlotState = SlotState.PARTIAL

    @property
    def is_placeholder(self) -> bool:
        return self.state is SlotState.PARTIAL and not self.id

    def absorb(self, delta: ToolCallDelta) -> None:
        if self.state is SlotState.COMPLETE:
            raise RuntimeError("tool call slot already complete")
        if delta.id and not self.id:
            self.id = delta.id
        if delta.type and not self.type:
            self.type = delta.type
        if self.index is None and delta.index is not None:
            self.index = delta.index
        # The earliest name wins; later names on a named slot are ignored.
        if delta.name and not self.name:
            self.name = delta.name
            self.state = SlotState.NAMED
        if delta.arguments:
            self.fragments.append(self._decode_fragment(delta.arguments))

    def _decode_fragment(self, fragment: str) -> str:
        # Some providers JSON-quote every argument fragment. The first
        # fragment decides: a quoted fragment that opens an object means the
        # whole slot is quoted.
        if self.quoted is None:
            self.quoted = False
            unquoted = _unquote(fragment)
            if unquoted is not None and unquoted.lstrip().startswith("{"):
                self.quoted = True
        if self.quoted:
            unquoted = _unquote(fragment)
            if unquoted is not None:
                return unquoted
        return fragment

    def complete(self) -> ToolCall | None:
        self.state = SlotState.COMPLETE
        if not self.name:
            return None
        return ToolCall(
            id=self.id or generate_tool_call_id(),
            name=self.name,
            arguments=normalize_tool_arguments("".join(self.fragments))[1],
            type=self.type or "function",
        )


def _unquote(fragment: str) -> str | None:
    text = fragment.strip()
    if len(text) < 2 or text[0] != '"' or text[-1] != '"':
        return None
    try:
        value = json.loads(text)
    except ValueError:
        return None
    return value if isinstance(value, str) else None


class StreamToolCallMerger:
    """Reassemble streamed tool-call deltas into complete tool calls.

    Routing for each delta, first match wins:

    1. a known ``id`` routes to its slot;
    2. without an ``id``, a known ``name`` routes to the slot carrying it,
       then a known provider ``index`` routes to its slot;
    3. an ``id`` plus ``name`` promotes the trailing unnamed placeholder;
    4. an unseen ``id`` opens a new slot;
    5. a ``name`` with no open placeholder opens a new slot;
    6. anything else is appended to the most recent slot.
    """

    def __init__(self) -> None:
        self._slots: list[_Slot] = []
        self._finished = False

    @property
    def slots(self) -> list[tuple[SlotState, str, str]]:
        return [(slot.state, slot.id, slot.name) for slot in self._slots]

    def _open(self) -> _Slot:
        slot = _Slot()
        self._slots.append(slot)
        return slot

    def _route(self, delta: ToolCallDelta) -> _Slot:
        if delta.id:
            for slot in self._slots:
                if slot.id == delta.id:
                    return slot
        else:
            if delta.name:
                for slot in reversed(self._slots):
                    if slot.name == delta.name:
                        return slot
            if delta.index is not None:
                for slot in self._slots:
                    if slot.index == delta.index:
                        return slot

        last = self._slots[-1] if self._slots else None
        placeholder = last if last is not None and last.is_placeholder else None

        if delta.id and delta.name and placeholder is not None:
            return placeholder
        if delta.id:
            return self._open()
        if delta.name and placeholder is None:
            return self._open()
        if last is not None:
            return last
        return self._open()

    def feed(self, delta: ToolCallDelta) -> None:
        if self._finished:
            raise RuntimeError("merger already finished")
        self._route(delta).absorb(delta)

    def feed_many(self, deltas: list[ToolCallDelta]) -> None:
        for delta in deltas:
            self.feed(delta)

    def finish(self) -> list[ToolCall]:
        """Close the stream; nameless slots are dropped."""
        self._finished = True
        calls = []
        for slot in self._slots:
            call = slot.complete()
            if call is None:
                log.debug("Dropping nameless streamed tool call", fragments=len(slot.fragments))
                continue
            calls.append(call)
        return calls


# Content-embedded parsing


CHANNEL_MARKER = "<|channel|>"
MESSAGE_MARKER = "<|message|>"
START_MARKER = "<|start|>"
_BODY_TERMINATORS = ("<|end|>", "<|call|>", "<|return|>", START_MARKER, CHANNEL_MARKER)
_MARKERS = (CHANNEL_MARKER, MESSAGE_MARKER, "<|end|>", "<|call|>", START_MARKER)
_RECIPIENT_RE = re.compile(r"to=functions\.([A-Za-z0-9_\-]+)")


class ToolCallDialect(StrEnum):
    STRUCTURED = "structured"
    CHANNEL_MARKUP = "channel_markup"
    BARE_JSON = "bare_json"


@dataclass
class ChannelMarkup:
    analysis: str = ""
    commentary: list[str] = field(default_factory=list)
    final: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


def looks_like_channel_markup(text: str) -> bool:
    return any(marker in text for marker in _MARKERS)


def _balanced_object_end(text: str, start: int) -> int | None:
    """Index just past the ``}`` closing the object opened at ``start``."""
    depth = 0
    in_string = False
    escaped = False
    for pos in range(start, len(text)):
        ch = text[pos]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return pos + 1
    return None


def _first_object(text: str) -> dict | None:
    start = text.find("{")
    if start < 0:
        return None
    end = _balanced_object_end(text, start)
    if end is None:
        return None
    try:
        value = json.loads(text[start:end])
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def _body_end(text: str, start: int) -> int:
    ends = [pos for pos in (text.find(marker, start) for marker in _BODY_TERMINATORS) if pos >= 0]
    return min(ends) if ends else len(text)


def _commentary_call(name: str, body: str) -> ToolCall | None:
    arguments = _first_object(body)
    if arguments is None:
        return None
    return ToolCall(
        id=generate_tool_call_id(),
        name=name,
        arguments=normalize_tool_arguments(arguments)[1],
    )


def _headless_call(content: str) -> tuple[ToolCall, str] | None:
    """``to=functions.<name> ... <|message|>{...}`` with the channel header stripped."""
    match = _RECIPIENT_RE.search(content)
    if not match:
        return None
    message_pos = content.find(MESSAGE_MARKER, match.end())
    if message_pos < 0:
        return None
    body_start = message_pos + len(MESSAGE_MARKER)
    body = content[body_start:_body_end(content, body_start)]
    call = _commentary_call(match.group(1), body)
    return (call, body.strip()) if call is not None else None


def parse_channel_markup(content: str) -> ChannelMarkup:
    """Split channel markup into analysis, commentary and final parts.

    A commentary segment addressed ``to=functions.<name>`` becomes a tool
    call when its body contains a JSON object. Output whose leading
    ``<|start|>assistant<|channel|>`` tokens were stripped still yields the
    call as long as the recipient precedes ``<|message|>``.
    """
    result = ChannelMarkup()
    analysis: list[str] = []
    final: list[str] = []
    segment_start = 0
    pos = content.find(CHANNEL_MARKER)

    while pos >= 0:
        message_pos = content.find(MESSAGE_MARKER, pos)
        if message_pos < 0:
            break
        header = content[pos + len(CHANNEL_MARKER):message_pos]
        channel = header.split()[0] if header.split() else ""
        # The recipient may sit before the channel marker as well.
        start_pos = content.rfind(START_MARKER, segment_start, pos)
        recipient_area = content[start_pos if start_pos >= 0 else segment_start:message_pos]

        body_start = message_pos + len(MESSAGE_MARKER)
        body_end = _body_end(content, body_start)
        body = content[body_start:body_end].strip()

        if channel == "analysis":
            analysis.append(body)
        elif channel == "final":
            final.append(body)
        elif channel == "commentary":
            match = _RECIPIENT_RE.search(recipient_area)
            if match:
                call = _commentary_call(match.group(1), content[body_start:body_end])
                if call is not None:
                    result.tool_calls.append(call)
                result.commentary.append(body)
            elif body:
                # Commentary without a recipient is a user-facing preamble.
                result.commentary.append(body)

        segment_start = body_end
        pos = content.find(CHANNEL_MARKER, body_end)

    if not result.tool_calls:
        headless = _headless_call(content)
        if headless is not None:
            call, body = headless
            result.tool_calls.append(call)
            result.commentary.append(body)

    result.analysis = "\n".join(part for part in analysis if part)
    result.final = "\n".join(part for part in final if part)
    if not result.final and not result.tool_calls and CHANNEL_MARKER not in content:
        result.final = content.strip()
    return result


def _as_tool_call(value: object, require_arguments: bool) -> ToolCall | None:
    if not isinstance(value, dict):
        return None
    name = value.get("name")
    if not isinstance(name, str) or not name.strip():
        return None
    if require_arguments and not isinstance(value.get("arguments"), dict):
        return None
    call_id = value.get("id")
    return ToolCall(
        id=call_id if isinstance(call_id, str) and call_id else generate_tool_call_id(),
        name=name.strip(),
        arguments=normalize_tool_arguments(value.get("arguments"))[1],
    )


def parse_bare_json_tool_calls(content: str) -> list[ToolCall]:
    """Find ``{"name": ..., "arguments": {...}}`` objects in assistant text."""
    text = content.strip()
    if not text:
        return []
    try:
        whole = json.loads(text)
    except ValueError:
        whole = None
    call = _as_tool_call(whole, require_arguments=False)
    if call is not None:
        return [call]

    calls = []
    pos = text.find("{")
    while pos >= 0:
        end = _balanced_object_end(text, pos)
        if end is None:
            break
        try:
            value = json.loads(text[pos:end])
        except ValueError:
            value = None
        call = _as_tool_call(value, require_arguments=True)
        if call is not None:
            calls.append(call)
            pos = text.find("{", end)
        else:
            pos = text.find("{", pos + 1)
    return calls


def detect_dialect(message: Message, channel_markup_enabled: bool = False) -> ToolCallDialect | None:
    """Pick the dialect a message speaks; None for plain text-free turns."""
    if message.tool_calls:
        return ToolCallDialect.STRUCTURED
    text = message.content or ""
    if not text.strip():
        return None
    if channel_markup_enabled and looks_like_channel_markup(text):
        return ToolCallDialect.CHANNEL_MARKUP
    return ToolCallDialect.BARE_JSON


def resolve_content_tool_calls(
    message: Message, channel_markup_enabled: bool = False
) -> tuple[Message, ToolCallDialect | None]:
    """Return a copy of ``message`` with content-embedded tool calls lifted out.

    When calls are found they replace the text; channel markup without calls
    is reduced to its final channel.
    """
    dialect = detect_dialect(message, channel_markup_enabled)
    if dialect is None or dialect is ToolCallDialect.STRUCTURED:
        return message, dialect

    text = message.content or ""
    resolved = message.copy()
    if dialect is ToolCallDialect.CHANNEL_MARKUP:
        markup = parse_channel_markup(text)
        if markup.tool_calls:
            resolved.tool_calls = markup.tool_calls
            resolved.content = None
            return resolved, dialect
        text = markup.final
        resolved.content = text

    calls = parse_bare_json_tool_calls(text)
    if calls:
        resolved.tool_calls = calls
        resolved.content = None
        return resolved, ToolCallDialect.BARE_JSON
    return resolved, None if dialect is ToolCallDialect.BARE_JSON else dialect


def extract_tool_calls(message: Message, channel_markup_enabled: bool = False) -> list[ToolCall]:
    """Canonical tool calls for ``message`` whatever dialect it uses."""
    if message.tool_calls:
        return [
            replace(call, id=call.id or generate_tool_call_id()).normalized()
            for call in message.tool_calls
        ]
    resolved, _ = resolve_content_tool_calls(message, channel_markup_enabled)
    return resolved.tool_calls
