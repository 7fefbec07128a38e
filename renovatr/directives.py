# renovatr/directives.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from renovatr.base_utils import load_fault_tolerant_json, logger
from renovatr.errors import MalformedPayload


class DirectiveKind(str, Enum):
    SUGGEST_ENTITY = "suggest_entity"
    REGENERATE_PLAN = "regenerate_plan"
    PATCH_FIELDS = "patch_fields"


@dataclass(frozen=True)
class SuggestEntity:
    title: str
    room: str
    kind = DirectiveKind.SUGGEST_ENTITY

    def to_dict(self) -> Dict[str, str]:
        return {"title": self.title, "room": self.room}


@dataclass(frozen=True)
class RegeneratePlan:
    kind = DirectiveKind.REGENERATE_PLAN


@dataclass(frozen=True)
class PatchFields:
    fields: Dict[str, Any]
    kind = DirectiveKind.PATCH_FIELDS


Directive = Union[SuggestEntity, RegeneratePlan, PatchFields]

ALL_DIRECTIVE_KINDS: FrozenSet[DirectiveKind] = frozenset(DirectiveKind)

TOKEN_KINDS = {
    "SUGGEST_TASK": DirectiveKind.SUGGEST_ENTITY,
    "GENERATE_PLAN": DirectiveKind.REGENERATE_PLAN,
    "UPDATE_PLAN": DirectiveKind.PATCH_FIELDS,
}

PAYLOAD_KINDS = frozenset({DirectiveKind.SUGGEST_ENTITY, DirectiveKind.PATCH_FIELDS})
SINGULAR_KINDS = frozenset({DirectiveKind.REGENERATE_PLAN, DirectiveKind.PATCH_FIELDS})

TOKEN_RE = re.compile(r"\[\s*(SUGGEST_TASK|GENERATE_PLAN|UPDATE_PLAN)\s*(?::\s*)?")
FENCE_OPEN_RE = re.compile(r"```[A-Za-z]*[ \t]*")
FENCE_CLOSE_RE = re.compile(r"\s*```")


@dataclass
class ParseResult:
    display_text: str
    directives: List[Directive] = field(default_factory=list)
    # (token text, reason) for every span that was stripped without yielding a directive
    dropped: List[Tuple[str, str]] = field(default_factory=list)

    def of_kind(self, kind: DirectiveKind) -> List[Directive]:
        return [d for d in self.directives if d.kind == kind]


@dataclass
class _Span:
    start: int
    end: int
    kind: DirectiveKind
    payload: Optional[str] = None
    error: Optional[str] = None


def _match_braces(text: str, start: int) -> Optional[int]:
    """
    text[start] must be '{'. Returns the index just past the matching '}', or None when the
    braces never balance. Braces inside double-quoted strings are ignored.
    """
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
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
                return i + 1
    return None


def _skip_ws(text: str, pos: int) -> int:
    while pos < len(text) and text[pos].isspace():
        pos += 1
    return pos


def _scan_span(text: str, match: re.Match) -> _Span:
    kind = TOKEN_KINDS[match.group(1)]
    pos = match.end()
    nxt = text[pos] if pos < len(text) else ""

    # Closed token: [TAG] optionally followed by a payload, possibly after ':' or inside a code fence
    if nxt == "]":
        end = pos + 1
        if kind not in PAYLOAD_KINDS:
            return _Span(match.start(), end, kind)
        brace_at = _skip_ws(text, end)
        if text.startswith(":", brace_at):
            brace_at = _skip_ws(text, brace_at + 1)
        fence = FENCE_OPEN_RE.match(text, brace_at)
        if fence:
            brace_at = _skip_ws(text, fence.end())
        if brace_at < len(text) and text[brace_at] == "{":
            brace_end = _match_braces(text, brace_at)
            if brace_end is None:
                return _Span(match.start(), len(text), kind, error="unbalanced braces")
            span_end = brace_end
            if fence:
                closing = FENCE_CLOSE_RE.match(text, brace_end)
                if closing:
                    span_end = closing.end()
            return _Span(match.start(), span_end, kind, payload=text[brace_at:brace_end])
        return _Span(match.start(), end, kind, error="missing payload")

    # Inner payload: [TAG:{...}]
    if nxt == "{":
        brace_end = _match_braces(text, pos)
        if brace_end is None:
            return _Span(match.start(), len(text), kind, error="unbalanced braces")
        end = _skip_ws(text, brace_end)
        end = end + 1 if end < len(text) and text[end] == "]" else brace_end
        if kind not in PAYLOAD_KINDS:
            return _Span(match.start(), end, kind)
        return _Span(match.start(), end, kind, payload=text[pos:brace_end])

    # Anything else is an unreadable token; strip it up to the closing bracket or end of line
    close_at = text.find("]", pos)
    eol_at = text.find("\n", pos)
    end = len(text)
    if close_at != -1:
        end = close_at + 1
    if eol_at != -1:
        end = min(end, eol_at)
    return _Span(match.start(), end, kind, error="unreadable payload")


def _build_directive(kind: DirectiveKind, payload: Optional[str]) -> Directive:
    """Raises MalformedPayload when the payload does not describe a directive of `kind`."""
    if kind == DirectiveKind.REGENERATE_PLAN:
        return RegeneratePlan()

    try:
        data = load_fault_tolerant_json(payload or "")
    except ValueError as e:
        raise MalformedPayload(f"payload is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedPayload(f"payload is a {type(data).__name__}, expected an object")

    if kind == DirectiveKind.SUGGEST_ENTITY:
        title = data.get("title")
        room = data.get("room")
        if not isinstance(title, str) or not title.strip():
            raise MalformedPayload("suggestion has no title")
        if not isinstance(room, str) or not room.strip():
            raise MalformedPayload("suggestion has no room")
        return SuggestEntity(title=title, room=room)

    if not data:
        raise MalformedPayload("empty field map")
    return PatchFields(fields=dict(data))


def _join_without_spans(text: str, spans: List[_Span]) -> str:
    pieces = []
    cursor = 0
    for span in spans:
        pieces.append(text[cursor:span.start])
        cursor = span.end
    pieces.append(text[cursor:])

    out = pieces[0]
    for piece in pieces[1:]:
        if out.endswith((" ", "\t")) and piece.startswith((" ", "\t")):
            piece = piece.lstrip(" \t")
        out += piece

    out = re.sub(r"[ \t]+\n", "\n", out)
    out = re.sub(r"\n{3,}", "\n\n", out)
    return out.strip()


def parse_directives(text: str, permitted: Optional[FrozenSet[DirectiveKind]] = None) -> ParseResult:
    """
    Extract the embedded directive tokens from an assistant reply.

    Every recognized token span is removed from the displayed text, whether or not it
    yields a directive. SuggestEntity may repeat; only the first RegeneratePlan and the
    first PatchFields are kept. Kinds outside `permitted` are stripped and ignored.
    Never raises on malformed input.
    """
    if not text:
        return ParseResult(display_text=text or "")

    permitted = ALL_DIRECTIVE_KINDS if permitted is None else frozenset(permitted)

    spans: List[_Span] = []
    pos = 0
    while True:
        match = TOKEN_RE.search(text, pos)
        if match is None:
            break
        span = _scan_span(text, match)
        spans.append(span)
        pos = max(span.end, match.end())

    if not spans:
        return ParseResult(display_text=text)

    result = ParseResult(display_text=_join_without_spans(text, spans))
    seen_singular = set()

    for span in spans:
        token = text[span.start:span.end]
        if span.kind not in permitted:
            result.dropped.append((token, f"{span.kind.value} not permitted here"))
            continue
        if span.error:
            result.dropped.append((token, span.error))
            continue
        if span.kind in SINGULAR_KINDS and span.kind in seen_singular:
            result.dropped.append((token, f"duplicate {span.kind.value}"))
            continue
        try:
            directive = _build_directive(span.kind, span.payload)
        except MalformedPayload as e:
            result.dropped.append((token, str(e)))
            continue
        if span.kind in SINGULAR_KINDS:
            seen_singular.add(span.kind)
        result.directives.append(directive)

    for token, reason in result.dropped:
        logger.log(logging.WARNING, f"Dropped directive token ({reason}): {token[:200]!r}")

    return result
