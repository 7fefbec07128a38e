# renovatr/context_window.py
from __future__ import annotations

from typing import Optional, Sequence

from renovatr.conversation import ConversationContext, ConversationTurn, EntitySnapshot, Role

DEFAULT_SIBLING_CAP = 20


def approx_tokens(text: str) -> int:
    return max(1, len(text) // 4)


def _turn_tokens(turn: ConversationTurn) -> int:
    return approx_tokens(turn.text) + sum(approx_tokens(ref) for ref in turn.media_refs)


def _prune_to_token_cap(turns: list[ConversationTurn], max_tokens: int) -> list[ConversationTurn]:
    """Drop from the front until under the cap; the newest turn always survives."""
    tokens = [_turn_tokens(t) for t in turns]
    total = sum(tokens)
    i = 0
    while i < len(turns) - 1 and total > max_tokens:
        total -= tokens[i]
        i += 1
    return turns[i:]


def build_context_window(
    history: Sequence[ConversationTurn],
    entity: EntitySnapshot,
    window_size: int,
    *,
    call_site: str = "",
    sibling_cap: int = DEFAULT_SIBLING_CAP,
    max_tokens: Optional[int] = None,
) -> ConversationContext:
    """
    Keep the most recent `window_size` turns in their original order and derive the
    complexity signals used for tier selection. Older turns are dropped, never summarized.
    Total: every input yields a context.
    """
    window = list(history)[-window_size:] if window_size > 0 else []
    if max_tokens is not None and window:
        window = _prune_to_token_cap(window, max_tokens)

    user_turns = [t for t in window if t.role == Role.USER]
    siblings = tuple(entity.siblings or ())

    return ConversationContext(
        call_site=call_site,
        entity=entity,
        turns=tuple(window),
        siblings_for_prompt=siblings[:max(sibling_cap, 0)],
        has_media=any(t.has_media for t in user_turns),
        turn_count=len(history),
        entity_count=len(siblings),
        text_depth=sum(len(t.text) for t in user_turns),
        has_plan=(entity.fields or {}).get("materials") is not None,
    )


def build_context_for_call_site(history, entity, call_site) -> ConversationContext:
    return build_context_window(
        history,
        entity,
        call_site.window_size,
        call_site=call_site.name,
        sibling_cap=call_site.sibling_cap,
        max_tokens=call_site.max_tokens,
    )
