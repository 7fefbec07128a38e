# renovatr/tier_selector.py
from __future__ import annotations

from renovatr.conversation import ConversationContext, ModelTier


def select_tier(context: ConversationContext, call_site) -> ModelTier:
    """
    Pure cost/capability decision. Economy unless the conversation carries media, the
    project is large, the conversation is long, or the call site needs strict structured
    output (only the Capable tier honors it reliably).

    Task chat may also escalate while the task still has no plan and the discussion has
    gone past `plan_pending_turns` turns.
    """
    if call_site.requires_schema:
        return ModelTier.CAPABLE
    if context.has_media:
        return ModelTier.CAPABLE
    if context.entity_count > call_site.max_entities:
        return ModelTier.CAPABLE
    if context.turn_count > call_site.max_turns:
        return ModelTier.CAPABLE
    if (
        call_site.plan_pending_turns is not None
        and not context.has_plan
        and context.turn_count > call_site.plan_pending_turns
    ):
        return ModelTier.CAPABLE
    return ModelTier.ECONOMY
