# renovatr/call_sites.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional

from renovatr import prompts
from renovatr.context_window import DEFAULT_SIBLING_CAP
from renovatr.directives import DirectiveKind
from renovatr.model_props import get_default_threshold

# Approximate tokens (chars / 4) of history sent per call; the newest turn is always kept
CONTEXT_TOKEN_CAP = int(os.getenv("CONTEXT_TOKEN_CAP", "32000"))


@dataclass(frozen=True)
class CallSiteConfig:
    """
    Everything that differs between the places the orchestrator talks to the model.

    window_size          - most recent turns sent to the model
    instruction_template - prompt with {placeholders} filled from the context
    permitted_directives - directive kinds honored in replies; others are stripped and ignored
    requires_schema      - reply must validate as a PlanArtifact (forces the Capable tier)
    plan_pending_turns   - escalate while the entity still has no plan past this many turns
    max_tokens           - approximate token cap on the windowed history (None disables it)
    closing_user_message - appended after the history when the call is not a reply to the user
    """

    name: str
    window_size: int
    instruction_template: str
    permitted_directives: FrozenSet[DirectiveKind] = frozenset()
    requires_schema: bool = False
    max_entities: int = field(default_factory=lambda: get_default_threshold("max_entities"))
    max_turns: int = field(default_factory=lambda: get_default_threshold("max_turns"))
    plan_pending_turns: Optional[int] = None
    sibling_cap: int = DEFAULT_SIBLING_CAP
    max_tokens: Optional[int] = CONTEXT_TOKEN_CAP
    closing_user_message: Optional[str] = None


TASK_CHAT = CallSiteConfig(
    name="task_chat",
    window_size=15,
    instruction_template=prompts.TASK_CHAT_PROMPT,
    permitted_directives=frozenset({DirectiveKind.REGENERATE_PLAN, DirectiveKind.PATCH_FIELDS}),
    plan_pending_turns=5,
)

PROJECT_CHAT = CallSiteConfig(
    name="project_chat",
    window_size=10,
    instruction_template=prompts.PROJECT_CHAT_PROMPT,
    permitted_directives=frozenset({DirectiveKind.SUGGEST_ENTITY}),
    sibling_cap=20,
)

PLAN_GENERATION = CallSiteConfig(
    name="plan_generation",
    window_size=20,
    instruction_template=prompts.PLAN_GENERATION_PROMPT,
    requires_schema=True,
    closing_user_message="Produce the complete plan for this task now.",
)

TASK_INTRODUCTION = CallSiteConfig(
    name="task_introduction",
    window_size=0,
    instruction_template=prompts.TASK_INTRODUCTION_PROMPT,
)

PROJECT_SUMMARY = CallSiteConfig(
    name="project_summary",
    window_size=0,
    instruction_template=prompts.PROJECT_SUMMARY_PROMPT,
    sibling_cap=30,
)

VISION_STATEMENT = CallSiteConfig(
    name="vision_statement",
    window_size=8,
    instruction_template=prompts.VISION_STATEMENT_PROMPT,
    closing_user_message="Write the vision statement now.",
)

DEFAULT_CALL_SITES: Dict[str, CallSiteConfig] = {
    cs.name: cs
    for cs in (TASK_CHAT, PROJECT_CHAT, PLAN_GENERATION, TASK_INTRODUCTION, PROJECT_SUMMARY, VISION_STATEMENT)
}
