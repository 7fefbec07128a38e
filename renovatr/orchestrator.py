# renovatr/orchestrator.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from renovatr.base_utils import color_print, logger
from renovatr.call_sites import (
    DEFAULT_CALL_SITES,
    PLAN_GENERATION,
    PROJECT_CHAT,
    PROJECT_SUMMARY,
    TASK_CHAT,
    TASK_INTRODUCTION,
    VISION_STATEMENT,
    CallSiteConfig,
)
from renovatr.context_window import build_context_for_call_site
from renovatr.conversation import ContentPart, ConversationTurn, EntityKind, EntityRef, ModelTier
from renovatr.cycle_guard import InFlightRegistry
from renovatr.directives import DirectiveKind, PatchFields, SuggestEntity, parse_directives
from renovatr.errors import CycleCancelled, EmptyModelOutput, ModelInvocationError, ModelOutputError, UnknownField
from renovatr.fallback_policy import FallbackPolicy
from renovatr.model_invoker import MediaStore, ModelInvoker
from renovatr.plan_schema import validate_field_map
from renovatr.tier_selector import select_tier


class CycleState(str, Enum):
    IDLE = "idle"
    CONTEXT_BUILT = "context_built"
    MODEL_INVOKED = "model_invoked"
    RESPONSE_PARSED = "response_parsed"
    DIRECTIVES_APPLIED = "directives_applied"
    PERSISTED = "persisted"


_TRANSITIONS = {
    CycleState.IDLE: {CycleState.CONTEXT_BUILT},
    CycleState.CONTEXT_BUILT: {CycleState.MODEL_INVOKED, CycleState.PERSISTED},
    CycleState.MODEL_INVOKED: {CycleState.RESPONSE_PARSED},
    CycleState.RESPONSE_PARSED: {CycleState.DIRECTIVES_APPLIED},
    CycleState.DIRECTIVES_APPLIED: {CycleState.PERSISTED},
    CycleState.PERSISTED: {CycleState.IDLE},
}


class _Cycle:
    """State of one submit_user_turn call. Any state may return to IDLE (abort)."""

    def __init__(self, entity_ref: EntityRef):
        self.entity_ref = entity_ref
        self.state = CycleState.IDLE

    def advance(self, new_state: CycleState) -> None:
        if new_state != CycleState.IDLE and new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal cycle transition {self.state.value} -> {new_state.value}")
        logger.debug(f"[cycle {self.entity_ref.key}] {self.state.value} -> {new_state.value}")
        self.state = new_state


@dataclass
class TurnResult:
    display_text: str
    pending_suggestions: List[Dict[str, str]] = field(default_factory=list)
    user_turn_id: str = ""
    assistant_turn_id: str = ""
    tier: Optional[ModelTier] = None
    fallback: bool = False
    plan_regenerated: bool = False
    patched_fields: List[str] = field(default_factory=list)
    cost_usd: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "display_text": self.display_text,
            "pending_suggestions": [dict(s) for s in self.pending_suggestions],
            "user_turn_id": self.user_turn_id,
            "assistant_turn_id": self.assistant_turn_id,
            "tier": self.tier.value if self.tier else None,
            "fallback": self.fallback,
            "plan_regenerated": self.plan_regenerated,
            "patched_fields": list(self.patched_fields),
            "cost_usd": self.cost_usd,
        }


def _coerce_parts(parts: Sequence[Any]) -> List[ContentPart]:
    out = []
    for p in parts:
        if isinstance(p, ContentPart):
            out.append(p)
        elif isinstance(p, str):
            out.append(ContentPart(text=p))
        else:
            out.append(ContentPart.from_dict(p))
    return out


class Orchestrator:
    """
    Drives one conversation cycle per user message:

        Idle -> ContextBuilt -> ModelInvoked -> ResponseParsed -> DirectivesApplied -> Persisted -> Idle

    Invocation/output failures skip straight to Persisted with one fallback turn.
    One cycle at a time per entity; a concurrent submit raises CycleInProgressError.
    """

    def __init__(
        self,
        store,
        backend,
        *,
        media_store: Optional[MediaStore] = None,
        call_sites: Optional[Mapping[str, CallSiteConfig]] = None,
        fallback_policy: Optional[FallbackPolicy] = None,
        in_flight: Optional[InFlightRegistry] = None,
    ):
        self.store = store
        self.invoker = ModelInvoker(backend, media_store=media_store)
        self.call_sites = dict(DEFAULT_CALL_SITES)
        self.call_sites.update(call_sites or {})
        self.fallback_policy = fallback_policy or FallbackPolicy()
        self.in_flight = in_flight or InFlightRegistry()

    def _chat_call_site(self, entity_ref: EntityRef) -> CallSiteConfig:
        if entity_ref.kind == EntityKind.TASK:
            return self.call_sites[TASK_CHAT.name]
        return self.call_sites[PROJECT_CHAT.name]

    def _build_context(self, entity_ref: EntityRef, call_site: CallSiteConfig):
        history = self.store.list_turns(entity_ref)
        entity = self.store.get_latest_entity(entity_ref)
        return build_context_for_call_site(history, entity, call_site)

    # !##############################################
    # ! Chat cycle
    # !##############################################

    def submit_user_turn(
        self,
        entity_ref: EntityRef,
        parts: Sequence[Any],
        client_turn_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> TurnResult:
        """
        Persist the user's message, get a reply, apply its directives and persist the reply.

        client_turn_id - id of the caller's optimistic pending turn; reused as the persisted id
        cancel_event   - when set before directives are applied, the cycle stops with
                         CycleCancelled and leaves no assistant turn and no side effects

        PersistenceError propagates. Model errors never do.
        """
        with self.in_flight.hold(entity_ref.key):
            return self._run_cycle(entity_ref, parts, client_turn_id, cancel_event)

    def _run_cycle(self, entity_ref, parts, client_turn_id, cancel_event) -> TurnResult:
        cycle = _Cycle(entity_ref)
        call_site = self._chat_call_site(entity_ref)

        user_turn = ConversationTurn.user(_coerce_parts(parts), turn_id=client_turn_id)
        self.store.append_turn(entity_ref, user_turn)
        context = self._build_context(entity_ref, call_site)
        cycle.advance(CycleState.CONTEXT_BUILT)

        if cancel_event is not None and cancel_event.is_set():
            cycle.advance(CycleState.IDLE)
            raise CycleCancelled(f"Cycle for {entity_ref.key} was cancelled")

        tier = select_tier(context, call_site)
        logger.info(
            f"[{call_site.name}] {entity_ref.key}: tier={tier.value} turns={context.turn_count} "
            f"entities={context.entity_count} media={context.has_media} plan={context.has_plan}"
        )

        try:
            invocation = self.invoker.invoke(context, call_site, tier)
        except (ModelInvocationError, ModelOutputError) as e:
            if cancel_event is not None and cancel_event.is_set():
                cycle.advance(CycleState.IDLE)
                raise CycleCancelled(f"Cycle for {entity_ref.key} was cancelled") from e
            fallback_turn = self.fallback_policy.fallback_turn(e, entity_ref)
            self.store.append_turn(entity_ref, fallback_turn)
            cycle.advance(CycleState.PERSISTED)
            cycle.advance(CycleState.IDLE)
            return TurnResult(
                display_text=fallback_turn.text,
                user_turn_id=user_turn.turn_id,
                assistant_turn_id=fallback_turn.turn_id,
                tier=tier,
                fallback=True,
            )
        cycle.advance(CycleState.MODEL_INVOKED)

        parsed = parse_directives(invocation.text, call_site.permitted_directives)
        cycle.advance(CycleState.RESPONSE_PARSED)

        if cancel_event is not None and cancel_event.is_set():
            cycle.advance(CycleState.IDLE)
            raise CycleCancelled(f"Cycle for {entity_ref.key} was cancelled")

        result = TurnResult(
            display_text=parsed.display_text,
            user_turn_id=user_turn.turn_id,
            tier=tier,
            cost_usd=invocation.cost_usd,
        )

        for directive in parsed.directives:
            if isinstance(directive, SuggestEntity):
                result.pending_suggestions.append(directive.to_dict())
            elif isinstance(directive, PatchFields):
                result.patched_fields = self._apply_patch(entity_ref, directive)
            elif directive.kind == DirectiveKind.REGENERATE_PLAN:
                result.plan_regenerated, plan_cost = self._regenerate_plan(entity_ref)
                result.cost_usd += plan_cost
        cycle.advance(CycleState.DIRECTIVES_APPLIED)

        assistant_turn = ConversationTurn.assistant(parsed.display_text, suggestions=result.pending_suggestions)
        self.store.append_turn(entity_ref, assistant_turn)
        result.assistant_turn_id = assistant_turn.turn_id
        cycle.advance(CycleState.PERSISTED)
        cycle.advance(CycleState.IDLE)
        return result

    def _apply_patch(self, entity_ref: EntityRef, directive: PatchFields) -> List[str]:
        accepted, rejected = validate_field_map(entity_ref.kind, directive.fields)
        if rejected:
            absorbed = UnknownField(f"ignored fields: {rejected}")
            color_print(
                f"[patch {entity_ref.key}] {type(absorbed).__name__}: {absorbed}",
                color="bright_yellow",
                level=logging.WARNING,
            )
        if not accepted:
            return []
        self.store.patch_entity_fields(entity_ref, accepted)
        logger.info(f"[patch {entity_ref.key}] updated fields: {sorted(accepted)}")
        return sorted(accepted)

    # !##############################################
    # ! Plan generation
    # !##############################################

    def regenerate_plan(self, task_ref: EntityRef) -> bool:
        """
        Fresh Capable-tier invocation with the plan-generation call site; persists the plan
        fields on success. Model failures are logged and leave the task untouched.
        """
        return self._regenerate_plan(task_ref)[0]

    def _regenerate_plan(self, task_ref: EntityRef) -> Tuple[bool, float]:
        """Returns (plan persisted, cost of the generation call)."""
        if task_ref.kind != EntityKind.TASK:
            logger.warning(f"Plan generation requested for non-task entity {task_ref.key}")
            return False, 0.0

        call_site = self.call_sites[PLAN_GENERATION.name]
        context = self._build_context(task_ref, call_site)
        tier = select_tier(context, call_site)
        try:
            invocation = self.invoker.invoke(context, call_site, tier)
        except (ModelInvocationError, ModelOutputError) as e:
            color_print(
                f"Plan generation for {task_ref.key} failed, plan left unchanged: {type(e).__name__}: {e}",
                color="red",
                level=logging.WARNING,
            )
            return False, 0.0

        self.store.patch_entity_fields(task_ref, invocation.artifact.to_entity_fields())
        color_print(f"Plan regenerated for {task_ref.key} on {invocation.model_name}", color="green")
        return True, invocation.cost_usd

    # !##############################################
    # ! One-shot generations
    # !##############################################

    def _one_shot(self, entity_ref: EntityRef, call_site_name: str) -> str:
        call_site = self.call_sites[call_site_name]
        context = self._build_context(entity_ref, call_site)
        return self.invoker.invoke(context, call_site, ModelTier.ECONOMY).text

    def introduce_task(self, task_ref: EntityRef) -> ConversationTurn:
        """
        Friendly opening message for a new task's chat, persisted as its first assistant turn.
        Model errors fall back to a fixed opener built from the task title.
        """
        try:
            text = self._one_shot(task_ref, TASK_INTRODUCTION.name)
        except (ModelInvocationError, ModelOutputError) as e:
            title = self.store.get_latest_entity(task_ref).fields.get("title") or "this task"
            color_print(
                f"Task introduction for {task_ref.key} failed: {type(e).__name__}: {e}",
                color="red",
                level=logging.WARNING,
            )
            text = f"Let's plan out how to '{title}'. What's your vision for this task?"

        turn = ConversationTurn.assistant(text)
        self.store.append_turn(task_ref, turn)
        return turn

    def summarize_project(self, project_ref: EntityRef) -> str:
        """Two or three sentence summary. Model errors propagate to the caller."""
        return self._one_shot(project_ref, PROJECT_SUMMARY.name)

    def distill_vision_statement(self, project_ref: EntityRef) -> str:
        """One-sentence vision from the recent project chat, persisted on the project."""
        text = self._one_shot(project_ref, VISION_STATEMENT.name)
        vision = text.replace('"', "").strip()
        if not vision:
            raise EmptyModelOutput(f"{VISION_STATEMENT.name}: reply held only quotes")
        if self.store.get_latest_entity(project_ref).fields.get("vision_statement") != vision:
            self.store.patch_entity_fields(project_ref, {"vision_statement": vision})
        return vision
