# renovatr/model_invoker.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import ValidationError

from renovatr.base_utils import clean_triple_backticks, color_print, load_fault_tolerant_json, logger, unsafe_string_format
from renovatr.conversation import ConversationContext, ConversationTurn, ModelTier, Role
from renovatr.errors import EmptyModelOutput, SchemaViolation
from renovatr.model_props import get_model_for_tier
from renovatr.plan_schema import PlanArtifact
from renovatr.prompts import prompt_variables


class MediaStore(Protocol):
    def resolve(self, media_ref: str) -> str:
        ...


@dataclass(frozen=True)
class InvocationResult:
    text: str
    artifact: Optional[PlanArtifact]
    tier: ModelTier
    model_name: str
    cost_usd: float = 0.0


class ModelInvoker:
    """
    Turns a ConversationContext into one backend call.

    Failures stay distinct: NetworkFailure / InvocationTimeout come straight from the backend,
    EmptyModelOutput and SchemaViolation are raised here. Nothing is retried and no
    placeholder text is ever returned.
    """

    def __init__(self, backend, media_store: Optional[MediaStore] = None):
        self.backend = backend
        self.media_store = media_store

    def render_instruction(self, context: ConversationContext, call_site) -> str:
        return unsafe_string_format(call_site.instruction_template, **prompt_variables(context)).strip()

    def _turn_to_message(self, turn: ConversationTurn) -> BaseMessage:
        if turn.role == Role.ASSISTANT:
            return AIMessage(content=turn.text)

        if not turn.has_media:
            return HumanMessage(content=turn.text)

        blocks: List[Dict[str, Any]] = []
        for part in turn.parts:
            if part.is_media:
                url = self.media_store.resolve(part.media_ref) if self.media_store else part.media_ref
                blocks.append({"type": "image_url", "image_url": {"url": url}})
            elif part.text:
                blocks.append({"type": "text", "text": part.text})
        return HumanMessage(content=blocks)

    def build_messages(self, context: ConversationContext, call_site) -> List[BaseMessage]:
        instruction = self.render_instruction(context, call_site)
        messages: List[BaseMessage] = [SystemMessage(content=instruction)]
        messages.extend(self._turn_to_message(t) for t in context.turns)

        if call_site.closing_user_message:
            messages.append(HumanMessage(content=call_site.closing_user_message))
        elif not context.turns:
            # Chat models need at least one user message after the system one
            messages.append(HumanMessage(content=instruction))
        return messages

    def _parse_artifact(self, text: str) -> PlanArtifact:
        try:
            data = load_fault_tolerant_json(clean_triple_backticks(text))
        except ValueError as e:
            raise SchemaViolation(f"Plan output is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise SchemaViolation(f"Plan output is a {type(data).__name__}, expected an object")
        try:
            return PlanArtifact.model_validate(data)
        except ValidationError as e:
            raise SchemaViolation(f"Plan output does not match the schema: {e}") from e

    def invoke(self, context: ConversationContext, call_site, tier: ModelTier) -> InvocationResult:
        messages = self.build_messages(context, call_site)
        schema = PlanArtifact.model_json_schema(by_alias=False) if call_site.requires_schema else None
        model_name = get_model_for_tier(tier)

        logger.debug(
            f"Invoking {call_site.name} on {model_name} ({tier.value}) with {len(messages)} messages\n"
            + json.dumps([{"type": m.type, "content": m.content} for m in messages], indent=2, default=str)
        )

        completion = self.backend.complete(messages, tier, schema=schema)
        text, cost_usd = completion.text, completion.cost_usd

        if text is None or not str(text).strip():
            raise EmptyModelOutput(f"{call_site.name}: model {model_name} returned no text")
        text = str(text).strip()

        artifact = None
        if call_site.requires_schema:
            artifact = self._parse_artifact(text)
            color_print(f"{call_site.name}: plan artifact validated", color="green", level=logging.DEBUG)

        return InvocationResult(text=text, artifact=artifact, tier=tier, model_name=model_name, cost_usd=cost_usd)
