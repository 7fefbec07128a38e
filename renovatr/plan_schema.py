# renovatr/plan_schema.py
from __future__ import annotations

import json
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter, ValidationError

from renovatr.conversation import EntityKind


def _number_to_str(value):
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


LooseStr = Annotated[str, BeforeValidator(_number_to_str)]
NonEmptyStr = Annotated[str, BeforeValidator(_number_to_str), Field(min_length=1)]


class ChecklistItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: NonEmptyStr
    completed: bool = False


class MaterialItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: NonEmptyStr
    cost: Optional[float] = Field(None, description="Estimated cost in GBP (£)")
    link: Optional[str] = Field(None, description="A UK-specific shopping search link.")
    completed: bool = False


class ToolItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: NonEmptyStr
    cost: Optional[float] = Field(None, description="Estimated cost in GBP (£) if the user needs to buy it.")
    link: Optional[str] = Field(None, description="A UK-specific shopping search link.")
    owned: bool = False


class PlanArtifact(BaseModel):
    """Complete structured plan for a single task. Every field is required."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    guide: List[ChecklistItem] = Field(
        ..., min_length=1, description="A detailed, step-by-step checklist for completing the task."
    )
    materials: List[MaterialItem] = Field(
        ..., description="Materials needed, with estimated costs and shopping links."
    )
    tools: List[ToolItem] = Field(..., description="Tools required, with links for purchasing if needed.")
    safety: List[NonEmptyStr] = Field(
        ..., description="Crucial safety warnings and required personal protective equipment (PPE)."
    )
    cost: NonEmptyStr = Field(..., description="A brief, one-sentence summary of the total estimated cost.")
    time: NonEmptyStr = Field(
        ..., description="A realistic time estimate for one person (e.g. '4-6 hours', '2 days')."
    )
    hiring_info: NonEmptyStr = Field(
        ...,
        alias="hiringInfo",
        description="When to hire a professional and which qualifications to look for.",
    )

    def to_entity_fields(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=False)


def plan_schema_json() -> str:
    return json.dumps(PlanArtifact.model_json_schema(by_alias=False), indent=2)


# !##############################################
# ! Recognized fields for PatchFields
# !##############################################

TASK_FIELD_TYPES: Dict[str, Any] = {
    "title": NonEmptyStr,
    "room": NonEmptyStr,
    "status": Literal["To Do", "In Progress", "Complete"],
    "priority": int,
    "guide": List[ChecklistItem],
    "materials": List[MaterialItem],
    "tools": List[ToolItem],
    "safety": List[NonEmptyStr],
    "cost": LooseStr,
    "time": LooseStr,
    "hiring_info": LooseStr,
}

PROJECT_FIELD_TYPES: Dict[str, Any] = {
    "name": NonEmptyStr,
    "vision_statement": LooseStr,
}

FIELD_ALIASES = {
    "hiringInfo": "hiring_info",
    "visionStatement": "vision_statement",
}

_ADAPTERS: Dict[EntityKind, Dict[str, TypeAdapter]] = {
    EntityKind.TASK: {name: TypeAdapter(tp) for name, tp in TASK_FIELD_TYPES.items()},
    EntityKind.PROJECT: {name: TypeAdapter(tp) for name, tp in PROJECT_FIELD_TYPES.items()},
}


def recognized_fields(kind: EntityKind) -> frozenset:
    return frozenset(_ADAPTERS[kind].keys())


def validate_field_map(kind: EntityKind, field_map: Mapping[str, Any]) -> Tuple[Dict[str, Any], Dict[str, str]]:
    """
    Split a proposed field map into (accepted, rejected).

    accepted - recognized field names mapped to validated JSON-ready values
    rejected - original key -> reason, for diagnostics only
    """
    adapters = _ADAPTERS[kind]
    accepted: Dict[str, Any] = {}
    rejected: Dict[str, str] = {}

    for raw_key, value in (field_map or {}).items():
        key = FIELD_ALIASES.get(str(raw_key), str(raw_key))
        adapter = adapters.get(key)
        if adapter is None:
            rejected[str(raw_key)] = "unknown field"
            continue
        try:
            accepted[key] = adapter.dump_python(adapter.validate_python(value), mode="json")
        except ValidationError as e:
            rejected[str(raw_key)] = f"invalid value: {e.errors()[0].get('msg', 'validation error')}"

    return accepted, rejected
