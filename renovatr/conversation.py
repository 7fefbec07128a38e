# renovatr/conversation.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple
from uuid import uuid4


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ModelTier(str, Enum):
    ECONOMY = "economy"
    CAPABLE = "capable"


class EntityKind(str, Enum):
    TASK = "task"
    PROJECT = "project"


@dataclass(frozen=True)
class EntityRef:
    kind: EntityKind
    entity_id: str

    @property
    def key(self) -> str:
        return f"{self.kind.value}::{self.entity_id}"

    @classmethod
    def task(cls, task_id: str) -> "EntityRef":
        return cls(EntityKind.TASK, str(task_id))

    @classmethod
    def project(cls, project_id: str) -> "EntityRef":
        return cls(EntityKind.PROJECT, str(project_id))


@dataclass(frozen=True)
class ContentPart:
    """Either a text fragment or an opaque media reference, never both."""

    text: Optional[str] = None
    media_ref: Optional[str] = None

    def __post_init__(self):
        if (self.text is None) == (self.media_ref is None):
            raise ValueError("ContentPart needs exactly one of text or media_ref")

    @property
    def is_media(self) -> bool:
        return self.media_ref is not None

    def to_dict(self) -> Dict[str, str]:
        if self.is_media:
            return {"media_ref": self.media_ref}
        return {"text": self.text}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ContentPart":
        media_ref = data.get("media_ref") or data.get("mediaRef")
        if media_ref:
            return cls(media_ref=str(media_ref))
        return cls(text=str(data.get("text") or ""))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ConversationTurn:
    role: Role
    parts: Tuple[ContentPart, ...]
    turn_id: str = field(default_factory=lambda: str(uuid4()))
    suggestions: Tuple[Dict[str, str], ...] = ()
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def text(self) -> str:
        return "\n".join(p.text for p in self.parts if p.text)

    @property
    def has_media(self) -> bool:
        return any(p.is_media for p in self.parts)

    @property
    def media_refs(self) -> Tuple[str, ...]:
        return tuple(p.media_ref for p in self.parts if p.is_media)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "turn_id": self.turn_id,
            "role": self.role.value,
            "parts": [p.to_dict() for p in self.parts],
            "created_at": self.created_at.isoformat(),
        }
        if self.suggestions:
            out["suggestions"] = [dict(s) for s in self.suggestions]
        return out

    @classmethod
    def user(cls, parts, turn_id: Optional[str] = None) -> "ConversationTurn":
        kwargs = {"turn_id": turn_id} if turn_id else {}
        return cls(role=Role.USER, parts=tuple(parts), **kwargs)

    @classmethod
    def assistant(cls, text: str, suggestions=()) -> "ConversationTurn":
        return cls(
            role=Role.ASSISTANT,
            parts=(ContentPart(text=text),),
            suggestions=tuple(dict(s) for s in suggestions),
        )


@dataclass(frozen=True)
class EntitySnapshot:
    """
    Latest persisted state of the entity a conversation concerns.

    fields   - the entity's own columns (task plan fields, or project name/vision)
    project  - owning project summary: name, vision_statement, rooms
    siblings - sibling entities (a project's tasks), full list
    """

    ref: EntityRef
    fields: Mapping[str, Any]
    project: Mapping[str, Any] = field(default_factory=dict)
    siblings: Tuple[Mapping[str, Any], ...] = ()


@dataclass(frozen=True)
class ConversationContext:
    call_site: str
    entity: EntitySnapshot
    turns: Tuple[ConversationTurn, ...]
    siblings_for_prompt: Tuple[Mapping[str, Any], ...]
    has_media: bool
    turn_count: int
    entity_count: int
    text_depth: int
    has_plan: bool
