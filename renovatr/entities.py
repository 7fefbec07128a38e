# renovatr/entities.py
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

from typing import TypeAlias

UUID: TypeAlias = str
Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite for local runs and tests)
JsonColumn = JSON().with_variant(JSONB(), "postgresql")


class TimestampMixin:
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class Project(Base, TimestampMixin):
    __tablename__ = "project"

    project_id: Mapped[UUID] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[UUID | None] = mapped_column(String(64), index=True)

    name: Mapped[str] = mapped_column(String, nullable=False, server_default=text("''"))
    vision_statement: Mapped[str | None] = mapped_column(Text)

    # [{"name": "Kitchen", "photos": ["media-ref", ...]}, ...]
    rooms: Mapped[list] = mapped_column(JsonColumn, nullable=False, default=lambda: [])

    def summary(self) -> dict:
        return {
            "name": self.name or "",
            "vision_statement": self.vision_statement or "",
            "rooms": list(self.rooms or []),
        }


class Task(Base, TimestampMixin):
    __tablename__ = "task"

    task_id: Mapped[UUID] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid4()))
    project_id: Mapped[UUID] = mapped_column(
        String(64),
        ForeignKey("project.project_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    title: Mapped[str] = mapped_column(String, nullable=False)
    room: Mapped[str] = mapped_column(String, nullable=False, server_default=text("''"))
    status: Mapped[str] = mapped_column(String(32), nullable=False, server_default=text("'To Do'"))
    priority: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))

    # Plan fields; empty until the first plan is generated
    guide: Mapped[list | None] = mapped_column(JsonColumn)
    materials: Mapped[list | None] = mapped_column(JsonColumn)
    tools: Mapped[list | None] = mapped_column(JsonColumn)
    safety: Mapped[list | None] = mapped_column(JsonColumn)
    cost: Mapped[str | None] = mapped_column(Text)
    time: Mapped[str | None] = mapped_column(Text)
    hiring_info: Mapped[str | None] = mapped_column(Text)

    FIELD_NAMES = (
        "title", "room", "status", "priority",
        "guide", "materials", "tools", "safety", "cost", "time", "hiring_info",
    )

    def fields(self) -> dict:
        return {name: getattr(self, name) for name in self.FIELD_NAMES}

    def sibling_summary(self) -> dict:
        return {"task_id": self.task_id, "title": self.title, "room": self.room, "status": self.status}


class ChatTurn(Base):
    __tablename__ = "chat_turn"

    # Autoincrement id is the append order
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    turn_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    entity_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    parts: Mapped[list] = mapped_column(JsonColumn, nullable=False)
    suggestions: Mapped[list | None] = mapped_column(JsonColumn)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_chat_turn_entity", "entity_kind", "entity_id", "id"),
    )
