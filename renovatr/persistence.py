# renovatr/persistence.py
from __future__ import annotations

import copy
import threading
from datetime import timezone
from typing import Any, Callable, Dict, List, Mapping, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from renovatr.base_utils import logger
from renovatr.conversation import ContentPart, ConversationTurn, EntityKind, EntityRef, EntitySnapshot, Role
from renovatr.entities import ChatTurn, Project, Task
from renovatr.errors import EntityNotFound, PersistenceError


class PersistenceStore(Protocol):
    def append_turn(self, entity_ref: EntityRef, turn: ConversationTurn) -> None:
        ...

    def list_turns(self, entity_ref: EntityRef) -> List[ConversationTurn]:
        ...

    def get_latest_entity(self, entity_ref: EntityRef) -> EntitySnapshot:
        ...

    def patch_entity_fields(self, entity_ref: EntityRef, field_map: Mapping[str, Any]) -> None:
        ...


PROJECT_FIELDS = ("name", "vision_statement")


# !##############################################
# ! In-memory store
# !##############################################

class InMemoryPersistenceStore:
    """Process-local store for tests and local runs. Same contract as SqlPersistenceStore."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._projects: Dict[str, Dict[str, Any]] = {}
        self._tasks: Dict[str, Dict[str, Any]] = {}
        self._turns: Dict[str, List[ConversationTurn]] = {}
        self._turn_ids: set = set()

    def add_project(self, project_id: str, name: str, vision_statement: str = "", rooms=()) -> EntityRef:
        with self._lock:
            self._projects[str(project_id)] = {
                "name": name,
                "vision_statement": vision_statement,
                "rooms": [dict(r) if isinstance(r, Mapping) else {"name": str(r)} for r in rooms],
            }
        return EntityRef.project(project_id)

    def add_task(self, task_id: str, project_id: str, title: str, room: str = "", **fields) -> EntityRef:
        with self._lock:
            if str(project_id) not in self._projects:
                raise EntityNotFound(f"project::{project_id} not found")
            self._tasks[str(task_id)] = {
                "project_id": str(project_id),
                "title": title,
                "room": room,
                "status": fields.pop("status", "To Do"),
                "priority": fields.pop("priority", len(self._tasks)),
                **fields,
            }
        return EntityRef.task(task_id)

    def _require(self, entity_ref: EntityRef) -> Dict[str, Any]:
        table = self._tasks if entity_ref.kind == EntityKind.TASK else self._projects
        row = table.get(entity_ref.entity_id)
        if row is None:
            raise EntityNotFound(f"{entity_ref.key} not found")
        return row

    def append_turn(self, entity_ref: EntityRef, turn: ConversationTurn) -> None:
        with self._lock:
            self._require(entity_ref)
            if turn.turn_id in self._turn_ids:
                raise PersistenceError(f"Turn {turn.turn_id} already exists")
            self._turn_ids.add(turn.turn_id)
            self._turns.setdefault(entity_ref.key, []).append(turn)

    def list_turns(self, entity_ref: EntityRef) -> List[ConversationTurn]:
        with self._lock:
            self._require(entity_ref)
            return list(self._turns.get(entity_ref.key, []))

    def _project_tasks(self, project_id: str) -> List[Dict[str, Any]]:
        rows = [(tid, t) for tid, t in self._tasks.items() if t["project_id"] == project_id]
        rows.sort(key=lambda item: item[1].get("priority", 0))
        return [
            {"task_id": tid, "title": t["title"], "room": t["room"], "status": t["status"]}
            for tid, t in rows
        ]

    def get_latest_entity(self, entity_ref: EntityRef) -> EntitySnapshot:
        with self._lock:
            row = self._require(entity_ref)
            if entity_ref.kind == EntityKind.TASK:
                project = self._projects.get(row["project_id"], {})
                fields = {k: v for k, v in row.items() if k != "project_id"}
                return EntitySnapshot(
                    ref=entity_ref,
                    fields=copy.deepcopy(fields),
                    project=copy.deepcopy(project),
                )
            return EntitySnapshot(
                ref=entity_ref,
                fields={k: row.get(k) for k in PROJECT_FIELDS},
                project=copy.deepcopy(row),
                siblings=tuple(self._project_tasks(entity_ref.entity_id)),
            )

    def patch_entity_fields(self, entity_ref: EntityRef, field_map: Mapping[str, Any]) -> None:
        with self._lock:
            row = self._require(entity_ref)
            row.update(copy.deepcopy(dict(field_map)))


# !##############################################
# ! SQL store
# !##############################################

def _turn_from_row(row: ChatTurn) -> ConversationTurn:
    created_at = row.created_at
    if created_at is not None and created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return ConversationTurn(
        role=Role(row.role),
        parts=tuple(ContentPart.from_dict(p) for p in (row.parts or [])),
        turn_id=row.turn_id,
        suggestions=tuple(dict(s) for s in (row.suggestions or [])),
        created_at=created_at,
    )


class SqlPersistenceStore:
    """
    SQLAlchemy implementation of the store contract.

    Every SQLAlchemyError is rolled back and re-raised as PersistenceError.
    Field patches lock the entity row so the merge happens on the latest persisted state.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def _run(self, what: str, fn):
        session = self.session_factory()
        try:
            result = fn(session)
            session.commit()
            return result
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"[DB] {what} failed: {e}")
            raise PersistenceError(f"{what} failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _require(self, session: Session, entity_ref: EntityRef, for_update: bool = False):
        if entity_ref.kind == EntityKind.TASK:
            query = session.query(Task).filter(Task.task_id == entity_ref.entity_id)
        else:
            query = session.query(Project).filter(Project.project_id == entity_ref.entity_id)
        if for_update:
            query = query.with_for_update()
        row = query.one_or_none()
        if row is None:
            raise EntityNotFound(f"{entity_ref.key} not found")
        return row

    def add_project(self, project_id: str, name: str, vision_statement: str = "", rooms=(), user_id=None) -> EntityRef:
        def _do(session: Session):
            session.add(Project(
                project_id=str(project_id),
                user_id=user_id,
                name=name,
                vision_statement=vision_statement,
                rooms=[dict(r) if isinstance(r, Mapping) else {"name": str(r)} for r in rooms],
            ))

        self._run("add_project", _do)
        return EntityRef.project(project_id)

    def add_task(self, task_id: str, project_id: str, title: str, room: str = "", **fields) -> EntityRef:
        def _do(session: Session):
            self._require(session, EntityRef.project(project_id))
            session.add(Task(task_id=str(task_id), project_id=str(project_id), title=title, room=room, **fields))

        self._run("add_task", _do)
        return EntityRef.task(task_id)

    def append_turn(self, entity_ref: EntityRef, turn: ConversationTurn) -> None:
        def _do(session: Session):
            self._require(session, entity_ref)
            session.add(ChatTurn(
                turn_id=turn.turn_id,
                entity_kind=entity_ref.kind.value,
                entity_id=entity_ref.entity_id,
                role=turn.role.value,
                parts=[p.to_dict() for p in turn.parts],
                suggestions=[dict(s) for s in turn.suggestions] or None,
                created_at=turn.created_at,
            ))

        self._run("append_turn", _do)

    def list_turns(self, entity_ref: EntityRef) -> List[ConversationTurn]:
        def _do(session: Session):
            self._require(session, entity_ref)
            rows = (
                session.query(ChatTurn)
                .filter(
                    ChatTurn.entity_kind == entity_ref.kind.value,
                    ChatTurn.entity_id == entity_ref.entity_id,
                )
                .order_by(ChatTurn.id.asc())
                .all()
            )
            return [_turn_from_row(r) for r in rows]

        return self._run("list_turns", _do)

    def get_latest_entity(self, entity_ref: EntityRef) -> EntitySnapshot:
        def _do(session: Session):
            row = self._require(session, entity_ref)
            if entity_ref.kind == EntityKind.TASK:
                project = session.query(Project).filter(Project.project_id == row.project_id).one_or_none()
                return EntitySnapshot(
                    ref=entity_ref,
                    fields=copy.deepcopy(row.fields()),
                    project=project.summary() if project else {},
                )
            tasks = (
                session.query(Task)
                .filter(Task.project_id == row.project_id)
                .order_by(Task.priority.asc(), Task.created_at.asc())
                .all()
            )
            return EntitySnapshot(
                ref=entity_ref,
                fields={"name": row.name, "vision_statement": row.vision_statement},
                project=row.summary(),
                siblings=tuple(t.sibling_summary() for t in tasks),
            )

        return self._run("get_latest_entity", _do)

    def patch_entity_fields(self, entity_ref: EntityRef, field_map: Mapping[str, Any]) -> None:
        def _do(session: Session):
            row = self._require(session, entity_ref, for_update=True)
            for key, value in field_map.items():
                if not hasattr(row, key):
                    raise PersistenceError(f"{entity_ref.key} has no column '{key}'")
                setattr(row, key, copy.deepcopy(value))

        self._run("patch_entity_fields", _do)
