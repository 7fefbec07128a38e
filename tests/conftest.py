"""
Pytest configuration and fixtures
"""
import json

import pytest

from renovatr.conversation import ContentPart, ConversationTurn, EntityRef, EntitySnapshot, Role
from renovatr.llm_client import Completion
from renovatr.orchestrator import Orchestrator
from renovatr.persistence import InMemoryPersistenceStore


VALID_PLAN = {
    "guide": [{"text": "Sand the walls", "completed": False}, {"text": "Apply two coats", "completed": False}],
    "materials": [{"text": "Emulsion paint 5L", "cost": 35.0, "link": "https://www.amazon.co.uk/s?k=emulsion+paint"}],
    "tools": [{"text": "Roller and tray", "cost": 12.5, "owned": False}],
    "safety": ["Ventilate the room", "Wear a dust mask while sanding"],
    "cost": "Around £50 in total.",
    "time": "1-2 days",
    "hiringInfo": "A competent DIYer can do this; hire a decorator for high ceilings.",
}


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeBackend:
    """
    Scripted GenerativeBackend. Each complete() pops the next scripted item:
    a string is returned as a Completion, an exception instance is raised.
    """

    def __init__(self, responses=None, cost_per_call=0.001):
        self.responses = list(responses or [])
        self.calls = []
        self.cost_per_call = cost_per_call

    def script(self, *responses):
        self.responses.extend(responses)
        return self

    @property
    def tiers(self):
        return [c["tier"] for c in self.calls]

    def complete(self, messages, tier, schema=None):
        self.calls.append({"messages": list(messages), "tier": tier, "schema": schema})
        if not self.responses:
            raise AssertionError("FakeBackend called more times than scripted")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return Completion(item, self.cost_per_call)


@pytest.fixture
def valid_plan_json():
    return json.dumps(VALID_PLAN)


@pytest.fixture
def store():
    s = InMemoryPersistenceStore()
    s.add_project(
        "p1",
        "Victorian terrace refresh",
        vision_statement="A bright, calm family home.",
        rooms=[{"name": "Living Room", "photos": []}, {"name": "Kitchen", "photos": ["media://kitchen-1"]}],
    )
    s.add_task("t1", "p1", "Paint the living room", "Living Room")
    return s


@pytest.fixture
def task_ref():
    return EntityRef.task("t1")


@pytest.fixture
def project_ref():
    return EntityRef.project("p1")


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def orchestrator(store, backend):
    return Orchestrator(store, backend)


def make_history(n, media_at=()):
    """n alternating user/assistant turns starting with the user."""
    turns = []
    for i in range(n):
        if i % 2 == 0:
            parts = [ContentPart(text=f"user message {i}")]
            if i in media_at:
                parts.append(ContentPart(media_ref=f"media://photo-{i}"))
            turns.append(ConversationTurn.user(parts, turn_id=f"turn-{i}"))
        else:
            turns.append(ConversationTurn(
                role=Role.ASSISTANT,
                parts=(ContentPart(text=f"assistant reply {i}"),),
                turn_id=f"turn-{i}",
            ))
    return turns


def make_snapshot(ref, fields=None, project=None, siblings_count=0):
    return EntitySnapshot(
        ref=ref,
        fields=fields or {},
        project=project or {"name": "Home", "vision_statement": "", "rooms": []},
        siblings=tuple({"title": f"Task {i}", "room": "Kitchen", "status": "To Do"} for i in range(siblings_count)),
    )
