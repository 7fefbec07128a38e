"""
Tests for the model invoker
"""
import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from conftest import FakeBackend, make_snapshot
from renovatr.call_sites import PLAN_GENERATION, PROJECT_CHAT, TASK_INTRODUCTION
from renovatr.context_window import build_context_for_call_site
from renovatr.conversation import ContentPart, ConversationTurn, EntityRef, ModelTier
from renovatr.errors import EmptyModelOutput, InvocationTimeout, NetworkFailure, SchemaViolation
from renovatr.model_invoker import ModelInvoker


class DictMediaStore:
    def __init__(self, urls):
        self.urls = urls

    def resolve(self, media_ref):
        return self.urls[media_ref]


def _project_ctx(history):
    snapshot = make_snapshot(
        EntityRef.project("p1"),
        fields={"name": "Cottage"},
        project={"name": "Cottage", "vision_statement": "Cosy and warm", "rooms": [{"name": "Kitchen"}]},
        siblings_count=2,
    )
    return build_context_for_call_site(history, snapshot, PROJECT_CHAT)


def _task_ctx(history, call_site):
    snapshot = make_snapshot(
        EntityRef.task("t1"),
        fields={"title": "Tile splashback", "room": "Kitchen"},
        project={"name": "Cottage", "vision_statement": "", "rooms": []},
    )
    return build_context_for_call_site(history, snapshot, call_site)


def test_messages_follow_history_order():
    history = [
        ConversationTurn.user([ContentPart(text="Hi, I want a new kitchen")]),
        ConversationTurn.assistant("Lovely! Do you have photos?"),
        ConversationTurn.user([ContentPart(text="Here"), ContentPart(media_ref="media://k1")]),
    ]
    invoker = ModelInvoker(FakeBackend(), media_store=DictMediaStore({"media://k1": "https://cdn/k1.jpg"}))
    messages = invoker.build_messages(_project_ctx(history), PROJECT_CHAT)

    assert isinstance(messages[0], SystemMessage)
    assert "Cottage" in messages[0].content
    assert "- Task 0 (Kitchen)" in messages[0].content
    assert [type(m) for m in messages[1:]] == [HumanMessage, AIMessage, HumanMessage]
    assert messages[3].content == [
        {"type": "text", "text": "Here"},
        {"type": "image_url", "image_url": {"url": "https://cdn/k1.jpg"}},
    ]


def test_instruction_placeholders_are_filled():
    invoker = ModelInvoker(FakeBackend())
    instruction = invoker.render_instruction(_project_ctx([]), PROJECT_CHAT)

    assert "{project_name}" not in instruction
    assert "{existing_tasks}" not in instruction
    assert '[SUGGEST_TASK:{"title": "Task Title", "room": "Room Name"}]' in instruction


def test_no_turns_still_sends_a_user_message():
    invoker = ModelInvoker(FakeBackend())
    messages = invoker.build_messages(_task_ctx([], TASK_INTRODUCTION), TASK_INTRODUCTION)

    assert isinstance(messages[-1], HumanMessage)
    assert "Tile splashback" in messages[-1].content


def test_one_backend_call_per_invocation():
    backend = FakeBackend(["Sure, tell me more."])
    invoker = ModelInvoker(backend)

    result = invoker.invoke(_project_ctx([ConversationTurn.user([ContentPart(text="hi")])]), PROJECT_CHAT, ModelTier.ECONOMY)

    assert result.text == "Sure, tell me more."
    assert result.artifact is None
    assert result.model_name == "gemini-2.5-flash"
    assert result.cost_usd == pytest.approx(0.001)
    assert len(backend.calls) == 1
    assert backend.calls[0]["schema"] is None


@pytest.mark.parametrize("error", [NetworkFailure("down"), InvocationTimeout("slow")])
def test_backend_errors_propagate_unchanged(error):
    invoker = ModelInvoker(FakeBackend([error]))

    with pytest.raises(type(error)):
        invoker.invoke(_project_ctx([]), PROJECT_CHAT, ModelTier.ECONOMY)


@pytest.mark.parametrize("text", ["", "   \n"])
def test_empty_output(text):
    invoker = ModelInvoker(FakeBackend([text]))

    with pytest.raises(EmptyModelOutput):
        invoker.invoke(_project_ctx([]), PROJECT_CHAT, ModelTier.ECONOMY)


def test_plan_generation_validates_artifact(valid_plan_json):
    backend = FakeBackend([f"```json\n{valid_plan_json}\n```"])
    invoker = ModelInvoker(backend)

    result = invoker.invoke(_task_ctx([], PLAN_GENERATION), PLAN_GENERATION, ModelTier.CAPABLE)

    assert result.artifact is not None
    assert result.artifact.hiring_info.startswith("A competent DIYer")
    assert backend.calls[0]["schema"]["type"] == "object"
    assert isinstance(backend.calls[0]["messages"][-1], HumanMessage)


@pytest.mark.parametrize("text", [
    "I'm afraid I can't produce a plan right now.",
    '{"guide": [], "materials": [], "tools": [], "safety": [], "cost": "x", "time": "y", "hiring_info": "z"}',
    '{"guide": [{"text": "Step"}], "materials": []}',
    '["not", "an", "object"]',
])
def test_plan_generation_schema_violation(text):
    invoker = ModelInvoker(FakeBackend([text]))

    with pytest.raises(SchemaViolation):
        invoker.invoke(_task_ctx([], PLAN_GENERATION), PLAN_GENERATION, ModelTier.CAPABLE)
