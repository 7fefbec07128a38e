"""
Tests for plan schema and recognized-field validation
"""
from conftest import VALID_PLAN
from renovatr.conversation import EntityKind
from renovatr.plan_schema import PlanArtifact, recognized_fields, validate_field_map


def test_plan_artifact_accepts_either_hiring_info_spelling():
    by_alias = PlanArtifact.model_validate(VALID_PLAN)
    by_name = PlanArtifact.model_validate({**{k: v for k, v in VALID_PLAN.items() if k != "hiringInfo"},
                                           "hiring_info": "Hire a pro."})

    assert by_alias.hiring_info == VALID_PLAN["hiringInfo"]
    assert by_name.hiring_info == "Hire a pro."


def test_entity_fields_are_snake_case_and_json_ready():
    fields = PlanArtifact.model_validate(VALID_PLAN).to_entity_fields()

    assert set(fields) == {"guide", "materials", "tools", "safety", "cost", "time", "hiring_info"}
    assert fields["materials"][0]["cost"] == 35.0
    assert fields["tools"][0]["owned"] is False


def test_validate_field_map_splits_known_and_unknown():
    accepted, rejected = validate_field_map(EntityKind.TASK, {
        "cost": 150,
        "status": "In Progress",
        "hiringInfo": "Get a Gas Safe engineer",
        "budget": "£500",
        "user_id": "someone-else",
    })

    assert accepted == {"cost": "150", "status": "In Progress", "hiring_info": "Get a Gas Safe engineer"}
    assert set(rejected) == {"budget", "user_id"}


def test_validate_field_map_rejects_bad_types():
    accepted, rejected = validate_field_map(EntityKind.TASK, {
        "status": "Done-ish",
        "priority": "high",
        "safety": "wear gloves",
        "title": "",
    })

    assert accepted == {}
    assert set(rejected) == {"status", "priority", "safety", "title"}


def test_project_fields():
    accepted, rejected = validate_field_map(EntityKind.PROJECT, {"visionStatement": "Light and airy", "rooms": []})

    assert accepted == {"vision_statement": "Light and airy"}
    assert "rooms" in rejected
    assert recognized_fields(EntityKind.PROJECT) == frozenset({"name", "vision_statement"})
