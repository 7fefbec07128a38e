"""
Tests for embedded directive parsing
"""
import pytest

from renovatr.directives import (
    DirectiveKind,
    PatchFields,
    RegeneratePlan,
    SuggestEntity,
    parse_directives,
)

TASK_KINDS = frozenset({DirectiveKind.REGENERATE_PLAN, DirectiveKind.PATCH_FIELDS})
PROJECT_KINDS = frozenset({DirectiveKind.SUGGEST_ENTITY})


@pytest.mark.parametrize("text", [
    "",
    "Plain reply with no commands.",
    "Braces {like this} and [brackets] stay put.",
    "  leading and trailing whitespace is preserved  \n",
    "Lowercase [suggest_task:{\"title\": \"x\"}] is not a token.",
])
def test_text_without_tokens_is_unchanged(text):
    result = parse_directives(text)
    assert result.display_text == text
    assert result.directives == []


def test_suggest_task_inner_payload():
    text = 'Your walls look tired. [SUGGEST_TASK:{"title": "Repaint living room walls", "room": "Living Room"}] Shall we?'
    result = parse_directives(text, PROJECT_KINDS)

    assert result.directives == [SuggestEntity(title="Repaint living room walls", room="Living Room")]
    assert result.display_text == "Your walls look tired. Shall we?"
    assert "SUGGEST_TASK" not in result.display_text


def test_suggest_task_payload_kept_exactly():
    text = '[SUGGEST_TASK:{"title": "  Fix   squeaky stairs ", "room": "Hallway & Landing"}]'
    result = parse_directives(text, PROJECT_KINDS)

    assert result.directives[0].to_dict() == {"title": "  Fix   squeaky stairs ", "room": "Hallway & Landing"}
    assert result.display_text == ""


def test_multiple_suggestions_are_all_kept():
    text = (
        'Two ideas:\n[SUGGEST_TASK:{"title": "Sand floor", "room": "Bedroom"}]\n'
        '[SUGGEST_TASK:{"title": "Replace skirting", "room": "Bedroom"}]'
    )
    result = parse_directives(text, PROJECT_KINDS)

    assert [d.title for d in result.directives] == ["Sand floor", "Replace skirting"]
    assert result.display_text == "Two ideas:"


def test_update_plan_payload_after_bracket():
    text = 'Good news, that lowers the cost. [UPDATE_PLAN] { "cost": "£150-£200" }\nAnything else?'
    result = parse_directives(text, TASK_KINDS)

    assert result.directives == [PatchFields(fields={"cost": "£150-£200"})]
    assert result.display_text == "Good news, that lowers the cost.\nAnything else?"


def test_update_plan_payload_on_next_line():
    text = 'Updated.\n[UPDATE_PLAN]\n{"time": "2 days"}'
    result = parse_directives(text, TASK_KINDS)

    assert result.directives == [PatchFields(fields={"time": "2 days"})]
    assert result.display_text == "Updated."


@pytest.mark.parametrize("text,expected", [
    ('Noted.\n[UPDATE_PLAN]\n```json\n{"cost": "£150"}\n```\nAnything else?', "Noted.\n\nAnything else?"),
    ('Noted.\n[UPDATE_PLAN] ```\n{"cost": "£150"}```', "Noted."),
    ('Noted. [UPDATE_PLAN]: {"cost": "£150"} Anything else?', "Noted. Anything else?"),
])
def test_update_plan_payload_fenced_or_after_colon(text, expected):
    result = parse_directives(text, TASK_KINDS)

    assert result.directives == [PatchFields(fields={"cost": "£150"})]
    assert result.display_text == expected
    assert "```" not in result.display_text
    assert result.dropped == []


def test_generate_plan_token():
    text = "I have everything I need. [GENERATE_PLAN]"
    result = parse_directives(text, TASK_KINDS)

    assert result.directives == [RegeneratePlan()]
    assert result.display_text == "I have everything I need."


def test_braces_inside_strings_do_not_end_payload():
    text = '[UPDATE_PLAN] {"hiring_info": "Use a pro if you see {damp} or }cracks{"} Done.'
    result = parse_directives(text, TASK_KINDS)

    assert result.directives == [PatchFields(fields={"hiring_info": "Use a pro if you see {damp} or }cracks{"})]
    assert result.display_text == "Done."


def test_nested_payload():
    text = '[UPDATE_PLAN] {"materials": [{"text": "Grout", "cost": 8}]}'
    result = parse_directives(text, TASK_KINDS)

    assert result.directives[0].fields == {"materials": [{"text": "Grout", "cost": 8}]}


def test_unbalanced_braces_never_raise():
    text = 'Here you go. [UPDATE_PLAN] {"cost": "£100"'
    result = parse_directives(text, TASK_KINDS)

    assert result.directives == []
    assert result.display_text == "Here you go."
    assert result.dropped and result.dropped[0][1] == "unbalanced braces"


def test_unbalanced_inner_payload_never_raises():
    text = 'Try this [SUGGEST_TASK:{"title": "Fix door", "room": "Hall"'
    result = parse_directives(text, PROJECT_KINDS)

    assert result.directives == []
    assert "SUGGEST_TASK" not in result.display_text


def test_payload_required_token_without_payload():
    text = "Let me note that. [UPDATE_PLAN] Thanks!"
    result = parse_directives(text, TASK_KINDS)

    assert result.directives == []
    assert result.display_text == "Let me note that. Thanks!"


def test_suggest_task_without_payload():
    result = parse_directives("Maybe [SUGGEST_TASK] later.", PROJECT_KINDS)

    assert result.directives == []
    assert result.display_text == "Maybe later."


@pytest.mark.parametrize("payload", [
    '{"title": "Paint"}',
    '{"title": "", "room": "Kitchen"}',
    '{"title": 12, "room": "Kitchen"}',
    '{}',
])
def test_incomplete_suggestion_is_dropped(payload):
    result = parse_directives(f"Idea: [SUGGEST_TASK:{payload}] ok", PROJECT_KINDS)

    assert result.directives == []
    assert result.display_text == "Idea: ok"


def test_garbage_payload_is_stripped_to_bracket():
    result = parse_directives("Sure [SUGGEST_TASK: paint the hall] now", PROJECT_KINDS)

    assert result.directives == []
    assert result.display_text == "Sure now"


def test_token_inside_quoted_text_is_stripped_without_error():
    text = 'The assistant might say "[GENERATE_PLAN]" at some point.'
    result = parse_directives(text, TASK_KINDS)

    assert "GENERATE_PLAN" not in result.display_text
    assert len(result.directives) == 1


def test_only_first_generate_and_update_are_kept():
    text = (
        '[UPDATE_PLAN] {"cost": "£10"} [GENERATE_PLAN] '
        '[UPDATE_PLAN] {"cost": "£20"} [GENERATE_PLAN] done'
    )
    result = parse_directives(text, TASK_KINDS)

    assert result.of_kind(DirectiveKind.PATCH_FIELDS) == [PatchFields(fields={"cost": "£10"})]
    assert len(result.of_kind(DirectiveKind.REGENERATE_PLAN)) == 1
    assert result.display_text == "done"


def test_malformed_first_patch_does_not_block_a_later_one():
    text = '[UPDATE_PLAN] {} [UPDATE_PLAN] {"time": "3 hours"}'
    result = parse_directives(text, TASK_KINDS)

    assert result.of_kind(DirectiveKind.PATCH_FIELDS) == [PatchFields(fields={"time": "3 hours"})]
    assert result.dropped[0][1] == "empty field map"
    assert result.display_text == ""


def test_kinds_not_permitted_are_stripped_and_ignored():
    text = 'Nice! [SUGGEST_TASK:{"title": "Paint", "room": "Hall"}] [GENERATE_PLAN]'
    task_result = parse_directives(text, TASK_KINDS)
    project_result = parse_directives(text, PROJECT_KINDS)

    assert task_result.directives == [RegeneratePlan()]
    assert project_result.directives == [SuggestEntity(title="Paint", room="Hall")]
    for result in (task_result, project_result):
        assert result.display_text == "Nice!"


def test_excess_blank_lines_are_collapsed():
    text = 'Intro\n\n[GENERATE_PLAN]\n\n\nOutro'
    result = parse_directives(text, TASK_KINDS)

    assert result.display_text == "Intro\n\nOutro"
