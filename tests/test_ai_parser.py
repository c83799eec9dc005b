# tests/test_ai_parser.py

import json
from datetime import timedelta

import pytest

from app.errors import FamilyTasksError
from app.llm import LLMClient, _parse_json_response, MalformedResponseError, detect_language, normalize_drafts
from app.member_matching import match_member

from .conftest import TODAY
from .fakes import FakeChatModel

MEMBERS = [
    {"id": 1, "name": "Mom", "role": "ADMIN_PARENT"},
    {"id": 3, "name": "Erik", "role": "CHILD"},
    {"id": 4, "name": "Саша", "role": "CHILD"},
]
CONTEXT = {"family_id": 7, "family_name": "Nordqvist", "members": MEMBERS}


def _reply(*tasks, questions=()):
    return json.dumps({"parsed_tasks": list(tasks), "clarification_questions": list(questions)})


def test_detect_language():
    assert detect_language("Erik should clean his room tomorrow") == "en"
    assert detect_language("Саша должна помыть посуду") == "ru"


def test_json_reply_in_markdown_fence_is_accepted():
    data = _parse_json_response('Here you go:\n```json\n{"parsed_tasks": []}\n```')
    assert data == {"parsed_tasks": []}

    with pytest.raises(MalformedResponseError):
        _parse_json_response("no json here")


@pytest.mark.parametrize("value, expected_id", [
    (3, 3),
    ("3", 3),
    ("erik", 3),
    ("Erick", 3),
    ("саша", 4),
    ("Grandpa", None),
    ("unassigned", None),
    (None, None),
])
def test_match_member(value, expected_id):
    match = match_member(value, MEMBERS)
    assert (match[0]["id"] if match else None) == expected_id


def test_normalize_drafts_clamps_and_resolves():
    raw = {"parsed_tasks": [
        {"title": "Clean room", "assigned_to": "Erik", "due_date": "tomorrow", "points": 250,
         "is_recurring": True, "recurrence_pattern": "daily", "confidence": 3},
        {"title": "Wash car", "assigned_to": 3, "is_bonus_task": True, "is_recurring": True,
         "recurrence_pattern": "EVERY_OTHER_DAY"},
    ]}

    result = normalize_drafts(raw, CONTEXT, TODAY, default_points=4)

    chore, bonus = result["parsed_tasks"]
    assert chore["assigned_to"] == 3
    assert chore["assignee_name"] == "Erik"
    assert chore["due_date"] == (TODAY + timedelta(days=1)).isoformat()
    assert chore["points"] == 100
    assert chore["recurrence_pattern"] == "DAILY"
    assert chore["confidence"] == 1.0

    assert bonus["assigned_to"] is None
    assert bonus["is_recurring"] is False
    assert bonus["recurrence_pattern"] is None
    assert bonus["points"] == 4
    assert bonus["due_date"] == TODAY.isoformat()
    assert result["clarification_questions"] == []


def test_unresolved_assignee_asks_a_question():
    raw = {"parsed_tasks": [{"title": "Walk the dog", "assigned_to": "Grandpa", "due_date": "2025-03-14"}]}

    result = normalize_drafts(raw, CONTEXT, TODAY)

    [draft] = result["parsed_tasks"]
    assert draft["assigned_to"] is None
    assert draft["due_date"] == "2025-03-14"
    [question] = result["clarification_questions"]
    assert "Walk the dog" in question["question"]
    assert question["options"] == ["Mom", "Erik", "Саша"]


def test_parse_tasks_retries_once_on_malformed_json():
    model = FakeChatModel("not json at all", _reply({"title": "Dishes", "assigned_to": 3, "points": 2}))
    client = LLMClient(chat_model=model)

    result = client.parse_tasks("Erik does the dishes", CONTEXT, today=TODAY)

    assert len(model.calls) == 2
    assert result["detected_language"] == "en"
    assert [d["title"] for d in result["parsed_tasks"]] == ["Dishes"]


def test_parse_tasks_gives_up_after_second_malformed_reply():
    model = FakeChatModel("still {broken")
    client = LLMClient(chat_model=model)

    result = client.parse_tasks("Саша моет посуду", CONTEXT, today=TODAY)

    assert len(model.calls) == 2
    assert result == {"parsed_tasks": [], "clarification_questions": [], "detected_language": "ru"}


def test_russian_input_uses_russian_prompt():
    model = FakeChatModel(_reply())
    LLMClient(chat_model=model).parse_tasks("Саша должна убрать комнату", CONTEXT, today=TODAY)

    system_message, user_message = model.calls[0]
    assert "семейных задач" in system_message.content
    assert "Саша" in user_message.content
    assert TODAY.isoformat() in user_message.content


def test_unconfigured_client_raises():
    client = LLMClient(api_key="")

    assert client.is_configured is False
    with pytest.raises(FamilyTasksError):
        client.parse_tasks("anything", CONTEXT)
