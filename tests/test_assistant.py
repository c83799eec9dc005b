# tests/test_assistant.py

from datetime import timedelta

import pytest

from app.assistant import family_stats, handle_chat
from app.errors import ForbiddenError
from app.llm import LLMClient
from app.tasks import TaskDraft, complete_task, create_task, verify_task

from .conftest import TODAY
from .fakes import FakeChatModel


@pytest.fixture()
def busy_family(db, family):
    """Erik has one overdue and one verified task, Sasha one awaiting review, plus an open bonus."""
    create_task(db, family.mom_ctx, TaskDraft(
        title="Clean room", points=5, due_date=TODAY - timedelta(days=2), assigned_to=family.erik.id,
    ))
    dishes = create_task(db, family.mom_ctx, TaskDraft(
        title="Dishes", points=10, due_date=TODAY, assigned_to=family.erik.id,
    ))
    complete_task(db, family.erik_ctx, dishes.id, today=TODAY)
    verify_task(db, family.mom_ctx, dishes.id, today=TODAY)
    homework = create_task(db, family.dad_ctx, TaskDraft(
        title="Homework", points=3, due_date=TODAY, assigned_to=family.sasha.id,
    ))
    complete_task(db, family.sasha_ctx, homework.id, today=TODAY)
    create_task(db, family.dad_ctx, TaskDraft(
        title="Wash car", points=20, due_date=TODAY + timedelta(days=1), is_bonus_task=True,
    ))
    return family


def test_family_stats_come_from_tasks_and_ledger(db, busy_family):
    stats = family_stats(db, busy_family.mom_ctx, TODAY)

    assert stats["quick_stats"] == {
        "total_active_tasks": 3,
        "due_today": 1,
        "overdue_tasks": 1,
        "awaiting_review": 1,
        "completed_this_week": 1,
        "top_performer": "Erik",
        "behind": ["Erik"],
        "family_points": 10,
    }
    erik = next(m for m in stats["members"] if m["name"] == "Erik")
    assert erik["points_balance"] == 10
    assert erik["completion_rate"] == 0.5
    assert erik["overdue_tasks"] == 1


def test_analytics_question_is_answered_from_stats(db, busy_family):
    model = FakeChatModel(
        '{"intent": "ANALYZE_DATA", "confidence": 0.9}',
        '{"answer": "Erik leads with 10 points but has one overdue task.", "confidence": 0.8}',
    )

    reply = handle_chat(db, busy_family.mom_ctx, LLMClient(chat_model=model), "Who is behind on tasks?", today=TODAY)

    assert reply["intent"] == "ANALYZE_DATA"
    assert reply["message"] == "Erik leads with 10 points but has one overdue task."
    assert reply["confidence"] == 0.8
    assert reply["data"]["quick_stats"]["behind"] == ["Erik"]
    _, stats_prompt = model.calls[1]
    assert '"family_points": 10' in stats_prompt.content


def test_task_question_gets_overview_without_second_model_call(db, busy_family):
    model = FakeChatModel('{"intent": "QUERY_TASKS", "confidence": 0.9}')

    reply = handle_chat(db, busy_family.dad_ctx, LLMClient(chat_model=model), "What's due today?", today=TODAY)

    assert len(model.calls) == 1
    assert reply["intent"] == "QUERY_TASKS"
    assert "• Overdue tasks: 1" in reply["message"]
    assert "• Behind on tasks: Erik" in reply["message"]
    assert reply["follow_up_actions"][0] == "Show today's tasks"


def test_task_request_returns_drafts(db, family):
    model = FakeChatModel(
        '{"intent": "CREATE_TASKS", "confidence": 0.95}',
        '{"parsed_tasks": [{"title": "Walk the dog", "assigned_to": "Erik", "due_date": "2025-03-13"}]}',
    )

    reply = handle_chat(db, family.mom_ctx, LLMClient(chat_model=model),
                        "Erik walks the dog tomorrow", today=TODAY)

    assert reply["intent"] == "CREATE_TASKS"
    [draft] = reply["data"]["parsed_tasks"]
    assert draft["assigned_to"] == family.erik.id
    assert reply["message"].startswith("Great! I've drafted 1 task ")


def test_unreadable_intent_asks_for_clarification(db, family):
    model = FakeChatModel("I think they want tasks")

    reply = handle_chat(db, family.mom_ctx, LLMClient(chat_model=model), "hmm", today=TODAY)

    assert len(model.calls) == 2
    assert reply["intent"] == "CLARIFICATION"
    assert reply["message"].startswith("Sorry, I didn't quite understand")


def test_russian_greeting_gets_russian_reply(db, family):
    model = FakeChatModel('{"intent": "GENERAL_CHAT", "confidence": 0.9}')

    reply = handle_chat(db, family.mom_ctx, LLMClient(chat_model=model), "Привет!", today=TODAY)

    assert reply["language"] == "ru"
    assert reply["message"].startswith("Привет!")
    system_message, _ = model.calls[0]
    assert "семейного помощника" in system_message.content


def test_recent_history_reaches_the_router(db, family):
    model = FakeChatModel('{"intent": "GENERAL_CHAT"}')
    history = [{"role": "user", "content": f"turn {n}"} for n in range(8)]

    handle_chat(db, family.mom_ctx, LLMClient(chat_model=model), "thanks", history=history, today=TODAY)

    _, user_message = model.calls[0]
    assert "USER: turn 7" in user_message.content
    assert "USER: turn 2" not in user_message.content


def test_children_cannot_chat(db, family):
    with pytest.raises(ForbiddenError):
        handle_chat(db, family.erik_ctx, LLMClient(chat_model=FakeChatModel()), "hello", today=TODAY)
