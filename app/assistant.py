"""
Family chat assistant.

Routes a parent's message to task drafting, analytics or a task overview.
Statistics come straight from the task table and the points ledger; the
model only phrases analytics answers and never sees more than the numbers.
"""
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.date_utils import local_today, utcnow
from app.errors import ForbiddenError
from app.families import build_family_context, list_members
from app.llm import ChatIntent, LLMClient
from app.logger import get_logger
from app.models import PointsHistory, Task, TaskStatus
from app.permissions import AuthContext, FamilyRole

logger = get_logger(__name__)

ACTIVE_STATUSES = (TaskStatus.AVAILABLE, TaskStatus.PENDING, TaskStatus.COMPLETED)
OVERDUE_STATUSES = (TaskStatus.AVAILABLE, TaskStatus.PENDING)

FOLLOW_UPS = {
    "en": {
        ChatIntent.CREATE_TASKS: ["Review the drafted tasks", "Create more tasks", "Check family stats"],
        ChatIntent.ANALYZE_DATA: ["View detailed statistics", "Create new tasks", "Check overdue tasks"],
        ChatIntent.QUERY_TASKS: ["Show today's tasks", "Show overdue tasks", "Create new task"],
        ChatIntent.GENERAL_CHAT: ["Create new tasks", "Check family stats", "View today's tasks"],
        ChatIntent.CLARIFICATION: ["Create a task", "View statistics", "Show today's tasks"],
    },
    "ru": {
        ChatIntent.CREATE_TASKS: ["Проверить черновики задач", "Создать еще задачи", "Посмотреть семейную статистику"],
        ChatIntent.ANALYZE_DATA: ["Посмотреть подробную статистику", "Создать новые задачи", "Проверить просроченные задачи"],
        ChatIntent.QUERY_TASKS: ["Показать задачи на сегодня", "Показать просроченные задачи", "Создать новую задачу"],
        ChatIntent.GENERAL_CHAT: ["Создать новые задачи", "Посмотреть статистику семьи", "Проверить сегодняшние задачи"],
        ChatIntent.CLARIFICATION: ["Создать задачу", "Посмотреть статистику", "Показать сегодняшние задачи"],
    },
}


def family_stats(db: Session, ctx: AuthContext, today: Optional[date] = None) -> Dict[str, Any]:
    """
    Per-member task counts and balances plus family totals.

    Overdue means unclaimed or unfinished work due before today; tasks
    waiting for review are active but never overdue.
    """
    today = today or local_today()
    week_ago = utcnow() - timedelta(days=7)

    tasks = (
        db.query(Task)
        .filter(Task.family_id == ctx.family_id, Task.deleted_at.is_(None))
        .all()
    )
    balances: Dict[int, int] = {}
    for user_id, points in (
        db.query(PointsHistory.user_id, PointsHistory.points)
        .filter(PointsHistory.family_id == ctx.family_id)
        .all()
    ):
        balances[user_id] = balances.get(user_id, 0) + points

    active = [t for t in tasks if t.status in ACTIVE_STATUSES]
    overdue = [t for t in active if t.status in OVERDUE_STATUSES and t.due_date < today]

    members: List[Dict[str, Any]] = []
    for member in list_members(db, ctx):
        own = [t for t in tasks if t.assigned_to == member.user_id]
        own_active = [t for t in own if t.status in ACTIVE_STATUSES]
        own_verified = [t for t in own if t.status == TaskStatus.VERIFIED]
        finished_or_open = len(own_active) + len(own_verified)
        members.append({
            "user_id": member.user_id,
            "name": member.user.name,
            "role": member.role.value,
            "active_tasks": len(own_active),
            "verified_tasks": len(own_verified),
            "overdue_tasks": len([t for t in own_active if t in overdue]),
            "completion_rate": round(len(own_verified) / finished_or_open, 2) if finished_or_open else 0.0,
            "points_balance": balances.get(member.user_id, 0),
        })

    children = [m for m in members if m["role"] == FamilyRole.CHILD.value]
    ranked = sorted(
        (m for m in children if m["active_tasks"] or m["verified_tasks"]),
        key=lambda m: (-m["completion_rate"], -m["verified_tasks"], m["name"]),
    )
    behind = sorted(
        (m for m in children if m["overdue_tasks"]),
        key=lambda m: (-m["overdue_tasks"], m["name"]),
    )

    return {
        "quick_stats": {
            "total_active_tasks": len(active),
            "due_today": len([t for t in active if t.due_date == today]),
            "overdue_tasks": len(overdue),
            "awaiting_review": len([t for t in active if t.status == TaskStatus.COMPLETED]),
            "completed_this_week": len([
                t for t in tasks
                if t.status == TaskStatus.VERIFIED and t.verified_at and t.verified_at >= week_ago
            ]),
            "top_performer": ranked[0]["name"] if ranked else None,
            "behind": [m["name"] for m in behind],
            "family_points": sum(balances.values()),
        },
        "members": members,
    }


def _overview_message(quick: Dict[str, Any], language: str) -> str:
    if language == "ru":
        lines = [
            "Вот краткий обзор задач:",
            "",
            f"• Всего активных задач: {quick['total_active_tasks']}",
            f"• Задач на сегодня: {quick['due_today']}",
            f"• Просроченных задач: {quick['overdue_tasks']}",
            f"• Ждут проверки: {quick['awaiting_review']}",
            f"• Выполнено на этой неделе: {quick['completed_this_week']}",
        ]
        if quick["top_performer"]:
            lines.append(f"• Лучший исполнитель: {quick['top_performer']}")
        if quick["behind"]:
            lines.append(f"• Отстают: {', '.join(quick['behind'])}")
    else:
        lines = [
            "Here's a quick overview of your tasks:",
            "",
            f"• Total active tasks: {quick['total_active_tasks']}",
            f"• Tasks for today: {quick['due_today']}",
            f"• Overdue tasks: {quick['overdue_tasks']}",
            f"• Awaiting review: {quick['awaiting_review']}",
            f"• Completed this week: {quick['completed_this_week']}",
        ]
        if quick["top_performer"]:
            lines.append(f"• Top performer: {quick['top_performer']}")
        if quick["behind"]:
            lines.append(f"• Behind on tasks: {', '.join(quick['behind'])}")
    return "\n".join(lines)


def _small_talk(text: str, language: str) -> str:
    lowered = text.lower()
    if language == "ru":
        if "привет" in lowered or "здравствуй" in lowered:
            return ("Привет! Я ваш семейный помощник. Я могу подготовить задачи, "
                    "проанализировать прогресс семьи или рассказать о текущих задачах.")
        if "спасибо" in lowered:
            return "Пожалуйста! Чем еще могу помочь?"
        return "Я помогаю с семейными задачами: создаю задачи, показываю статистику и отвечаю на вопросы."
    if "hello" in lowered or lowered.startswith("hi"):
        return ("Hello! I'm your family assistant. I can draft tasks, analyze family "
                "progress or tell you what's pending.")
    if "thank" in lowered:
        return "You're welcome! Anything else I can help with?"
    return "I help with family tasks: I can draft tasks, show statistics or answer questions about them."


def _clarification(language: str) -> str:
    if language == "ru":
        return (
            "Извините, я не совсем понял ваш запрос. Я могу помочь с:\n\n"
            "• Созданием задач (например: \"завтра Саша убери комнату\")\n"
            "• Анализом семейной статистики (например: \"как дела у детей?\")\n"
            "• Информацией о задачах (например: \"что нужно сделать сегодня?\")"
        )
    return (
        "Sorry, I didn't quite understand your request. I can help with:\n\n"
        "• Creating tasks (e.g. \"tomorrow Sarah cleans her room\")\n"
        "• Family statistics (e.g. \"how are the kids doing?\")\n"
        "• Task information (e.g. \"what needs to be done today?\")"
    )


def _reply(intent: ChatIntent, language: str, message: str, confidence: float,
           data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "message": message,
        "intent": intent.value,
        "language": language,
        "data": data or {},
        "follow_up_actions": FOLLOW_UPS[language][intent],
        "confidence": confidence,
        "timestamp": utcnow().isoformat(),
    }


def _draft_tasks(llm: LLMClient, text: str, family_context: Dict[str, Any],
                 language: str, today: date) -> Dict[str, Any]:
    result = llm.parse_tasks(text, family_context, today=today)
    drafts = result["parsed_tasks"]
    questions = result["clarification_questions"]
    data = {"parsed_tasks": drafts, "clarification_questions": questions}

    if questions:
        message = ("Я понял, что вы хотите создать задачи, но мне нужны уточнения:" if language == "ru"
                   else "I understand you want to create tasks, but I need some clarification:")
        return _reply(ChatIntent.CLARIFICATION, language, message, 0.8, data)
    if not drafts:
        message = ("Я не смог извлечь задачи из вашего сообщения. Можете уточнить?" if language == "ru"
                   else "I couldn't extract any tasks from your message. Could you be more specific?")
        return _reply(ChatIntent.CLARIFICATION, language, message, 0.3)

    count = len(drafts)
    if language == "ru":
        message = f"Готово! Я подготовил задач: {count}. Проверьте и сохраните их."
    else:
        message = f"Great! I've drafted {count} task{'' if count == 1 else 's'} for your family. Review and save them."
    return _reply(ChatIntent.CREATE_TASKS, language, message, 0.9, data)


def handle_chat(
    db: Session,
    ctx: AuthContext,
    llm: LLMClient,
    message: str,
    history: Optional[List[Dict[str, str]]] = None,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Answer one chat message from a parent.

    Task requests produce drafts (nothing is saved), analytics questions are
    answered by the model from `family_stats`, and task questions get a
    deterministic overview.
    """
    if not ctx.is_parent:
        raise ForbiddenError("Only parents can use the AI assistant")

    today = today or local_today()
    family_context = build_family_context(db, ctx)
    routing = llm.classify_intent(message, family_context, history=history, today=today)
    intent, language = routing["intent"], routing["language"]
    logger.info(
        f"AI chat - family {ctx.family_id}, user {ctx.user_id}, "
        f"intent {intent.value} ({routing['confidence']:.2f}), language {language}"
    )

    if intent == ChatIntent.CREATE_TASKS:
        return _draft_tasks(llm, message, family_context, language, today)

    if intent == ChatIntent.ANALYZE_DATA:
        stats = family_stats(db, ctx, today)
        answer = llm.answer_question(message, stats, language)
        return _reply(intent, language, answer["answer"], answer["confidence"], stats)

    if intent == ChatIntent.QUERY_TASKS:
        stats = family_stats(db, ctx, today)
        return _reply(intent, language, _overview_message(stats["quick_stats"], language), 0.8,
                      {"quick_stats": stats["quick_stats"]})

    if intent == ChatIntent.GENERAL_CHAT:
        return _reply(intent, language, _small_talk(message, language), 0.9)

    return _reply(ChatIntent.CLARIFICATION, language, _clarification(language), 0.5)
