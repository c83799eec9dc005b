"""
LLM interface using Groq API: turns free-text chore requests into task
drafts and backs the family chat assistant.
"""
import enum
import json
import re
from datetime import date, timedelta
from functools import lru_cache
from typing import Any, Dict, List, Optional

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_groq import ChatGroq
from pydantic import SecretStr
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from app.config import settings
from app.date_utils import format_date_iso, local_today, parse_due_date
from app.errors import FamilyTasksError
from app.logger import get_logger
from app.member_matching import match_member
from app.models import RecurrencePattern

logger = get_logger(__name__)

MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500
FALLBACK_POINTS = 5

_CYRILLIC = re.compile(r'[\u0400-\u04FF]')

SYSTEM_PROMPT_EN = """You are an expert family task parsing AI. Analyze natural language task descriptions and extract structured task information.

RULES:
1. Output ONLY valid JSON - no explanations, no markdown, no text before or after
2. Extract ALL tasks from the message
3. Assign tasks to family members using their exact id from the member list
4. Recurring tasks support ONLY daily, weekly or monthly repetition
5. "every other day", "twice a week", "every 3 days" are NOT supported: return no task for them and add a clarification question with alternatives
6. Bonus tasks are unassigned so anyone can claim them
7. Estimate points from complexity (1-10) unless a value is given

RESPONSE FORMAT:
{
  "parsed_tasks": [
    {
      "title": "Task name",
      "description": "Description or null",
      "assigned_to": member_id_or_null,
      "due_date": "YYYY-MM-DD",
      "points": 3,
      "is_recurring": false,
      "recurrence_pattern": "DAILY|WEEKLY|MONTHLY|null",
      "is_bonus_task": false,
      "due_date_only": false,
      "confidence": 0.95
    }
  ],
  "clarification_questions": [{"question": "...", "options": ["..."]}]
}"""

SYSTEM_PROMPT_RU = """Вы - эксперт ИИ по анализу семейных задач. Анализируйте описания задач на русском языке и извлекайте структурированную информацию о задачах.

ПРАВИЛА:
1. Отвечайте ТОЛЬКО валидным JSON - без пояснений и markdown
2. Извлеките ВСЕ задачи из сообщения
3. Назначайте задачи членам семьи по их точному id из списка
4. Повторения: ТОЛЬКО ежедневно, еженедельно или ежемесячно
5. "через день", "раз в 3 дня", "каждые 2 недели" НЕ поддерживаются: не создавайте задачу, добавьте вопрос уточнения с альтернативами
6. Бонусные задачи никому не назначены
7. Оценивайте баллы по сложности (1-10), если значение не указано

ФОРМАТ ОТВЕТА:
{
  "parsed_tasks": [
    {
      "title": "Название задачи",
      "description": "Описание или null",
      "assigned_to": id_или_null,
      "due_date": "YYYY-MM-DD",
      "points": 3,
      "is_recurring": false,
      "recurrence_pattern": "DAILY|WEEKLY|MONTHLY|null",
      "is_bonus_task": false,
      "due_date_only": false,
      "confidence": 0.95
    }
  ],
  "clarification_questions": [{"question": "...", "options": ["..."]}]
}"""

INTENT_PROMPT_EN = """You classify messages sent to a family task assistant. Decide what the parent wants.

INTENTS:
1. CREATE_TASKS - create new tasks ("Erik needs to clean his room tomorrow", "add weekly chores")
2. ANALYZE_DATA - insights, progress, comparisons, points ("how are the kids doing?", "who is behind?")
3. QUERY_TASKS - status of existing tasks ("what is due today?", "what's pending?")
4. CLARIFICATION - too vague to tell ("help", "what can you do?")
5. GENERAL_CHAT - greetings, thanks, unrelated small talk

Output ONLY valid JSON:
{"intent": "CREATE_TASKS|ANALYZE_DATA|QUERY_TASKS|CLARIFICATION|GENERAL_CHAT", "confidence": 0.85}"""

INTENT_PROMPT_RU = """Вы классифицируете сообщения для семейного помощника по задачам. Определите, чего хочет родитель.

НАМЕРЕНИЯ:
1. CREATE_TASKS - создать новые задачи ("завтра Саша убери комнату")
2. ANALYZE_DATA - анализ, прогресс, сравнение, баллы ("как дела у детей?", "кто отстает?")
3. QUERY_TASKS - состояние существующих задач ("что нужно сделать сегодня?")
4. CLARIFICATION - непонятный запрос ("помощь", "что ты умеешь?")
5. GENERAL_CHAT - приветствия, благодарности, посторонние темы

Отвечайте ТОЛЬКО валидным JSON:
{"intent": "CREATE_TASKS|ANALYZE_DATA|QUERY_TASKS|CLARIFICATION|GENERAL_CHAT", "confidence": 0.85}"""

ANALYTICS_PROMPT_EN = """You are a family task analytics assistant. Answer the parent's question IN ENGLISH using only the statistics provided.

- Be positive and encouraging, compare members fairly
- Use specific numbers and percentages
- Give one or two practical recommendations
- Format the answer as readable text with bullet points, never raw JSON

Output ONLY valid JSON: {"answer": "formatted text", "confidence": 0.9}"""

ANALYTICS_PROMPT_RU = """Вы - семейный ИИ-аналитик по задачам. Отвечайте на вопрос родителя НА РУССКОМ ЯЗЫКЕ, используя только предоставленную статистику.

- Будьте позитивными, сравнивайте членов семьи справедливо
- Используйте конкретные числа и проценты
- Дайте одну-две практические рекомендации
- Оформляйте ответ читаемым текстом с маркерами, без сырого JSON

Отвечайте ТОЛЬКО валидным JSON: {"answer": "форматированный текст", "confidence": 0.9}"""


class ChatIntent(str, enum.Enum):
    CREATE_TASKS = "CREATE_TASKS"
    ANALYZE_DATA = "ANALYZE_DATA"
    QUERY_TASKS = "QUERY_TASKS"
    CLARIFICATION = "CLARIFICATION"
    GENERAL_CHAT = "GENERAL_CHAT"


class MalformedResponseError(ValueError):
    """The model reply could not be read as the expected JSON object."""


def detect_language(text: str) -> str:
    """Return "ru" for input containing Cyrillic letters, otherwise "en"."""
    if _CYRILLIC.search(text or ""):
        return "ru"
    return "en"


def _parse_json_response(response_text: str) -> Dict[str, Any]:
    """
    Parse JSON from LLM response, handling markdown code blocks.

    Raises:
        MalformedResponseError: when no JSON object can be recovered
    """
    if not response_text or not response_text.strip():
        raise MalformedResponseError("Empty response from model")

    cleaned_text = response_text
    if "```json" in cleaned_text:
        cleaned_text = cleaned_text.split("```json")[1]
        if "```" in cleaned_text:
            cleaned_text = cleaned_text.split("```")[0]
    elif "```" in cleaned_text:
        parts = cleaned_text.split("```")
        if len(parts) >= 2:
            cleaned_text = parts[1]
    cleaned_text = cleaned_text.strip()

    try:
        data = json.loads(cleaned_text)
    except json.JSONDecodeError:
        # Try to extract JSON object from surrounding text
        start_idx = cleaned_text.find("{")
        end_idx = cleaned_text.rfind("}") + 1
        if start_idx < 0 or end_idx <= start_idx:
            raise MalformedResponseError("No JSON object in response")
        try:
            data = json.loads(cleaned_text[start_idx:end_idx])
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"Invalid JSON in response: {e}")

    if not isinstance(data, dict):
        raise MalformedResponseError("Response JSON is not an object")
    return data


def _clamp_int(value: Any, low: int, high: int, default: int) -> int:
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


def _clamp_confidence(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.5
    return max(0.0, min(1.0, number))


def _assignee_question(title: str, members: List[Dict[str, Any]], language: str) -> Dict[str, Any]:
    if language == "ru":
        question = f'Кому назначить задачу "{title}"?'
    else:
        question = f'Who should do "{title}"?'
    return {"question": question, "options": [member["name"] for member in members]}


def normalize_drafts(
    raw: Dict[str, Any],
    family_context: Dict[str, Any],
    today: date,
    target_date: Optional[date] = None,
    default_points: Optional[int] = None,
    language: str = "en",
) -> Dict[str, Any]:
    """
    Turn the model's JSON into drafts the task API accepts.

    Assignees are resolved against the family, dates parsed, points and
    confidence clamped, and unsupported recurrence dropped.
    """
    members = family_context.get("members", [])
    fallback_points = default_points if default_points is not None else FALLBACK_POINTS
    drafts: List[Dict[str, Any]] = []
    questions: List[Dict[str, Any]] = []

    for item in raw.get("clarification_questions") or []:
        if isinstance(item, dict) and item.get("question"):
            options = item.get("options") or []
            questions.append({"question": str(item["question"]), "options": [str(o) for o in options]})
        elif isinstance(item, str) and item.strip():
            questions.append({"question": item.strip(), "options": []})

    for item in raw.get("parsed_tasks") or []:
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "").strip()[:MAX_TITLE_LENGTH]
        if not title:
            continue

        description = item.get("description")
        description = str(description).strip()[:MAX_DESCRIPTION_LENGTH] if description else None

        due_date = parse_due_date(str(item["due_date"]), today=today) if item.get("due_date") else None
        due_date = due_date or target_date or today

        pattern = str(item.get("recurrence_pattern") or "").upper()
        is_recurring = bool(item.get("is_recurring")) and pattern in RecurrencePattern.__members__
        recurrence_pattern = pattern if is_recurring else None

        is_bonus = bool(item.get("is_bonus_task"))
        assigned_to = None
        assignee_name = None
        if not is_bonus:
            match = match_member(item.get("assigned_to"), members)
            if match:
                assigned_to = match[0]["id"]
                assignee_name = match[0]["name"]
            else:
                questions.append(_assignee_question(title, members, language))

        drafts.append({
            "title": title,
            "description": description,
            "assigned_to": assigned_to,
            "assignee_name": assignee_name,
            "due_date": format_date_iso(due_date),
            "points": _clamp_int(item.get("points"), 0, 100, fallback_points),
            "is_recurring": is_recurring,
            "recurrence_pattern": recurrence_pattern,
            "is_bonus_task": is_bonus,
            "due_date_only": bool(item.get("due_date_only")),
            "confidence": _clamp_confidence(item.get("confidence")),
        })

    return {"parsed_tasks": drafts, "clarification_questions": questions, "detected_language": language}


class LLMClient:
    """
    LLM interface using Groq API with LangChain.
    Parses free-text chore requests into structured task drafts.
    """

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None, chat_model=None):
        """Initialize the LLM client with Groq, or with an injected chat model."""
        self.model_name = model_name or settings.groq_model
        self.api_key = api_key if api_key is not None else settings.groq_api_key
        self._llm = chat_model

        if self._llm is None and self.api_key:
            self._llm = ChatGroq(
                model=self.model_name,
                temperature=settings.llm_temperature,
                api_key=SecretStr(self.api_key),
                max_tokens=1500,
                max_retries=3
            )
            logger.info(f"LLM client initialized with model: {self.model_name}")
        elif self._llm is None:
            logger.warning("Groq API key not configured")

    @property
    def is_configured(self) -> bool:
        """Check if the LLM is properly configured."""
        return self._llm is not None

    def _build_prompt(
        self,
        text: str,
        family_context: Dict[str, Any],
        today: date,
        target_date: Optional[date],
        default_points: Optional[int],
        language: str,
    ) -> str:
        members = json.dumps(
            [{"id": m["id"], "name": m["name"], "role": m["role"]} for m in family_context.get("members", [])],
            ensure_ascii=False,
            indent=2,
        )
        lines = [
            "СЕМЬЯ:" if language == "ru" else "FAMILY CONTEXT:",
            f"Members: {members}",
            f"Current Date: {today.isoformat()}",
            f"Tomorrow: {(today + timedelta(days=1)).isoformat()}",
        ]
        if target_date:
            lines.append(f"Target Date: {target_date.isoformat()}")
        if default_points is not None:
            lines.append(f"Default Points: {default_points}")
        lines.append("")
        lines.append(f'USER INPUT: "{text}"')
        lines.append("")
        lines.append("Respond with JSON only:")
        return "\n".join(lines)

    @retry(
        stop=stop_after_attempt(2),
        retry=retry_if_exception_type(MalformedResponseError),
        reraise=True,
    )
    def _invoke_json(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        messages = [
            SystemMessage(content=system_prompt),
            HumanMessage(content=user_prompt)
        ]
        response = self._llm.invoke(messages)
        content = response.content
        response_text = content if isinstance(content, str) else str(content)

        logger.debug(f"Raw LLM response: {response_text[:500]}")
        return _parse_json_response(response_text.strip())

    def parse_tasks(
        self,
        text: str,
        family_context: Dict[str, Any],
        target_date: Optional[date] = None,
        default_points: Optional[int] = None,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Parse a free-text request into task drafts.
        A reply that stays malformed after one retry yields no drafts.

        Args:
            text: The parent's request, English or Russian
            family_context: Family name and members (id, name, role)
            target_date: Due date to use when the text names none
            default_points: Points to use when the model gives none

        Returns:
            Dictionary with parsed_tasks, clarification_questions and detected_language
        """
        if not self.is_configured:
            raise FamilyTasksError("AI assistant not configured")

        today = today or local_today()
        language = detect_language(text)
        system_prompt = SYSTEM_PROMPT_RU if language == "ru" else SYSTEM_PROMPT_EN
        user_prompt = self._build_prompt(text, family_context, today, target_date, default_points, language)

        try:
            raw = self._invoke_json(system_prompt, user_prompt)
        except Exception as e:
            logger.error(f"Error parsing tasks with LLM: {e}")
            return {"parsed_tasks": [], "clarification_questions": [], "detected_language": language}

        result = normalize_drafts(raw, family_context, today, target_date, default_points, language)
        logger.info(
            f"Parsed {len(result['parsed_tasks'])} task draft(s), "
            f"{len(result['clarification_questions'])} question(s) for family {family_context.get('family_id')}"
        )
        return result

    def _history_lines(self, history: Optional[List[Dict[str, str]]]) -> List[str]:
        recent = (history or [])[-5:]
        if not recent:
            return []
        lines = ["", "CONVERSATION HISTORY:"]
        lines.extend(f"{turn['role'].upper()}: {turn['content']}" for turn in recent)
        return lines

    def classify_intent(
        self,
        text: str,
        family_context: Dict[str, Any],
        history: Optional[List[Dict[str, str]]] = None,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Decide which assistant flow a chat message belongs to.
        Falls back to CLARIFICATION when the reply cannot be read.
        """
        if not self.is_configured:
            raise FamilyTasksError("AI assistant not configured")

        today = today or local_today()
        language = detect_language(text)
        members = ", ".join(f"{m['name']} ({m['role']})" for m in family_context.get("members", []))
        lines = [
            f"Family members: {members}",
            f"Current Date: {today.isoformat()}",
            *self._history_lines(history),
            "",
            f'USER INPUT: "{text}"',
        ]

        try:
            raw = self._invoke_json(
                INTENT_PROMPT_RU if language == "ru" else INTENT_PROMPT_EN,
                "\n".join(lines),
            )
        except Exception as e:
            logger.error(f"Error classifying chat intent: {e}")
            return {"intent": ChatIntent.CLARIFICATION, "confidence": 0.3, "language": language}

        intent = str(raw.get("intent") or "").upper()
        return {
            "intent": ChatIntent(intent) if intent in ChatIntent.__members__ else ChatIntent.CLARIFICATION,
            "confidence": _clamp_confidence(raw.get("confidence")),
            "language": language,
        }

    def answer_question(self, text: str, stats: Dict[str, Any], language: str = "en") -> Dict[str, Any]:
        """
        Answer an analytics question from precomputed family statistics.

        Returns:
            Dictionary with answer and confidence
        """
        if not self.is_configured:
            raise FamilyTasksError("AI assistant not configured")

        user_prompt = "\n".join([
            "FAMILY STATISTICS:",
            json.dumps(stats, ensure_ascii=False, indent=2, default=str),
            "",
            f'USER QUESTION: "{text}"',
        ])
        try:
            raw = self._invoke_json(
                ANALYTICS_PROMPT_RU if language == "ru" else ANALYTICS_PROMPT_EN,
                user_prompt,
            )
        except Exception as e:
            logger.error(f"Error answering analytics question: {e}")
            raw = {}

        answer = str(raw.get("answer") or "").strip()
        if not answer:
            if language == "ru":
                answer = "У меня возникли проблемы с анализом данных. Пожалуйста, попробуйте еще раз."
            else:
                answer = "I'm having trouble analyzing the data right now. Please try again."
            return {"answer": answer, "confidence": 0.0}
        return {"answer": answer, "confidence": _clamp_confidence(raw.get("confidence"))}


@lru_cache()
def get_llm_client() -> LLMClient:
    """Get or create the LLM client singleton."""
    return LLMClient()
