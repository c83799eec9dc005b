from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.responses import ok
from app.assistant import handle_chat
from app.db import get_db
from app.errors import ForbiddenError, ValidationFailedError
from app.families import build_family_context
from app.llm import LLMClient, get_llm_client
from app.logger import get_logger
from app.permissions import AuthContext
from auth.dependencies import get_auth_context
from schemas.ai import ChatRequest, ParseTasksRequest

logger = get_logger(__name__)

router = APIRouter(prefix="/ai", tags=["AI Assistant"])


@router.post("/parse-tasks")
def parse_tasks(
    payload: ParseTasksRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    llm: LLMClient = Depends(get_llm_client),
):
    """
    Turn a free-text request into task drafts. Nothing is saved; the client
    submits the drafts it accepts to POST /api/tasks.
    """
    if not ctx.is_parent:
        raise ForbiddenError("Only parents can use AI task parsing")
    if not payload.input.strip():
        raise ValidationFailedError("Input text is required")

    family_context = build_family_context(db, ctx)
    result = llm.parse_tasks(
        payload.input.strip(),
        family_context,
        target_date=payload.target_date,
        default_points=payload.default_points,
    )
    logger.info(
        f"AI task parsing - family {ctx.family_id}, user {ctx.user_id}, "
        f"drafts: {len(result['parsed_tasks'])}"
    )
    return ok(result)


@router.post("/chat")
def chat(
    payload: ChatRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    llm: LLMClient = Depends(get_llm_client),
):
    """Conversational assistant: drafts tasks or answers questions about the family."""
    if not payload.message.strip():
        raise ValidationFailedError("Message is required")

    history = [turn.model_dump() for turn in payload.history]
    return ok(handle_chat(db, ctx, llm, payload.message.strip(), history=history))
