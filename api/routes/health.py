from fastapi import APIRouter, Depends

from api.responses import ok
from app.config import settings
from app.db import check_db_connection
from app.llm import LLMClient, get_llm_client
from app.scheduler import get_scheduler_status

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check():
    db_ok = check_db_connection()
    return ok({
        "status": "healthy" if db_ok else "degraded",
        "services": {
            "database": db_ok,
            "sms": settings.sms_configured,
            "outbox_scheduler": get_scheduler_status(),
        }
    })


@router.get("/ai/health")
def ai_health(llm: LLMClient = Depends(get_llm_client)):
    return ok({"configured": llm.is_configured, "model": llm.model_name})
