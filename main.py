from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.responses import error_body, error_response
from api.routes import ai, auth, families, health, notifications, points, tags, tasks, users
from app.config import settings
from app.db import init_db
from app.errors import FamilyTasksError
from app.logger import get_logger, setup_logging
from app.scheduler import start_scheduler, stop_scheduler

setup_logging(level=settings.log_level)
logger = get_logger(__name__)

HTTP_ERROR_CODES = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "VALIDATION_ERROR",
    422: "VALIDATION_ERROR",
}


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    logger.info("Starting application...")

    try:
        init_db()

        # Start the scheduler for outbox draining
        if settings.app_env != "test":
            start_scheduler()
            logger.info("Outbox scheduler started")
    except Exception as e:
        logger.error(f"Error during startup: {e}")

    yield

    logger.info("Shutting down application...")
    if settings.app_env != "test":
        stop_scheduler()
    logger.info("Application shutdown complete")


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(FamilyTasksError)
    async def family_tasks_error_handler(request: Request, exc: FamilyTasksError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        messages = []
        for err in exc.errors():
            field = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
            messages.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
        return error_body("VALIDATION_ERROR", "; ".join(messages) or "Invalid input data", 400)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        code = HTTP_ERROR_CODES.get(exc.status_code, "SERVER_ERROR")
        status_code = 400 if code == "VALIDATION_ERROR" else exc.status_code
        return error_body(code, str(exc.detail), status_code)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return error_body("SERVER_ERROR", "Internal server error", 500)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Family Tasks Backend",
        description="Family chore tracking with task verification, a points ledger and SMS notifications",
        version="1.0.0",
        lifespan=app_lifespan
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.cors_origins.split(",")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    for module in (health, auth, tasks, points, families, tags, notifications, users, ai):
        app.include_router(module.router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
