"""
Response envelope shared by every route: {"success", "data"} on success,
{"success", "error": {"code", "message"}} on failure.
"""
from typing import Any

from fastapi.responses import JSONResponse

from app.errors import FamilyTasksError


def ok(data: Any = None) -> dict:
    return {"success": True, "data": data}


def error_response(error: FamilyTasksError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content={"success": False, "error": error.to_dict()})


def error_body(code: str, message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"code": code, "message": message}},
    )
