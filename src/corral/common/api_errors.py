"""
Structured error bodies for the manager and worker APIs.
"""

import uuid

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .errors import CorralError
from .schemas import ErrorResponse


logger = structlog.get_logger(__name__)


def error_response(status_code: int, message: str) -> JSONResponse:
    body = ErrorResponse(http_status_code=status_code, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


def parse_task_id(raw: str) -> uuid.UUID:
    """Parse a task id path segment; raises ValueError when missing or malformed."""
    if not raw or not raw.strip():
        raise ValueError("no task id passed in request")
    try:
        return uuid.UUID(raw.strip())
    except ValueError:
        raise ValueError(f"invalid task id: {raw!r}")


def install_error_handlers(app: FastAPI) -> None:
    """Report validation and component errors as ErrorResponse bodies"""

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
            messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
        message = "; ".join(messages) or "invalid request body"
        logger.info("Rejected request body", path=request.url.path, error=message)
        return error_response(400, message)

    @app.exception_handler(CorralError)
    async def _corral_error(request: Request, exc: CorralError):
        logger.info("Request failed", path=request.url.path, error=exc.message)
        return error_response(exc.status_code, exc.message)
