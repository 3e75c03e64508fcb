"""Map workflow errors onto HTTP responses.

Protean's own exceptions (``ValidationError`` and friends) are mapped by
``protean.integrations.fastapi.register_exception_handlers``. This module
adds the workflow's categories on top.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers

from sakura.shared.errors import ConflictError, ExternalError, NotFoundError, SecurityError, WorkflowError

logger = structlog.get_logger(__name__)

_STATUS_CODES = [
    (NotFoundError, 404),
    (ConflictError, 409),
    (SecurityError, 401),
    (ExternalError, 503),
]


def status_code_for(exc: WorkflowError) -> int:
    return next((code for cls, code in _STATUS_CODES if isinstance(exc, cls)), 400)


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    code = status_code_for(exc)
    if code >= 500:
        logger.warning("external_call_failed", path=request.url.path, error=type(exc).__name__)
    return JSONResponse(
        status_code=code,
        content={"error": type(exc).__name__, "messages": exc.messages},
    )


def register_error_handlers(app: FastAPI) -> None:
    register_exception_handlers(app)
    app.add_exception_handler(WorkflowError, workflow_error_handler)
