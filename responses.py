import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from workflow import NotFoundError, WorkflowError

logger = logging.getLogger(__name__)


def ok(data: Any = None, message: Optional[str] = None) -> dict:
    """
    Wrap a handler result in the API envelope:
        {"success": true, "message": ..., "data": ...}
    """
    body: dict = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def _fail(status_code: int, message: str, errors: Optional[list] = None, headers=None) -> JSONResponse:
    body: dict = {"success": False, "message": message}
    if errors is not None:
        body["errors"] = errors
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body),
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _fail(
        exc.status_code,
        str(exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]
    return _fail(status.HTTP_400_BAD_REQUEST, "Validation failed", errors=errors)


async def workflow_exception_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    code = (
        status.HTTP_404_NOT_FOUND
        if isinstance(exc, NotFoundError)
        else status.HTTP_400_BAD_REQUEST
    )
    return _fail(code, str(exc))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    # The raw message goes back to the client, as the API always has
    return _fail(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(WorkflowError, workflow_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
