"""
Centralized error handling.

Every failure that reaches the application boundary is turned into the JSON
envelope ``{"error": {"message": ..., "code": ...}}``. Messages of 5xx
failures are always replaced with a generic one; the underlying error is only
written to the logs (with a stack trace outside production).
"""

import logging
import traceback
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .config import DeploymentMode
from .logger import request_context

logger = logging.getLogger("petcare_bff.errors")

GENERIC_SERVER_MESSAGE = "Internal Server Error"
GENERIC_CLIENT_MESSAGE = "Request failed"

ExceptionHandler = Callable[[Request, Exception], Awaitable[Response]]


class AppError(Exception):
    """
    Error raised by route handlers to select the response status and code.

    Attributes:
        message: Message shown to the client for 4xx statuses
        status: HTTP status code
        code: Optional machine-readable error code
    """

    def __init__(self, message: str, status: int = 500, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code


# =============================================================================
# Resolution Helpers
# =============================================================================

def resolve_status(exc: BaseException) -> int:
    """Status from ``status`` or ``status_code`` on the error, else 500."""
    for attr in ("status", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and value:
            return value
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def resolve_code(exc: BaseException) -> Optional[str]:
    code = getattr(exc, "code", None)
    return str(code) if code else None


def resolve_message(exc: BaseException, status_code: int) -> str:
    """
    Build the client-facing message.

    5xx statuses never expose the error's own text.
    """
    if status_code >= 500:
        return GENERIC_SERVER_MESSAGE

    message = getattr(exc, "message", None) or getattr(exc, "detail", None)
    if message is None and exc.args:
        message = exc.args[0]
    if not message or not isinstance(message, str):
        return GENERIC_CLIENT_MESSAGE
    return message


def error_body(message: str, code: Optional[str] = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"message": message}
    if code is not None:
        error["code"] = code
    return {"error": error}


# =============================================================================
# Handlers
# =============================================================================

async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    """404 for requests that matched no route."""
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=error_body("Not Found"))


def build_error_handler(mode: DeploymentMode, trusted_hops: int = 0):
    """
    Create the central error handler for the given deployment mode.

    Args:
        mode: Deployment mode; production omits stack traces from logs
        trusted_hops: Proxy hops used to resolve the client IP for log context

    Returns:
        Async exception handler usable with ``app.add_exception_handler``
    """
    include_stack = mode != DeploymentMode.PRODUCTION

    async def handle_error(request: Request, exc: Exception) -> JSONResponse:
        status_code = resolve_status(exc)
        code = resolve_code(exc)
        message = resolve_message(exc, status_code)

        stack = None
        if include_stack:
            stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

        logger.error(
            "request_error",
            extra={
                **request_context(request, trusted_hops),
                "status": status_code,
                "code": code,
                "error": str(exc),
                "stack": stack,
            },
        )

        headers = getattr(exc, "headers", None)
        return JSONResponse(
            status_code=status_code,
            content=error_body(message, code),
            headers=headers if isinstance(headers, dict) else None,
        )

    return handle_error


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body("Validation failed", "validation_error"),
    )


class UnhandledErrorMiddleware:
    """
    Turn any exception escaping the routes into the error envelope.

    Runs inside the other middleware, so the session is still committed and
    the request still logged. The exception is not re-raised unless the
    response had already started.
    """

    def __init__(self, app: ASGIApp, handler: ExceptionHandler) -> None:
        self.app = app
        self.handler = handler

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            if response_started:
                raise
            response = await self.handler(Request(scope), exc)
            await response(scope, receive, send)


def register_error_handlers(app: FastAPI, mode: DeploymentMode, trusted_hops: int = 0) -> None:
    """
    Wire the not-found and central error handlers into the application.

    Call before adding other middleware: the catch-all for unhandled
    exceptions must be the innermost middleware.
    """
    handle_error = build_error_handler(mode, trusted_hops)

    app.add_exception_handler(status.HTTP_404_NOT_FOUND, not_found_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, handle_error)
    app.add_exception_handler(AppError, handle_error)
    app.add_middleware(UnhandledErrorMiddleware, handler=handle_error)
