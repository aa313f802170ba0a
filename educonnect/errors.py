"""Domain errors and the handlers that turn them into JSON responses."""
import json
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .app_logger import get_logger

logger = get_logger("errors")

GENERIC_ERROR = "Đã xảy ra lỗi không mong muốn"


class EduConnectError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthenticationRequired(EduConnectError):
    status_code = 401

    def __init__(self, message: str = "Yêu cầu xác thực"):
        super().__init__(message)


class PermissionDenied(EduConnectError):
    status_code = 403


class NotFound(EduConnectError):
    status_code = 404


class ValidationFailed(EduConnectError):
    status_code = 422


class Conflict(EduConnectError):
    status_code = 409


class DeadlinePassed(EduConnectError):
    status_code = 403


def _to_str(x: Any) -> str:
    if isinstance(x, (bytes, bytearray)):
        return x.decode("utf-8", "replace")
    return str(x)


def _validation_message(error: dict) -> str:
    msg = error.get("msg", "Invalid input")
    # pydantic prefixes custom ValueError messages
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    loc = [str(p) for p in error.get("loc", ()) if p not in ("body", "query", "path")]
    return f"{'.'.join(loc)}: {msg}" if loc else msg


async def _domain_error(request: Request, exc: EduConnectError):
    return JSONResponse({"ok": False, "error": exc.message}, status_code=exc.status_code)


async def _request_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = _validation_message(errors[0]) if errors else "Invalid input"
    detail = []
    for e in errors:
        detail.append({"loc": [_to_str(p) for p in e.get("loc", ())], "msg": _validation_message(e)})
    return JSONResponse({"ok": False, "error": first, "errors": detail}, status_code=422)


async def _http_exc_to_json(request: Request, exc: StarletteHTTPException):
    detail: Any = exc.detail
    try:
        json.dumps(detail)
    except (TypeError, ValueError):
        detail = _to_str(detail)
    return JSONResponse({"ok": False, "error": detail}, status_code=exc.status_code, headers=exc.headers)


async def _unexpected_exc(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"ok": False, "error": GENERIC_ERROR}, status_code=500)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EduConnectError, _domain_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(StarletteHTTPException, _http_exc_to_json)
    app.add_exception_handler(Exception, _unexpected_exc)
