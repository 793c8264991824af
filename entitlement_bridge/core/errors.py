"""Error taxonomy and FastAPI handlers."""

import logging
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from entitlement_bridge.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    """Bad caller input. Terminal, no retry implied."""
    code = "validation_error"
    status_code = 400


class AuthError(AppError):
    """Webhook signature or required header failure."""
    code = "auth_error"
    status_code = 400


class DependencyError(AppError):
    """An external dependency answered badly. Surfaced as 500 so providers redeliver."""
    code = "dependency_error"
    status_code = 500

    def __init__(self, message: str, *, status: Optional[int] = None, body: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status = status
        self.body = body


class StoreError(DependencyError):
    code = "store_error"


class ProviderError(DependencyError):
    code = "provider_error"


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def error_payload(code: str, message: str, request_id: Optional[str]) -> dict:
    return {"ok": False, "error": message, "code": code, "request_id": request_id}


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = error_payload(exc.code, exc.message, rid)
    logger = logging.getLogger("entitlement_bridge")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    extra = {"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code}
    if isinstance(exc, DependencyError):
        extra["upstream_status"] = exc.status
    logger.log(log_level, "app.error", extra=extra)
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = error_payload(code, message, rid)
    logger = logging.getLogger("entitlement_bridge")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("entitlement_bridge")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:]) or "body"
    message = f"{field}: {first.get('msg', 'invalid')}"
    logger = logging.getLogger("entitlement_bridge")
    logger.warning("request.invalid", extra={"request_id": rid, "error_code": ValidationError.code, "status": 400})
    response = JSONResponse(status_code=400, content=error_payload(ValidationError.code, message, rid))
    response.headers["x-request-id"] = rid
    return response
