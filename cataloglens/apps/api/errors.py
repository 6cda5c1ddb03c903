from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cataloglens.apps.api.response import error_response, is_versioned_request
from cataloglens.core.errors import (
    AdminRoleStoreError,
    CatalogLensError,
    CatalogUnavailableError,
    IntegrationUnavailableError,
    RelationshipStoreError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

# Residual domain errors that reach a route; everything else is recovered in the services.
_DOMAIN_ERRORS: tuple[tuple[type[CatalogLensError], int, str], ...] = (
    (CatalogUnavailableError, 503, "CATALOG_UNAVAILABLE"),
    (IntegrationUnavailableError, 503, "INTEGRATION_UNAVAILABLE"),
    (RelationshipStoreError, 503, "RELATIONSHIP_STORE_UNAVAILABLE"),
    (AdminRoleStoreError, 503, "ADMIN_ROLE_STORE_UNAVAILABLE"),
)


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # HTTPException detail may be a {code, message, ...} dict or a plain string.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def _http_error(request: Request, status_code: int, detail: Any, headers: dict[str, str] | None) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": detail}, status_code=status_code, headers=headers)
    code, message, details = _split_detail(detail, status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _http_error(request, exc.status_code, exc.detail, exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return _http_error(request, exc.status_code, exc.detail, exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.errors()}, status_code=422)
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": exc.errors()},
    )
    return JSONResponse(content=payload, status_code=422)


async def cataloglens_exception_handler(request: Request, exc: CatalogLensError) -> JSONResponse:
    for error_cls, status_code, code in _DOMAIN_ERRORS:
        if isinstance(exc, error_cls):
            logger.warning("request_failed path=%s code=%s error=%s", request.url.path, code, exc)
            if not is_versioned_request(request):
                return JSONResponse(content={"detail": str(exc) or code}, status_code=status_code)
            payload = error_response(request=request, code=code, message=str(exc) or code)
            return JSONResponse(content=payload, status_code=status_code)
    return await unhandled_exception_handler(request, exc)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # No stack traces in responses; the log keeps them.
    logger.error("request_unhandled_error path=%s", request.url.path, exc_info=exc)
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": "Internal Server Error"}, status_code=500)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
