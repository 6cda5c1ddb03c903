from __future__ import annotations

from typing import Any

from cataloglens.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _error_response(description: str, code: str, message: str, **details: Any) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details or None),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: _error_response("Unauthorized", "AUTH_UNAUTHORIZED", "X-User-Email header is required"),
    403: _error_response("Forbidden", "AUTH_FORBIDDEN", "Admin role required for this operation"),
    404: _error_response("Not found", "NOT_FOUND", "Resource not found"),
    422: _error_response(
        "Validation error",
        "REQUEST_VALIDATION_ERROR",
        "Validation error",
        errors=[{"loc": ["body", "query"], "msg": "Field required", "type": "missing"}],
    ),
    500: _error_response("Internal server error", "INTERNAL_ERROR", "Internal server error"),
    503: _error_response("Service unavailable", "CATALOG_UNAVAILABLE", "Catalog search is unavailable"),
}
