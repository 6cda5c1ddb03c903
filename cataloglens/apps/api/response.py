from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel


API_VERSION = "v1"
REQUEST_ID_HEADER = "X-Request-Id"

T = TypeVar("T")


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = API_VERSION


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


def get_request_id(request: Request) -> str:
    request_id = (
        getattr(request.state, "request_id", None)
        or request.headers.get(REQUEST_ID_HEADER)
        or str(uuid4())
    )
    request.state.request_id = request_id
    return request_id


def is_versioned_request(request: Request) -> bool:
    path = request.url.path
    return path == f"/{API_VERSION}" or path.startswith(f"/{API_VERSION}/")


def envelope(data: Any, request_id: str) -> dict[str, Any]:
    return {"data": data, "meta": ResponseMeta(request_id=request_id).model_dump()}


def is_enveloped(payload: Any) -> bool:
    """True when payload already carries a v1 ``{data, meta}`` envelope."""
    if not isinstance(payload, dict) or "data" not in payload:
        return False
    meta = payload.get("meta")
    return isinstance(meta, dict) and meta.get("api_version") == API_VERSION


def success_response(*, request: Request, data: Any) -> Any:
    # Legacy aliases keep returning the bare payload.
    if not is_versioned_request(request):
        return data
    return envelope(data, get_request_id(request))


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error = ErrorDetail(code=code, message=message, details=details)
    return {
        "error": error.model_dump(exclude_none=True),
        "meta": ResponseMeta(request_id=get_request_id(request)).model_dump(),
    }
