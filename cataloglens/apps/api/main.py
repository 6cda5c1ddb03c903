from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
import json
import logging
import time
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from cataloglens.apps.api.deps import reset_services
from cataloglens.apps.api.errors import (
    cataloglens_exception_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from cataloglens.apps.api.response import (
    API_VERSION,
    REQUEST_ID_HEADER,
    envelope,
    is_enveloped,
    is_versioned_request,
)
from cataloglens.apps.api.routes.admin import router as admin_router
from cataloglens.apps.api.routes.agents import router as agents_router
from cataloglens.apps.api.routes.health import router as health_router
from cataloglens.apps.api.routes.relationships import router as relationships_router
from cataloglens.apps.api.routes.search import router as search_router
from cataloglens.apps.api.routes.tables import router as tables_router
from cataloglens.core.config import get_settings
from cataloglens.core.errors import CatalogLensError
from cataloglens.core.logging import configure_logging
from cataloglens.persistence.db import create_all


logger = logging.getLogger(__name__)

_LEGACY_SUNSET_DAYS = 90
_LEGACY_EXEMPT_PREFIXES = (
    "/v1",
    "/docs",
    "/openapi.json",
    "/redoc",
)
_ENVELOPE_EXEMPT_PREFIXES = (
    "/v1/openapi.json",
    "/v1/docs",
)
_ROUTERS = (
    health_router,
    search_router,
    tables_router,
    relationships_router,
    agents_router,
    admin_router,
)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    # sqlite is the local default and is never migrated; server databases run Alembic.
    if settings.relationship_store.lower() == "sql" and settings.database_url.startswith("sqlite"):
        await create_all()
    logger.info("app_started name=%s store=%s", settings.app_name, settings.relationship_store)
    yield
    await reset_services()


async def _wrap_envelope(response: Response, request_id: str) -> Response:
    # call_next hands back a streaming response; drain it to inspect the JSON body.
    raw_body = getattr(response, "body", None)
    if raw_body is None:
        raw_body = b"".join([chunk async for chunk in response.body_iterator])  # type: ignore[attr-defined]
    try:
        payload = json.loads(raw_body)
    except (TypeError, ValueError):
        return Response(
            content=raw_body,
            status_code=response.status_code,
            headers=dict(response.headers),
            media_type=response.media_type,
        )
    if is_enveloped(payload):
        return Response(
            content=raw_body,
            status_code=response.status_code,
            headers=dict(response.headers),
        )
    wrapped = JSONResponse(
        content=envelope(payload, request_id),
        status_code=response.status_code,
    )
    for key, value in response.headers.items():
        if key.lower() in {"content-length", "content-type"}:
            continue
        wrapped.headers[key] = value
    return wrapped


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="CatalogLens API", version=API_VERSION, lifespan=lifespan, docs_url=None, redoc_url=None)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        if (
            is_versioned_request(request)
            and not request.url.path.startswith(_ENVELOPE_EXEMPT_PREFIXES)
            and response.status_code < 400
            and response.headers.get("content-type", "").startswith("application/json")
        ):
            response = await _wrap_envelope(response, request_id)

        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        if not request.url.path.startswith(_LEGACY_EXEMPT_PREFIXES):
            sunset_at = datetime.now(timezone.utc) + timedelta(days=_LEGACY_SUNSET_DAYS)
            response.headers["Deprecation"] = "true"
            response.headers["Sunset"] = format_datetime(sunset_at)
            response.headers["Link"] = '</v1/docs>; rel="successor-version"'
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(CatalogLensError)
    async def _cataloglens_exception_handler(request: Request, exc: CatalogLensError):
        return await cataloglens_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    for router in _ROUTERS:
        app.include_router(router, prefix=f"/{API_VERSION}")
    # Unversioned aliases stay for older clients and are marked deprecated.
    for router in _ROUTERS:
        app.include_router(router, include_in_schema=False)

    @app.get("/v1/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/v1/docs", include_in_schema=False)
    async def v1_docs() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url="/v1/openapi.json", title=f"{settings.app_name} API v1")

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url="/v1/docs")

    return app


app = create_app()
