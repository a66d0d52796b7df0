from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from kurso.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    tenant_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from kurso.apps.api.response import API_VERSION
from kurso.apps.api.routes.health import router as health_router
from kurso.apps.api.routes.me import router as me_router
from kurso.apps.api.routes.modules import router as modules_router
from kurso.apps.api.routes.student_accounts import router as student_accounts_router
from kurso.apps.api.routes.subscriptions_ops import router as subscriptions_ops_router
from kurso.apps.api.routes.tenants import router as tenants_router
from kurso.core.config import get_settings, validate_auth_settings
from kurso.core.errors import KursoError
from kurso.core.logging import configure_logging
from kurso.persistence.guards import TenantPredicateError


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    # Refuse to serve bearer auth signed with the public placeholder secret.
    validate_auth_settings(settings)
    app = FastAPI(title=f"{settings.app_name} API", version=API_VERSION)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.debug(
            "request_done method=%s path=%s status=%s latency_ms=%.1f",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(KursoError)
    async def _domain_exception_handler(request: Request, exc: KursoError):
        return await domain_exception_handler(request, exc)

    @app.exception_handler(TenantPredicateError)
    async def _tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError):
        return await tenant_predicate_exception_handler(request, exc)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    # Scheduler trigger for the daily subscription sweep.
    app.include_router(subscriptions_ops_router, prefix=f"/{API_VERSION}")
    app.include_router(tenants_router, prefix=f"/{API_VERSION}")
    app.include_router(student_accounts_router, prefix=f"/{API_VERSION}")
    app.include_router(me_router, prefix=f"/{API_VERSION}")
    app.include_router(modules_router, prefix=f"/{API_VERSION}")

    return app


app = create_app()
