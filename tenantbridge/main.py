# tenantbridge/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .errors import TenantBridgeError, error_response
from .logging_config import configure_logging
from .middleware.request_id import RequestIDMiddleware
from .middleware.structured_logging import StructuredLoggingMiddleware

from .routers.health import router as health_router
from .routers.organizations import router as organizations_router
from .routers.users import router as users_router
from .routers.buildings import router as buildings_router
from .routers.contracts import router as contracts_router
from .routers.tickets import router as tickets_router
from .routers.consumption import router as consumption_router
from .routers.documents import router as documents_router
from .routers.invitations import router as invitations_router
from .routers.dashboard import router as dashboard_router

API_PREFIX = "/api"

log = logging.getLogger("tenantbridge.api")


def _cors_origins() -> list[str]:
    v = (settings.cors_allow_origins or "").strip()
    if not v or v == "*":
        return ["*"]
    return [x.strip() for x in v.split(",") if x.strip()]


async def _handle_tenantbridge_error(request: Request, exc: TenantBridgeError) -> JSONResponse:
    if exc.http_status >= 500:
        log.error("request failed: %s", exc.kind, extra={"error_kind": exc.kind, "entity": exc.entity})
    return JSONResponse(status_code=exc.http_status, content=error_response(exc))


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(title="TenantBridge", version="0.1.0")

    app.add_middleware(StructuredLoggingMiddleware)
    # added last so it runs first and every log line carries the id
    app.add_middleware(RequestIDMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(TenantBridgeError, _handle_tenantbridge_error)

    # Core
    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(organizations_router, prefix=API_PREFIX)
    app.include_router(users_router, prefix=API_PREFIX)

    # Property tree
    app.include_router(buildings_router, prefix=API_PREFIX)
    app.include_router(contracts_router, prefix=API_PREFIX)

    # Operations
    app.include_router(tickets_router, prefix=API_PREFIX)
    app.include_router(consumption_router, prefix=API_PREFIX)
    app.include_router(documents_router, prefix=API_PREFIX)
    app.include_router(invitations_router, prefix=API_PREFIX)

    # Reporting
    app.include_router(dashboard_router, prefix=API_PREFIX)
    return app


app = create_app()
