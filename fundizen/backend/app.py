from __future__ import annotations

import logging
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fundizen.core.api_client import FundizenAPIClient
from fundizen.core.errors import FundizenError

from .config import settings
from .routers import admin, donations, payments
from .services.identity import IdentityVerifier

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("fundizen.backend")


def create_app(
    http_client: Optional[httpx.AsyncClient] = None,
    identity: Optional[IdentityVerifier] = None,
) -> FastAPI:
    app = FastAPI(title=settings.title, version=settings.version)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(donations.router)
    app.include_router(payments.router)
    app.include_router(admin.router)

    # One connection pool for every request; per-request clones carry the caller's token.
    app.state.api = FundizenAPIClient(
        settings.api_base_url,
        timeout=settings.gateway_timeout,
        http_client=http_client,
    )
    app.state.identity = identity or IdentityVerifier()

    @app.exception_handler(FundizenError)
    async def _fundizen_error(request: Request, exc: FundizenError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed with %s: %s", request.method, request.url.path, exc.kind, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/api/health", tags=["health"])
    async def health():
        return {"status": "ok", "version": settings.version}

    @app.on_event("startup")
    async def _on_startup() -> None:
        logger.info("Bootstrapping Fundizen backend against %s", settings.api_base_url)

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        await app.state.api.close()

    return app


app = create_app()
