"""FastAPI web application for nptma."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response

from nptma.api.gateway import GatewayRequest, LeadGateway
from nptma.api.runtime import Runtime
from nptma.config import load_settings

logger = logging.getLogger(__name__)

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """Build the application.

    Without an explicit runtime, settings are loaded from the environment;
    a missing required variable raises ConfigurationError and aborts startup.
    """
    if runtime is None:
        runtime = Runtime(load_settings())

    logging.basicConfig(level=getattr(logging, runtime.settings.log_level, logging.INFO))
    gateway = LeadGateway(runtime)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        runtime.database.init_db()
        logger.info(f"Users table {runtime.settings.db_table!r} ready")
        yield
        runtime.database.dispose()

    app = FastAPI(
        title="nptma API",
        description="Telegram Mini App authentication and lead gateway",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.runtime = runtime
    app.state.gateway = gateway

    # Gating (origin, method, route) happens inside the gateway so every
    # path, including unknown ones, gets the same error envelope.
    @app.api_route("/{path:path}", methods=ALL_METHODS, include_in_schema=False)
    async def gateway_endpoint(path: str, request: Request):
        body = await request.body()
        gateway_request = GatewayRequest(
            method=request.method,
            path=request.url.path,
            headers=dict(request.headers),
            body=body.decode("utf-8", errors="replace") if body else None,
        )
        # Storage and Telegram calls block; keep them off the event loop.
        result = await run_in_threadpool(gateway.handle, gateway_request)
        return Response(content=result.body, status_code=result.status_code, headers=result.headers)

    return app
