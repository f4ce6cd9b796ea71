from __future__ import annotations

import re
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from sessionward.api.error_handling import register_exception_handlers
from sessionward.api.routes import router
from sessionward.config import Settings
from sessionward.logging import get_logger
from sessionward.service.runtime import runtime_scope

logger = get_logger(__name__)

__version__ = "0.1.0"

_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def _resolve_request_id(header_value: Optional[str]) -> str:
    """Reuse a well-formed client X-Request-ID, otherwise mint one."""
    if header_value and _REQUEST_ID_PATTERN.match(header_value):
        return header_value
    return str(uuid.uuid4())


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the HTTP application.

    The runtime (revocation store plus services) is created when the app starts
    and closed when it stops; nothing is constructed at import time.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with runtime_scope(settings) as runtime:
            app.state.runtime = runtime
            logger.info("app_started", version=__version__)
            yield
        logger.info("app_stopped")

    app = FastAPI(title="sessionward", version=__version__, lifespan=lifespan)

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        correlation_id = _resolve_request_id(request.headers.get("X-Request-ID"))
        request.state.correlation_id = correlation_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        if request.url.path.startswith("/auth/"):
            response.headers.setdefault("Cache-Control", "no-store")
        return response

    register_exception_handlers(app)
    app.include_router(router)
    return app


app = create_app()
