from __future__ import annotations

from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sugarrush.api.error_handling import register_exception_handlers
from sugarrush.api.routes import router
from sugarrush.config import get_settings
from sugarrush.logging import get_logger, set_correlation_id
from sugarrush.service.runtime import Runtime

logger = get_logger(__name__)

__version__ = "0.1.0"


def _allowed_origins(configured: List[str]) -> List[str]:
    if configured:
        return configured
    # Local dev hosts only; no wildcard.
    return [
        "http://localhost",
        "http://localhost:3000",
        "http://localhost:8080",
        "http://127.0.0.1:3000",
    ]


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """Build the API around ``runtime``, constructing one from the environment if omitted.

    Serve with ``uvicorn sugarrush.app:create_app --factory``.
    """
    if runtime is None:
        runtime = Runtime(get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        try:
            await app.state.runtime.close()
            logger.info("runtime_cleanup_complete")
        except Exception as exc:
            logger.error("shutdown_failed", error=str(exc))

    app = FastAPI(title="SugarRush API", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(runtime.settings.cors_allow_origins),
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["X-Request-ID", "API-Version"],
        max_age=3600,
    )

    @app.middleware("http")
    async def add_security_headers(request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("Cache-Control", "no-store")
        response.headers.setdefault("API-Version", __version__)
        return response

    @app.middleware("http")
    async def add_correlation_id(request, call_next):
        """Tag the request with ``X-Request-ID`` (client supplied or generated).

        The id is bound for structured logging and echoed on the response.
        """
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    register_exception_handlers(app)
    app.include_router(router)
    return app
