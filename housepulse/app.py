from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from housepulse.api.cors import cors_headers
from housepulse.api.error_handling import register_exception_handlers
from housepulse.api.routes import router, runtime_dependency
from housepulse.config import Settings
from housepulse.logging import get_logger, set_correlation_id
from housepulse.service import runtime as runtime_module
from housepulse.service.runtime import Runtime

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3


def _active_runtime(app: FastAPI) -> Optional[Runtime]:
    # Shutdown must not build a runtime that was never used
    return getattr(app.state, "runtime", None) or runtime_module.runtime


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    yield
    runtime = _active_runtime(app)
    if runtime is None:
        return
    try:
        await runtime.close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


def create_app(runtime: Optional[Runtime] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the HTTP app.

    A ``runtime`` passed here serves every request; without one the process
    singleton is created on first use.
    """
    settings = settings or (runtime.settings if runtime is not None else Settings.from_env())
    build_sha = settings.build_sha

    app = FastAPI(title="HousePulse", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime
    app.state.cors_origin = settings.cors_allow_origin

    # Must run before the middlewares below: its error middleware has to be innermost
    register_exception_handlers(app)

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("Cache-Control", "no-store")
        return response

    @app.middleware("http")
    async def answer_cors(request: Request, call_next):
        """Answer every preflight with ``ok`` and decorate all other responses."""
        headers = cors_headers(app.state.cors_origin)
        if request.method.upper() == "OPTIONS":
            return PlainTextResponse("ok", status_code=200, headers=headers)
        response = await call_next(request)
        for name, value in headers.items():
            response.headers[name] = value
        return response

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        """Reuse the client's X-Request-ID or mint one, and echo it back."""
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    app.include_router(router)

    @app.get("/healthz")
    async def health(request: Request) -> Dict[str, Any]:
        """Report store and identity cache reachability plus build info."""
        active = runtime_dependency(request)
        checks: Dict[str, Dict[str, Any]] = {}

        async def _run_bounded(label: str, func) -> bool:
            try:
                await asyncio.wait_for(asyncio.to_thread(func), HEALTH_CHECK_TIMEOUT_SECONDS)
                return True
            except asyncio.TimeoutError:
                logger.error(
                    "health_check_timeout", component=label, timeout=HEALTH_CHECK_TIMEOUT_SECONDS
                )
            except Exception as exc:
                logger.error("health_check_failed", component=label, error=str(exc))
            return False

        if hasattr(active.store, "verify_connection"):
            db_ok = await _run_bounded("database", active.store.verify_connection)
            checks["database"] = {"status": "healthy" if db_ok else "unhealthy"}
        else:
            db_ok = True
            checks["database"] = {"status": "healthy", "type": "memory"}

        if active.cache is not None:
            redis_ok = await _run_bounded("redis", active.cache.verify_connection)
            checks["redis"] = {"status": "healthy" if redis_ok else "unhealthy", "degraded": not redis_ok}
        else:
            checks["redis"] = {"status": "not_configured"}

        return {
            "status": "healthy" if db_ok else "unhealthy",
            "checks": checks,
            "version": __version__,
            "build": build_sha,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


app = create_app()
