"""
FastAPI application entry point.

Run with:
    uvicorn leo.app.main:app --port 3000

Or via the console script:
    leo-relay
"""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from leo.app.core.config import Settings, settings
from leo.app.core.logging_config import setup_logging, get_logger
from leo.app.core.errors import register_error_handlers
from leo.app.core.middleware import BodyLimitMiddleware, RequestLoggingMiddleware
from leo.app.core.health import run_health_check

# ── Service ──
from leo.app.alerts.runtime import AlertRuntime
from leo.app.api.schemas import LivenessResponse, ServiceInfo
from leo.app.api.v1.alerts import router as alert_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


def create_app(
    config: Optional[Settings] = None,
    runtime: Optional[AlertRuntime] = None,
) -> FastAPI:
    """
    Build the application.

    ``runtime`` is normally built inside the lifespan from ``config``; tests
    pass a pre-built one (SQLite store, sources disabled).
    """
    config = config or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage startup and shutdown events."""
        logger.info(
            "Starting %s v%s [%s]",
            config.APP_NAME, config.APP_VERSION, config.ENVIRONMENT,
        )
        app.state.runtime = runtime or AlertRuntime(config)
        await app.state.runtime.start()
        yield
        logger.info("Shutting down %s", config.APP_NAME)
        await app.state.runtime.stop()

    app = FastAPI(
        title=config.APP_NAME,
        description=(
            "Emergency alert relay. Ingests geolocated alerts from an MQTT "
            "sensor network and the NASA FIRMS active-fire feed, normalises "
            "them into one canonical record, persists them and pushes every "
            "new alert to connected map viewers over WebSocket."
        ),
        version=config.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Middleware stack (order matters — last added runs outermost) ──
    app.add_middleware(BodyLimitMiddleware, max_body_bytes=config.MAX_BODY_BYTES)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "ngrok-skip-browser-warning"],
    )
    app.add_middleware(RequestLoggingMiddleware, max_body_bytes=config.MAX_BODY_BYTES)

    # ── Error handlers ──
    register_error_handlers(app)

    # ── Routers ──
    app.include_router(alert_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"], response_model=ServiceInfo)
    async def root():
        runtime_state = getattr(app.state, "runtime", None)
        return ServiceInfo(
            service=config.APP_NAME,
            version=config.APP_VERSION,
            environment=config.ENVIRONMENT,
            runtime=runtime_state.describe() if runtime_state else None,
        )

    @app.get("/health", tags=["health"], response_model=LivenessResponse)
    async def liveness():
        """Liveness probe — is the process alive?"""
        return LivenessResponse()

    @app.get("/health/ready", tags=["health"])
    async def readiness():
        """Readiness probe — store, broker, feed and queue."""
        report = await run_health_check(app.state.runtime)
        if report.status.value == "unhealthy":
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()


def run() -> None:
    """Console entry point."""
    uvicorn.run(
        "leo.app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_config=None,
    )


if __name__ == "__main__":
    run()
