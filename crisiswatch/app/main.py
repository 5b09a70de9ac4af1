"""
CrisisWatch HTTP service.

Run with:
    uvicorn crisiswatch.app.main:app --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from crisiswatch.app.api.v1.crisis import router as crisis_router
from crisiswatch.app.api.v1.crisis import shutdown_services
from crisiswatch.app.core.cache import close_redis
from crisiswatch.app.core.config import settings
from crisiswatch.app.core.errors import register_error_handlers
from crisiswatch.app.core.health import HealthStatus, run_health_check
from crisiswatch.app.core.logging_config import get_logger, setup_logging
from crisiswatch.app.core.middleware import RequestLoggingMiddleware

logger = get_logger(__name__)

DESCRIPTION = (
    "Humanitarian crisis early warning. Fuses conflict, economic, climate and "
    "news signals into a per-region risk assessment with displacement "
    "projections, runs a multi-model AI analysis with retries and a heuristic "
    "fallback, and generates phase-costed response plans."
)

health_router = APIRouter(prefix="/health", tags=["health"])


@health_router.get("")
async def health():
    """Every component with its status, latency and details."""
    return (await run_health_check()).to_dict()


@health_router.get("/live")
async def liveness():
    return {"status": "alive"}


@health_router.get("/ready")
async def readiness():
    """503 only when no model chain is configured."""
    report = await run_health_check()
    status_code = 503 if report.status is HealthStatus.UNHEALTHY else 200
    return JSONResponse(status_code=status_code, content=report.to_dict())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "%s %s starting [%s], model chain: %s",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        " → ".join(settings.AI_MODELS) or "(empty)",
    )
    try:
        yield
    finally:
        await shutdown_services()
        await close_redis()
        logger.info("%s stopped", settings.APP_NAME)


def create_app() -> FastAPI:
    setup_logging()
    application = FastAPI(
        title=settings.APP_NAME,
        description=DESCRIPTION,
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.CORS_ALLOW_ALL else settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(RequestLoggingMiddleware)
    register_error_handlers(application)

    application.include_router(health_router)
    application.include_router(crisis_router)

    @application.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": [
                "multi-source-assessment",
                "displacement-projection",
                "ai-analysis",
                "response-planning",
            ],
            "docs": "/docs",
        }

    return application


app = create_app()
