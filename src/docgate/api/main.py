"""
docgate API Main Application

Entry point for the FastAPI application.
"""

from contextlib import asynccontextmanager
from typing import Annotated, AsyncIterator

from fastapi import Depends, FastAPI, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import make_asgi_app

from docgate.api.dependencies import close_resources, get_engine, init_resources
from docgate.api.routers import documents
from docgate.platform.config import settings
from docgate.platform.logging import configure_logging, get_logger
from docgate.storage.engines import Engine
from docgate.storage.errors import GatewayError

# Configure logging on import
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting docgate API...", engine=settings.ENGINE)
    try:
        await init_resources()
        logger.info("Engine initialized successfully.")
    except Exception as e:
        logger.error(f"Failed to initialize engine: {e}")
        raise  # Fail fast if the backend is down at startup

    yield

    logger.info("Shutting down docgate API...")
    await close_resources()
    logger.info("Engine closed.")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Document-store gateway over Elasticsearch or MongoDB",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> PlainTextResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.message)
    return PlainTextResponse(exc.message + "\n", status_code=exc.status_code)


# =============================================================================
# OBSERVABILITY
# =============================================================================

if settings.METRICS_ENABLED:
    app.mount("/metrics", make_asgi_app())


# =============================================================================
# HEALTH ENDPOINTS
# =============================================================================


@app.get("/health/live", tags=["Health"])
async def liveness() -> dict:
    """Liveness check - is the service running?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["Health"])
async def readiness(engine: Annotated[Engine, Depends(get_engine)]) -> dict:
    """
    Readiness check - is the service ready to accept traffic?
    Checks the backend engine connection.
    """
    engine_healthy = False
    try:
        engine_healthy = await engine.health_check()
    except Exception as e:
        logger.warning("readiness_check_failed", error=str(e))

    return {
        "status": "ready" if engine_healthy else "not_ready",
        "version": settings.VERSION,
        "checks": {
            settings.ENGINE: "healthy" if engine_healthy else "unhealthy",
        },
    }


# =============================================================================
# API ROUTERS
# =============================================================================

# Registered last: its /{collection}/{id} pattern would shadow the routes above
app.include_router(documents.router, tags=["Documents"])


def run() -> None:
    import uvicorn

    uvicorn.run(
        "docgate.api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    run()
