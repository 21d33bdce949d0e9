from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from .api.routes import router as api_router
from .core.config import get_settings
from .core.logging import configure_logging, get_logger
from .dependencies import close_singletons

settings = get_settings()
configure_logging(settings.observability.log_level, json_output=settings.environment != "local")
logger = get_logger(name=__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    logger.info("turnpilot_starting", environment=settings.environment)
    try:
        yield
    finally:
        await close_singletons()
        logger.info("turnpilot_stopped")


app = FastAPI(title="Turnpilot Control Plane", version="0.1.0", lifespan=app_lifespan)
app.include_router(api_router)


@app.get("/", tags=["health"])
async def root() -> dict[str, str]:
    return {"message": "Turnpilot control plane running"}


@app.get("/metrics", tags=["observability"])
async def metrics() -> Response:
    if not settings.observability.prometheus_enabled:
        return Response(status_code=404)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
