from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from hiretrack.api.router import api_router
from hiretrack.core.config import get_settings
from hiretrack.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from hiretrack.services.orchestrator import get_orchestrator
from hiretrack.services.repository import get_repository

settings = get_settings()
configure_logging()
_telemetry_runtime = setup_telemetry(settings, role="api")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.autostart:
        await get_orchestrator().start()
    try:
        yield
    finally:
        await get_orchestrator().stop()
        get_orchestrator.cache_clear()
        await get_repository().close()
        get_repository.cache_clear()
        shutdown_telemetry(_telemetry_runtime)


app = FastAPI(title=settings.app_name, lifespan=lifespan)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


app.include_router(api_router)
