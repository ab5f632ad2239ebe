from fastapi import APIRouter, Depends

from hiretrack.core.config import Settings, get_settings
from hiretrack.services.orchestrator import TrackingOrchestrator, get_orchestrator

router = APIRouter()


@router.get("/")
async def root(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    return {"service": settings.app_name, "status": "ok"}


@router.get("/healthz")
async def healthz(orchestrator: TrackingOrchestrator = Depends(get_orchestrator)) -> dict[str, str]:
    return {"status": "ok", "tracking": "running" if orchestrator.running else "stopped"}
