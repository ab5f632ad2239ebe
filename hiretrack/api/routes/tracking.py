from fastapi import APIRouter, Depends

from hiretrack.core.security import require_control_key
from hiretrack.schemas.tracking import TrackingActionOut, TrackingStatusOut
from hiretrack.services.orchestrator import TrackingOrchestrator, get_orchestrator

router = APIRouter(dependencies=[Depends(require_control_key)])


@router.post("/start", response_model=TrackingActionOut)
async def start_tracking(orchestrator: TrackingOrchestrator = Depends(get_orchestrator)) -> TrackingActionOut:
    changed = await orchestrator.start()
    return TrackingActionOut(changed=changed, status="running")


@router.post("/stop", response_model=TrackingActionOut)
async def stop_tracking(orchestrator: TrackingOrchestrator = Depends(get_orchestrator)) -> TrackingActionOut:
    changed = await orchestrator.stop()
    return TrackingActionOut(changed=changed, status="stopped")


@router.get("/status", response_model=TrackingStatusOut)
async def tracking_status(orchestrator: TrackingOrchestrator = Depends(get_orchestrator)) -> TrackingStatusOut:
    return TrackingStatusOut.model_validate(orchestrator.status())
