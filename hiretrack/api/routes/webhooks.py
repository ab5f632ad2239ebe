import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from hiretrack.core.config import Settings, get_settings
from hiretrack.core.security import AuthenticationFailedError, challenge_response
from hiretrack.schemas.webhooks import ChallengeOut, PushAccepted
from hiretrack.services.orchestrator import TrackingOrchestrator, get_orchestrator
from hiretrack.services.repository import RepositoryUnavailableError
from hiretrack.services.sources import SourceUnavailableError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/push", response_model=ChallengeOut)
async def push_challenge(
    challenge_code: str = Query(alias="challengeCode", min_length=1),
    settings: Settings = Depends(get_settings),
) -> ChallengeOut:
    try:
        response = challenge_response(settings.webhook_secret, challenge_code)
    except AuthenticationFailedError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return ChallengeOut(challenge_code=challenge_code, challenge_response=response)


@router.post("/push", response_model=PushAccepted, status_code=status.HTTP_202_ACCEPTED)
async def receive_push(
    request: Request,
    signature: str | None = Header(default=None, alias="X-LI-Signature"),
    orchestrator: TrackingOrchestrator = Depends(get_orchestrator),
) -> PushAccepted:
    body = await request.body()
    try:
        result = await orchestrator.handle_push(body, signature)
    except AuthenticationFailedError as exc:
        logger.warning("Rejected push delivery: %s", exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid signature") from exc
    except SourceUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.reason) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return PushAccepted(**result.to_dict())
