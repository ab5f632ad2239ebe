import hashlib
import hmac

from fastapi import Depends, Header, HTTPException, status

from hiretrack.core.config import Settings, get_settings

SIGNATURE_PREFIX = "hmacsha256="


class AuthenticationFailedError(Exception):
    """Raised when a push payload signature does not match the shared secret."""


def sign(secret: str, message: str | bytes) -> str:
    payload = message.encode("utf-8") if isinstance(message, str) else message
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def challenge_response(secret: str | None, challenge_code: str) -> str:
    if not secret:
        raise AuthenticationFailedError("webhook secret is not configured")
    return sign(secret, challenge_code)


def verify_signature(secret: str | None, body: bytes, signature: str | None) -> None:
    if not secret:
        raise AuthenticationFailedError("webhook secret is not configured")
    if not signature:
        raise AuthenticationFailedError("missing signature")

    provided = signature.strip()
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]
    expected = sign(secret, body)
    if not hmac.compare_digest(provided.lower(), expected):
        raise AuthenticationFailedError("signature mismatch")


async def require_control_key(
    settings: Settings = Depends(get_settings),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> None:
    if not settings.control_api_key:
        return
    if not x_api_key or not hmac.compare_digest(x_api_key, settings.control_api_key):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid control key")
