import hashlib
import hmac

import pytest

from hiretrack.core.security import AuthenticationFailedError, challenge_response, sign, verify_signature


def test_sign_is_hex_hmac_sha256() -> None:
    expected = hmac.new(b"secret", b"abc", hashlib.sha256).hexdigest()
    assert sign("secret", "abc") == expected
    assert sign("secret", b"abc") == expected


def test_challenge_response_requires_secret() -> None:
    assert challenge_response("secret", "code-1") == sign("secret", "code-1")
    with pytest.raises(AuthenticationFailedError):
        challenge_response(None, "code-1")


@pytest.mark.parametrize("prefix", ["", "hmacsha256=", "HMACSHA256="])
def test_verify_signature_accepts_prefixed_or_bare_digest(prefix: str) -> None:
    body = b'{"type": "ORGANIZATION_SOCIAL_ACTION_NOTIFICATIONS"}'
    verify_signature("secret", body, prefix + sign("secret", body).upper())


@pytest.mark.parametrize(
    ("secret", "signature"),
    [
        (None, "anything"),
        ("secret", None),
        ("secret", ""),
        ("secret", "hmacsha256=deadbeef"),
    ],
)
def test_verify_signature_rejects(secret: str | None, signature: str | None) -> None:
    with pytest.raises(AuthenticationFailedError):
        verify_signature(secret, b"{}", signature)
