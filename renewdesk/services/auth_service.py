"""
Bearer token verification.

Tokens are issued by the helpdesk's identity service; this service only
holds the public key and checks signature, expiry and token type.
"""

from typing import Optional

from jose import jwt, JWTError
import structlog

from renewdesk.config import settings

logger = structlog.get_logger()

_public_key: Optional[str] = None


def _load_public_key() -> str:
    global _public_key
    if _public_key is None:
        with open(settings.JWT_PUBLIC_KEY_PATH, "r") as f:
            _public_key = f.read()
    return _public_key


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token. Raises JWTError on failure."""
    try:
        key = _load_public_key()
    except OSError as exc:
        logger.error("jwt_public_key_unavailable", path=settings.JWT_PUBLIC_KEY_PATH, error=str(exc))
        raise JWTError("Public key unavailable") from exc
    return jwt.decode(token, key, algorithms=[settings.JWT_ALGORITHM])


def verify_access_token(token: str) -> dict:
    """Verify an access token and return its claims."""
    payload = decode_token(token)
    if payload.get("type") != "access":
        raise JWTError("Not an access token")
    return payload
