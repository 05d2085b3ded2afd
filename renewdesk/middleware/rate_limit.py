# renewdesk/middleware/rate_limit.py
"""
Distributed rate limiting via Upstash Redis.
Role-aware: admins get higher limits than other helpdesk accounts. Contract
uploads (PDF decode + extraction) have their own, much tighter budget.
"""

import base64
import json

from fastapi import Request
from fastapi.responses import JSONResponse
import structlog

from renewdesk.config import settings
from renewdesk.services.cache import cache

logger = structlog.get_logger()

# Limits per (role_tier, path_category): {limit, window_seconds}
_TIER_LIMITS = {
    "admin": {
        "upload": {"limit": 10, "window": 60},
        "default": {"limit": 300, "window": 60},
    },
    # agent / customer or unauthenticated
    "standard": {
        "upload": {"limit": 5, "window": 60},
        "default": {"limit": 60, "window": 60},
    },
}

_ADMIN_ROLES = {"admin"}

UPLOAD_PATHS = {"/api/v1/renewal-contracts/upload"}
SKIP_PATHS = {"/health"}
SKIP_PREFIXES = ("/internal/",)


def _extract_jwt_info(request: Request) -> tuple[str, str | None]:
    """
    Read role tier and user id from the bearer token payload.

    The signature is checked later by the auth dependency; this only picks a
    bucket. Fails open to ('standard', None) on any decode error.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return "standard", None
    try:
        token = auth_header.split(" ", 1)[1]
        payload_b64 = token.split(".")[1]
        payload_b64 += "=" * (-len(payload_b64) % 4)
        payload = json.loads(base64.urlsafe_b64decode(payload_b64))
        user_id = payload.get("sub")
        tier = "admin" if payload.get("role") in _ADMIN_ROLES else "standard"
        return tier, user_id
    except Exception:
        return "standard", None


def _get_path_category(path: str) -> str:
    if path.rstrip("/") in UPLOAD_PATHS:
        return "upload"
    return "default"


async def rate_limit_middleware(request: Request, call_next):
    """
    Counter per identity and path (INCR + EXPIRE in one pipeline); every hit
    pushes the window forward.
    Internal job endpoints are skipped (they use X-Internal-Secret instead).
    Without Redis, or when Redis errors, requests pass through.
    """
    path = request.url.path
    if path in SKIP_PATHS or path.startswith(SKIP_PREFIXES) or not settings.redis_configured:
        return await call_next(request)

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        client_ip = forwarded_for.split(",")[0].strip()
    else:
        client_ip = request.client.host if request.client else "unknown"

    tier, user_id = _extract_jwt_info(request)
    category = _get_path_category(path)
    config = _TIER_LIMITS[tier][category]
    limit = config["limit"]
    window = config["window"]

    identity = user_id or client_ip
    key = f"rl:{tier}:{identity}:{path}"

    try:
        results = await cache.pipeline([
            ["INCR", key],
            ["EXPIRE", key, window],
        ])
        current = results[0].get("result", 0) if isinstance(results[0], dict) else 0
    except Exception as e:
        logger.warning("rate_limit_cache_error", error=str(e))
        return await call_next(request)

    if current > limit:
        logger.warning(
            "rate_limited",
            ip=client_ip,
            path=path,
            tier=tier,
            current=current,
            limit=limit,
        )
        return JSONResponse(
            status_code=429,
            content={
                "error": {
                    "code": "RATE_LIMITED",
                    "message": f"Too many requests. Limit: {limit} per {window} seconds",
                }
            },
            headers={"Retry-After": str(window)},
        )

    return await call_next(request)
