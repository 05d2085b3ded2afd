from __future__ import annotations
# renewdesk/services/cache.py
import httpx
from renewdesk.config import settings

# Shared client, avoids creating a new TLS connection on every Redis call.
_http = httpx.AsyncClient(
    timeout=httpx.Timeout(5.0),
    limits=httpx.Limits(max_connections=10, max_keepalive_connections=5, keepalive_expiry=30),
)


class UpstashClient:
    """Minimal Upstash Redis REST client (run leases, upload rate limits, health check)."""

    def __init__(self):
        self.url = settings.UPSTASH_REDIS_REST_URL
        self.headers = {"Authorization": f"Bearer {settings.UPSTASH_REDIS_REST_TOKEN}"}

    async def setnx(self, key: str, value: str, ex: int = 300) -> bool:
        """Set key only if it does not exist. Returns True if the key was set."""
        r = await _http.get(
            f"{self.url}/set/{key}/{value}/nx/ex/{ex}", headers=self.headers
        )
        r.raise_for_status()
        return r.json().get("result") == "OK"

    async def eval(self, script: str, keys: list[str], args: list) -> int | str | None:
        """Run a Lua script server-side (atomic compare-and-act on a key)."""
        command = ["EVAL", script, len(keys), *keys, *[str(a) for a in args]]
        r = await _http.post(self.url, headers=self.headers, json=command)
        r.raise_for_status()
        return r.json().get("result")

    async def pipeline(self, commands: list[list]) -> list:
        r = await _http.post(
            f"{self.url}/pipeline", headers=self.headers, json=commands
        )
        r.raise_for_status()
        return r.json()

    async def ping(self) -> bool:
        r = await _http.get(f"{self.url}/ping", headers=self.headers)
        return r.json().get("result") == "PONG"


cache = UpstashClient()
