from __future__ import annotations

import uuid

import redis.asyncio as redis

from core.config import Settings, settings as default_settings


# delete only if we still own the lock
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def create_redis(cfg: Settings | None = None) -> redis.Redis:
    cfg = cfg or default_settings
    return redis.from_url(cfg.redis_url, decode_responses=True)


class CompletionLocks:
    """Per-upload mutex so two concurrent `complete` calls cannot both build an asset."""

    KEY = "media:complete:{}"

    def __init__(self, client: redis.Redis, ttl_sec: int) -> None:
        self._client = client
        self._ttl_ms = ttl_sec * 1000
        self._tokens: dict[str, str] = {}

    async def acquire(self, upload_id: str) -> bool:
        token = uuid.uuid4().hex
        ok = await self._client.set(self.KEY.format(upload_id), token, nx=True, px=self._ttl_ms)
        if ok:
            self._tokens[upload_id] = token
        return bool(ok)

    async def release(self, upload_id: str) -> None:
        token = self._tokens.pop(upload_id, None)
        if token is None:
            return
        await self._client.eval(_RELEASE_SCRIPT, 1, self.KEY.format(upload_id), token)
