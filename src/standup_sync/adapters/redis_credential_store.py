"""Redis-backed storage for pending verification codes."""

import json
from dataclasses import dataclass
from datetime import datetime

from redis.asyncio import Redis

from standup_sync.adapters.redis_support import redis_errors
from standup_sync.domain.credentials import VerificationCodeRecord

KEY_PREFIX = "email:verification:"


@dataclass
class RedisCredentialStore:
    """Keeps code records under their hash with a TTL."""

    redis: Redis

    async def save_code(
        self, code_hash: str, record: VerificationCodeRecord, ttl_seconds: int
    ) -> None:
        """Store a code record."""
        payload = json.dumps(
            {"identity": record.identity, "createdAt": record.created_at.isoformat()}
        )
        with redis_errors("save code"):
            await self.redis.set(f"{KEY_PREFIX}{code_hash}", payload, ex=ttl_seconds)

    async def get_code(self, code_hash: str) -> VerificationCodeRecord | None:
        """Return a pending code record."""
        with redis_errors("get code"):
            raw = await self.redis.get(f"{KEY_PREFIX}{code_hash}")
        if raw is None:
            return None
        data = json.loads(raw)
        return VerificationCodeRecord(
            identity=data["identity"],
            created_at=datetime.fromisoformat(data["createdAt"]),
        )

    async def delete_code(self, code_hash: str) -> None:
        """Remove a code record."""
        with redis_errors("delete code"):
            await self.redis.delete(f"{KEY_PREFIX}{code_hash}")
