"""Redis-backed session store."""

from dataclasses import dataclass

from pydantic import ValidationError
from redis.asyncio import Redis

from standup_sync.adapters.redis_support import redis_errors
from standup_sync.domain.sessions import Session
from standup_sync.errors import UpstreamError

KEY_PREFIX = "session:"

# Compare-and-swap on the stored version, keeping the absolute expiry.
REPLACE_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if not current then
    return 0
end
local stored = cjson.decode(current)
if tonumber(stored['version']) ~= tonumber(ARGV[1]) then
    return 0
end
redis.call('SET', KEYS[1], ARGV[2], 'EXAT', ARGV[3])
return 1
"""


def session_key(session_id: str) -> str:
    """Return the Redis key for a session."""
    return f"{KEY_PREFIX}{session_id}"


@dataclass
class RedisSessionStore:
    """Stores each session as one JSON value that expires at ``expires_at``."""

    redis: Redis

    async def create(self, session: Session) -> bool:
        """Store a new session unless the id is taken."""
        with redis_errors("create"):
            created = await self.redis.set(
                session_key(session.id),
                _dump(session),
                nx=True,
                exat=_expiry(session),
            )
        return bool(created)

    async def get(self, session_id: str) -> Session | None:
        """Return a session, or None when absent or expired."""
        with redis_errors("get"):
            raw = await self.redis.get(session_key(session_id))
        if raw is None:
            return None
        try:
            return Session.model_validate_json(raw)
        except ValidationError as exc:
            raise UpstreamError(f"Corrupt session record: {session_id}") from exc

    async def replace(self, session: Session, expected_version: int) -> bool:
        """Overwrite a session if its stored version matches."""
        with redis_errors("replace"):
            written = await self.redis.eval(
                REPLACE_SCRIPT,
                1,
                session_key(session.id),
                expected_version,
                _dump(session),
                _expiry(session),
            )
        return bool(written)

    async def delete(self, session_id: str) -> bool:
        """Delete a session."""
        with redis_errors("delete"):
            removed = await self.redis.delete(session_key(session_id))
        return bool(removed)


def _dump(session: Session) -> str:
    return session.model_dump_json(by_alias=True)


def _expiry(session: Session) -> int:
    return int(session.expires_at.timestamp())
