"""
Login sessions.

A session is the server-side half of an access token: the JWT carries the
session id in its ``sid`` claim, and the token is only accepted while the
session is still present in the store. Logging out revokes the session, so a
token stops working before its ``exp``.

Expiry is decided by an ``ExpiryPolicy`` handed to the store, never by the
store itself:

- ``ttl``: lifetime of a session in seconds
- ``sliding``: when true every successful ``get`` pushes the expiry forward
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional, Protocol

from redis.asyncio import Redis

from app.core.config import settings
from app.core.logging import get_logger
from app.core.time import Clock, utcnow
from app.models.base import new_id

logger = get_logger(__name__)


@dataclass(frozen=True)
class ExpiryPolicy:
    ttl: int
    sliding: bool = True

    def expires_at(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.ttl)


@dataclass
class SessionData:
    session_id: str
    user_id: str
    created_at: datetime
    expires_at: datetime

    def to_json(self) -> str:
        return json.dumps(
            {
                "session_id": self.session_id,
                "user_id": self.user_id,
                "created_at": self.created_at.isoformat(),
                "expires_at": self.expires_at.isoformat(),
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "SessionData":
        data = json.loads(raw)
        return cls(
            session_id=data["session_id"],
            user_id=data["user_id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )


class SessionStore(Protocol):
    async def create(self, user_id: str) -> SessionData: ...

    async def get(self, session_id: str) -> Optional[SessionData]: ...

    async def revoke(self, session_id: str) -> None: ...


class RedisSessionStore:
    """Sessions as JSON strings under ``<prefix><sid>`` with a redis TTL"""

    def __init__(
        self,
        redis: Redis,
        policy: ExpiryPolicy,
        key_prefix: str = settings.session_key_prefix,
        clock: Clock = utcnow,
    ):
        self.redis = redis
        self.policy = policy
        self.key_prefix = key_prefix
        self.clock = clock

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    async def create(self, user_id: str) -> SessionData:
        now = self.clock()
        session = SessionData(
            session_id=new_id(),
            user_id=user_id,
            created_at=now,
            expires_at=self.policy.expires_at(now),
        )
        await self.redis.set(self._key(session.session_id), session.to_json(), ex=self.policy.ttl)
        logger.info("session.created", user_id=user_id, session_id=session.session_id)
        return session

    async def get(self, session_id: str) -> Optional[SessionData]:
        raw = await self.redis.get(self._key(session_id))
        if raw is None:
            return None
        session = SessionData.from_json(raw)
        if self.policy.sliding:
            session.expires_at = self.policy.expires_at(self.clock())
            await self.redis.set(self._key(session_id), session.to_json(), ex=self.policy.ttl)
        return session

    async def revoke(self, session_id: str) -> None:
        await self.redis.delete(self._key(session_id))
        logger.info("session.revoked", session_id=session_id)


class InMemorySessionStore:
    """Process-local store for development and tests"""

    def __init__(self, policy: ExpiryPolicy, clock: Clock = utcnow):
        self.policy = policy
        self.clock = clock
        self._sessions: Dict[str, SessionData] = {}

    async def create(self, user_id: str) -> SessionData:
        now = self.clock()
        session = SessionData(
            session_id=new_id(),
            user_id=user_id,
            created_at=now,
            expires_at=self.policy.expires_at(now),
        )
        self._sessions[session.session_id] = session
        return session

    async def get(self, session_id: str) -> Optional[SessionData]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        now = self.clock()
        if session.expires_at <= now:
            del self._sessions[session_id]
            return None
        if self.policy.sliding:
            session.expires_at = self.policy.expires_at(now)
        return session

    async def revoke(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)


def default_policy() -> ExpiryPolicy:
    return ExpiryPolicy(ttl=settings.session_ttl_seconds, sliding=settings.session_sliding)
