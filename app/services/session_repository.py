from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Set

from fastapi import HTTPException, status
import redis.asyncio as redis

from app.core.config import get_settings
from app.models.session import IngestSession

logger = logging.getLogger(__name__)


class SessionRepository(ABC):
    def __init__(self, ttl_seconds: int) -> None:
        self.ttl_seconds = ttl_seconds

    @abstractmethod
    async def save(self, session: IngestSession) -> IngestSession:
        ...

    @abstractmethod
    async def get(self, session_id: str) -> Optional[IngestSession]:
        ...

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        ...

    @abstractmethod
    async def claim(self, session_id: str) -> bool:
        """저장 작업 점유 (이미 점유 중이면 False)"""

    @abstractmethod
    async def release(self, session_id: str) -> None:
        ...


class InMemorySessionRepository(SessionRepository):
    def __init__(self, ttl_seconds: int) -> None:
        super().__init__(ttl_seconds)
        self._data: Dict[str, str] = {}
        self._expires: Dict[str, datetime] = {}
        self._claims: Set[str] = set()

    def _purge(self) -> None:
        now = datetime.now(timezone.utc)
        expired = [session_id for session_id, exp in self._expires.items() if exp <= now]
        for session_id in expired:
            self._data.pop(session_id, None)
            self._expires.pop(session_id, None)

    def _touch(self, session_id: str) -> None:
        self._expires[session_id] = datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds)

    async def save(self, session: IngestSession) -> IngestSession:
        self._purge()
        # 직렬화해서 보관 (호출자가 가진 객체와 상태 공유 방지)
        self._data[session.session_id] = session.model_dump_json(by_alias=True)
        self._touch(session.session_id)
        return session

    async def get(self, session_id: str) -> Optional[IngestSession]:
        self._purge()
        raw = self._data.get(session_id)
        if not raw:
            return None
        self._touch(session_id)
        return IngestSession.model_validate_json(raw)

    async def delete(self, session_id: str) -> None:
        self._data.pop(session_id, None)
        self._expires.pop(session_id, None)
        self._claims.discard(session_id)

    async def claim(self, session_id: str) -> bool:
        if session_id in self._claims:
            return False
        self._claims.add(session_id)
        return True

    async def release(self, session_id: str) -> None:
        self._claims.discard(session_id)


class RedisSessionRepository(SessionRepository):
    def __init__(self, redis_client: redis.Redis, prefix: str, ttl_seconds: int) -> None:
        super().__init__(ttl_seconds)
        self.client = redis_client
        self.prefix = prefix

    def _key(self, session_id: str) -> str:
        return f"{self.prefix}:{session_id}"

    async def save(self, session: IngestSession) -> IngestSession:
        key = self._key(session.session_id)
        await self.client.setex(key, self.ttl_seconds, session.model_dump_json(by_alias=True))
        return session

    async def get(self, session_id: str) -> Optional[IngestSession]:
        raw = await self.client.get(self._key(session_id))
        if not raw:
            return None
        # touch TTL
        await self.client.expire(self._key(session_id), self.ttl_seconds)
        return IngestSession.model_validate_json(raw)

    async def delete(self, session_id: str) -> None:
        await self.client.delete(self._key(session_id), self._claim_key(session_id))

    def _claim_key(self, session_id: str) -> str:
        return f"{self._key(session_id)}:claim"

    async def claim(self, session_id: str) -> bool:
        # SET NX: 여러 워커가 동시에 저장해도 하나만 통과
        return bool(await self.client.set(self._claim_key(session_id), "1", nx=True, ex=self.ttl_seconds))

    async def release(self, session_id: str) -> None:
        await self.client.delete(self._claim_key(session_id))


def _build_redis_client(url: str) -> redis.Redis:
    try:
        return redis.from_url(url, decode_responses=True)
    except Exception as exc:  # pragma: no cover
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Redis connection failed: {exc}") from exc


_repo_instance: Optional[SessionRepository] = None


async def get_session_repository() -> SessionRepository:
    global _repo_instance
    if _repo_instance:
        return _repo_instance

    settings = get_settings()
    ttl_seconds = settings.session_ttl_minutes * 60
    if settings.redis_url:
        client = _build_redis_client(settings.redis_url)
        _repo_instance = RedisSessionRepository(client, settings.redis_session_prefix, ttl_seconds)
        logger.info("Using Redis session repository (%s)", settings.redis_session_prefix)
    else:
        _repo_instance = InMemorySessionRepository(ttl_seconds)
    return _repo_instance
