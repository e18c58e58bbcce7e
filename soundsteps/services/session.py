"""
Session storage for voice and SMS lessons.
Uses Redis for fast state storage with automatic expiration.
"""

import redis.asyncio as redis
import logging
from typing import Optional, Dict, Any, List
from soundsteps.config import Settings, get_settings
from soundsteps.errors import InvalidTransitionError
from soundsteps.models.session import Channel, Session, SessionStatus

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Manages lesson session records in Redis.

    Keys:
        soundsteps:session:<id>                  JSON session record
        soundsteps:active:<channel>:<channel_id> id of the active session
        soundsteps:latest:<channel>:<channel_id> id of the newest session, kept
        soundsteps:sessions                      all ids, scored by start time
        soundsteps:phone:<phone>                 a learner's ids, by start time

    In-flight records expire after `session_timeout`. Finalized records
    are kept without a TTL as the historical record.
    """

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        settings: Optional[Settings] = None
    ):
        settings = settings or get_settings()
        self.redis = client or redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            decode_responses=True
        )
        self.timeout = settings.session_timeout

    def _key(self, session_id: str) -> str:
        """Generate Redis key for session."""
        return f"soundsteps:session:{session_id}"

    def _active_key(self, channel: Channel, channel_id: str) -> str:
        return f"soundsteps:active:{channel.value}:{channel_id}"

    def _latest_key(self, channel: Channel, channel_id: str) -> str:
        return f"soundsteps:latest:{channel.value}:{channel_id}"

    def _phone_key(self, phone: str) -> str:
        return f"soundsteps:phone:{phone}"

    # =========================================================================
    # Read / write
    # =========================================================================

    async def create(self, session: Session) -> Session:
        """Store a new session and make it the active one for its channel id."""
        started = session.started_at.timestamp()
        pipe = self.redis.pipeline()
        pipe.setex(self._key(session.id), self.timeout, session.model_dump_json())
        pipe.setex(
            self._active_key(session.channel, session.channel_id),
            self.timeout,
            session.id
        )
        pipe.set(self._latest_key(session.channel, session.channel_id), session.id)
        pipe.zadd("soundsteps:sessions", {session.id: started})
        pipe.zadd(self._phone_key(session.learner_phone), {session.id: started})
        await pipe.execute()
        logger.info(
            "[Session] Created %s (%s %s, lesson %s)",
            session.id, session.channel.value, session.channel_id, session.lesson_id
        )
        return session

    async def save(self, session: Session) -> None:
        """Write the full session record, refreshing TTLs while in flight."""
        await self._check_forward(session.id, session.status)
        if session.is_terminal and session.ended_at is None:
            raise InvalidTransitionError(f"Session {session.id} ended without ended_at")
        active_key = self._active_key(session.channel, session.channel_id)
        is_active = await self.redis.get(active_key) == session.id
        pipe = self.redis.pipeline()
        pipe.setex(self._key(session.id), self.timeout, session.model_dump_json())
        if is_active:
            pipe.expire(active_key, self.timeout)
        await pipe.execute()

    async def update(self, session_id: str, **fields: Any) -> Optional[Session]:
        """Update specific fields of a stored session."""
        session = await self.get_by_id(session_id)
        if not session:
            return None
        data: Dict[str, Any] = session.model_dump()
        data.update(fields)
        updated = Session.model_validate(data)
        await self.save(updated)
        return updated

    async def get_by_id(self, session_id: str) -> Optional[Session]:
        """Retrieve session from Redis."""
        data = await self.redis.get(self._key(session_id))
        if data:
            return Session.model_validate_json(data)
        return None

    async def get_by_channel_id(self, channel: Channel, channel_id: str) -> Optional[Session]:
        """Active session for a call id (voice) or phone number (SMS)."""
        session_id = await self.redis.get(self._active_key(channel, channel_id))
        if not session_id:
            return None
        return await self.get_by_id(session_id)

    async def latest_for_channel_id(self, channel: Channel, channel_id: str) -> Optional[Session]:
        """Newest session ever started for a channel id, finished ones included."""
        session_id = await self.redis.get(self._latest_key(channel, channel_id))
        if not session_id:
            return None
        return await self.get_by_id(session_id)

    async def _check_forward(self, session_id: str, status: SessionStatus) -> None:
        stored = await self.get_by_id(session_id)
        if stored and stored.is_terminal and stored.status != status:
            raise InvalidTransitionError(
                f"Session {session_id} is {stored.status.value}, cannot become {status.value}"
            )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def release(self, session: Session) -> None:
        """Drop the session from the active set if it is still the active one."""
        active_key = self._active_key(session.channel, session.channel_id)
        if await self.redis.get(active_key) == session.id:
            await self.redis.delete(active_key)

    async def finalize(self, session: Session) -> None:
        """Persist a terminal session permanently and release it."""
        if not session.is_terminal:
            raise InvalidTransitionError(f"Session {session.id} is still in progress")
        await self.save(session)
        await self.redis.persist(self._key(session.id))
        await self.release(session)
        logger.info("[Session] Finalized %s as %s", session.id, session.status.value)

    # =========================================================================
    # Reporting
    # =========================================================================

    async def list_recent(self, limit: int = 50) -> List[Session]:
        """Most recent sessions first. Expired records are skipped."""
        ids = await self.redis.zrevrange("soundsteps:sessions", 0, max(limit, 1) - 1)
        sessions = []
        for session_id in ids:
            session = await self.get_by_id(session_id)
            if session:
                sessions.append(session)
        return sessions

    async def latest_for_phone(
        self,
        phone: str,
        channel: Optional[Channel] = None
    ) -> Optional[Session]:
        for session_id in await self.redis.zrevrange(self._phone_key(phone), 0, -1):
            session = await self.get_by_id(session_id)
            if session and (channel is None or session.channel == channel):
                return session
        return None

    async def stats(self, limit: int = 100) -> Dict[str, Any]:
        sessions = await self.list_recent(limit)
        total = len(sessions)
        return {
            "totalSessions": total,
            "completed": sum(1 for s in sessions if s.status == SessionStatus.COMPLETED),
            "inProgress": sum(1 for s in sessions if s.status == SessionStatus.IN_PROGRESS),
            "abandoned": sum(1 for s in sessions if s.status == SessionStatus.ABANDONED),
            "failed": sum(1 for s in sessions if s.status == SessionStatus.FAILED),
            "averageScore": round(sum(s.score for s in sessions) / total, 2) if total else 0,
        }

    async def close(self) -> None:
        await self.redis.aclose()
