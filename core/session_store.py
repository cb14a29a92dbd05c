"""
Repositories over the relational store

Queries are filtered by time window, subject, and (subject, video) pair.
Writers flush but do not commit; the calling agent owns the transaction.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.records import Alert, Member, SettingsRecord, TelemetrySession, Video, WatchSession
from schemas.alert import AlertCandidate, NotificationSettings


class SessionStore:
    """Read/write access to view_sessions"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, session: WatchSession) -> WatchSession:
        self.db.add(session)
        await self.db.flush()
        return session

    async def get(self, session_id: str, discord_id: Optional[str] = None) -> Optional[WatchSession]:
        stmt = (
            select(WatchSession)
            .where(WatchSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        if discord_id is not None:
            stmt = stmt.where(WatchSession.discord_id == discord_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def close_open(self, discord_id: str, video_id: str, ended_at: datetime) -> int:
        """Stamp ended_at on every open session for (subject, video)"""
        result = await self.db.execute(
            update(WatchSession)
            .where(
                WatchSession.discord_id == discord_id,
                WatchSession.video_id == video_id,
                WatchSession.ended_at.is_(None),
            )
            .values(ended_at=ended_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def advance_watch_seconds(self, session_id: str, watch_seconds: int) -> int:
        """
        Raise watch_seconds to the given cumulative value

        The comparison happens inside the UPDATE so concurrent or reordered
        retries can never lower the stored value.
        """
        result = await self.db.execute(
            update(WatchSession)
            .where(
                WatchSession.id == session_id,
                WatchSession.watch_seconds < watch_seconds,
            )
            .values(watch_seconds=watch_seconds)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def stamp_ended(self, session_id: str, ended_at: datetime) -> int:
        result = await self.db.execute(
            update(WatchSession)
            .where(WatchSession.id == session_id, WatchSession.ended_at.is_(None))
            .values(ended_at=ended_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def recent_for_subject(self, discord_id: str, since: datetime) -> List[WatchSession]:
        result = await self.db.execute(
            select(WatchSession)
            .where(
                WatchSession.discord_id == discord_id,
                WatchSession.started_at >= since,
            )
            .order_by(WatchSession.started_at.desc())
        )
        return list(result.scalars().all())

    async def count_for_subject_video(
        self,
        discord_id: str,
        video_id: str,
        since: Optional[datetime] = None,
        min_watch_seconds: Optional[int] = None
    ) -> int:
        stmt = select(func.count()).select_from(WatchSession).where(
            WatchSession.discord_id == discord_id,
            WatchSession.video_id == video_id,
        )
        if since is not None:
            stmt = stmt.where(WatchSession.started_at >= since)
        if min_watch_seconds is not None:
            stmt = stmt.where(WatchSession.watch_seconds >= min_watch_seconds)
        result = await self.db.execute(stmt)
        return int(result.scalar_one())


class TelemetryStore:
    """Write access to watch_sessions"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, record: TelemetrySession) -> TelemetrySession:
        self.db.add(record)
        await self.db.flush()
        return record


class AlertStore:
    """Append-only access to alerts"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, candidate: AlertCandidate) -> Alert:
        alert = Alert(
            type=candidate.type.value,
            severity=candidate.severity.value,
            discord_id=candidate.discord_id,
            details=candidate.details,
        )
        self.db.add(alert)
        await self.db.flush()
        return alert

    async def for_subject(self, discord_id: str) -> List[Alert]:
        result = await self.db.execute(
            select(Alert)
            .where(Alert.discord_id == discord_id)
            .order_by(Alert.created_at)
        )
        return list(result.scalars().all())


class SettingsStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def load(self, fallback_webhook: Optional[str] = None) -> NotificationSettings:
        result = await self.db.execute(select(SettingsRecord).order_by(SettingsRecord.id).limit(1))
        return NotificationSettings.from_record(result.scalar_one_or_none(), fallback_webhook)


class MemberStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, discord_id: str) -> Optional[Member]:
        return await self.db.get(Member, discord_id)


class VideoStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, video_id: str) -> Optional[Video]:
        return await self.db.get(Video, video_id)

    async def increment_views(self, video_id: str) -> None:
        await self.db.execute(
            update(Video)
            .where(Video.id == video_id)
            .values(views=Video.views + 1)
            .execution_options(synchronize_session=False)
        )
