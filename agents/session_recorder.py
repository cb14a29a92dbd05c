"""
Session Recorder - watch-session lifecycle with forensic watermarks

A session is only recorded once playback reaches MIN_QUALIFYING_SECONDS
(default 3) continuous watched seconds. Opening a new session for the same
(subject, video) closes the previous one. Cumulative watch time only moves
forward.

Geo enrichment is best effort: any lookup failure degrades to
country="Unknown", is_vpn=False and recording continues.

Newly created sessions are handed to the AnomalyDetectionAgent. A failed
evaluation is logged and never undoes the recorded session.
"""

import secrets
from typing import Any, Dict, Optional

from prometheus_client import Counter
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import utcnow
from core.config import settings
from core.exceptions import GeoLookupError, NotFoundException, ValidationException
from core.logging import get_logger
from core.session_store import SessionStore, TelemetryStore, VideoStore
from infrastructure.geo_client import GeoLookupClient
from models.records import TelemetrySession, WatchSession
from schemas.session import ClientSignals, GeoInfo, SessionLogRequest

logger = get_logger(__name__)

# Ambiguous glyphs (0/O, 1/I) are left out so codes can be read off a frame
WATERMARK_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
WATERMARK_LENGTH = 8

sessions_recorded_total = Counter(
    'arena_sessions_recorded_total',
    'Watch-session lifecycle events',
    ['event']
)


def issue_watermark(length: int = WATERMARK_LENGTH) -> str:
    return "".join(secrets.choice(WATERMARK_ALPHABET) for _ in range(length))


class SessionRecorder:
    """
    Records playback attempts with watermark and client signals

    Usage:
        recorder = SessionRecorder(geo_client, detection_agent)
        session = await recorder.start_or_record(db, "123", "vid-1", signals, 4)
    """

    def __init__(
        self,
        geo_client: GeoLookupClient,
        detection_agent=None,
        min_qualifying_seconds: Optional[int] = None
    ):
        self.geo_client = geo_client
        self.detection_agent = detection_agent
        self.min_qualifying_seconds = (
            settings.MIN_QUALIFYING_SECONDS
            if min_qualifying_seconds is None else min_qualifying_seconds
        )

    @staticmethod
    def issue_watermark() -> str:
        return issue_watermark()

    async def resolve_geo(self, signals: ClientSignals) -> GeoInfo:
        """Look up the client address, degrading to defaults on any failure"""
        try:
            geo = await self.geo_client.lookup(signals.ip_address)
        except GeoLookupError as e:
            logger.info("geo_lookup_degraded", ip_address=signals.ip_address, reason=str(e))
            geo = GeoInfo(degraded=True)

        if signals.city_hint:
            geo = geo.model_copy(update={"city": signals.city_hint})
        return geo

    async def playback_context(self, signals: ClientSignals) -> Dict[str, Any]:
        """
        Watermark and enrichment handed to the player before a session exists

        The client echoes watermark_code back when the session qualifies.
        """
        geo = await self.resolve_geo(signals)
        return {
            "watermark_code": self.issue_watermark(),
            "ip_address": signals.ip_address,
            "country": geo.country,
            "city": geo.city,
            "is_vpn": geo.is_vpn,
            "isp": geo.isp,
            "user_agent": signals.user_agent,
        }

    async def start_or_record(
        self,
        db: AsyncSession,
        discord_id: str,
        video_id: str,
        signals: ClientSignals,
        watch_seconds: int,
        watermark_code: Optional[str] = None
    ) -> Optional[WatchSession]:
        """
        Open a session once playback qualifies

        Args:
            db: Database session
            discord_id: Authenticated subject
            video_id: Video being watched
            signals: IP / user agent / edge city captured from the request
            watch_seconds: Cumulative watched seconds reported by the player
            watermark_code: Code issued at playback, generated if absent

        Returns:
            The new WatchSession, or None below the qualifying threshold
        """
        if watch_seconds < self.min_qualifying_seconds:
            return None
        if not video_id:
            raise ValidationException("Video ID required")

        store = SessionStore(db)
        now = utcnow()

        superseded = await store.close_open(discord_id, video_id, now)
        geo = await self.resolve_geo(signals)

        session = await store.add(WatchSession(
            video_id=video_id,
            discord_id=discord_id,
            watermark_code=watermark_code or self.issue_watermark(),
            ip_address=signals.ip_address,
            user_agent=signals.user_agent,
            country=geo.country,
            city=geo.city,
            isp=geo.isp,
            is_vpn=geo.is_vpn,
            watch_seconds=watch_seconds,
            started_at=now,
        ))
        await VideoStore(db).increment_views(video_id)
        await db.commit()

        sessions_recorded_total.labels(event='created').inc()
        if superseded:
            sessions_recorded_total.labels(event='superseded').inc(superseded)
        logger.info(
            "watch_session_started",
            session_id=session.id,
            discord_id=discord_id,
            video_id=video_id,
            country=geo.country,
            is_vpn=geo.is_vpn,
            superseded=superseded,
        )

        if self.detection_agent is not None:
            try:
                await self.detection_agent.on_session_recorded(db, session, geo)
            except SQLAlchemyError as e:
                # Detach first so the rollback does not expire the recorded row
                db.expunge(session)
                await db.rollback()
                sessions_recorded_total.labels(event='evaluation_failed').inc()
                logger.error(
                    "anomaly_evaluation_failed",
                    session_id=session.id,
                    discord_id=discord_id,
                    error=str(e),
                )
        return session

    async def update(
        self,
        db: AsyncSession,
        session_id: str,
        watch_seconds: int,
        discord_id: Optional[str] = None
    ) -> WatchSession:
        """
        Advance cumulative watch time

        Lower or equal values (duplicates, out-of-order retries) leave the
        stored value untouched.

        Raises:
            NotFoundException: unknown session, or owned by another subject
        """
        store = SessionStore(db)
        if await store.get(session_id, discord_id) is None:
            raise NotFoundException("Session not found")

        advanced = await store.advance_watch_seconds(session_id, watch_seconds)
        await db.commit()
        if advanced:
            sessions_recorded_total.labels(event='updated').inc()
        return await store.get(session_id)

    async def close(
        self,
        db: AsyncSession,
        session_id: str,
        discord_id: Optional[str] = None
    ) -> WatchSession:
        """
        Stamp ended_at; closing twice keeps the first stamp

        Raises:
            NotFoundException: unknown session, or owned by another subject
        """
        store = SessionStore(db)
        if await store.get(session_id, discord_id) is None:
            raise NotFoundException("Session not found")

        closed = await store.stamp_ended(session_id, utcnow())
        await db.commit()
        if closed:
            sessions_recorded_total.labels(event='closed').inc()
            logger.info("watch_session_closed", session_id=session_id)
        return await store.get(session_id)

    async def log_session(
        self,
        db: AsyncSession,
        payload: SessionLogRequest,
        signals: Optional[ClientSignals] = None
    ) -> bool:
        """
        Best-effort telemetry ingestion

        Reports land in watch_sessions, already closed, and never feed the
        anomaly rules. Missing identifiers are rejected; persistence failures
        are logged and reported as success so the player never retries.

        Raises:
            ValidationException: video_id or subject_id missing
        """
        if not payload.video_id or not payload.subject_id:
            raise ValidationException(
                "video_id and subject_id are required",
                details={"video_id": payload.video_id, "subject_id": payload.subject_id},
            )

        try:
            now = utcnow()
            await TelemetryStore(db).add(TelemetrySession(
                video_id=payload.video_id,
                discord_id=payload.subject_id,
                watermark_code=self.issue_watermark(),
                ip_address=signals.ip_address if signals else None,
                user_agent=signals.user_agent if signals else None,
                watch_seconds=max(payload.watch_seconds or 0, 0),
                started_at=now,
                ended_at=now,
            ))
            await db.commit()
            sessions_recorded_total.labels(event='logged').inc()
        except SQLAlchemyError as e:
            await db.rollback()
            sessions_recorded_total.labels(event='log_failed').inc()
            logger.error(
                "session_log_persist_failed",
                video_id=payload.video_id,
                subject_id=payload.subject_id,
                error=str(e),
            )
        return True
