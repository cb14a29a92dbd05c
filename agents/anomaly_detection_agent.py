"""
Anomaly Detection Agent - rule evaluation over recent watch sessions
Features: country / IP change, excessive views, VPN/proxy, multiple devices,
odd hours; new-session notification
Risk Gates: an alert is only emitted by a rule that read at least one session
or lookup signal

History read and alert insert are not one transaction. Two qualifying events
for the same subject processed concurrently may both see the other's session
and both alert; each event still emits at most one alert per rule.
"""

import time
from typing import List, Optional, Sequence, Tuple

from prometheus_client import Counter, Histogram
from sqlalchemy.ext.asyncio import AsyncSession

from agents.alert_agent import AlertAgent
from agents.alert_messages import alert_message, new_session_message
from agents.anomaly_rules import HISTORY_WINDOW, RULES, HistoryEntry, Rule
from core.config import settings
from core.logging import get_logger
from core.session_store import SessionStore, SettingsStore, VideoStore
from models.records import Alert, WatchSession
from schemas.alert import NotificationSettings
from schemas.session import GeoInfo, SessionEvent

logger = get_logger(__name__)

anomaly_rule_evaluations_total = Counter(
    'arena_anomaly_rule_evaluations_total',
    'Rule evaluations by outcome',
    ['rule', 'outcome']
)
anomaly_evaluation_latency_seconds = Histogram(
    'arena_anomaly_evaluation_latency_seconds',
    'Time to evaluate every rule for one session',
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)


class AnomalyDetectionAgent:
    """
    Runs the anomaly rules against a subject's last 24h of sessions

    Rules run in fixed order; each triggered rule is persisted and
    dispatched independently of the others.
    """

    def __init__(
        self,
        dispatcher: AlertAgent,
        rules: Sequence[Tuple[str, Rule]] = RULES,
        fallback_webhook: Optional[str] = None,
        min_qualifying_seconds: Optional[int] = None
    ):
        self.dispatcher = dispatcher
        self.rules = list(rules)
        self.fallback_webhook = fallback_webhook or settings.DISCORD_WEBHOOK_URL
        self.min_qualifying_seconds = (
            settings.MIN_QUALIFYING_SECONDS
            if min_qualifying_seconds is None else min_qualifying_seconds
        )

    async def load_settings(self, db: AsyncSession) -> NotificationSettings:
        return await SettingsStore(db).load(self.fallback_webhook)

    async def load_history(self, db: AsyncSession, event: SessionEvent) -> List[HistoryEntry]:
        records = await SessionStore(db).recent_for_subject(
            event.discord_id,
            event.occurred_at - HISTORY_WINDOW
        )
        return [HistoryEntry.from_record(r) for r in records]

    async def evaluate(
        self,
        db: AsyncSession,
        event: SessionEvent,
        config: Optional[NotificationSettings] = None
    ) -> List[Alert]:
        """
        Evaluate every rule for one session event

        Args:
            db: Database session (history read, alert insert)
            event: The just-recorded session
            config: Preloaded notification settings (read from the store if None)

        Returns:
            Alerts persisted for this event, in rule order
        """
        start_time = time.time()
        config = config or await self.load_settings(db)
        history = await self.load_history(db, event)

        findings = []
        for name, rule in self.rules:
            candidate = rule(event, history, config)
            anomaly_rule_evaluations_total.labels(
                rule=name,
                outcome='triggered' if candidate else 'clear'
            ).inc()
            if candidate is not None:
                findings.append(candidate)

        alerts = []
        if findings:
            video = await VideoStore(db).get(event.video_id)
            video_title = video.title if video else None
            for candidate in findings:
                message = alert_message(candidate, config, video_title=video_title)
                alerts.append(
                    await self.dispatcher.emit(db, candidate, message, config.webhook_url)
                )

        anomaly_evaluation_latency_seconds.observe(time.time() - start_time)
        logger.info(
            "anomaly_evaluation_complete",
            discord_id=event.discord_id,
            video_id=event.video_id,
            history_size=len(history),
            alerts=[c.rule for c in findings],
        )
        return alerts

    async def on_session_recorded(
        self,
        db: AsyncSession,
        session: WatchSession,
        geo: Optional[GeoInfo] = None
    ) -> List[Alert]:
        """Evaluate a newly created session and announce it"""
        event = SessionEvent(
            session_id=session.id,
            discord_id=session.discord_id,
            video_id=session.video_id,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            country=session.country,
            is_proxy=geo.is_proxy if geo else False,
            is_hosting=geo.is_hosting if geo else bool(session.is_vpn),
            occurred_at=session.started_at,
        )
        config = await self.load_settings(db)
        alerts = await self.evaluate(db, event, config)

        if config.notify_new_session:
            await self._notify_new_session(db, session, config)
        return alerts

    async def _notify_new_session(
        self,
        db: AsyncSession,
        session: WatchSession,
        config: NotificationSettings
    ) -> None:
        views = await SessionStore(db).count_for_subject_video(
            session.discord_id,
            session.video_id,
            min_watch_seconds=self.min_qualifying_seconds,
        )
        video = await VideoStore(db).get(session.video_id)
        self.dispatcher.notify(
            new_session_message(
                discord_id=session.discord_id,
                country=session.country,
                city=session.city,
                video_title=video.title if video else None,
                member_video_views=views,
                video_id=session.video_id,
            ),
            config.webhook_url,
        )
