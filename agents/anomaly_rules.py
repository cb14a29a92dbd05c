"""
Anomaly Rules - pure detectors over a subject's recent session history

Every rule has the signature

    rule(event, history, config) -> Optional[AlertCandidate]

where event is the just-recorded session, history is the subject's sessions
from the last 24h (the current session included) and config is the active
NotificationSettings. Rules read nothing else: windows are measured back from
event.occurred_at, and a disabled rule returns None without looking at
history.

Rules are evaluated in RULES order. No rule suppresses another.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, Tuple

from schemas.alert import (
    AlertCandidate,
    AlertSeverity,
    AlertType,
    NotificationSettings,
    SuspiciousReason,
)
from schemas.session import SessionEvent

HISTORY_WINDOW = timedelta(hours=24)
DEVICE_WINDOW = timedelta(minutes=5)


@dataclass(frozen=True)
class HistoryEntry:
    """The columns of a past session the rules look at"""
    session_id: Optional[str]
    video_id: str
    started_at: datetime
    country: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_record(cls, record) -> "HistoryEntry":
        return cls(
            session_id=record.id,
            video_id=record.video_id,
            started_at=record.started_at,
            country=record.country,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
        )


def _within(history: Sequence[HistoryEntry], event: SessionEvent, window: timedelta) -> List[HistoryEntry]:
    since = event.occurred_at - window
    return [h for h in history if h.started_at >= since]


def check_country_change(
    event: SessionEvent,
    history: Sequence[HistoryEntry],
    config: NotificationSettings
) -> Optional[AlertCandidate]:
    """Another session in 24h reported a different (non-null) country"""
    if not config.notify_country_change or not event.country:
        return None

    recent = _within(history, event, HISTORY_WINDOW)
    others = [h for h in recent if h.country and h.country != event.country]
    if not others:
        return None

    return AlertCandidate(
        rule="country_change",
        type=AlertType.COUNTRY_CHANGE,
        severity=AlertSeverity.MEDIUM,
        discord_id=event.discord_id,
        details={"old_country": others[0].country, "new_country": event.country},
        evidence=len(others),
    )


def check_ip_change(
    event: SessionEvent,
    history: Sequence[HistoryEntry],
    config: NotificationSettings
) -> Optional[AlertCandidate]:
    """Another session in 24h came from a different IP address"""
    if not config.notify_ip_change or not event.ip_address:
        return None

    recent = _within(history, event, HISTORY_WINDOW)
    others = [h for h in recent if h.ip_address and h.ip_address != event.ip_address]
    if not others:
        return None

    return AlertCandidate(
        rule=SuspiciousReason.IP_CHANGE.value,
        type=AlertType.SUSPICIOUS_ACTIVITY,
        severity=AlertSeverity.LOW,
        discord_id=event.discord_id,
        details={
            "old_ip": others[0].ip_address,
            "new_ip": event.ip_address,
            "reason": SuspiciousReason.IP_CHANGE.value,
        },
        evidence=len(others),
    )


def excessive_views_due(count: int, threshold: int, interval: int) -> bool:
    """
    True when count lands on an alert step

    threshold=5, interval=10 fires at 5, 15, 25, ... A non-positive interval
    fires once, at the threshold.
    """
    if count < threshold:
        return False
    if interval <= 0:
        return count == threshold
    return (count - threshold) % interval == 0


def check_excessive_views(
    event: SessionEvent,
    history: Sequence[HistoryEntry],
    config: NotificationSettings
) -> Optional[AlertCandidate]:
    """The subject opened the same video a step-aligned number of times in 24h"""
    if not config.notify_excessive_views:
        return None

    recent = _within(history, event, HISTORY_WINDOW)
    views = [h for h in recent if h.video_id == event.video_id]
    count = len(views)
    if count == 0:
        return None
    if not excessive_views_due(count, config.excessive_views_threshold, config.excessive_views_interval):
        return None

    return AlertCandidate(
        rule="excessive_views",
        type=AlertType.EXCESSIVE_VIEWS,
        severity=AlertSeverity.LOW,
        discord_id=event.discord_id,
        details={
            "video_id": event.video_id,
            "view_count": count,
            "threshold": config.excessive_views_threshold,
        },
        evidence=count,
    )


def check_vpn_proxy(
    event: SessionEvent,
    history: Sequence[HistoryEntry],
    config: NotificationSettings
) -> Optional[AlertCandidate]:
    """The lookup flagged the current address as a proxy or hosting range"""
    if not (config.notify_suspicious_activity and config.notify_vpn_proxy):
        return None
    if not (event.is_proxy or event.is_hosting):
        return None

    return AlertCandidate(
        rule=SuspiciousReason.VPN_PROXY_DETECTED.value,
        type=AlertType.SUSPICIOUS_ACTIVITY,
        severity=AlertSeverity.HIGH,
        discord_id=event.discord_id,
        details={
            "ip": event.ip_address,
            "reason": SuspiciousReason.VPN_PROXY_DETECTED.value,
            "is_proxy": event.is_proxy,
            "is_hosting": event.is_hosting,
        },
        evidence=1,
    )


def check_multiple_devices(
    event: SessionEvent,
    history: Sequence[HistoryEntry],
    config: NotificationSettings
) -> Optional[AlertCandidate]:
    """A session with a different user agent started in the last 5 minutes"""
    if not (config.notify_suspicious_activity and config.notify_multiple_devices):
        return None
    if not event.user_agent:
        return None

    recent = _within(history, event, DEVICE_WINDOW)
    others = [h for h in recent if h.user_agent and h.user_agent != event.user_agent]
    if not others:
        return None

    unique_agents = {h.user_agent for h in others}
    unique_agents.add(event.user_agent)

    return AlertCandidate(
        rule=SuspiciousReason.MULTIPLE_DEVICES.value,
        type=AlertType.SUSPICIOUS_ACTIVITY,
        severity=AlertSeverity.HIGH,
        discord_id=event.discord_id,
        details={
            "reason": SuspiciousReason.MULTIPLE_DEVICES.value,
            "device_count": len(unique_agents),
            "current_agent": event.user_agent,
        },
        evidence=len(others),
    )


def is_odd_hour(hour: int, start: int, end: int) -> bool:
    """start <= hour < end, wrapping past midnight when start > end"""
    if start <= end:
        return start <= hour < end
    return hour >= start or hour < end


def check_odd_hours(
    event: SessionEvent,
    history: Sequence[HistoryEntry],
    config: NotificationSettings
) -> Optional[AlertCandidate]:
    """The session started inside the configured UTC odd-hours range"""
    if not (config.notify_suspicious_activity and config.notify_odd_hours):
        return None

    hour = event.occurred_at.hour
    if not is_odd_hour(hour, config.odd_hours_start, config.odd_hours_end):
        return None

    return AlertCandidate(
        rule=SuspiciousReason.ODD_HOURS.value,
        type=AlertType.SUSPICIOUS_ACTIVITY,
        severity=AlertSeverity.LOW,
        discord_id=event.discord_id,
        details={
            "reason": SuspiciousReason.ODD_HOURS.value,
            "hour": hour,
            "video_id": event.video_id,
        },
        evidence=1,
    )


Rule = Callable[[SessionEvent, Sequence[HistoryEntry], NotificationSettings], Optional[AlertCandidate]]

RULES: List[Tuple[str, Rule]] = [
    ("country_change", check_country_change),
    ("ip_change", check_ip_change),
    ("excessive_views", check_excessive_views),
    ("vpn_proxy_detected", check_vpn_proxy),
    ("multiple_devices", check_multiple_devices),
    ("odd_hours", check_odd_hours),
]


def evaluate(
    event: SessionEvent,
    history: Sequence[HistoryEntry],
    config: NotificationSettings,
    rules: Sequence[Tuple[str, Rule]] = RULES
) -> List[AlertCandidate]:
    """Run every rule in order and collect the findings"""
    findings = []
    for _, rule in rules:
        candidate = rule(event, history, config)
        if candidate is not None:
            findings.append(candidate)
    return findings
