"""
Relational records read and written by the core.

Contract:
- view_sessions is owned by the SessionRecorder; the rule engine only reads it
- watch_sessions holds unauthenticated telemetry and is never read by the rules
- alerts is append-only
- settings holds a single row per deployment
- members and videos are maintained elsewhere and only read here
"""

import uuid

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, JSON, String
from sqlalchemy.orm import declarative_base

from core.clock import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class WatchSession(Base):
    """One playback attempt with its forensic watermark and client signals"""
    __tablename__ = "view_sessions"

    id = Column(String(36), primary_key=True, default=_uuid)
    video_id = Column(String(64), nullable=False)
    discord_id = Column(String(64), nullable=False)
    watermark_code = Column(String(16), nullable=False)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    country = Column(String(64), nullable=True)
    city = Column(String(128), nullable=True)
    isp = Column(String(255), nullable=True)
    is_vpn = Column(Boolean, nullable=False, default=False)
    watch_seconds = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    ended_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_view_sessions_subject_started", "discord_id", "started_at"),
        Index("ix_view_sessions_subject_video_started", "discord_id", "video_id", "started_at"),
    )

    def __repr__(self):
        return (
            f"<WatchSession(id={self.id}, discord_id={self.discord_id}, "
            f"video_id={self.video_id}, watch_seconds={self.watch_seconds})>"
        )


class TelemetrySession(Base):
    """
    Unauthenticated playback telemetry

    Kept apart from view_sessions so unverified reports never reach the
    anomaly history or view counts.
    """
    __tablename__ = "watch_sessions"

    id = Column(String(36), primary_key=True, default=_uuid)
    video_id = Column(String(64), nullable=False)
    discord_id = Column(String(64), nullable=False, index=True)
    watermark_code = Column(String(16), nullable=False)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    watch_seconds = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    ended_at = Column(DateTime, nullable=True)


class Alert(Base):
    """A persisted anomaly finding"""
    __tablename__ = "alerts"

    id = Column(String(36), primary_key=True, default=_uuid)
    type = Column(String(32), nullable=False)
    severity = Column(String(16), nullable=False)
    discord_id = Column(String(64), nullable=False, index=True)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self):
        return f"<Alert(type={self.type}, severity={self.severity}, discord_id={self.discord_id})>"


class SettingsRecord(Base):
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    notify_country_change = Column(Boolean, nullable=True)
    notify_ip_change = Column(Boolean, nullable=True)
    notify_excessive_views = Column(Boolean, nullable=True)
    excessive_views_threshold = Column(Integer, nullable=True)
    excessive_views_interval = Column(Integer, nullable=True)
    notify_suspicious_activity = Column(Boolean, nullable=True)
    notify_vpn_proxy = Column(Boolean, nullable=True)
    notify_multiple_devices = Column(Boolean, nullable=True)
    notify_odd_hours = Column(Boolean, nullable=True)
    odd_hours_start = Column(Integer, nullable=True)
    odd_hours_end = Column(Integer, nullable=True)
    notify_new_session = Column(Boolean, nullable=True)
    webhook_security = Column(String(512), nullable=True)


class Member(Base):
    __tablename__ = "members"

    discord_id = Column(String(64), primary_key=True)
    discord_username = Column(String(128), nullable=True)
    discord_global_name = Column(String(128), nullable=True)
    discord_avatar = Column(String(255), nullable=True)
    game_id = Column(String(64), nullable=True)
    role = Column(String(32), nullable=True, default="member")
    is_admin = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)


class Video(Base):
    __tablename__ = "videos"

    id = Column(String(64), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    stream_uid = Column(String(128), nullable=True)
    views = Column(Integer, nullable=False, default=0)
