"""
Watch-session request/response schemas and client signals
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ClientSignals(BaseModel):
    """Signals captured from the playback request"""
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    city_hint: Optional[str] = Field(
        default=None,
        description="City reported by the edge (cf-ipcity), preferred over lookup"
    )


class GeoInfo(BaseModel):
    """Result of the geo/ISP/VPN lookup, degraded to defaults on failure"""
    country: str = "Unknown"
    city: str = ""
    isp: str = ""
    is_proxy: bool = False
    is_hosting: bool = False
    degraded: bool = False

    @property
    def is_vpn(self) -> bool:
        return self.is_proxy or self.is_hosting


class SessionEvent(BaseModel):
    """A just-recorded session as seen by the anomaly rules"""
    session_id: Optional[str] = None
    discord_id: str
    video_id: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    country: Optional[str] = None
    is_proxy: bool = False
    is_hosting: bool = False
    occurred_at: datetime


class TrackingRequest(BaseModel):
    """Authenticated playback tick"""
    sessionId: Optional[str] = None
    videoId: Optional[str] = None
    watermarkCode: Optional[str] = Field(default=None, max_length=16)
    watchSeconds: Optional[int] = Field(default=None, ge=0)
    action: Optional[str] = None


class SessionLogRequest(BaseModel):
    """Unauthenticated best-effort telemetry"""
    video_id: Optional[str] = None
    subject_id: Optional[str] = None
    watch_seconds: Optional[int] = 0


class WatchSessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    video_id: str
    discord_id: str
    watermark_code: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    isp: Optional[str] = None
    is_vpn: bool = False
    watch_seconds: int = 0
    started_at: datetime
    ended_at: Optional[datetime] = None
