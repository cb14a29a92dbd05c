"""
Alert and notification-settings schemas
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class AlertType(str, Enum):
    """Persisted alert types"""
    COUNTRY_CHANGE = "country_change"
    EXCESSIVE_VIEWS = "excessive_views"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SuspiciousReason(str, Enum):
    """details.reason for suspicious_activity alerts"""
    IP_CHANGE = "ip_change"
    VPN_PROXY_DETECTED = "vpn_proxy_detected"
    MULTIPLE_DEVICES = "multiple_devices"
    ODD_HOURS = "odd_hours"


class AlertCandidate(BaseModel):
    """
    A finding produced by one rule before it is persisted and dispatched

    rule names the rule that produced it; evidence is the number of
    historical sessions or signals the rule read to reach the finding.
    """
    rule: str
    type: AlertType
    severity: AlertSeverity
    discord_id: str
    details: Dict[str, Any] = Field(default_factory=dict)
    evidence: int = Field(default=1, ge=1)


class NotificationSettings(BaseModel):
    """
    Per-deployment rule toggles, thresholds and notification destination

    Missing or null columns fall back to the defaults below.
    """
    model_config = ConfigDict(from_attributes=True)

    notify_country_change: bool = True
    notify_ip_change: bool = True
    notify_excessive_views: bool = True
    excessive_views_threshold: int = 5
    excessive_views_interval: int = 10
    notify_suspicious_activity: bool = True
    notify_vpn_proxy: bool = True
    notify_multiple_devices: bool = True
    notify_odd_hours: bool = False
    odd_hours_start: int = Field(default=2, ge=0, le=24)
    odd_hours_end: int = Field(default=6, ge=0, le=24)
    notify_new_session: bool = True
    webhook_url: Optional[str] = None

    @classmethod
    def from_record(cls, record, fallback_webhook: Optional[str] = None) -> "NotificationSettings":
        if record is None:
            return cls(webhook_url=fallback_webhook)
        values = {
            name: getattr(record, name)
            for name in cls.model_fields
            if getattr(record, name, None) is not None
        }
        values["webhook_url"] = getattr(record, "webhook_security", None) or fallback_webhook
        return cls(**values)


class AlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: AlertType
    severity: AlertSeverity
    discord_id: str
    details: Dict[str, Any]
    created_at: datetime
