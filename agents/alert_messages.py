"""
Discord message builders for alerts and notifications

Each builder returns a message body {"embeds": [...], "components": [...]}
ready for the bot API. Webhook delivery drops the components.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from core.clock import utcnow
from core.config import settings
from schemas.alert import AlertCandidate, NotificationSettings, SuspiciousReason

COLOR_COUNTRY_CHANGE = 0xFFA500
COLOR_IP_CHANGE = 0x3498DB
COLOR_EXCESSIVE_VIEWS = 0x9B59B6
COLOR_VPN_PROXY = 0xE74C3C
COLOR_MULTIPLE_DEVICES = 0xE74C3C
COLOR_ODD_HOURS = 0x9B59B6
COLOR_NEW_SESSION = 0x3498DB
COLOR_TEST = 0xF59E0B


def _field(name: str, value: Any, inline: bool = True) -> Dict[str, Any]:
    return {"name": name, "value": str(value), "inline": inline}


def _mention(discord_id: str) -> str:
    return f"<@{discord_id}>"


def _link_button(label: str, url: str) -> List[Dict[str, Any]]:
    # Action row (type 1) holding a single link button (type 2, style 5)
    return [{
        "type": 1,
        "components": [{"type": 2, "style": 5, "label": label, "url": url}],
    }]


def build_embed(
    title: str,
    color: int,
    description: Optional[str] = None,
    fields: Optional[List[Dict[str, Any]]] = None,
    timestamp: Optional[datetime] = None,
    footer: Optional[str] = None
) -> Dict[str, Any]:
    embed: Dict[str, Any] = {
        "title": title,
        "color": color,
        "timestamp": (timestamp or utcnow()).isoformat() + "Z",
        "footer": {"text": footer or settings.NOTIFICATION_FOOTER},
    }
    if description:
        embed["description"] = description
    if fields:
        embed["fields"] = fields
    return embed


def build_message(embed: Dict[str, Any], link_url: Optional[str] = None, link_label: str = "Open Site") -> Dict[str, Any]:
    message: Dict[str, Any] = {"embeds": [embed]}
    if link_url:
        message["components"] = _link_button(link_label, link_url)
    return message


def alert_message(
    candidate: AlertCandidate,
    notification_settings: NotificationSettings,
    video_title: Optional[str] = None
) -> Dict[str, Any]:
    """Render the embed for a rule finding"""
    details = candidate.details
    subject = _mention(candidate.discord_id)
    rule = candidate.rule

    if rule == "country_change":
        embed = build_embed(
            "🌍 Country Change Alert",
            COLOR_COUNTRY_CHANGE,
            description=(
                f"User {subject} changed country from **{details.get('old_country')}** "
                f"to **{details.get('new_country')}**"
            ),
        )
    elif rule == SuspiciousReason.IP_CHANGE.value:
        embed = build_embed(
            "📡 IP Change Alert",
            COLOR_IP_CHANGE,
            description=f"User {subject} changed IP address",
            fields=[
                _field("Previous IP", f"||{details.get('old_ip')}||"),
                _field("New IP", f"||{details.get('new_ip')}||"),
            ],
        )
    elif rule == "excessive_views":
        count = details.get("view_count")
        embed = build_embed(
            "🔄 Excessive Views Alert",
            COLOR_EXCESSIVE_VIEWS,
            description=f"User {subject} watched the same video **{count}** times in 24 hours",
            fields=[
                _field("Video", video_title or details.get("video_id")),
                _field("Threshold", notification_settings.excessive_views_threshold),
                _field("Next Alert", f"At {count + notification_settings.excessive_views_interval} views"),
            ],
        )
    elif rule == SuspiciousReason.VPN_PROXY_DETECTED.value:
        embed = build_embed(
            "🛡️ VPN/Proxy Detected",
            COLOR_VPN_PROXY,
            description=f"User {subject} is using a VPN or Proxy",
            fields=[
                _field("IP", f"||{details.get('ip')}||"),
                _field("Type", "Proxy" if details.get("is_proxy") else "Hosting/VPN"),
            ],
        )
    elif rule == SuspiciousReason.MULTIPLE_DEVICES.value:
        embed = build_embed(
            "📱 Multiple Devices Alert",
            COLOR_MULTIPLE_DEVICES,
            description=(
                f"User {subject} is watching from **{details.get('device_count')}** "
                f"different devices simultaneously"
            ),
            fields=[_field("Time Window", "5 minutes")],
        )
    elif rule == SuspiciousReason.ODD_HOURS.value:
        embed = build_embed(
            "🌙 Odd Hours Activity",
            COLOR_ODD_HOURS,
            description=f"User {subject} is watching at an unusual hour",
            fields=[
                _field("Current Hour (UTC)", f"{details.get('hour')}:00"),
                _field(
                    "Odd Hours Range",
                    f"{notification_settings.odd_hours_start}:00 - {notification_settings.odd_hours_end}:00",
                ),
            ],
        )
    else:
        embed = build_embed(
            f"⚠️ {candidate.type.value}",
            COLOR_VPN_PROXY,
            description=f"User {subject}",
        )
    return build_message(embed)


def new_session_message(
    discord_id: str,
    country: Optional[str],
    city: Optional[str],
    video_title: Optional[str],
    member_video_views: int,
    video_id: Optional[str] = None
) -> Dict[str, Any]:
    location = f"{city}, {country}" if city else (country or "Unknown")
    embed = build_embed(
        "👁️ New Watch Session Started",
        COLOR_NEW_SESSION,
        fields=[
            _field("Member", _mention(discord_id)),
            _field("Country", location),
            _field("Video", video_title or "Unknown", inline=False),
            _field("Video Views", f"{member_video_views} views"),
        ],
    )
    link = f"{settings.APP_URL.rstrip('/')}/watch/{video_id}" if video_id else None
    return build_message(embed, link_url=link, link_label="▶️ Open Video")


def diagnostic_message() -> Dict[str, Any]:
    now = utcnow()
    embed = build_embed(
        "🔧 Test Notification",
        COLOR_TEST,
        description=f"Sent at {now.isoformat()}Z",
        timestamp=now,
    )
    return build_message(embed, link_url=f"{settings.APP_URL.rstrip('/')}/app", link_label="▶️ Open Site")
