"""
Alert Message Tests
Embed titles, colours, footer and link buttons
"""

import pytest

from agents.alert_messages import (
    COLOR_COUNTRY_CHANGE,
    COLOR_VPN_PROXY,
    alert_message,
    diagnostic_message,
    new_session_message,
)
from schemas.alert import AlertCandidate, AlertSeverity, AlertType, NotificationSettings


def candidate(rule, type_=AlertType.SUSPICIOUS_ACTIVITY, **details):
    return AlertCandidate(
        rule=rule,
        type=type_,
        severity=AlertSeverity.HIGH,
        discord_id="100",
        details=details,
    )


class TestAlertMessage:

    def test_country_change_embed(self):
        message = alert_message(
            candidate("country_change", AlertType.COUNTRY_CHANGE, old_country="France", new_country="Germany"),
            NotificationSettings(),
        )
        embed = message["embeds"][0]

        assert embed["title"] == "🌍 Country Change Alert"
        assert embed["color"] == COLOR_COUNTRY_CHANGE
        assert "**France**" in embed["description"] and "**Germany**" in embed["description"]
        assert embed["footer"] == {"text": "RGR - Arena Run"}
        assert embed["timestamp"].endswith("Z")
        assert "components" not in message

    def test_excessive_views_announces_next_step(self):
        message = alert_message(
            candidate("excessive_views", AlertType.EXCESSIVE_VIEWS, video_id="vid-1", view_count=15, threshold=5),
            NotificationSettings(),
            video_title="Arena Run #42",
        )
        fields = {f["name"]: f["value"] for f in message["embeds"][0]["fields"]}

        assert fields == {"Video": "Arena Run #42", "Threshold": "5", "Next Alert": "At 25 views"}

    @pytest.mark.parametrize("is_proxy,expected", [(True, "Proxy"), (False, "Hosting/VPN")])
    def test_vpn_type_field(self, is_proxy, expected):
        message = alert_message(
            candidate("vpn_proxy_detected", ip="8.8.8.8", is_proxy=is_proxy, is_hosting=not is_proxy),
            NotificationSettings(),
        )
        embed = message["embeds"][0]
        fields = {f["name"]: f["value"] for f in embed["fields"]}

        assert embed["color"] == COLOR_VPN_PROXY
        assert fields["IP"] == "||8.8.8.8||"
        assert fields["Type"] == expected


class TestNotificationMessages:

    def test_new_session_links_to_video(self):
        message = new_session_message("100", "Germany", None, None, 3, video_id="vid-1")
        fields = {f["name"]: f["value"] for f in message["embeds"][0]["fields"]}
        button = message["components"][0]["components"][0]

        assert fields["Country"] == "Germany"
        assert fields["Video"] == "Unknown"
        assert fields["Video Views"] == "3 views"
        assert button["style"] == 5
        assert button["url"].endswith("/watch/vid-1")

    def test_diagnostic_message(self):
        message = diagnostic_message()

        assert message["embeds"][0]["title"] == "🔧 Test Notification"
        assert message["components"][0]["components"][0]["url"].endswith("/app")
