"""
HTTP API Tests
Uniform 401s, playback, tracking lifecycle, telemetry, refresh and admin test
notification through FastAPI TestClient against a file-backed SQLite database
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from agents.alert_agent import AlertAgent
from agents.anomaly_detection_agent import AnomalyDetectionAgent
from agents.session_recorder import SessionRecorder
from api.dependencies import get_alert_agent, get_detection_agent, get_session_recorder
from api.main import app
from core.clock import now_ms
from core.database import configure_engine
from core.token_authority import DAY_MS
from middleware.auth import get_token_authority
from models.records import Alert, Base, Member, TelemetrySession, Video, WatchSession
from schemas.session import GeoInfo

UNAUTHORIZED = {"error": "unauthorized", "message": "Unauthorized"}


@pytest.fixture
def sync_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'arena.db'}")
    Base.metadata.create_all(engine)
    with Session(engine) as db:
        db.add_all([
            Video(id="vid-1", title="Arena Run #42", stream_uid="stream-abc", views=0),
            Member(discord_id="100", discord_username="runner", role="member", is_active=True),
            Member(discord_id="300", discord_username="gone", role="member", is_active=False),
            Member(discord_id="900", discord_username="boss", role="admin", is_admin=True, is_active=True),
        ])
        db.commit()
    yield engine
    engine.dispose()


@pytest.fixture
def bot_client():
    bot = AsyncMock()
    bot.channel = "discord_bot"
    bot.configured = True
    bot.bot_token = "bot-token"
    bot.channel_id = "555"
    return bot


@pytest.fixture
def dispatcher(bot_client):
    webhook = AsyncMock()
    webhook.channel = "discord_webhook"
    return AlertAgent(bot_client=bot_client, webhook_client=webhook, enable_delivery=True)


@pytest.fixture
def client(sync_engine, dispatcher):
    configure_engine(str(sync_engine.url).replace("sqlite://", "sqlite+aiosqlite://", 1))

    geo_client = AsyncMock()
    geo_client.lookup.return_value = GeoInfo(country="Germany", city="Berlin", isp="Example Telecom")
    detection_agent = AnomalyDetectionAgent(dispatcher=dispatcher, min_qualifying_seconds=3)
    recorder = SessionRecorder(geo_client=geo_client, detection_agent=detection_agent, min_qualifying_seconds=3)

    app.dependency_overrides[get_alert_agent] = lambda: dispatcher
    app.dependency_overrides[get_detection_agent] = lambda: detection_agent
    app.dependency_overrides[get_session_recorder] = lambda: recorder
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def bearer(discord_id: str = "100", **claims) -> dict:
    token = get_token_authority().issue({"discord_id": discord_id, "username": "runner", **claims})
    return {"Authorization": f"Bearer {token}"}


def expired_bearer(discord_id: str, days_ago: int) -> dict:
    issued_at = now_ms() - (7 + days_ago) * DAY_MS
    with patch("core.token_authority.now_ms", return_value=issued_at):
        token = get_token_authority().issue({"discord_id": discord_id})
    return {"Authorization": f"Bearer {token}"}


class TestAuthentication:
    """Every authentication failure looks the same"""

    @pytest.mark.parametrize("headers", [
        {},
        {"Authorization": "Bearer not-a-token"},
        {"Authorization": "Basic dXNlcjpwYXNz"},
        {"Authorization": "Bearer a.b.c"},
    ])
    def test_bad_credentials_get_uniform_401(self, client, headers):
        response = client.get("/api/playback", params={"videoId": "vid-1"}, headers=headers)

        assert response.status_code == 401
        assert response.json() == UNAUTHORIZED

    def test_expired_token_gets_uniform_401(self, client):
        response = client.post("/api/tracking", json={"watchSeconds": 1}, headers=expired_bearer("100", 1))

        assert response.status_code == 401
        assert response.json() == UNAUTHORIZED


class TestPlayback:

    def test_returns_stream_and_session_data(self, client):
        response = client.get(
            "/api/playback",
            params={"videoId": "vid-1"},
            headers={**bearer(), "X-Forwarded-For": "8.8.8.8, 10.0.0.1", "User-Agent": "pytest-agent"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["token"] == "stream-abc"
        data = body["sessionData"]
        assert data["video_id"] == "vid-1"
        assert data["discord_id"] == "100"
        assert len(data["watermark_code"]) == 8
        assert data["ip_address"] == "8.8.8.8"
        assert data["country"] == "Germany"
        assert data["user_agent"] == "pytest-agent"
        assert data["is_vpn"] is False

    def test_missing_video_id_is_400(self, client):
        response = client.get("/api/playback", headers=bearer())

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_unknown_video_is_404(self, client):
        response = client.get("/api/playback", params={"videoId": "nope"}, headers=bearer())

        assert response.status_code == 404
        assert response.json() == {"error": "not_found", "message": "Video not found"}


class TestTracking:
    """Create at the threshold, advance, close"""

    def test_session_lifecycle(self, client, sync_engine):
        headers = {**bearer(), "X-Forwarded-For": "8.8.8.8"}

        early = client.post("/api/tracking", json={"videoId": "vid-1", "watchSeconds": 2}, headers=headers)
        assert early.json() == {"success": True}

        created = client.post(
            "/api/tracking",
            json={"videoId": "vid-1", "watermarkCode": "ABCD2345", "watchSeconds": 3},
            headers=headers,
        )
        session_id = created.json()["sessionId"]

        forward = client.post("/api/tracking", json={"sessionId": session_id, "watchSeconds": 30}, headers=headers)
        backward = client.post("/api/tracking", json={"sessionId": session_id, "watchSeconds": 10}, headers=headers)
        ended = client.post("/api/tracking", json={"sessionId": session_id, "action": "end"}, headers=headers)

        assert forward.json()["watchSeconds"] == 30
        assert backward.json()["watchSeconds"] == 30
        assert ended.json() == {"success": True}

        with Session(sync_engine) as db:
            session = db.get(WatchSession, session_id)
            assert session.watermark_code == "ABCD2345"
            assert session.watch_seconds == 30
            assert session.ended_at is not None
            assert session.country == "Germany"
            assert db.get(Video, "vid-1").views == 1

    def test_ip_change_creates_alert(self, client, sync_engine):
        client.post(
            "/api/tracking",
            json={"videoId": "vid-1", "watchSeconds": 3},
            headers={**bearer(), "X-Forwarded-For": "8.8.8.8"},
        )
        client.post(
            "/api/tracking",
            json={"videoId": "vid-1", "watchSeconds": 3},
            headers={**bearer(), "X-Forwarded-For": "1.1.1.1"},
        )

        with Session(sync_engine) as db:
            alerts = db.execute(select(Alert).where(Alert.discord_id == "100")).scalars().all()
            assert [a.details["reason"] for a in alerts] == ["ip_change"]

    def test_foreign_session_is_404(self, client):
        created = client.post("/api/tracking", json={"videoId": "vid-1", "watchSeconds": 3}, headers=bearer("100"))
        session_id = created.json()["sessionId"]

        response = client.post(
            "/api/tracking",
            json={"sessionId": session_id, "action": "end"},
            headers=bearer("200"),
        )

        assert response.status_code == 404
        assert response.json() == {"error": "not_found", "message": "Session not found"}

    def test_end_without_session_id_is_400(self, client):
        response = client.post("/api/tracking", json={"action": "end"}, headers=bearer())

        assert response.status_code == 400
        assert response.json()["message"] == "Session ID required"

    def test_negative_watch_seconds_is_400(self, client):
        response = client.post("/api/tracking", json={"watchSeconds": -5}, headers=bearer())

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"


class TestSessionLog:

    def test_valid_payload_succeeds(self, client, sync_engine):
        response = client.post(
            "/api/sessions/log",
            json={"video_id": "vid-1", "subject_id": "100", "watch_seconds": 12},
            headers={"X-Forwarded-For": "8.8.8.8", "User-Agent": "pytest-agent"},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True}
        with Session(sync_engine) as db:
            reports = db.execute(select(TelemetrySession)).scalars().all()
            assert [(r.discord_id, r.watch_seconds, r.ip_address, r.user_agent) for r in reports] == [
                ("100", 12, "8.8.8.8", "pytest-agent")
            ]
            assert reports[0].ended_at is not None
            assert db.execute(select(WatchSession)).scalars().all() == []

    def test_missing_fields_are_400(self, client):
        response = client.post("/api/sessions/log", json={"watch_seconds": 12})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"


class TestRefresh:

    def test_recently_expired_token_is_refreshed(self, client):
        response = client.post("/api/auth/refresh", headers=expired_bearer("100", 3))

        assert response.status_code == 200
        claims = get_token_authority().verify(response.json()["token"])
        assert claims is not None
        assert claims.discord_id == "100"
        assert claims.username == "runner"

    def test_token_past_grace_is_401(self, client):
        response = client.post("/api/auth/refresh", headers=expired_bearer("100", 31))

        assert response.status_code == 401
        assert response.json() == UNAUTHORIZED

    @pytest.mark.parametrize("discord_id", ["300", "555"])
    def test_inactive_or_unknown_member_is_401(self, client, discord_id):
        response = client.post("/api/auth/refresh", headers=bearer(discord_id))

        assert response.status_code == 401
        assert response.json() == UNAUTHORIZED


class TestAdmin:

    def test_member_is_forbidden(self, client):
        response = client.post("/api/admin/test-notification", headers=bearer("100"))

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    def test_admin_gets_diagnostics(self, client, bot_client):
        response = client.post("/api/admin/test-notification", headers=bearer("900", is_admin=True))

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["diagnostics"]["bot"] == {"ok": True}
        bot_client.send_message.assert_awaited_once()


class TestOperational:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_metrics_exposed(self, client):
        client.get("/api/playback", params={"videoId": "vid-1"})
        response = client.get("/metrics/")

        assert response.status_code == 200
        assert "arena_token_verifications_total" in response.text or "arena_unauthorized_access_attempts_total" in response.text
