"""AlertAgent - alert persistence and best-effort Discord delivery

Persists every rule finding as an Alert row, then hands the rendered message
to a background task so the request that triggered the evaluation never waits
on Discord.

Features:
- Primary channel: Discord bot API (when bot token and channel are configured)
- Fallback channel: Discord webhook (settings.webhook_security or DISCORD_WEBHOOK_URL)
- One attempt per channel, no retry queue
- Per-call timeout: NOTIFICATION_TIMEOUT_SECONDS
- Prometheus metrics: arena_alerts_total, arena_alert_deliveries_total,
  arena_alert_delivery_latency_seconds
- Kill switch: ENABLE_ALERT_DELIVERY (default true); alerts are still persisted

Delivery failures are logged and counted, never raised to the caller.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set

from prometheus_client import Counter, Histogram
from sqlalchemy.ext.asyncio import AsyncSession

from agents.alert_messages import diagnostic_message
from core.config import settings
from core.exceptions import NotificationDeliveryError
from core.logging import get_logger
from core.session_store import AlertStore
from infrastructure.discord_client import DiscordBotClient, DiscordWebhookClient
from models.records import Alert
from schemas.alert import AlertCandidate

logger = get_logger(__name__)

alerts_total = Counter(
    'arena_alerts_total',
    'Persisted alerts',
    ['type', 'severity']
)
alert_deliveries_total = Counter(
    'arena_alert_deliveries_total',
    'Notification delivery attempts',
    ['channel', 'status']
)
alert_delivery_latency_seconds = Histogram(
    'arena_alert_delivery_latency_seconds',
    'Notification delivery latency',
    ['channel'],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0]
)


@dataclass
class DeliveryResult:
    """Result of a delivery attempt"""
    success: bool
    latency_seconds: float
    channel: Optional[str] = None
    primary_channel_success: Optional[bool] = None
    fallback_channel_success: Optional[bool] = None
    skip_reason: Optional[str] = None
    error_message: Optional[str] = None


class AlertAgent:
    """Alert dispatcher with Discord bot primary and webhook fallback"""

    def __init__(
        self,
        bot_client: Optional[DiscordBotClient] = None,
        webhook_client: Optional[DiscordWebhookClient] = None,
        enable_delivery: Optional[bool] = None,
        timeout_seconds: Optional[float] = None
    ):
        self.timeout_seconds = timeout_seconds or settings.NOTIFICATION_TIMEOUT_SECONDS
        self.bot_client = bot_client or DiscordBotClient(
            bot_token=settings.DISCORD_BOT_TOKEN,
            channel_id=settings.DISCORD_ALERT_CHANNEL_ID,
            api_base=settings.DISCORD_API_BASE,
            timeout_seconds=self.timeout_seconds,
        )
        self.webhook_client = webhook_client or DiscordWebhookClient(
            timeout_seconds=self.timeout_seconds
        )
        self.enable_delivery = (
            settings.ENABLE_ALERT_DELIVERY if enable_delivery is None else enable_delivery
        )
        self._pending: Set[asyncio.Task] = set()

    async def emit(
        self,
        db: AsyncSession,
        candidate: AlertCandidate,
        message: Dict[str, Any],
        webhook_url: Optional[str] = None
    ) -> Alert:
        """
        Persist the finding and schedule its delivery

        The Alert row is committed before delivery is scheduled, so a
        delivery failure never loses the record.
        """
        alert = await AlertStore(db).add(candidate)
        await db.commit()

        alerts_total.labels(
            type=candidate.type.value,
            severity=candidate.severity.value
        ).inc()
        logger.info(
            "alert_emitted",
            alert_id=alert.id,
            rule=candidate.rule,
            type=candidate.type.value,
            severity=candidate.severity.value,
            discord_id=candidate.discord_id,
        )

        self.notify(message, webhook_url)
        return alert

    def notify(self, message: Dict[str, Any], webhook_url: Optional[str] = None) -> asyncio.Task:
        """Schedule delivery of a message that has no Alert row"""
        task = asyncio.create_task(self.deliver(message, webhook_url))
        self._pending.add(task)
        task.add_done_callback(self._on_delivery_done)
        return task

    def _on_delivery_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("alert_delivery_crashed", error=str(error), exc_info=error)

    async def drain(self) -> None:
        """Wait for every in-flight delivery"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def _send_bot(self, message: Dict[str, Any]) -> None:
        try:
            await asyncio.wait_for(
                self.bot_client.send_message(message),
                timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            raise NotificationDeliveryError(
                self.bot_client.channel,
                f"Bot API call exceeded {self.timeout_seconds}s timeout"
            )

    async def _send_webhook(self, webhook_url: str, message: Dict[str, Any]) -> None:
        try:
            await asyncio.wait_for(
                self.webhook_client.send_message(webhook_url, message),
                timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            raise NotificationDeliveryError(
                self.webhook_client.channel,
                f"Webhook call exceeded {self.timeout_seconds}s timeout"
            )

    async def _attempt(self, channel: str, send) -> Optional[str]:
        """Run one channel attempt; returns the error message on failure"""
        start_time = time.time()
        try:
            await send()
        except NotificationDeliveryError as e:
            alert_delivery_latency_seconds.labels(channel=channel).observe(time.time() - start_time)
            alert_deliveries_total.labels(channel=channel, status='failure').inc()
            logger.warning(
                "alert_delivery_failed",
                channel=channel,
                status_code=e.status_code,
                error=str(e),
            )
            return str(e)

        alert_delivery_latency_seconds.labels(channel=channel).observe(time.time() - start_time)
        alert_deliveries_total.labels(channel=channel, status='success').inc()
        return None

    async def deliver(self, message: Dict[str, Any], webhook_url: Optional[str] = None) -> DeliveryResult:
        """
        Deliver a message: bot API first, webhook only if the bot is
        unavailable or fails

        Args:
            message: Discord message body (embeds, optional components)
            webhook_url: Fallback webhook destination

        Returns:
            DeliveryResult; never raises for channel failures
        """
        start_time = time.time()

        # Check kill switch
        if not self.enable_delivery:
            alert_deliveries_total.labels(channel='none', status='skipped').inc()
            return DeliveryResult(
                success=False,
                latency_seconds=0.0,
                skip_reason="kill_switch_disabled",
            )

        primary_success = None
        last_error = None

        if self.bot_client.configured:
            last_error = await self._attempt(
                self.bot_client.channel,
                lambda: self._send_bot(message)
            )
            primary_success = last_error is None
            if primary_success:
                return DeliveryResult(
                    success=True,
                    latency_seconds=time.time() - start_time,
                    channel=self.bot_client.channel,
                    primary_channel_success=True,
                )

        if not webhook_url:
            if last_error is None:
                alert_deliveries_total.labels(channel='none', status='skipped').inc()
                logger.info("alert_delivery_skipped", reason="no_channel_configured")
            return DeliveryResult(
                success=False,
                latency_seconds=time.time() - start_time,
                primary_channel_success=primary_success,
                skip_reason=None if last_error else "no_channel_configured",
                error_message=last_error,
            )

        webhook_error = await self._attempt(
            self.webhook_client.channel,
            lambda: self._send_webhook(webhook_url, message)
        )
        return DeliveryResult(
            success=webhook_error is None,
            latency_seconds=time.time() - start_time,
            channel=self.webhook_client.channel,
            primary_channel_success=primary_success,
            fallback_channel_success=webhook_error is None,
            error_message=webhook_error or last_error,
        )

    async def send_test_notification(self, webhook_url: Optional[str] = None) -> Dict[str, Any]:
        """
        Send a test message through every configured channel

        Unlike deliver(), both channels are tried so an operator can see
        which one works.

        Returns:
            Diagnostics: configuration flags and a per-channel outcome
        """
        message = diagnostic_message()
        diagnostics: Dict[str, Any] = {
            "env": {
                "delivery_enabled": self.enable_delivery,
                "bot_token_set": bool(self.bot_client.bot_token),
                "channel_set": bool(self.bot_client.channel_id),
                "webhook_url_set": bool(webhook_url),
            },
            "bot": {"ok": False, "skipped": True},
            "webhook": {"ok": False, "skipped": True},
        }

        if self.enable_delivery and self.bot_client.configured:
            error = await self._attempt(self.bot_client.channel, lambda: self._send_bot(message))
            diagnostics["bot"] = {"ok": error is None} if error is None else {"ok": False, "error": error[:600]}

        if self.enable_delivery and webhook_url:
            error = await self._attempt(
                self.webhook_client.channel,
                lambda: self._send_webhook(webhook_url, message)
            )
            diagnostics["webhook"] = {"ok": error is None} if error is None else {"ok": False, "error": error[:600]}

        diagnostics["ok"] = bool(diagnostics["bot"]["ok"] or diagnostics["webhook"]["ok"])
        logger.info("test_notification_sent", ok=diagnostics["ok"])
        return diagnostics

    async def aclose(self) -> None:
        await self.drain()
        await self.bot_client.aclose()
        await self.webhook_client.aclose()
