"""
Discord delivery channels

DiscordBotClient posts to a channel through the bot REST API:
    POST {api_base}/channels/{channel_id}/messages
    Authorization: Bot {token}

DiscordWebhookClient posts the same message body to an incoming webhook URL.
Link-button components are only honoured by the bot API; webhooks receive
embeds only.

Both raise NotificationDeliveryError when the message was not accepted.
"""

from typing import Any, Dict, Optional

import httpx

from core.exceptions import NotificationDeliveryError


class DiscordBotClient:
    """Bot API channel"""

    channel = "discord_bot"

    def __init__(
        self,
        bot_token: Optional[str],
        channel_id: Optional[str],
        api_base: str = "https://discord.com/api/v10",
        timeout_seconds: float = 5.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.bot_token = bot_token
        self.channel_id = channel_id
        self.api_base = api_base.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.channel_id)

    async def send_message(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """
        Post a message (embeds and optional components) to the alert channel

        Returns:
            Discord message object

        Raises:
            NotificationDeliveryError: not configured, transport error or non-2xx
        """
        if not self.configured:
            raise NotificationDeliveryError(self.channel, "Bot token or channel not configured")

        try:
            response = await self._client.post(
                f"{self.api_base}/channels/{self.channel_id}/messages",
                json=message,
                headers={"Authorization": f"Bot {self.bot_token}"},
            )
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(self.channel, f"Transport error: {e}") from e

        if not response.is_success:
            raise NotificationDeliveryError(
                self.channel,
                f"Discord API returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError:
            return {}

    async def aclose(self) -> None:
        await self._client.aclose()


class DiscordWebhookClient:
    """Incoming webhook channel"""

    channel = "discord_webhook"

    def __init__(
        self,
        timeout_seconds: float = 5.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def send_message(self, webhook_url: Optional[str], message: Dict[str, Any]) -> None:
        """
        Post embeds to a webhook URL

        Raises:
            NotificationDeliveryError: no URL, transport error or non-2xx
        """
        if not webhook_url:
            raise NotificationDeliveryError(self.channel, "Webhook URL not configured")

        body = {"embeds": message.get("embeds", [])}
        try:
            response = await self._client.post(webhook_url, json=body)
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(self.channel, f"Transport error: {e}") from e

        if not response.is_success:
            raise NotificationDeliveryError(
                self.channel,
                f"Webhook returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

    async def aclose(self) -> None:
        await self._client.aclose()
