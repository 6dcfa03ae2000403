"""Chat-group notification skill (Feishu, DingTalk, WeCom webhooks)."""

from __future__ import annotations

from typing import Any

import aiohttp

from opspilot.skills.base import BaseSkill, ParamSpec, SkillCategory, Tool, ToolExecutionError
from opspilot.utils import get_logger

logger = get_logger(__name__)

CHANNEL_LABELS = {
    "feishu": "Feishu",
    "dingtalk": "DingTalk",
    "wecom": "WeCom",
}


def build_payload(channel: str, message: str, prefix: str = "[opspilot]") -> dict[str, Any]:
    """Build the webhook body each platform expects for a plain message."""
    text = f"{prefix} {message}" if prefix else message
    if channel == "feishu":
        return {"msg_type": "text", "content": {"text": text}}
    if channel == "dingtalk":
        return {"msgtype": "markdown", "markdown": {"title": "Notification", "text": text}}
    return {"msgtype": "text", "text": {"content": text}}


class NotificationSkill(BaseSkill):
    """Send notifications to chat groups through incoming webhooks.

    Example:
        >>> skill = NotificationSkill(webhooks={"feishu": "https://open.feishu.cn/..."})
        >>> await skill.send_notification({"channel": "feishu", "message": "Deploy finished"})
    """

    id = "skill-notification"
    name = "Notifications"
    description = "Send notification messages through Feishu, DingTalk or WeCom webhooks"
    icon = "📢"
    category = SkillCategory.NOTIFICATION
    config_required = ["notification_webhooks"]

    def __init__(
        self,
        webhooks: dict[str, str] | None = None,
        prefix: str = "[opspilot]",
        timeout_seconds: float = 10,
    ):
        """Initialize notification skill.

        Args:
            webhooks: Channel name to webhook URL
            prefix: Text prepended to every message
            timeout_seconds: HTTP timeout per webhook call
        """
        self.webhooks = dict(webhooks or {})
        self.prefix = prefix
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    def get_tools(self) -> list[Tool]:
        return [
            Tool(
                name="send_notification",
                description="Send a notification message to a Feishu, DingTalk or WeCom group",
                parameters={
                    "channel": ParamSpec(
                        description="Notification channel",
                        required=True,
                        enum=list(CHANNEL_LABELS),
                    ),
                    "message": ParamSpec(description="Message text", required=True),
                },
                execute=self.send_notification,
            ),
        ]

    async def send_notification(self, arguments: dict[str, Any]) -> str:
        channel = arguments.get("channel", "")
        message = arguments.get("message", "")
        label = CHANNEL_LABELS.get(channel, channel)

        url = self.webhooks.get(channel)
        if not url:
            raise ToolExecutionError(f"No webhook configured for {label} notifications")

        await self._post_webhook(url, build_payload(channel, message, self.prefix))
        logger.info("Notification sent", extra={"channel": channel})
        return f"Notification sent to {label}"

    async def _post_webhook(self, url: str, payload: dict[str, Any]) -> None:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(url, json=payload) as response:
                    if response.status >= 400:
                        raise ToolExecutionError(
                            f"Failed to send notification: HTTP {response.status} {response.reason}"
                        )
        except aiohttp.ClientError as e:
            raise ToolExecutionError(f"Network error sending notification: {e}") from e
