"""
Arrival alerts for VIPs and speakers.

Delivery is best-effort: every configured channel gets one attempt from a
worker thread, failures are logged and never reach the check-in caller.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Iterable, Protocol, TypedDict

import requests

from backend.config import (
    ALERT_ROLES,
    DISCORD_WEBHOOK_URL,
    NOTIFY_TIMEOUT_SECONDS,
    NOTIFY_USERNAME,
    SLACK_WEBHOOK_URL,
)
from backend.services.roles import RoleInfo
from database.store import EventRecord, RegistrationRecord

logger = logging.getLogger(__name__)


class ArrivalMessage(TypedDict):
    text: str
    event_name: str
    attendee_name: str
    role: str
    company: str
    timestamp: str


class AlertChannel(Protocol):
    name: str

    def send(self, message: ArrivalMessage) -> bool: ...


def build_arrival_message(
    registration: RegistrationRecord,
    event: EventRecord | None,
    role_info: RoleInfo,
    *,
    at: datetime | None = None,
) -> ArrivalMessage:
    stamp = at or datetime.now(timezone.utc)
    event_name = event["name"] if event else registration["event_id"]
    company = (registration.get("work") or "").strip() or "Not specified"
    text = (
        f"\U0001F31F **{role_info['display']} Arrived!**\n"
        f"**Name:** {registration['name']}\n"
        f"**Event:** {event_name}\n"
        f"**Time:** {stamp.strftime('%H:%M:%S')}\n"
        f"**Company:** {company}"
    )
    return {
        "text": text,
        "event_name": event_name,
        "attendee_name": registration["name"],
        "role": role_info["role"],
        "company": company,
        "timestamp": stamp.isoformat(timespec="seconds"),
    }


class _WebhookChannel:
    name = "webhook"

    def __init__(self, webhook_url: str, *, username: str = NOTIFY_USERNAME, timeout: float = NOTIFY_TIMEOUT_SECONDS):
        self.webhook_url = webhook_url
        self.username = username
        self.timeout = timeout

    def _body(self, message: ArrivalMessage) -> dict:
        raise NotImplementedError

    def send(self, message: ArrivalMessage) -> bool:
        try:
            response = requests.post(self.webhook_url, json=self._body(message), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("%s alert failed for %s: %s", self.name, message["attendee_name"], exc)
            return False
        return True


class SlackWebhookChannel(_WebhookChannel):
    name = "slack"

    def __init__(self, webhook_url: str, *, icon_emoji: str = ":wine_glass:", **kwargs):
        super().__init__(webhook_url, **kwargs)
        self.icon_emoji = icon_emoji

    def _body(self, message: ArrivalMessage) -> dict:
        return {"text": message["text"], "username": self.username, "icon_emoji": self.icon_emoji}


class DiscordWebhookChannel(_WebhookChannel):
    name = "discord"

    def _body(self, message: ArrivalMessage) -> dict:
        return {"content": message["text"], "username": self.username}


def build_default_channels() -> list[AlertChannel]:
    channels: list[AlertChannel] = []
    if SLACK_WEBHOOK_URL:
        channels.append(SlackWebhookChannel(SLACK_WEBHOOK_URL))
    if DISCORD_WEBHOOK_URL:
        channels.append(DiscordWebhookChannel(DISCORD_WEBHOOK_URL))
    return channels


class NotificationFanout:
    def __init__(
        self,
        channels: Iterable[AlertChannel],
        *,
        alert_roles: Iterable[str] = ALERT_ROLES,
        max_workers: int = 4,
    ) -> None:
        self.channels = list(channels)
        self.alert_roles = {role.lower() for role in alert_roles}
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="arrival-alerts")

    def should_alert(self, role_info: RoleInfo) -> bool:
        return role_info["role"] in self.alert_roles

    def dispatch(self, message: ArrivalMessage) -> dict[str, bool]:
        """Try each channel once. One channel failing never stops the others."""
        results: dict[str, bool] = {}
        for channel in self.channels:
            try:
                delivered = bool(channel.send(message))
            except Exception:
                logger.exception("Alert channel %s raised", getattr(channel, "name", channel))
                delivered = False
            results[getattr(channel, "name", type(channel).__name__)] = delivered
        if results:
            logger.info("Arrival alert for %s: %s", message["attendee_name"], results)
        return results

    def notify_arrival(
        self,
        registration: RegistrationRecord,
        event: EventRecord | None,
        role_info: RoleInfo,
    ) -> Future | None:
        """Queue an alert when the role warrants one; returns the delivery future or None."""
        if not self.channels or not self.should_alert(role_info):
            return None
        message = build_arrival_message(registration, event, role_info)
        return self._executor.submit(self.dispatch, message)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
