from __future__ import annotations

import logging
from typing import Optional, Protocol

import httpx

from dischargeflow.internal_core.config import DischargeConfig

logger = logging.getLogger(__name__)


class NotificationError(RuntimeError):
    """Raised when an outbound discharge notification cannot be delivered."""


class Notifier(Protocol):
    def send(self, mobile: str, text: str) -> None: ...


def mask_mobile(mobile: str) -> str:
    digits = (mobile or "").strip()
    if len(digits) <= 4:
        return "*" * len(digits)
    return "*" * (len(digits) - 4) + digits[-4:]


class LogNotifier:
    """Records the delivery intent in the service log only."""

    def send(self, mobile: str, text: str) -> None:
        logger.info("discharge notification queued mobile=%s chars=%d", mask_mobile(mobile), len(text or ""))


class WebhookNotifier:
    def __init__(self, url: str, *, timeout_seconds: float = 10.0, transport: httpx.BaseTransport | None = None) -> None:
        if not url:
            raise ValueError("Webhook URL is required.")
        self.url = url
        self.timeout_seconds = float(timeout_seconds)
        self._transport = transport

    def send(self, mobile: str, text: str) -> None:
        try:
            with httpx.Client(timeout=httpx.Timeout(self.timeout_seconds), transport=self._transport) as client:
                r = client.post(self.url, json={"mobile": mobile, "text": text})
        except httpx.HTTPError as exc:
            raise NotificationError(f"Notification webhook failed: {exc}") from exc
        if r.status_code >= 400:
            raise NotificationError(f"Notification webhook error {r.status_code}: {r.text[:200]}")
        logger.info("discharge notification sent mobile=%s status=%d", mask_mobile(mobile), r.status_code)


def build_notifier(config: DischargeConfig) -> Optional[Notifier]:
    backend = config.DISCHARGE_NOTIFY_BACKEND
    if backend == "webhook":
        if not config.DISCHARGE_NOTIFY_WEBHOOK_URL:
            logger.warning("DISCHARGE_NOTIFY_BACKEND=webhook but DISCHARGE_NOTIFY_WEBHOOK_URL is empty; using log notifier")
            return LogNotifier()
        return WebhookNotifier(
            config.DISCHARGE_NOTIFY_WEBHOOK_URL,
            timeout_seconds=config.DISCHARGE_NOTIFY_TIMEOUT_SECONDS,
        )
    if backend == "none":
        return None
    return LogNotifier()
