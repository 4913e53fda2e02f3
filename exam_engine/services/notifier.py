# FILE: exam_engine/services/notifier.py
"""
Fire-and-forget administrator notifications
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Optional

import httpx

from exam_engine.config import get_settings

logger = logging.getLogger(__name__)


class AdminNotifier:
    """
    Posts a JSON message to ADMIN_WEBHOOK_URL.

    Without a webhook the message is only logged. Delivery failures are
    logged and swallowed; callers never see them.
    """

    def __init__(
        self,
        webhook_url: Optional[str],
        timeout_seconds: float = 5.0,
        background: bool = True,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds
        self.background = background
        self.transport = transport

    def notify(self, subject: str, message: str):
        """Send without blocking the caller"""
        if self.background:
            threading.Thread(
                target=self.send, args=(subject, message), name="admin-notify", daemon=True
            ).start()
        else:
            self.send(subject, message)

    def send(self, subject: str, message: str) -> bool:
        if not self.webhook_url:
            logger.info(f"Admin notification (no webhook configured): {subject}")
            return False

        payload = {
            "subject": subject,
            "message": message,
            "sent_at": datetime.now(timezone.utc).isoformat()
        }
        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = client.post(self.webhook_url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Admin notification failed ({subject}): {e}")
            return False

        logger.debug(f"Admin notification sent: {subject}")
        return True


_notifier: Optional[AdminNotifier] = None


def get_admin_notifier() -> AdminNotifier:
    """Get or create global notifier"""
    global _notifier
    if _notifier is None:
        settings = get_settings()
        _notifier = AdminNotifier(
            webhook_url=settings.admin_webhook_url,
            timeout_seconds=settings.admin_notify_timeout_seconds
        )
    return _notifier
