# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: Notification client for inter-service communication.
Handles HTTP calls to the notification-service with timeout & fault tolerance.
"""

import httpx

from mustering.core.config import settings
from mustering.core.logging import get_logger
from mustering.metrics.prometheus import NOTIFICATIONS_SENT

logger = get_logger(__name__)


class NotificationClient:
    """Fire-and-forget notification sender via notification-service."""

    def __init__(self, base_url: str | None = None, channel: str = "mock") -> None:
        self._base_url = base_url or settings.NOTIFICATION_SERVICE_URL
        self._channel = channel

    def notify(
        self,
        person_ids: list[str],
        message: str,
        session_id: str = "N/A",
    ) -> int:
        """
        Send ``message`` to every person id. Failures are logged but never
        raised. Returns how many deliveries the notification service accepted.
        """
        delivered = 0
        if not person_ids:
            return delivered
        try:
            with httpx.Client(timeout=settings.NOTIFICATION_TIMEOUT) as client:
                for person_id in person_ids:
                    try:
                        resp = client.post(
                            f"{self._base_url}/api/v1/notify",
                            json={
                                "channel": self._channel,
                                "recipient": person_id,
                                "message": message,
                                "incident_id": session_id,
                            },
                        )
                    except httpx.HTTPError as exc:
                        logger.warning("Notification failed: recipient=%s, %s", person_id, exc)
                        continue
                    if resp.status_code < 300:
                        delivered += 1
                        NOTIFICATIONS_SENT.labels(channel=self._channel).inc()
                    logger.info(
                        "Notification sent: recipient=%s, channel=%s, status=%d",
                        person_id,
                        self._channel,
                        resp.status_code,
                    )
        except Exception as exc:
            logger.warning("Notification service unreachable: %s", exc)
        return delivered
