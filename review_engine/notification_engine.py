"""
Notification Engine - Best-Effort Review Notifications

This module provides the notification collaborator that:
1. Builds notifications from templates (status changes, drift corrections)
2. Routes notifications to registered channels (log, Slack webhook)
3. Applies per-recipient rate limiting
4. Records every notification in a daily JSONL audit log

IMPORTANT:
- Delivery is best effort: send() returns False, it never raises
- All notifications are logged for audit
- Rate limiting is applied per recipient to NORMAL notifications only;
  HIGH notifications (drift alerts) always reach every recipient
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

logger = logging.getLogger("notification_engine")

RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_MAX = 10  # max notifications per recipient per window


class NotificationType(str, Enum):
    """Types of notifications."""
    STATUS_CHANGED = "status_changed"
    DRIFT_CORRECTED = "drift_corrected"


class NotificationPriority(str, Enum):
    """Notification priority levels."""
    NORMAL = "normal"
    HIGH = "high"


@dataclass
class Notification:
    """A message for one or more recipients (email addresses or user ids)."""
    notification_type: NotificationType
    recipients: List[str]
    subject: str
    message: str
    priority: NotificationPriority = NotificationPriority.NORMAL
    review_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    delivered_at: Optional[datetime] = None
    delivery_channel: Optional[str] = None
    delivery_error: Optional[str] = None
    rate_limited: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "type": self.notification_type.value,
            "recipients": self.recipients,
            "subject": self.subject,
            "message": self.message,
            "priority": self.priority.value,
            "review_id": self.review_id,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "delivery_channel": self.delivery_channel,
            "delivery_error": self.delivery_error,
            "rate_limited": self.rate_limited,
        }


class NotificationTemplates:
    """Pre-defined notification templates."""

    @staticmethod
    def status_changed(
        recipient: str,
        review_id: str,
        review_title: str,
        new_status: str,
        actor_name: str,
        review_url: str,
    ) -> Notification:
        return Notification(
            notification_type=NotificationType.STATUS_CHANGED,
            recipients=[recipient],
            subject=f"Status update for your review: {review_title}",
            message=(
                f"Your review \"{review_title}\" has been changed to {new_status} "
                f"by {actor_name}.\n\n"
                f"View review: {review_url}"
            ),
            priority=NotificationPriority.NORMAL,
            review_id=review_id,
            metadata={"new_status": new_status},
        )

    @staticmethod
    def drift_corrected(
        recipients: List[str],
        review_id: str,
        review_title: str,
        external_project_id: str,
        project_title: Optional[str],
        internal_status: str,
        reverted_to: str,
        review_url: str,
        project_url: str,
    ) -> Notification:
        project_label = project_title or external_project_id
        return Notification(
            notification_type=NotificationType.DRIFT_CORRECTED,
            recipients=recipients,
            subject="Review Status Alert: External Project Status Reset",
            message=(
                f"The external project \"{project_label}\" linked to review "
                f"\"{review_title}\" has been automatically reset from \"Live\" to "
                f"\"{reverted_to}\".\n\n"
                f"Reason: projects must not be marked \"Live\" until the associated "
                f"review is approved (current review status: {internal_status}).\n\n"
                f"Action required: complete the review approval process before "
                f"changing the project status to \"Live\".\n\n"
                f"View review: {review_url}\n"
                f"View project: {project_url}"
            ),
            priority=NotificationPriority.HIGH,
            review_id=review_id,
            metadata={
                "external_project_id": external_project_id,
                "internal_status": internal_status,
                "reverted_to": reverted_to,
            },
        )


ChannelHandler = Callable[[Notification], Awaitable[bool]]


class Notifier:
    """Interface of the notification collaborator."""

    async def send(self, notification: Notification, channel: Optional[str] = None) -> bool:
        raise NotImplementedError


class NotificationEngine(Notifier):
    """
    Central notification engine.

    Features:
    - Multiple delivery channels (log, Slack webhook)
    - Rate limiting per recipient (NORMAL priority)
    - Delivery tracking and logging
    - Template-based notifications
    """

    def __init__(self, log_dir: Optional[Path] = None):
        self._channels: Dict[str, ChannelHandler] = {}
        self._rate_limits: Dict[str, List[datetime]] = {}
        self._log_dir = log_dir
        if log_dir is not None:
            try:
                log_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning(f"Notification log directory unavailable: {e}")

    def register_channel(self, name: str, handler: ChannelHandler):
        """Register a notification delivery channel."""
        self._channels[name] = handler
        logger.info(f"Registered notification channel: {name}")

    @property
    def channels(self) -> List[str]:
        return list(self._channels.keys())

    def _check_rate_limit(self, recipient: str) -> bool:
        """Check if recipient is within rate limit."""
        now = datetime.now(timezone.utc)
        window_start = now - timedelta(seconds=RATE_LIMIT_WINDOW)

        # Clean old entries
        self._rate_limits[recipient] = [
            t for t in self._rate_limits.get(recipient, [])
            if t > window_start
        ]

        if len(self._rate_limits[recipient]) >= RATE_LIMIT_MAX:
            return False

        self._rate_limits[recipient].append(now)
        return True

    def _log_file(self) -> Optional[Path]:
        if self._log_dir is None:
            return None
        return self._log_dir / f"{datetime.now(timezone.utc).strftime('%Y-%m-%d')}.jsonl"

    def _log_notification(self, notification: Notification):
        """Log notification for audit."""
        log_file = self._log_file()
        if log_file is None:
            return
        try:
            with open(log_file, "a") as f:
                f.write(json.dumps(notification.to_dict()) + "\n")
        except OSError as e:
            logger.error(f"Failed to log notification: {e}")

    async def send(self, notification: Notification, channel: Optional[str] = None) -> bool:
        """
        Send a notification through the specified channel.

        Args:
            notification: The notification to send
            channel: Channel name (None = first channel that succeeds)

        Returns:
            True if delivered successfully
        """
        if notification.priority != NotificationPriority.HIGH:
            allowed = [r for r in notification.recipients if self._check_rate_limit(r)]
            notification.rate_limited = [r for r in notification.recipients if r not in allowed]
            if not allowed:
                logger.warning(f"Rate limit exceeded for {notification.recipients}")
                notification.delivery_error = "Rate limit exceeded"
                self._log_notification(notification)
                return False
            if notification.rate_limited:
                logger.warning(f"Rate limited recipients dropped: {notification.rate_limited}")
            notification.recipients = allowed

        channels = [channel] if channel else list(self._channels.keys())

        delivered = False
        for ch_name in channels:
            handler = self._channels.get(ch_name)
            if handler is None:
                continue

            try:
                if await handler(notification):
                    notification.delivered_at = datetime.now(timezone.utc)
                    notification.delivery_channel = ch_name
                    delivered = True
                    break
            except Exception as e:
                logger.error(f"Channel {ch_name} delivery failed: {e}")
                notification.delivery_error = str(e)

        self._log_notification(notification)
        return delivered


# -----------------------------------------------------------------------------
# Channels
# -----------------------------------------------------------------------------

async def log_channel(notification: Notification) -> bool:
    """Write the notification to the application log."""
    logger.info(
        f"[{notification.notification_type.value}] to {', '.join(notification.recipients)}: "
        f"{notification.subject}"
    )
    return True


def slack_webhook_channel(
    webhook_url: str,
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ChannelHandler:
    """Build a channel posting notifications to a Slack incoming webhook."""

    async def _send(notification: Notification) -> bool:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(
                webhook_url,
                json={"text": f"*{notification.subject}*\n{notification.message}"},
            )
            if response.status_code == 200:
                return True
            logger.warning(f"Slack webhook returned {response.status_code}")
            return False

    return _send


def build_notification_engine(
    log_dir: Optional[Path] = None,
    slack_webhook_url: Optional[str] = None,
) -> NotificationEngine:
    """Create a notification engine with the configured channels."""
    engine = NotificationEngine(log_dir=log_dir)
    if slack_webhook_url:
        engine.register_channel("slack", slack_webhook_channel(slack_webhook_url))
    engine.register_channel("log", log_channel)
    return engine
