"""Queues coaching notifications and lists the ones due for delivery."""

from datetime import datetime
from typing import Optional

from models import AiNotification, NotificationType, NotificationPriority, utcnow
from repository import Repository
from .observability import logger, metrics


class Notifier:
    def __init__(self, repo: Repository):
        self.repo = repo

    def queue(
        self,
        user_id: int,
        notification_type: NotificationType,
        title: str,
        message: str,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        action_data: Optional[dict] = None,
        scheduled_for: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> AiNotification:
        notification = self.repo.add_notification(
            AiNotification(
                user_id=user_id,
                notification_type=notification_type,
                title=title,
                message=message,
                priority=priority,
                action_data=dict(action_data or {}),
                scheduled_for=scheduled_for,
                created_at=now or utcnow(),
            )
        )
        metrics.increment("notifications.queued", tags={"priority": priority.value})
        logger.info(
            "Notification queued",
            user_id=user_id,
            notification_type=notification_type.value,
            priority=priority.value,
        )
        return notification

    def ready(self, user_id: int, now: Optional[datetime] = None) -> list[AiNotification]:
        """Unread notifications that are unscheduled or whose time has come."""
        return self.repo.ready_notifications(user_id, now or utcnow())
