"""
In-app Notification Service
Persists patient notifications (recall reminders, confirmations, reschedule
options) so the patient app can list them and follow their deep links
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..models import Notification

logger = logging.getLogger(__name__)

SEVERITIES = ("low", "normal", "high")


class NotificationService:
    """Notifier backed by the notifications table"""

    def __init__(self, db: Session):
        self.db = db

    async def send_notification(
        self,
        user_id: str,
        title: str,
        body: str,
        category: str,
        severity: str = "normal",
        deep_link: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Store a notification for ``user_id``

        Args:
            user_id: Auth account of the recipient
            title: Short heading
            body: Message text shown to the patient
            category: Notification type (recall, appointment_confirmed, ...)
            severity: low, normal or high
            deep_link: Optional one-tap action URL
            metadata: Extra JSON payload for the client app
        """
        if severity not in SEVERITIES:
            logger.warning(f"⚠️ Unknown notification severity '{severity}', using normal")
            severity = "normal"

        notification = Notification(
            user_id=user_id,
            title=title,
            message=body,
            category=category,
            severity=severity,
            action_url=deep_link,
            extra_data=metadata or {},
        )
        self.db.add(notification)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"📨 {category} notification stored for user {user_id}")
