"""
tenantpay/models/notification.py

Inbox message models.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class NotificationEvent(BaseModel):
    """Message dropped into a user's inbox."""

    model_config = ConfigDict(frozen=True)

    notification_id: str
    from_user: str
    to_user: str
    subject: str
    body: str
    timestamp: datetime
    read: bool = False
    priority: NotificationPriority = NotificationPriority.MEDIUM
    type: str = "subscription_payment_notification"
    payment_data: Optional[Dict[str, Any]] = Field(default=None)


class AdminProfile(BaseModel):
    """What the notification needs to know about the paying admin."""

    model_config = ConfigDict(frozen=True)

    admin_id: str
    name: str
    email: Optional[str] = None
