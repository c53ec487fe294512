"""
Owner inbox collaborators.

InMemoryInbox keeps messages in process (default, and what the owner inbox
endpoint reads). HttpInbox POSTs each message as JSON to OWNER_INBOX_URL.
"""

import threading
from typing import List, Optional, Protocol

import httpx

from tenantpay.core.errors import NotFoundError
from tenantpay.models.notification import NotificationEvent


class Inbox(Protocol):
    async def deliver(self, event: NotificationEvent) -> None:
        ...


class InMemoryInbox:
    def __init__(self):
        self._events: List[NotificationEvent] = []
        self._lock = threading.Lock()

    async def deliver(self, event: NotificationEvent) -> None:
        with self._lock:
            self._events.append(event)

    def for_user(self, user_id: str, unread_only: bool = False) -> List[NotificationEvent]:
        """Messages addressed to `user_id`, newest first."""
        with self._lock:
            events = [e for e in self._events if e.to_user == user_id and not (unread_only and e.read)]
        return sorted(events, key=lambda e: e.timestamp, reverse=True)

    def mark_read(self, notification_id: str) -> NotificationEvent:
        with self._lock:
            for index, event in enumerate(self._events):
                if event.notification_id == notification_id:
                    updated = event.model_copy(update={"read": True})
                    self._events[index] = updated
                    return updated
        raise NotFoundError(f"Notification not found: {notification_id}", code="notification_not_found")

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class HttpInbox:
    def __init__(self, url: str, timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def deliver(self, event: NotificationEvent) -> None:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(self.url, json=event.model_dump(mode="json"))
            response.raise_for_status()
