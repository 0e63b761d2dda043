# src/campus_sync/sync/events.py
"""
Event streams for the orchestration layer.

Two independent streams feed the sync coordinator: connectivity transitions
(see connectivity.py) and auth-session transitions (SessionEvents here).
Subscribers are async callables; subscribe() returns the matching
unsubscribe callable so teardown can detach exactly what it attached.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar

from ..timeutils import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")
Handler = Callable[[Any], Awaitable[None]]


class EventStream(Generic[T]):
    """Minimal async publish/subscribe channel."""

    def __init__(self, name: str):
        self.name = name
        self._handlers: List[Handler] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def publish(self, event: T) -> None:
        """Deliver to every subscriber; a failing handler does not stop the others."""
        for handler in list(self._handlers):
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"❌ {self.name} handler {getattr(handler, '__name__', handler)} failed: {e}")


class SessionEventType(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"


@dataclass
class SessionEvent:
    type: SessionEventType
    user_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


class SessionEvents:
    """Auth-session transitions reported by the embedding application."""

    def __init__(self):
        self.changes: EventStream[SessionEvent] = EventStream("session")
        self._user_id: Optional[str] = None

    @property
    def signed_in(self) -> bool:
        return self._user_id is not None

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    async def sign_in(self, user_id: str) -> None:
        self._user_id = user_id
        logger.info(f"✅ Session started for {user_id}")
        await self.changes.publish(SessionEvent(SessionEventType.SIGNED_IN, user_id))

    async def sign_out(self) -> None:
        user_id, self._user_id = self._user_id, None
        logger.info(f"Session ended for {user_id}")
        await self.changes.publish(SessionEvent(SessionEventType.SIGNED_OUT, user_id))
