"""In-process publication of repository state changes to observers."""

from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

logger = structlog.get_logger()

# Event name constants
REPOSITORY_UPDATED = "repository.updated"
OPERATION_STARTED = "operation.started"
OPERATION_FINISHED = "operation.finished"
REFRESH_ALL_STARTED = "refresh_all.started"
REFRESH_ALL_FINISHED = "refresh_all.finished"


class Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    repository_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


EventHandler = Callable[[Event], Coroutine[Any, Any, None]]


class EventBus:
    """Name-keyed async observers, awaited in subscription order."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def subscribe(self, event_name: str, handler: EventHandler) -> Callable[[], None]:
        """Register *handler*; the returned callable removes it again."""
        self._handlers.setdefault(event_name, []).append(handler)
        return lambda: self.unsubscribe(event_name, handler)

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def has_subscribers(self, event_name: str) -> bool:
        return bool(self._handlers.get(event_name))

    async def publish(
        self, event_name: str, repository_id: str | None = None, **data: Any
    ) -> None:
        if not self.has_subscribers(event_name):
            return
        await self.emit(Event(name=event_name, repository_id=repository_id, data=data))

    async def emit(self, event: Event) -> None:
        # Snapshot: handlers may unsubscribe while being called.
        for handler in list(self._handlers.get(event.name, [])):
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    "event_handler_error",
                    event_name=event.name,
                    repository_id=event.repository_id,
                    handler_name=getattr(handler, "__name__", repr(handler)),
                )
