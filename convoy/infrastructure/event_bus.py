"""
Event Bus Infrastructure

Architectural Intent:
- In-memory event bus implementation for publishing rollout events
- Supports async subscription handlers, per event type or for all events
- Keeps an optional bounded history; the CLI attaches it to the --json
  report as the rollout's event log
"""

import logging
from collections import deque
from typing import Callable, Awaitable, Optional
from convoy.domain.events.event_base import DomainEvent

logger = logging.getLogger(__name__)

Handler = Callable[[DomainEvent], Awaitable[None]]


class EventBus:
    def __init__(self, history_size: Optional[int] = None) -> None:
        self._handlers: dict[type, list[Handler]] = {}
        self._history: Optional[deque] = (
            deque(maxlen=history_size) if history_size else None
        )

    @property
    def history(self) -> list[DomainEvent]:
        return list(self._history) if self._history is not None else []

    async def publish(self, events: list[DomainEvent]) -> None:
        for event in events:
            if self._history is not None:
                self._history.append(event)
            for event_type, handlers in self._handlers.items():
                if not isinstance(event, event_type):
                    continue
                for handler in handlers:
                    await handler(event)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        if event_type not in self._handlers:
            self._handlers[event_type] = []
        self._handlers[event_type].append(handler)
