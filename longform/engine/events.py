from __future__ import annotations

import logging
from typing import Callable, Dict, List

from longform.models import EventType, ProgressEvent

logger = logging.getLogger(__name__)

Handler = Callable[[ProgressEvent], None]


class EventBus:
    """Synchronous fan-out of ProgressEvents, in registration order."""

    def __init__(self) -> None:
        self._handlers: Dict[EventType, List[Handler]] = {}
        self._any: List[Handler] = []

    def on(self, event: EventType | str, handler: Handler) -> None:
        self._handlers.setdefault(EventType(event), []).append(handler)

    def on_any(self, handler: Handler) -> None:
        self._any.append(handler)

    def emit(self, event: EventType, chapter: int | None = None, **data) -> ProgressEvent:
        ev = ProgressEvent(type=event, chapter=chapter, data=data)
        logger.debug("event %s ch=%s %s", ev.type.value, chapter, data)
        for handler in [*self._handlers.get(ev.type, []), *self._any]:
            handler(ev)
        return ev
