"""
Async pub/sub event bus.

Features:
- Priority-based listener execution (CRITICAL > HIGH > NORMAL > LOW)
- Error isolation: a failing listener is logged and never stops the others
  or the publisher
- Wildcard event patterns (e.g., "progression.*")
- One-time listeners and duplicate prevention
- Sync callback support (runs in executor)
- Publish/error counters

Usage:
    bus = EventBus()
    bus.subscribe("progression.leveled_up", handle_level_up)
    bus.subscribe("vocabulary.*", audit_vocabulary)

    await bus.publish("progression.leveled_up", {"user_id": 1, "new_level": 3})
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from progression_engine.core.logging.logger import get_logger

logger = get_logger(__name__)


class ListenerPriority(Enum):
    """Priority levels for event listeners."""

    CRITICAL = 0
    HIGH = 10
    NORMAL = 50
    LOW = 100


@dataclass
class EventListener:
    """Represents a registered event listener."""

    callback: Callable[[Dict[str, Any]], Any]
    priority: ListenerPriority
    identifier: str
    once: bool = False


@dataclass
class EventMetrics:
    """Counters for event bus operations."""

    events_published: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    listener_errors: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    total_listeners: int = 0

    def record_publish(self, event_name: str) -> None:
        self.events_published[event_name] += 1

    def record_error(self, event_name: str) -> None:
        self.listener_errors[event_name] += 1

    def get_summary(self) -> Dict[str, Any]:
        published = sum(self.events_published.values())
        errors = sum(self.listener_errors.values())
        return {
            "total_events_published": published,
            "events_by_type": dict(self.events_published),
            "total_errors": errors,
            "errors_by_event": dict(self.listener_errors),
            "total_listeners": self.total_listeners,
            "error_rate": errors / max(1, published) * 100,
        }


class EventBus:
    """
    In-process async pub/sub bus.

    Each engine owns its own bus instance so independent engines (and tests)
    never share subscribers.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[EventListener]] = {}
        self._wildcard_listeners: List[Tuple[str, EventListener]] = []
        self._metrics = EventMetrics()

    def subscribe(
        self,
        event_name: str,
        callback: Callable[[Dict[str, Any]], Any],
        priority: ListenerPriority = ListenerPriority.NORMAL,
        identifier: Optional[str] = None,
        once: bool = False,
        allow_duplicates: bool = False,
    ) -> str:
        """
        Subscribe a callback to an event.

        Args:
            event_name: Event to subscribe to (supports wildcards with '*')
            callback: Async or sync function called with the event payload
            priority: Execution priority (lower values execute first)
            identifier: Unique identifier for this listener (auto-generated if None)
            once: If True, automatically unsubscribe after first execution
            allow_duplicates: If False, prevents registering same callback twice

        Returns:
            Listener identifier for later unsubscription
        """
        if identifier is None:
            identifier = f"{callback.__module__}.{callback.__qualname__}"

        listener = EventListener(
            callback=callback, priority=priority, identifier=identifier, once=once
        )

        if not allow_duplicates:
            existing = [
                l for pattern, l in self._wildcard_listeners if pattern == event_name
            ] + self._listeners.get(event_name, [])
            if any(l.identifier == identifier for l in existing):
                logger.warning(
                    f"Duplicate listener prevented: {identifier} for event {event_name}"
                )
                return identifier

        if "*" in event_name:
            self._wildcard_listeners.append((event_name, listener))
            self._wildcard_listeners.sort(key=lambda x: x[1].priority.value)
        else:
            self._listeners.setdefault(event_name, []).append(listener)
            self._listeners[event_name].sort(key=lambda l: l.priority.value)

        self._metrics.total_listeners += 1

        logger.debug(
            f"Subscribed {identifier} to {event_name} with priority {priority.name}"
        )
        return identifier

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        """
        Remove a listener. Returns True if it was registered.
        """
        if event_name in self._listeners:
            before = len(self._listeners[event_name])
            self._listeners[event_name] = [
                l for l in self._listeners[event_name] if l.identifier != identifier
            ]
            if len(self._listeners[event_name]) < before:
                self._metrics.total_listeners -= 1
                logger.debug(f"Unsubscribed {identifier} from {event_name}")
                return True

        before = len(self._wildcard_listeners)
        self._wildcard_listeners = [
            (pattern, l)
            for pattern, l in self._wildcard_listeners
            if not (pattern == event_name and l.identifier == identifier)
        ]
        if len(self._wildcard_listeners) < before:
            self._metrics.total_listeners -= 1
            logger.debug(f"Unsubscribed {identifier} from wildcard {event_name}")
            return True

        return False

    def clear(self) -> None:
        """Remove all listeners from all events."""
        self._listeners.clear()
        self._wildcard_listeners.clear()
        self._metrics.total_listeners = 0
        logger.info("EventBus cleared - all listeners removed")

    async def publish(self, event_name: str, data: Dict[str, Any]) -> List[Any]:
        """
        Publish an event to all subscribed listeners.

        Returns:
            List of listener return values (None for listeners that raised)
        """
        self._metrics.record_publish(event_name)

        listeners: List[Tuple[str, EventListener]] = [
            (event_name, l) for l in self._listeners.get(event_name, [])
        ]
        for pattern, listener in self._wildcard_listeners:
            if self._matches_wildcard(event_name, pattern):
                listeners.append((pattern, listener))

        listeners.sort(key=lambda x: x[1].priority.value)

        if not listeners:
            logger.debug(f"No listeners for event: {event_name}")
            return []

        return await self._execute_listeners(event_name, data, listeners)

    async def _execute_listeners(
        self,
        event_name: str,
        data: Dict[str, Any],
        listeners: List[Tuple[str, EventListener]],
    ) -> List[Any]:
        """Execute listeners sequentially with error isolation."""
        results: List[Any] = []
        finished_once: List[Tuple[str, EventListener]] = []

        for pattern, listener in listeners:
            try:
                if asyncio.iscoroutinefunction(listener.callback):
                    result = await listener.callback(data)
                else:
                    loop = asyncio.get_running_loop()
                    result = await loop.run_in_executor(None, listener.callback, data)

                results.append(result)

                if listener.once:
                    finished_once.append((pattern, listener))

            except Exception as e:
                self._metrics.record_error(event_name)
                logger.error(
                    f"Error in listener {listener.identifier} for event {event_name}: {e}",
                    extra={
                        "event_name": event_name,
                        "listener_id": listener.identifier,
                        "error_type": type(e).__name__,
                    },
                    exc_info=True,
                )
                results.append(None)

        for pattern, listener in finished_once:
            self.unsubscribe(pattern, listener.identifier)

        return results

    @staticmethod
    def _matches_wildcard(event_name: str, pattern: str) -> bool:
        if pattern == "*":
            return True
        if "*" not in pattern:
            return event_name == pattern

        parts = pattern.split("*")
        return event_name.startswith(parts[0]) and event_name.endswith(parts[-1])

    def get_metrics_summary(self) -> Dict[str, Any]:
        return self._metrics.get_summary()

    def get_listener_count(self, event_name: Optional[str] = None) -> int:
        """Count listeners for one event (wildcards included) or in total."""
        if event_name is None:
            return self._metrics.total_listeners
        count = len(self._listeners.get(event_name, []))
        count += sum(
            1
            for pattern, _ in self._wildcard_listeners
            if self._matches_wildcard(event_name, pattern)
        )
        return count
