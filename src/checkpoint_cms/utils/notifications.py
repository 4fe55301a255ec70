"""
Notification system for the checkpoint engine.

Publish/subscribe for lifecycle events (baselines, saves, restores, pruning).
Handlers run inline in ``emit`` so an operation's events have been delivered
by the time the operation returns. Handler failures are logged and never
propagate into the emitting operation.
"""

from typing import Optional, Dict, Any, List, Callable, Set, Union
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import asyncio

from .logging import get_logger


logger = get_logger("checkpoint-cms.notifications")


class EventPriority(Enum):
    """Event priority levels."""
    LOW = 1
    NORMAL = 2
    HIGH = 3
    CRITICAL = 4


class EventCategory(Enum):
    """Event categories for routing."""
    SYSTEM = "system"
    TRACKING = "tracking"
    CHECKPOINT = "checkpoint"
    RESTORE = "restore"
    ERROR = "error"


@dataclass
class Event:
    """Event data structure."""
    name: str
    category: EventCategory
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.utcnow)
    priority: EventPriority = EventPriority.NORMAL
    source: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "category": self.category.value,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "priority": self.priority.value,
            "source": self.source,
            "metadata": self.metadata
        }


@dataclass
class Subscription:
    """Event subscription."""
    handler: Callable[[Event], Any]
    categories: Optional[Set[EventCategory]] = None
    event_names: Optional[Set[str]] = None
    priority_min: EventPriority = EventPriority.LOW
    filter_func: Optional[Callable[[Event], bool]] = None

    def matches(self, event: Event) -> bool:
        """Check if subscription matches event."""
        if event.priority.value < self.priority_min.value:
            return False

        if self.categories and event.category not in self.categories:
            return False

        if self.event_names and event.name not in self.event_names:
            return False

        if self.filter_func and not self.filter_func(event):
            return False

        return True


class EventBus:
    """In-process event bus."""

    def __init__(self, max_history: int = 200):
        self._subscriptions: List[Subscription] = []
        self._history: List[Event] = []
        self._max_history = max_history

    def subscribe(
        self,
        handler: Callable[[Event], Any],
        categories: Optional[Union[EventCategory, List[EventCategory]]] = None,
        event_names: Optional[Union[str, List[str]]] = None,
        priority_min: EventPriority = EventPriority.LOW,
        filter_func: Optional[Callable[[Event], bool]] = None
    ) -> Subscription:
        """
        Subscribe to events.

        Args:
            handler: Event handler, sync or async
            categories: Event categories to subscribe to
            event_names: Specific event names to subscribe to
            priority_min: Minimum priority level
            filter_func: Custom filter function

        Returns:
            Subscription object
        """
        if isinstance(categories, EventCategory):
            categories = {categories}
        elif isinstance(categories, list):
            categories = set(categories)

        if isinstance(event_names, str):
            event_names = {event_names}
        elif isinstance(event_names, list):
            event_names = set(event_names)

        subscription = Subscription(
            handler=handler,
            categories=categories,
            event_names=event_names,
            priority_min=priority_min,
            filter_func=filter_func
        )
        self._subscriptions.append(subscription)

        logger.debug(
            "subscription_added",
            categories=[c.value for c in categories] if categories else None,
            event_names=sorted(event_names) if event_names else None,
            handler=getattr(handler, '__name__', str(handler))
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Remove a subscription. Returns False if it was not registered."""
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            return False
        logger.debug("subscription_removed")
        return True

    async def emit(
        self,
        name: str,
        category: EventCategory,
        data: Dict[str, Any],
        priority: EventPriority = EventPriority.NORMAL,
        source: Optional[str] = None,
        **metadata
    ) -> Event:
        """
        Emit an event and deliver it to every matching handler.

        Returns:
            The delivered event
        """
        event = Event(
            name=name,
            category=category,
            data=data,
            priority=priority,
            source=source,
            metadata=metadata
        )

        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        for subscription in [s for s in self._subscriptions if s.matches(event)]:
            await self._call_handler(subscription.handler, event)

        logger.debug("event_emitted", event_name=name, category=category.value)
        return event

    async def _call_handler(self, handler: Callable[[Event], Any], event: Event) -> None:
        try:
            if asyncio.iscoroutinefunction(handler):
                await handler(event)
            else:
                handler(event)
        except Exception as e:
            logger.error(
                "event_handler_error",
                handler=getattr(handler, '__name__', 'unknown'),
                event_name=event.name,
                error=str(e),
                exc_info=True
            )

    def get_history(
        self,
        event_name: Optional[str] = None,
        category: Optional[EventCategory] = None,
        limit: Optional[int] = None
    ) -> List[Event]:
        """Return delivered events, oldest first, optionally filtered."""
        events = [
            e for e in self._history
            if (event_name is None or e.name == event_name)
            and (category is None or e.category == category)
        ]
        if limit is not None:
            events = events[-limit:]
        return events


__all__ = [
    'EventBus',
    'Event',
    'EventCategory',
    'EventPriority',
    'Subscription',
]
