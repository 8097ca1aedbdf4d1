"""
Base domain model classes.

Purpose
-------
Foundational abstractions for the rich domain models that hold the
progression rules: identity, equality and domain event tracking.

Non-Responsibilities
--------------------
- Persistence (handled by repositories)
- Database schema (handled by SQLAlchemy models)
- Service orchestration (handled by the service layer)

Design Patterns
---------------
- **Entity**: Objects with identity that persist over time
- **Aggregate Root**: Consistency boundary for domain operations
- **Domain Events**: Recorded during a state change, published by the
  service once the transaction has committed

Usage Example
-------------
>>> class Progression(AggregateRoot):
...     def level_up(self) -> None:
...         self.level += 1
...         self.add_domain_event("progression.leveled_up", {
...             "user_id": self.user_id,
...             "new_level": self.level,
...         })
"""

from __future__ import annotations

from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ============================================================================
# DOMAIN EVENTS
# ============================================================================


@dataclass
class DomainEvent:
    """
    A state change that already happened.

    Attributes
    ----------
    event_name : str
        Event name (e.g., "progression.leveled_up")
    payload : Dict[str, Any]
        Event payload with relevant data
    occurred_at : datetime
        When the event occurred (UTC)
    """

    event_name: str
    payload: Dict[str, Any]
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================================================
# ENTITY
# ============================================================================


class Entity(ABC):
    """
    Base class for entities with identity.

    Two entities with the same ID are the same entity, even if their
    attributes differ.
    """

    def __init__(self, entity_id: Optional[int]) -> None:
        self._id = entity_id
        self._domain_events: List[DomainEvent] = []

    @property
    def id(self) -> Optional[int]:
        return self._id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, self.__class__) or self.id is None:
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash((self.__class__.__name__, self.id))

    def add_domain_event(self, event_name: str, payload: Dict[str, Any]) -> None:
        """
        Record a domain event to be published after commit.

        Parameters
        ----------
        event_name : str
            Event name (e.g., "vocabulary.mastered")
        payload : Dict[str, Any]
            Event payload with relevant data
        """
        self._domain_events.append(DomainEvent(event_name=event_name, payload=payload))

    def clear_domain_events(self) -> List[DomainEvent]:
        """
        Clear and return all recorded domain events.

        Returns
        -------
        List[DomainEvent]
            All domain events that occurred since last clear
        """
        events = self._domain_events.copy()
        self._domain_events.clear()
        return events

    def get_pending_events(self) -> List[DomainEvent]:
        """Domain events recorded so far, without clearing them."""
        return self._domain_events.copy()


# ============================================================================
# AGGREGATE ROOT
# ============================================================================


class AggregateRoot(Entity):
    """
    Base class for aggregate roots.

    All changes to an aggregate go through its methods and are persisted
    atomically; it is the single source of truth for its invariants.
    """
