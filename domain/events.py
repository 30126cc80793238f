from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional, Tuple, TypeVar

from .identifiers import PlayerId, SessionId, TransactionId, TransactionType
from .values import Duration, Money, Stakes


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    """
    Immutable record of something that happened inside an aggregate.

    Aggregates only collect these; they are published by the application
    layer once the unit of work that persisted the change has committed.
    """

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=utcnow)

    @property
    def event_name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True, kw_only=True)
class SessionStarted(DomainEvent):
    session_id: SessionId
    player_id: PlayerId
    location: str
    stakes: Stakes


@dataclass(frozen=True, kw_only=True)
class SessionEnded(DomainEvent):
    session_id: SessionId
    player_id: PlayerId
    net_result: Money
    duration: Duration


@dataclass(frozen=True, kw_only=True)
class SessionCancelled(DomainEvent):
    session_id: SessionId
    player_id: PlayerId
    reason: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class TransactionAdded(DomainEvent):
    transaction_id: TransactionId
    session_id: SessionId
    player_id: PlayerId
    type: TransactionType
    amount: Money


A = TypeVar("A", bound="AggregateRoot")


class AggregateRoot:
    """
    Mixin for aggregates that record pending domain events.

    Subclasses declare their own `domain_events` field last; this class only
    provides the helpers that work on it.
    """

    domain_events: Tuple[DomainEvent, ...]

    @property
    def has_domain_events(self) -> bool:
        return bool(self.domain_events)

    def _record(self: A, event: DomainEvent, **changes) -> A:
        return replace(self, domain_events=self.domain_events + (event,), **changes)

    def clear_domain_events(self: A) -> A:
        return replace(self, domain_events=())

    def pull_domain_events(self: A) -> Tuple[A, Tuple[DomainEvent, ...]]:
        """Return the aggregate without pending events, and the events."""

        return self.clear_domain_events(), self.domain_events
