from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Protocol

from .identifiers import PlayerId, SessionId, SessionStatus, TransactionId, TransactionType
from .models import Player, Session, Transaction


@dataclass
class SessionFilters:
    """Criteria for `SessionRepository.find_by_filters`. Unset fields do not filter."""

    player_id: Optional[PlayerId] = None
    status: Optional[SessionStatus] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    location: Optional[str] = None
    limit: Optional[int] = None
    offset: int = 0


@dataclass
class TransactionFilters:
    session_id: Optional[SessionId] = None
    player_id: Optional[PlayerId] = None
    type: Optional[TransactionType] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None


@dataclass
class SessionPage:
    """One page of sessions plus the number of sessions matching the filters."""

    sessions: List[Session] = field(default_factory=list)
    total: int = 0


class PlayerRepository(Protocol):
    """
    Abstraction over player persistence.

    Implementations are responsible for:
    - Mapping between database rows and the `Player` aggregate.
    - Rejecting stale writes: `save` raises `ConflictError` when the stored
      version no longer matches the aggregate's version.
    """

    def find_by_id(self, player_id: PlayerId) -> Optional[Player]:
        ...

    def save(self, player: Player) -> Player:
        """Insert or update the player; return it with its new version."""

        ...

    def delete(self, player_id: PlayerId) -> None:
        ...

    def find_by_email(self, email: str) -> Optional[Player]:
        ...

    def find_by_external_id(self, external_id: str) -> Optional[Player]:
        ...

    def find_all(self) -> List[Player]:
        """Return all players, newest first."""

        ...

    def find_by_name(self, name: str) -> List[Player]:
        """Case-insensitive substring match on the player name."""

        ...


class SessionRepository(Protocol):
    """
    Persistence for `Session` aggregates together with their ledgers.

    Saving a session inserts ledger rows that are not stored yet; existing
    ledger rows are never rewritten.
    """

    def find_by_id(self, session_id: SessionId) -> Optional[Session]:
        ...

    def save(self, session: Session) -> Session:
        ...

    def delete(self, session_id: SessionId) -> None:
        ...

    def find_by_player_id(self, player_id: PlayerId) -> List[Session]:
        """All sessions for the player, most recent start first."""

        ...

    def find_active_by_player_id(self, player_id: PlayerId) -> Optional[Session]:
        ...

    def find_by_filters(self, filters: SessionFilters) -> SessionPage:
        ...

    def find_completed_by_player_id(self, player_id: PlayerId) -> List[Session]:
        ...

    def find_recent_by_player_id(self, player_id: PlayerId, limit: int) -> List[Session]:
        ...


class TransactionRepository(Protocol):
    def find_by_id(self, transaction_id: TransactionId) -> Optional[Transaction]:
        ...

    def save(self, transaction: Transaction) -> Transaction:
        """Append a ledger row. Saving an already stored transaction is a no-op."""

        ...

    def delete(self, transaction_id: TransactionId) -> None:
        ...

    def find_by_session_id(self, session_id: SessionId) -> List[Transaction]:
        """Ledger rows of a session, in the order they were appended."""

        ...

    def find_by_player_id(self, player_id: PlayerId) -> List[Transaction]:
        ...

    def find_by_filters(self, filters: TransactionFilters) -> List[Transaction]:
        ...


class UnitOfWork(Protocol):
    """
    Transactional boundary around the three repositories.

    Everything written through `players`, `sessions` and `transactions`
    between `begin()` and `commit()` is applied atomically; `rollback()`
    discards it. Only one transaction may be open at a time, and calling
    `commit()` or `rollback()` without `begin()` raises `UnitOfWorkError`.
    """

    players: PlayerRepository
    sessions: SessionRepository
    transactions: TransactionRepository

    @property
    def active(self) -> bool:
        ...

    def begin(self) -> None:
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...
