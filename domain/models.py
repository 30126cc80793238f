from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from .errors import BusinessError, CurrencyMismatchError, ValidationError
from .events import (
    AggregateRoot,
    DomainEvent,
    SessionCancelled,
    SessionEnded,
    SessionStarted,
    TransactionAdded,
    utcnow,
)
from .identifiers import PlayerId, SessionId, SessionStatus, TransactionId, TransactionType
from .values import DEFAULT_CURRENCY, Duration, Money, Stakes

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

BUY_IN_TYPES = (TransactionType.BUY_IN, TransactionType.REBUY)


@dataclass(frozen=True)
class Transaction:
    """
    One line of a session's ledger.

    Transactions are append-only: once created they are never changed or
    removed, and persistence stores each one as its own immutable row.
    """

    id: TransactionId
    session_id: SessionId
    player_id: PlayerId
    type: TransactionType
    amount: Money
    timestamp: datetime
    description: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.amount.is_positive:
            raise ValidationError(
                "Transaction amount must be positive",
                "VALIDATION_AMOUNT_MUST_BE_POSITIVE",
            )


def _clean_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Player name cannot be empty", "VALIDATION_NAME_REQUIRED")
    return cleaned


def _clean_email(email: Optional[str]) -> Optional[str]:
    cleaned = (email or "").strip().lower()
    if not cleaned:
        return None
    if not _EMAIL_RE.match(cleaned):
        raise ValidationError("Invalid email format", "VALIDATION_EMAIL_INVALID")
    return cleaned


@dataclass(frozen=True)
class Player(AggregateRoot):
    """
    Domain representation of a poker player and their bankroll.

    The bankroll is the player's net position, not a spendable balance, so
    it is allowed to go negative. Every change goes through a named method
    that returns an updated copy.
    """

    id: PlayerId
    name: str
    email: Optional[str] = None
    external_id: Optional[str] = None
    current_bankroll: Money = field(default_factory=Money.zero)
    total_sessions: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 0
    domain_events: Tuple[DomainEvent, ...] = field(default=(), compare=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _clean_name(self.name))
        object.__setattr__(self, "email", _clean_email(self.email))

    @classmethod
    def create(
        cls,
        name: str,
        email: Optional[str] = None,
        initial_bankroll: Optional[Money] = None,
        currency: str = DEFAULT_CURRENCY,
    ) -> Player:
        return cls(
            id=PlayerId.generate(),
            name=name,
            email=email,
            current_bankroll=initial_bankroll or Money.zero(currency),
        )

    @classmethod
    def from_external_account(
        cls,
        external_id: str,
        name: str,
        email: Optional[str] = None,
        initial_bankroll: Optional[Money] = None,
        currency: str = DEFAULT_CURRENCY,
    ) -> Player:
        """Create a player whose identity comes from an external login provider."""

        if not (external_id or "").strip():
            raise ValidationError("External account id cannot be empty", "VALIDATION_EXTERNAL_ID_REQUIRED")
        player = cls.create(name, email, initial_bankroll, currency)
        return replace(player, external_id=external_id.strip())

    def _touch(self, **changes) -> Player:
        return replace(self, updated_at=utcnow(), **changes)

    def update_name(self, name: str) -> Player:
        return self._touch(name=name)

    def update_email(self, email: Optional[str]) -> Player:
        return self._touch(email=email)

    def link_external_account(self, external_id: str) -> Player:
        if self.external_id:
            raise BusinessError(
                "An external account is already linked to this player",
                "EXTERNAL_ACCOUNT_ALREADY_LINKED",
            )
        if not (external_id or "").strip():
            raise ValidationError("External account id cannot be empty", "VALIDATION_EXTERNAL_ID_REQUIRED")
        return self._touch(external_id=external_id.strip())

    def adjust_bankroll(self, amount: Money) -> Player:
        return self._touch(current_bankroll=self.current_bankroll.add(amount))

    def increment_session_count(self) -> Player:
        return self._touch(total_sessions=self.total_sessions + 1)


def _append_note(existing: Optional[str], addition: str) -> str:
    return f"{existing}\n{addition}" if existing else addition


@dataclass(frozen=True)
class Session(AggregateRoot):
    """
    A single poker session and its ledger.

    State machine: ACTIVE -> COMPLETED | CANCELLED, both terminal. Totals
    are always derived from the ledger, never stored.
    """

    id: SessionId
    player_id: PlayerId
    location: str
    stakes: Stakes
    start_time: datetime
    end_time: Optional[datetime] = None
    status: SessionStatus = SessionStatus.ACTIVE
    transactions: Tuple[Transaction, ...] = ()
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 0
    domain_events: Tuple[DomainEvent, ...] = field(default=(), compare=False, repr=False)

    def __post_init__(self) -> None:
        location = (self.location or "").strip()
        if not location:
            raise ValidationError("Location cannot be empty", "VALIDATION_LOCATION_REQUIRED")
        object.__setattr__(self, "location", location)
        object.__setattr__(self, "status", SessionStatus(self.status))
        object.__setattr__(self, "transactions", tuple(self.transactions))

    @classmethod
    def start(
        cls,
        player_id: PlayerId,
        location: str,
        stakes: Stakes,
        initial_buy_in: Money,
        notes: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Session:
        now = at or utcnow()
        session = cls(
            id=SessionId.generate(),
            player_id=player_id,
            location=location,
            stakes=stakes,
            start_time=now,
            notes=notes or None,
            created_at=now,
            updated_at=now,
        )
        session = session.add_transaction(
            TransactionType.BUY_IN, initial_buy_in, "Initial buy-in", at=now
        )
        return session._record(
            SessionStarted(
                session_id=session.id,
                player_id=session.player_id,
                location=session.location,
                stakes=session.stakes,
            )
        )

    # Derived values

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    @property
    def currency(self) -> str:
        return self.stakes.currency

    def _sum(self, types: Tuple[TransactionType, ...]) -> Money:
        total = Money.zero(self.currency)
        for transaction in self.transactions:
            if transaction.type in types:
                total = total.add(transaction.amount)
        return total

    @property
    def total_buy_in(self) -> Money:
        return self._sum(BUY_IN_TYPES)

    @property
    def total_cash_out(self) -> Money:
        return self._sum((TransactionType.CASH_OUT,))

    @property
    def net_result(self) -> Money:
        return self.total_cash_out.subtract(self.total_buy_in)

    @property
    def duration(self) -> Optional[Duration]:
        if self.end_time is None:
            return None
        return Duration.between(self.start_time, self.end_time)

    @property
    def hourly_rate(self) -> Optional[Money]:
        duration = self.duration
        if duration is None or duration.hours == 0:
            return None
        return self.net_result.divide(duration.hours)

    @property
    def big_blinds_won(self) -> Decimal:
        big_blind = self.stakes.big_blind.amount
        if big_blind == 0:
            return Decimal("0")
        return self.net_result.amount / big_blind

    # Transitions

    def _require_active(self, message: str, code: str) -> None:
        if not self.is_active:
            raise BusinessError(message, code)

    def add_transaction(
        self,
        type: TransactionType,
        amount: Money,
        description: Optional[str] = None,
        notes: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Session:
        self._require_active(
            "Cannot add transactions to inactive session",
            "SESSION_NOT_ACTIVE",
        )
        if amount.currency != self.currency:
            raise CurrencyMismatchError(
                f"Transaction currency {amount.currency} does not match session currency {self.currency}"
            )

        now = at or utcnow()
        transaction = Transaction(
            id=TransactionId.generate(),
            session_id=self.id,
            player_id=self.player_id,
            type=TransactionType(type),
            amount=amount,
            timestamp=now,
            description=description,
            notes=notes,
        )
        return self._record(
            TransactionAdded(
                transaction_id=transaction.id,
                session_id=self.id,
                player_id=self.player_id,
                type=transaction.type,
                amount=transaction.amount,
            ),
            transactions=self.transactions + (transaction,),
            updated_at=now,
        )

    def end(
        self,
        final_cash_out: Money,
        notes: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Session:
        self._require_active("Cannot end inactive session", "CANNOT_END_INACTIVE_SESSION")

        now = at or utcnow()
        session = self
        if final_cash_out.is_positive:
            session = session.add_transaction(
                TransactionType.CASH_OUT, final_cash_out, "Final cash out", at=now
            )

        session = replace(
            session,
            end_time=now,
            status=SessionStatus.COMPLETED,
            notes=_append_note(session.notes, notes) if notes else session.notes,
            updated_at=now,
        )
        return session._record(
            SessionEnded(
                session_id=session.id,
                player_id=session.player_id,
                net_result=session.net_result,
                duration=session.duration,
            )
        )

    def cancel(self, reason: Optional[str] = None, at: Optional[datetime] = None) -> Session:
        self._require_active("Cannot cancel inactive session", "CANNOT_CANCEL_INACTIVE_SESSION")

        now = at or utcnow()
        notes = self.notes
        if reason:
            notes = _append_note(notes, f"Cancelled: {reason}")
        return self._record(
            SessionCancelled(session_id=self.id, player_id=self.player_id, reason=reason),
            end_time=now,
            status=SessionStatus.CANCELLED,
            notes=notes,
            updated_at=now,
        )

    def update_notes(self, notes: Optional[str]) -> Session:
        self._require_active("Cannot update notes of inactive session", "SESSION_NOT_ACTIVE")
        return replace(self, notes=notes or None, updated_at=utcnow())

    def update_location(self, location: str) -> Session:
        # Validation of the new value happens in __post_init__.
        return replace(self, location=location, updated_at=utcnow())
