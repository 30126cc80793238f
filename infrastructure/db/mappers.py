from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional

from domain.identifiers import PlayerId, SessionId, SessionStatus, TransactionId, TransactionType
from domain.models import Player, Session, Transaction
from domain.values import Money, Stakes

Row = Mapping[str, Any]


def to_datetime(value: Any) -> Optional[datetime]:
    """
    Accept a driver datetime (Postgres) or an ISO-8601 string (SQLite).
    Naive values are taken to be UTC.
    """

    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))


def player_to_row(player: Player) -> Dict[str, Any]:
    return {
        "id": player.id.value,
        "name": player.name,
        "email": player.email,
        "external_id": player.external_id,
        "current_bankroll": player.current_bankroll.amount,
        "currency": player.current_bankroll.currency,
        "total_sessions": player.total_sessions,
        "created_at": player.created_at,
        "updated_at": player.updated_at,
        "version": player.version,
    }


def player_from_row(row: Row) -> Player:
    return Player(
        id=PlayerId(str(row["id"])),
        name=row["name"],
        email=row["email"],
        external_id=row["external_id"],
        current_bankroll=Money(to_decimal(row["current_bankroll"]), row["currency"]),
        total_sessions=int(row["total_sessions"]),
        created_at=to_datetime(row["created_at"]),
        updated_at=to_datetime(row["updated_at"]),
        version=int(row["version"]),
    )


def session_to_row(session: Session) -> Dict[str, Any]:
    # One currency column: Stakes guarantees blinds and ante share it.
    stakes = session.stakes
    return {
        "id": session.id.value,
        "player_id": session.player_id.value,
        "location": session.location,
        "small_blind": stakes.small_blind.amount,
        "big_blind": stakes.big_blind.amount,
        "ante": stakes.ante.amount if stakes.ante is not None else None,
        "currency": stakes.currency,
        "start_time": session.start_time,
        "end_time": session.end_time,
        "status": session.status.value,
        "notes": session.notes,
        "created_at": session.created_at,
        "updated_at": session.updated_at,
        "version": session.version,
    }


def session_from_row(row: Row, transactions: Iterable[Transaction] = ()) -> Session:
    currency = row["currency"]
    ante = to_decimal(row["ante"])
    return Session(
        id=SessionId(str(row["id"])),
        player_id=PlayerId(str(row["player_id"])),
        location=row["location"],
        stakes=Stakes(
            Money(to_decimal(row["small_blind"]), currency),
            Money(to_decimal(row["big_blind"]), currency),
            Money(ante, currency) if ante is not None else None,
        ),
        start_time=to_datetime(row["start_time"]),
        end_time=to_datetime(row["end_time"]),
        status=SessionStatus(row["status"]),
        transactions=tuple(transactions),
        notes=row["notes"],
        created_at=to_datetime(row["created_at"]),
        updated_at=to_datetime(row["updated_at"]),
        version=int(row["version"]),
    )


def transaction_to_row(transaction: Transaction, position: int) -> Dict[str, Any]:
    """`position` is the index in the session ledger; it keeps ledger order stable."""

    return {
        "id": transaction.id.value,
        "session_id": transaction.session_id.value,
        "player_id": transaction.player_id.value,
        "position": position,
        "type": transaction.type.value,
        "amount": transaction.amount.amount,
        "currency": transaction.amount.currency,
        "timestamp": transaction.timestamp,
        "description": transaction.description,
        "notes": transaction.notes,
        "created_at": datetime.now(timezone.utc),
    }


def transaction_from_row(row: Row) -> Transaction:
    return Transaction(
        id=TransactionId(str(row["id"])),
        session_id=SessionId(str(row["session_id"])),
        player_id=PlayerId(str(row["player_id"])),
        type=TransactionType(row["type"]),
        amount=Money(to_decimal(row["amount"]), row["currency"]),
        timestamp=to_datetime(row["timestamp"]),
        description=row["description"] or None,
        notes=row["notes"] or None,
    )
