from __future__ import annotations

from typing import List, Optional, Sequence

from psycopg2.extras import RealDictCursor

from domain.identifiers import PlayerId, SessionId, TransactionId, TransactionType
from domain.models import Transaction
from domain.repositories import TransactionFilters, TransactionRepository
from infrastructure.db.mappers import transaction_from_row, transaction_to_row
from infrastructure.db.postgres_connection import ConnectionProvider

_INSERT = """
    INSERT INTO transactions (
        id, session_id, player_id, position, type, amount, currency,
        timestamp, description, notes, created_at
    )
    VALUES (
        %(id)s, %(session_id)s, %(player_id)s, %(position)s, %(type)s, %(amount)s, %(currency)s,
        %(timestamp)s, %(description)s, %(notes)s, %(created_at)s
    )
    ON CONFLICT (id) DO NOTHING
"""


def insert_ledger(cur, transactions: Sequence[Transaction], start: int = 0) -> None:
    """Append ledger rows; rows that already exist are left untouched."""

    for i, transaction in enumerate(transactions):
        cur.execute(_INSERT, transaction_to_row(transaction, start + i))


def load_ledger(conn, session_id: SessionId) -> List[Transaction]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            "SELECT * FROM transactions WHERE session_id = %s ORDER BY position ASC",
            (session_id.value,),
        )
        return [transaction_from_row(row) for row in cur.fetchall()]


class PostgresTransactionRepository(TransactionRepository):
    def __init__(self, connection: ConnectionProvider) -> None:
        self._connection = connection

    @staticmethod
    def ensure_table(cur) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS transactions (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL REFERENCES sessions (id) ON DELETE CASCADE,
                player_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                type TEXT NOT NULL,
                amount NUMERIC NOT NULL CHECK (amount > 0),
                currency CHAR(3) NOT NULL,
                timestamp TIMESTAMPTZ NOT NULL,
                description TEXT,
                notes TEXT,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_transactions_session ON transactions (session_id, position)"
        )

    def _fetch(self, sql: str, params) -> List[Transaction]:
        with self._connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                return [transaction_from_row(row) for row in cur.fetchall()]

    def find_by_id(self, transaction_id: TransactionId) -> Optional[Transaction]:
        rows = self._fetch("SELECT * FROM transactions WHERE id = %s", (transaction_id.value,))
        return rows[0] if rows else None

    def save(self, transaction: Transaction) -> Transaction:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT COALESCE(MAX(position) + 1, 0) FROM transactions WHERE session_id = %s",
                    (transaction.session_id.value,),
                )
                (next_position,) = cur.fetchone()
                insert_ledger(cur, [transaction], start=next_position)
        return transaction

    def delete(self, transaction_id: TransactionId) -> None:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM transactions WHERE id = %s", (transaction_id.value,))

    def find_by_session_id(self, session_id: SessionId) -> List[Transaction]:
        with self._connection() as conn:
            return load_ledger(conn, session_id)

    def find_by_player_id(self, player_id: PlayerId) -> List[Transaction]:
        return self._fetch(
            "SELECT * FROM transactions WHERE player_id = %s ORDER BY timestamp DESC, position DESC",
            (player_id.value,),
        )

    def find_by_filters(self, filters: TransactionFilters) -> List[Transaction]:
        clauses = ["1 = 1"]
        params: list = []
        if filters.session_id is not None:
            clauses.append("session_id = %s")
            params.append(filters.session_id.value)
        if filters.player_id is not None:
            clauses.append("player_id = %s")
            params.append(filters.player_id.value)
        if filters.type is not None:
            clauses.append("type = %s")
            params.append(TransactionType(filters.type).value)
        if filters.date_from is not None:
            clauses.append("timestamp >= %s")
            params.append(filters.date_from)
        if filters.date_to is not None:
            clauses.append("timestamp <= %s")
            params.append(filters.date_to)
        if filters.min_amount is not None:
            clauses.append("amount >= %s")
            params.append(filters.min_amount)
        if filters.max_amount is not None:
            clauses.append("amount <= %s")
            params.append(filters.max_amount)

        return self._fetch(
            f"SELECT * FROM transactions WHERE {' AND '.join(clauses)} ORDER BY timestamp DESC, position DESC",
            params,
        )
