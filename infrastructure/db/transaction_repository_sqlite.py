from __future__ import annotations

import sqlite3
from typing import List, Optional, Sequence

from domain.identifiers import PlayerId, SessionId, TransactionId, TransactionType
from domain.models import Transaction
from domain.repositories import TransactionFilters, TransactionRepository
from infrastructure.db.mappers import transaction_from_row, transaction_to_row
from infrastructure.db.sqlite_connection import ConnectionProvider, iso, to_sqlite

_INSERT = """
    INSERT OR IGNORE INTO transactions (
        id, session_id, player_id, position, type, amount, currency,
        timestamp, description, notes, created_at
    )
    VALUES (
        :id, :session_id, :player_id, :position, :type, :amount, :currency,
        :timestamp, :description, :notes, :created_at
    )
"""


def insert_ledger(conn: sqlite3.Connection, transactions: Sequence[Transaction], start: int = 0) -> None:
    """Append ledger rows; rows that already exist are left untouched."""

    conn.executemany(
        _INSERT,
        [to_sqlite(transaction_to_row(t, start + i)) for i, t in enumerate(transactions)],
    )


def load_ledger(conn: sqlite3.Connection, session_id: SessionId) -> List[Transaction]:
    rows = conn.execute(
        "SELECT * FROM transactions WHERE session_id = ? ORDER BY position ASC",
        (session_id.value,),
    ).fetchall()
    return [transaction_from_row(row) for row in rows]


class SqliteTransactionRepository(TransactionRepository):
    """
    SQLite-backed ledger. Rows are insert-only: there is no UPDATE path.
    """

    def __init__(self, connection: ConnectionProvider) -> None:
        self._connection = connection

    @staticmethod
    def ensure_table(conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS transactions (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL REFERENCES sessions (id) ON DELETE CASCADE,
                player_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                type TEXT NOT NULL,
                amount TEXT NOT NULL,
                currency TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                description TEXT,
                notes TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_transactions_session ON transactions (session_id, position)"
        )

    def find_by_id(self, transaction_id: TransactionId) -> Optional[Transaction]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM transactions WHERE id = ?", (transaction_id.value,)
            ).fetchone()
            if not row:
                return None
            return transaction_from_row(row)

    def save(self, transaction: Transaction) -> Transaction:
        with self._connection() as conn:
            (next_position,) = conn.execute(
                "SELECT COALESCE(MAX(position) + 1, 0) FROM transactions WHERE session_id = ?",
                (transaction.session_id.value,),
            ).fetchone()
            insert_ledger(conn, [transaction], start=next_position)
        return transaction

    def delete(self, transaction_id: TransactionId) -> None:
        with self._connection() as conn:
            conn.execute("DELETE FROM transactions WHERE id = ?", (transaction_id.value,))

    def find_by_session_id(self, session_id: SessionId) -> List[Transaction]:
        with self._connection() as conn:
            return load_ledger(conn, session_id)

    def find_by_player_id(self, player_id: PlayerId) -> List[Transaction]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM transactions WHERE player_id = ? ORDER BY timestamp DESC, position DESC",
                (player_id.value,),
            ).fetchall()
            return [transaction_from_row(row) for row in rows]

    def find_by_filters(self, filters: TransactionFilters) -> List[Transaction]:
        clauses = ["1 = 1"]
        params: list = []
        if filters.session_id is not None:
            clauses.append("session_id = ?")
            params.append(filters.session_id.value)
        if filters.player_id is not None:
            clauses.append("player_id = ?")
            params.append(filters.player_id.value)
        if filters.type is not None:
            clauses.append("type = ?")
            params.append(TransactionType(filters.type).value)
        if filters.date_from is not None:
            clauses.append("timestamp >= ?")
            params.append(iso(filters.date_from))
        if filters.date_to is not None:
            clauses.append("timestamp <= ?")
            params.append(iso(filters.date_to))
        # Amounts are stored as text to keep Decimal precision.
        if filters.min_amount is not None:
            clauses.append("CAST(amount AS REAL) >= ?")
            params.append(float(filters.min_amount))
        if filters.max_amount is not None:
            clauses.append("CAST(amount AS REAL) <= ?")
            params.append(float(filters.max_amount))

        sql = f"SELECT * FROM transactions WHERE {' AND '.join(clauses)} ORDER BY timestamp DESC, position DESC"
        with self._connection() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [transaction_from_row(row) for row in rows]
