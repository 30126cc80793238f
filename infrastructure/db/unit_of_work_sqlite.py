from __future__ import annotations

import logging
import sqlite3
from contextlib import closing, contextmanager
from typing import Iterator, Optional

from domain.errors import PersistenceError, UnitOfWorkError
from domain.repositories import UnitOfWork
from infrastructure.db.player_repository_sqlite import SqlitePlayerRepository
from infrastructure.db.session_repository_sqlite import SqliteSessionRepository
from infrastructure.db.sqlite_connection import open_connection
from infrastructure.db.transaction_repository_sqlite import SqliteTransactionRepository

logger = logging.getLogger(__name__)


def ensure_schema(db_path: str) -> None:
    """Create the tables if needed. Run once at start-up, not per unit of work."""

    with closing(open_connection(db_path)) as conn:
        with conn:
            SqlitePlayerRepository.ensure_table(conn)
            SqliteSessionRepository.ensure_table(conn)
            SqliteTransactionRepository.ensure_table(conn)


class SqliteUnitOfWork(UnitOfWork):
    """
    SQLite-backed unit of work.

    `begin()` opens a dedicated connection and takes the write lock with
    `BEGIN IMMEDIATE`; the repositories use that connection until
    `commit()` or `rollback()` closes it. Repository calls made with no
    transaction open each run on their own short-lived connection.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self.players = SqlitePlayerRepository(self._connection)
        self.sessions = SqliteSessionRepository(self._connection)
        self.transactions = SqliteTransactionRepository(self._connection)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            if self._conn is not None:
                yield self._conn
                return
            with closing(open_connection(self._db_path)) as conn:
                with conn:
                    yield conn
        except sqlite3.Error as exc:
            logger.error("Database error: %s", exc)
            raise PersistenceError(str(exc)) from exc

    @property
    def active(self) -> bool:
        return self._conn is not None

    def begin(self) -> None:
        if self._conn is not None:
            raise UnitOfWorkError("A transaction is already active")

        conn = None
        try:
            # Autocommit mode: transaction boundaries are issued explicitly.
            conn = open_connection(self._db_path, isolation_level=None)
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            if conn is not None:
                conn.close()
            logger.error("Error beginning transaction: %s", exc)
            raise PersistenceError("Failed to begin transaction") from exc

        self._conn = conn
        logger.debug("Database transaction started")

    def _finish(self, statement: str) -> None:
        conn = self._conn
        if conn is None:
            raise UnitOfWorkError(f"No active transaction to {statement.lower()}")
        try:
            conn.execute(statement)
        except sqlite3.Error as exc:
            logger.error("Error during %s: %s", statement, exc)
            raise PersistenceError(f"Failed to {statement.lower()} transaction") from exc
        finally:
            # Closing a connection with an open transaction discards it.
            self._conn = None
            conn.close()

    def commit(self) -> None:
        self._finish("COMMIT")
        logger.debug("Database transaction committed")

    def rollback(self) -> None:
        self._finish("ROLLBACK")
        logger.debug("Database transaction rolled back")
