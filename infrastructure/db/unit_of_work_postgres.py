from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import psycopg2

from domain.errors import PersistenceError, UnitOfWorkError
from domain.repositories import UnitOfWork
from infrastructure.db.player_repository_postgres import PostgresPlayerRepository
from infrastructure.db.session_repository_postgres import PostgresSessionRepository
from infrastructure.db.transaction_repository_postgres import PostgresTransactionRepository

logger = logging.getLogger(__name__)


def ensure_schema(pool) -> None:
    conn = pool.getconn()
    try:
        with conn:
            with conn.cursor() as cur:
                PostgresPlayerRepository.ensure_table(cur)
                PostgresSessionRepository.ensure_table(cur)
                PostgresTransactionRepository.ensure_table(cur)
    finally:
        pool.putconn(conn)


class PostgresUnitOfWork(UnitOfWork):
    """
    Postgres-backed unit of work over a shared connection pool.

    `begin()` checks a connection out of the pool and keeps it for the
    whole transaction; it goes back to the pool after `commit()` or
    `rollback()`, whatever the outcome.
    """

    def __init__(self, pool) -> None:
        self._pool = pool
        self._conn: Optional[Any] = None
        self.players = PostgresPlayerRepository(self._connection)
        self.sessions = PostgresSessionRepository(self._connection)
        self.transactions = PostgresTransactionRepository(self._connection)

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        try:
            if self._conn is not None:
                yield self._conn
                return
            conn = self._pool.getconn()
            try:
                # Commits on success, rolls back on error.
                with conn:
                    yield conn
            finally:
                self._pool.putconn(conn)
        except psycopg2.Error as exc:
            logger.error("Database error: %s", exc)
            raise PersistenceError(str(exc)) from exc

    @property
    def active(self) -> bool:
        return self._conn is not None

    def begin(self) -> None:
        if self._conn is not None:
            raise UnitOfWorkError("A transaction is already active")
        try:
            conn = self._pool.getconn()
        except psycopg2.Error as exc:
            logger.error("Error beginning transaction: %s", exc)
            raise PersistenceError("Failed to begin transaction") from exc
        # psycopg2 opens the transaction implicitly on the first statement.
        conn.autocommit = False
        self._conn = conn
        logger.debug("Database transaction started")

    def _finish(self, action: str) -> None:
        conn = self._conn
        if conn is None:
            raise UnitOfWorkError(f"No active transaction to {action}")
        try:
            getattr(conn, action)()
        except psycopg2.Error as exc:
            logger.error("Error during %s: %s", action, exc)
            raise PersistenceError(f"Failed to {action} transaction") from exc
        finally:
            self._conn = None
            self._pool.putconn(conn)

    def commit(self) -> None:
        self._finish("commit")
        logger.debug("Database transaction committed")

    def rollback(self) -> None:
        self._finish("rollback")
        logger.debug("Database transaction rolled back")
