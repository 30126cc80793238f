from __future__ import annotations

import sqlite3
from dataclasses import replace
from typing import List, Optional

from domain.errors import ConflictError
from domain.identifiers import PlayerId, SessionId, SessionStatus
from domain.models import Session
from domain.repositories import SessionFilters, SessionPage, SessionRepository
from infrastructure.db.mappers import session_from_row, session_to_row
from infrastructure.db.sqlite_connection import ConnectionProvider, iso, to_sqlite
from infrastructure.db.transaction_repository_sqlite import insert_ledger, load_ledger


class SqliteSessionRepository(SessionRepository):
    """
    SQLite-backed implementation of `SessionRepository`.

    A session is stored as one `sessions` row plus its ledger rows in
    `transactions`; loading a session always loads its full ledger.
    """

    def __init__(self, connection: ConnectionProvider) -> None:
        self._connection = connection

    @staticmethod
    def ensure_table(conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                player_id TEXT NOT NULL REFERENCES players (id) ON DELETE CASCADE,
                location TEXT NOT NULL,
                small_blind TEXT NOT NULL,
                big_blind TEXT NOT NULL,
                ante TEXT,
                currency TEXT NOT NULL,
                start_time TEXT NOT NULL,
                end_time TEXT,
                status TEXT NOT NULL,
                notes TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1
            )
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_sessions_player ON sessions (player_id, start_time)"
        )

    def _hydrate(self, conn: sqlite3.Connection, rows) -> List[Session]:
        return [session_from_row(row, load_ledger(conn, SessionId(row["id"]))) for row in rows]

    def _query(self, sql: str, params: tuple = ()) -> List[Session]:
        with self._connection() as conn:
            return self._hydrate(conn, conn.execute(sql, params).fetchall())

    def find_by_id(self, session_id: SessionId) -> Optional[Session]:
        sessions = self._query("SELECT * FROM sessions WHERE id = ?", (session_id.value,))
        return sessions[0] if sessions else None

    def find_by_player_id(self, player_id: PlayerId) -> List[Session]:
        return self._query(
            "SELECT * FROM sessions WHERE player_id = ? ORDER BY start_time DESC",
            (player_id.value,),
        )

    def find_active_by_player_id(self, player_id: PlayerId) -> Optional[Session]:
        sessions = self._query(
            "SELECT * FROM sessions WHERE player_id = ? AND status = ? ORDER BY start_time DESC LIMIT 1",
            (player_id.value, SessionStatus.ACTIVE.value),
        )
        return sessions[0] if sessions else None

    def find_completed_by_player_id(self, player_id: PlayerId) -> List[Session]:
        return self._query(
            "SELECT * FROM sessions WHERE player_id = ? AND status = ? ORDER BY start_time DESC",
            (player_id.value, SessionStatus.COMPLETED.value),
        )

    def find_recent_by_player_id(self, player_id: PlayerId, limit: int) -> List[Session]:
        return self._query(
            "SELECT * FROM sessions WHERE player_id = ? ORDER BY start_time DESC LIMIT ?",
            (player_id.value, limit),
        )

    def find_by_filters(self, filters: SessionFilters) -> SessionPage:
        clauses = ["1 = 1"]
        params: list = []
        if filters.player_id is not None:
            clauses.append("player_id = ?")
            params.append(filters.player_id.value)
        if filters.status is not None:
            clauses.append("status = ?")
            params.append(SessionStatus(filters.status).value)
        if filters.date_from is not None:
            clauses.append("start_time >= ?")
            params.append(iso(filters.date_from))
        if filters.date_to is not None:
            clauses.append("start_time <= ?")
            params.append(iso(filters.date_to))
        if filters.location:
            clauses.append("location LIKE ?")
            params.append(f"%{filters.location}%")
        where = " AND ".join(clauses)

        with self._connection() as conn:
            (total,) = conn.execute(f"SELECT COUNT(*) FROM sessions WHERE {where}", params).fetchone()
            sql = f"SELECT * FROM sessions WHERE {where} ORDER BY start_time DESC"
            page_params = list(params)
            if filters.limit is not None:
                sql += " LIMIT ? OFFSET ?"
                page_params += [filters.limit, filters.offset]
            elif filters.offset:
                sql += " LIMIT -1 OFFSET ?"
                page_params.append(filters.offset)
            sessions = self._hydrate(conn, conn.execute(sql, page_params).fetchall())
        return SessionPage(sessions=sessions, total=total)

    def save(self, session: Session) -> Session:
        params = to_sqlite(session_to_row(session))
        with self._connection() as conn:
            if session.version == 0:
                try:
                    conn.execute(
                        """
                        INSERT INTO sessions (
                            id, player_id, location, small_blind, big_blind, ante, currency,
                            start_time, end_time, status, notes, created_at, updated_at, version
                        )
                        VALUES (
                            :id, :player_id, :location, :small_blind, :big_blind, :ante, :currency,
                            :start_time, :end_time, :status, :notes, :created_at, :updated_at, 1
                        )
                        """,
                        params,
                    )
                except sqlite3.IntegrityError as exc:
                    raise ConflictError(f"Session {session.id} could not be inserted: {exc}") from exc
            else:
                cur = conn.execute(
                    """
                    UPDATE sessions
                    SET location = :location,
                        small_blind = :small_blind,
                        big_blind = :big_blind,
                        ante = :ante,
                        currency = :currency,
                        start_time = :start_time,
                        end_time = :end_time,
                        status = :status,
                        notes = :notes,
                        updated_at = :updated_at,
                        version = version + 1
                    WHERE id = :id AND version = :version
                    """,
                    params,
                )
                if cur.rowcount == 0:
                    raise ConflictError(f"Session {session.id} was modified or removed concurrently")
            insert_ledger(conn, session.transactions)
        return replace(session, version=session.version + 1)

    def delete(self, session_id: SessionId) -> None:
        with self._connection() as conn:
            conn.execute("DELETE FROM sessions WHERE id = ?", (session_id.value,))
