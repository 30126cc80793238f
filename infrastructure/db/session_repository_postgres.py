from __future__ import annotations

from dataclasses import replace
from typing import List, Optional

import psycopg2
from psycopg2.extras import RealDictCursor

from domain.errors import ConflictError
from domain.identifiers import PlayerId, SessionId, SessionStatus
from domain.models import Session
from domain.repositories import SessionFilters, SessionPage, SessionRepository
from infrastructure.db.mappers import session_from_row, session_to_row
from infrastructure.db.postgres_connection import ConnectionProvider
from infrastructure.db.transaction_repository_postgres import insert_ledger, load_ledger


class PostgresSessionRepository(SessionRepository):
    def __init__(self, connection: ConnectionProvider) -> None:
        self._connection = connection

    @staticmethod
    def ensure_table(cur) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                player_id TEXT NOT NULL REFERENCES players (id) ON DELETE CASCADE,
                location TEXT NOT NULL,
                small_blind NUMERIC NOT NULL,
                big_blind NUMERIC NOT NULL,
                ante NUMERIC,
                currency CHAR(3) NOT NULL,
                start_time TIMESTAMPTZ NOT NULL,
                end_time TIMESTAMPTZ,
                status TEXT NOT NULL,
                notes TEXT,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                version INTEGER NOT NULL DEFAULT 1
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_sessions_player ON sessions (player_id, start_time)"
        )

    def _query(self, sql: str, params=()) -> List[Session]:
        with self._connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
            return [session_from_row(row, load_ledger(conn, SessionId(row["id"]))) for row in rows]

    def find_by_id(self, session_id: SessionId) -> Optional[Session]:
        sessions = self._query("SELECT * FROM sessions WHERE id = %s", (session_id.value,))
        return sessions[0] if sessions else None

    def find_by_player_id(self, player_id: PlayerId) -> List[Session]:
        return self._query(
            "SELECT * FROM sessions WHERE player_id = %s ORDER BY start_time DESC",
            (player_id.value,),
        )

    def find_active_by_player_id(self, player_id: PlayerId) -> Optional[Session]:
        sessions = self._query(
            "SELECT * FROM sessions WHERE player_id = %s AND status = %s ORDER BY start_time DESC LIMIT 1",
            (player_id.value, SessionStatus.ACTIVE.value),
        )
        return sessions[0] if sessions else None

    def find_completed_by_player_id(self, player_id: PlayerId) -> List[Session]:
        return self._query(
            "SELECT * FROM sessions WHERE player_id = %s AND status = %s ORDER BY start_time DESC",
            (player_id.value, SessionStatus.COMPLETED.value),
        )

    def find_recent_by_player_id(self, player_id: PlayerId, limit: int) -> List[Session]:
        return self._query(
            "SELECT * FROM sessions WHERE player_id = %s ORDER BY start_time DESC LIMIT %s",
            (player_id.value, limit),
        )

    def find_by_filters(self, filters: SessionFilters) -> SessionPage:
        clauses = ["1 = 1"]
        params: list = []
        if filters.player_id is not None:
            clauses.append("player_id = %s")
            params.append(filters.player_id.value)
        if filters.status is not None:
            clauses.append("status = %s")
            params.append(SessionStatus(filters.status).value)
        if filters.date_from is not None:
            clauses.append("start_time >= %s")
            params.append(filters.date_from)
        if filters.date_to is not None:
            clauses.append("start_time <= %s")
            params.append(filters.date_to)
        if filters.location:
            clauses.append("location ILIKE %s")
            params.append(f"%{filters.location}%")
        where = " AND ".join(clauses)

        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT COUNT(*) FROM sessions WHERE {where}", params)
                (total,) = cur.fetchone()

        sql = f"SELECT * FROM sessions WHERE {where} ORDER BY start_time DESC"
        page_params = list(params)
        if filters.limit is not None:
            sql += " LIMIT %s"
            page_params.append(filters.limit)
        if filters.offset:
            sql += " OFFSET %s"
            page_params.append(filters.offset)
        return SessionPage(sessions=self._query(sql, page_params), total=total)

    def save(self, session: Session) -> Session:
        params = session_to_row(session)
        with self._connection() as conn:
            with conn.cursor() as cur:
                if session.version == 0:
                    try:
                        cur.execute(
                            """
                            INSERT INTO sessions (
                                id, player_id, location, small_blind, big_blind, ante, currency,
                                start_time, end_time, status, notes, created_at, updated_at, version
                            )
                            VALUES (
                                %(id)s, %(player_id)s, %(location)s, %(small_blind)s, %(big_blind)s,
                                %(ante)s, %(currency)s, %(start_time)s, %(end_time)s, %(status)s,
                                %(notes)s, %(created_at)s, %(updated_at)s, 1
                            )
                            """,
                            params,
                        )
                    except psycopg2.IntegrityError as exc:
                        raise ConflictError(f"Session {session.id} could not be inserted: {exc}") from exc
                else:
                    cur.execute(
                        """
                        UPDATE sessions
                        SET location = %(location)s,
                            small_blind = %(small_blind)s,
                            big_blind = %(big_blind)s,
                            ante = %(ante)s,
                            currency = %(currency)s,
                            start_time = %(start_time)s,
                            end_time = %(end_time)s,
                            status = %(status)s,
                            notes = %(notes)s,
                            updated_at = %(updated_at)s,
                            version = version + 1
                        WHERE id = %(id)s AND version = %(version)s
                        """,
                        params,
                    )
                    if cur.rowcount == 0:
                        raise ConflictError(f"Session {session.id} was modified or removed concurrently")
                insert_ledger(cur, session.transactions)
        return replace(session, version=session.version + 1)

    def delete(self, session_id: SessionId) -> None:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM sessions WHERE id = %s", (session_id.value,))
