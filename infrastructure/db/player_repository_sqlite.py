from __future__ import annotations

import sqlite3
from dataclasses import replace
from typing import List, Optional

from domain.errors import ConflictError
from domain.identifiers import PlayerId
from domain.models import Player
from domain.repositories import PlayerRepository
from infrastructure.db.mappers import player_from_row, player_to_row
from infrastructure.db.sqlite_connection import ConnectionProvider, to_sqlite


class SqlitePlayerRepository(PlayerRepository):
    """
    SQLite-backed implementation of `PlayerRepository`.

    Connections come from the owning unit of work, so every call made while
    a transaction is open runs inside that transaction.
    """

    def __init__(self, connection: ConnectionProvider) -> None:
        self._connection = connection

    @staticmethod
    def ensure_table(conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS players (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT UNIQUE,
                external_id TEXT UNIQUE,
                current_bankroll TEXT NOT NULL DEFAULT '0',
                currency TEXT NOT NULL,
                total_sessions INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1
            )
            """
        )

    def _fetch_one(self, where: str, params: tuple) -> Optional[Player]:
        with self._connection() as conn:
            row = conn.execute(f"SELECT * FROM players WHERE {where}", params).fetchone()
            if not row:
                return None
            return player_from_row(row)

    def _fetch_all(self, sql: str, params: tuple = ()) -> List[Player]:
        with self._connection() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [player_from_row(row) for row in rows]

    def find_by_id(self, player_id: PlayerId) -> Optional[Player]:
        return self._fetch_one("id = ?", (player_id.value,))

    def find_by_email(self, email: str) -> Optional[Player]:
        return self._fetch_one("email = ?", (email.strip().lower(),))

    def find_by_external_id(self, external_id: str) -> Optional[Player]:
        return self._fetch_one("external_id = ?", (external_id,))

    def find_all(self) -> List[Player]:
        return self._fetch_all("SELECT * FROM players ORDER BY created_at DESC")

    def find_by_name(self, name: str) -> List[Player]:
        # LIKE is case-insensitive for ASCII in SQLite.
        return self._fetch_all(
            "SELECT * FROM players WHERE name LIKE ? ORDER BY created_at DESC",
            (f"%{name}%",),
        )

    def save(self, player: Player) -> Player:
        params = to_sqlite(player_to_row(player))
        with self._connection() as conn:
            if player.version == 0:
                try:
                    conn.execute(
                        """
                        INSERT INTO players (
                            id, name, email, external_id, current_bankroll, currency,
                            total_sessions, created_at, updated_at, version
                        )
                        VALUES (
                            :id, :name, :email, :external_id, :current_bankroll, :currency,
                            :total_sessions, :created_at, :updated_at, 1
                        )
                        """,
                        params,
                    )
                except sqlite3.IntegrityError as exc:
                    raise ConflictError(f"Player {player.id} could not be inserted: {exc}") from exc
            else:
                cur = conn.execute(
                    """
                    UPDATE players
                    SET name = :name,
                        email = :email,
                        external_id = :external_id,
                        current_bankroll = :current_bankroll,
                        currency = :currency,
                        total_sessions = :total_sessions,
                        updated_at = :updated_at,
                        version = version + 1
                    WHERE id = :id AND version = :version
                    """,
                    params,
                )
                if cur.rowcount == 0:
                    raise ConflictError(f"Player {player.id} was modified or removed concurrently")
        return replace(player, version=player.version + 1)

    def delete(self, player_id: PlayerId) -> None:
        with self._connection() as conn:
            conn.execute("DELETE FROM players WHERE id = ?", (player_id.value,))
