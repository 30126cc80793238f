from __future__ import annotations

from dataclasses import replace
from typing import List, Optional

import psycopg2
from psycopg2.extras import RealDictCursor

from domain.errors import ConflictError
from domain.identifiers import PlayerId
from domain.models import Player
from domain.repositories import PlayerRepository
from infrastructure.db.mappers import player_from_row, player_to_row
from infrastructure.db.postgres_connection import ConnectionProvider


class PostgresPlayerRepository(PlayerRepository):
    """
    Postgres-backed implementation of `PlayerRepository`.

    Money is stored as NUMERIC and timestamps as TIMESTAMPTZ, so rows come
    back as Decimal and aware datetimes without extra conversion.
    """

    def __init__(self, connection: ConnectionProvider) -> None:
        self._connection = connection

    @staticmethod
    def ensure_table(cur) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS players (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT UNIQUE,
                external_id TEXT UNIQUE,
                current_bankroll NUMERIC NOT NULL DEFAULT 0,
                currency CHAR(3) NOT NULL,
                total_sessions INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                version INTEGER NOT NULL DEFAULT 1
            )
            """
        )

    def _fetch(self, sql: str, params: tuple = ()) -> List[Player]:
        with self._connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                return [player_from_row(row) for row in cur.fetchall()]

    def _fetch_one(self, where: str, params: tuple) -> Optional[Player]:
        players = self._fetch(f"SELECT * FROM players WHERE {where}", params)
        return players[0] if players else None

    def find_by_id(self, player_id: PlayerId) -> Optional[Player]:
        return self._fetch_one("id = %s", (player_id.value,))

    def find_by_email(self, email: str) -> Optional[Player]:
        return self._fetch_one("email = %s", (email.strip().lower(),))

    def find_by_external_id(self, external_id: str) -> Optional[Player]:
        return self._fetch_one("external_id = %s", (external_id,))

    def find_all(self) -> List[Player]:
        return self._fetch("SELECT * FROM players ORDER BY created_at DESC")

    def find_by_name(self, name: str) -> List[Player]:
        return self._fetch(
            "SELECT * FROM players WHERE name ILIKE %s ORDER BY created_at DESC",
            (f"%{name}%",),
        )

    def save(self, player: Player) -> Player:
        params = player_to_row(player)
        with self._connection() as conn:
            with conn.cursor() as cur:
                if player.version == 0:
                    try:
                        cur.execute(
                            """
                            INSERT INTO players (
                                id, name, email, external_id, current_bankroll, currency,
                                total_sessions, created_at, updated_at, version
                            )
                            VALUES (
                                %(id)s, %(name)s, %(email)s, %(external_id)s, %(current_bankroll)s,
                                %(currency)s, %(total_sessions)s, %(created_at)s, %(updated_at)s, 1
                            )
                            """,
                            params,
                        )
                    except psycopg2.IntegrityError as exc:
                        raise ConflictError(f"Player {player.id} could not be inserted: {exc}") from exc
                else:
                    cur.execute(
                        """
                        UPDATE players
                        SET name = %(name)s,
                            email = %(email)s,
                            external_id = %(external_id)s,
                            current_bankroll = %(current_bankroll)s,
                            currency = %(currency)s,
                            total_sessions = %(total_sessions)s,
                            updated_at = %(updated_at)s,
                            version = version + 1
                        WHERE id = %(id)s AND version = %(version)s
                        """,
                        params,
                    )
                    if cur.rowcount == 0:
                        raise ConflictError(f"Player {player.id} was modified or removed concurrently")
        return replace(player, version=player.version + 1)

    def delete(self, player_id: PlayerId) -> None:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM players WHERE id = %s", (player_id.value,))
