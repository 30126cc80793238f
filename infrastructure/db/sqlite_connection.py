from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, ContextManager, Dict, Mapping

ConnectionProvider = Callable[[], ContextManager[sqlite3.Connection]]


def iso(value: datetime) -> str:
    """
    Store timestamps as fixed-width UTC ISO strings so that text ordering
    in SQL matches chronological ordering.
    """

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def to_sqlite(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Convert Decimal and datetime values, which sqlite3 does not store natively."""

    params: Dict[str, Any] = {}
    for key, value in row.items():
        if isinstance(value, Decimal):
            value = str(value)
        elif isinstance(value, datetime):
            value = iso(value)
        params[key] = value
    return params


def open_connection(db_path: str, isolation_level: Any = "") -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, isolation_level=isolation_level)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
