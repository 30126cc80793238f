from __future__ import annotations

from typing import Any, Callable, ContextManager

from psycopg2.pool import ThreadedConnectionPool

ConnectionProvider = Callable[[], ContextManager[Any]]


def create_pool(db_params: dict, min_connections: int = 1, max_connections: int = 10) -> ThreadedConnectionPool:
    """
    Shared pool for the process. Each unit of work checks one connection
    out for the lifetime of its transaction.
    """

    return ThreadedConnectionPool(min_connections, max_connections, **db_params)
