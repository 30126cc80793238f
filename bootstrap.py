import logging
from dataclasses import dataclass
from typing import Callable, Optional

from application.event_bus import EventBus
from application.handlers import register_default_handlers
from application.services import OperationResult, create_player
from domain.repositories import UnitOfWork
from domain.values import Money
from infrastructure.config import Settings, load_settings
from infrastructure.logging_config import configure_logging

logger = logging.getLogger(__name__)

UnitOfWorkFactory = Callable[[], UnitOfWork]


@dataclass
class App:
    settings: Settings
    bus: EventBus
    uow_factory: UnitOfWorkFactory

    def create_player(
        self,
        name: str,
        email: Optional[str] = None,
        initial_bankroll: Optional[Money] = None,
        external_id: Optional[str] = None,
    ) -> OperationResult:
        """Register a player whose bankroll is kept in the configured default currency."""

        return create_player(
            self.uow_factory(),
            self.bus,
            name,
            email,
            initial_bankroll,
            external_id,
            currency=self.settings.default_currency,
        )

    def close(self) -> None:
        self.bus.close()


def build_unit_of_work_factory(settings: Settings) -> UnitOfWorkFactory:
    """
    Create the schema and return a factory producing one unit of work per
    operation. Postgres units of work share a single connection pool.
    """

    if settings.db_backend == "postgres":
        from infrastructure.db.postgres_connection import create_pool
        from infrastructure.db.unit_of_work_postgres import PostgresUnitOfWork, ensure_schema as ensure_pg_schema

        pool = create_pool(settings.postgres_params, settings.db_pool_min, settings.db_pool_max)
        ensure_pg_schema(pool)
        logger.info("Using Postgres database %s on %s", settings.db_name, settings.db_host)
        return lambda: PostgresUnitOfWork(pool)

    from infrastructure.db.unit_of_work_sqlite import SqliteUnitOfWork, ensure_schema

    ensure_schema(settings.db_path)
    logger.info("Using SQLite database %s", settings.db_path)
    return lambda: SqliteUnitOfWork(settings.db_path)


def bootstrap(settings: Optional[Settings] = None) -> App:
    if settings is None:
        settings = load_settings()

    configure_logging(settings.log_level, settings.log_format)

    bus = EventBus()
    register_default_handlers(bus)
    return App(settings=settings, bus=bus, uow_factory=build_unit_of_work_factory(settings))


if __name__ == "__main__":
    app = bootstrap()
    logger.info("Ledger ready (%s backend)", app.settings.db_backend)
    app.close()
