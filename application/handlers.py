from __future__ import annotations

import logging

from application.event_bus import EventBus
from domain.events import SessionCancelled, SessionEnded, SessionStarted, TransactionAdded

logger = logging.getLogger("events")


def log_session_started(event: SessionStarted) -> None:
    logger.info(
        "Session %s started at %s (%s)",
        event.session_id,
        event.location,
        event.stakes.formatted,
        extra={"session_id": str(event.session_id), "player_id": str(event.player_id)},
    )


def log_session_ended(event: SessionEnded) -> None:
    logger.info(
        "Session %s ended: %s over %s",
        event.session_id,
        event.net_result,
        event.duration.formatted,
        extra={
            "session_id": str(event.session_id),
            "player_id": str(event.player_id),
            "net_result": str(event.net_result.amount),
        },
    )


def log_session_cancelled(event: SessionCancelled) -> None:
    logger.info(
        "Session %s cancelled%s",
        event.session_id,
        f": {event.reason}" if event.reason else "",
        extra={"session_id": str(event.session_id), "player_id": str(event.player_id)},
    )


def log_transaction_added(event: TransactionAdded) -> None:
    logger.info(
        "%s of %s recorded in session %s",
        event.type.value,
        event.amount,
        event.session_id,
        extra={"session_id": str(event.session_id), "transaction_id": str(event.transaction_id)},
    )


def register_default_handlers(bus: EventBus) -> None:
    """Wire the audit-log handlers. Called once from the composition root."""

    bus.register(SessionStarted, log_session_started)
    bus.register(SessionEnded, log_session_ended)
    bus.register(SessionCancelled, log_session_cancelled)
    bus.register(TransactionAdded, log_transaction_added)
