from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Sequence

from application.event_bus import EventBus
from domain.errors import (
    BusinessError,
    CurrencyMismatchError,
    DomainError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from domain.events import AggregateRoot
from domain.identifiers import PlayerId, SessionId, TransactionType
from domain.models import Player, Session
from domain.repositories import SessionFilters, SessionPage, UnitOfWork
from domain.stats import PlayerStats, PlayerStatsService
from domain.values import DEFAULT_CURRENCY, Money, Stakes

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """
    Result of an application operation.

    Domain failures (validation, business rules, missing aggregates) are
    reported here instead of raised, after the unit of work has been rolled
    back. Storage failures still propagate as `PersistenceError`.
    """

    success: bool
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    player: Optional[Player] = None
    session: Optional[Session] = None
    stats: Optional[PlayerStats] = None
    players: List[Player] = field(default_factory=list)
    page: Optional[SessionPage] = None


def _failure(exc: DomainError) -> OperationResult:
    return OperationResult(success=False, error_message=exc.message, error_code=exc.code)


@contextmanager
def unit_of_work(uow: UnitOfWork) -> Iterator[UnitOfWork]:
    """
    begin -> body -> commit. Any exception raised by the body rolls the
    transaction back and is re-raised unchanged.
    """

    uow.begin()
    try:
        yield uow
    except BaseException:
        try:
            uow.rollback()
        except PersistenceError:
            logger.exception("Rollback failed")
        raise
    uow.commit()


def run_in_unit_of_work(
    uow: UnitOfWork,
    bus: EventBus,
    operation: Callable[[UnitOfWork], Sequence[AggregateRoot]],
) -> List[AggregateRoot]:
    """
    Run `operation` inside a transaction and publish the domain events of
    the aggregates it returns, but only once the commit has succeeded.

    Returns the same aggregates with their pending events drained.
    """

    with unit_of_work(uow):
        aggregates = list(operation(uow))

    drained: List[AggregateRoot] = []
    events = []
    for aggregate in aggregates:
        aggregate, pending = aggregate.pull_domain_events()
        drained.append(aggregate)
        events.extend(pending)
    if events:
        bus.publish_all(events)
    return drained


def _load_player(uow: UnitOfWork, player_id: PlayerId) -> Player:
    player = uow.players.find_by_id(player_id)
    if player is None:
        raise NotFoundError(f"Player {player_id} not found", "PLAYER_NOT_FOUND")
    return player


def _load_session(uow: UnitOfWork, session_id: SessionId) -> Session:
    session = uow.sessions.find_by_id(session_id)
    if session is None:
        raise NotFoundError(f"Session {session_id} not found", "SESSION_NOT_FOUND")
    return session


# Players


def create_player(
    uow: UnitOfWork,
    bus: EventBus,
    name: str,
    email: Optional[str] = None,
    initial_bankroll: Optional[Money] = None,
    external_id: Optional[str] = None,
    currency: str = DEFAULT_CURRENCY,
) -> OperationResult:
    """Register a new player. Email and external account must be unused."""

    def operation(uow: UnitOfWork):
        if initial_bankroll is not None and initial_bankroll.currency != currency.upper():
            raise CurrencyMismatchError(
                f"Initial bankroll is in {initial_bankroll.currency}, expected {currency.upper()}"
            )
        if external_id:
            player = Player.from_external_account(external_id, name, email, initial_bankroll, currency)
        else:
            player = Player.create(name, email, initial_bankroll, currency)

        if player.email and uow.players.find_by_email(player.email) is not None:
            raise BusinessError("Email is already registered", "EMAIL_ALREADY_REGISTERED")
        if player.external_id and uow.players.find_by_external_id(player.external_id) is not None:
            raise BusinessError(
                "External account is already linked to another player",
                "EXTERNAL_ACCOUNT_ALREADY_LINKED",
            )
        return [uow.players.save(player)]

    try:
        (player,) = run_in_unit_of_work(uow, bus, operation)
    except DomainError as exc:
        return _failure(exc)

    logger.info("Player created", extra={"player_id": str(player.id)})
    return OperationResult(success=True, player=player)


def update_player(
    uow: UnitOfWork,
    bus: EventBus,
    player_id: PlayerId,
    name: Optional[str] = None,
    email: Optional[str] = None,
) -> OperationResult:
    """Change name and/or email. `None` leaves a field untouched, "" clears the email."""

    def operation(uow: UnitOfWork):
        player = _load_player(uow, player_id)
        if name is not None:
            player = player.update_name(name)
        if email is not None:
            player = player.update_email(email)
            if player.email:
                existing = uow.players.find_by_email(player.email)
                if existing is not None and existing.id != player.id:
                    raise BusinessError("Email is already registered", "EMAIL_ALREADY_REGISTERED")
        return [uow.players.save(player)]

    try:
        (player,) = run_in_unit_of_work(uow, bus, operation)
    except DomainError as exc:
        return _failure(exc)
    return OperationResult(success=True, player=player)


def adjust_bankroll(
    uow: UnitOfWork,
    bus: EventBus,
    player_id: PlayerId,
    amount: Money,
) -> OperationResult:
    """Add a signed amount to the player's bankroll (deposits, withdrawals)."""

    def operation(uow: UnitOfWork):
        player = _load_player(uow, player_id).adjust_bankroll(amount)
        return [uow.players.save(player)]

    try:
        (player,) = run_in_unit_of_work(uow, bus, operation)
    except DomainError as exc:
        return _failure(exc)

    logger.info(
        "Bankroll adjusted by %s",
        amount,
        extra={"player_id": str(player_id), "bankroll": str(player.current_bankroll.amount)},
    )
    return OperationResult(success=True, player=player)


def link_external_account(
    uow: UnitOfWork,
    bus: EventBus,
    player_id: PlayerId,
    external_id: str,
) -> OperationResult:
    def operation(uow: UnitOfWork):
        player = _load_player(uow, player_id).link_external_account(external_id)
        owner = uow.players.find_by_external_id(player.external_id)
        if owner is not None and owner.id != player.id:
            raise BusinessError(
                "External account is already linked to another player",
                "EXTERNAL_ACCOUNT_ALREADY_LINKED",
            )
        return [uow.players.save(player)]

    try:
        (player,) = run_in_unit_of_work(uow, bus, operation)
    except DomainError as exc:
        return _failure(exc)
    return OperationResult(success=True, player=player)


def delete_player(uow: UnitOfWork, bus: EventBus, player_id: PlayerId) -> OperationResult:
    """Remove a player. Refused while the player has an active session."""

    def operation(uow: UnitOfWork):
        _load_player(uow, player_id)
        if uow.sessions.find_active_by_player_id(player_id) is not None:
            raise BusinessError(
                "Cannot delete a player with an active session",
                "PLAYER_HAS_ACTIVE_SESSION",
            )
        uow.players.delete(player_id)
        return []

    try:
        run_in_unit_of_work(uow, bus, operation)
    except DomainError as exc:
        return _failure(exc)

    logger.info("Player deleted", extra={"player_id": str(player_id)})
    return OperationResult(success=True)


def get_player(uow: UnitOfWork, player_id: PlayerId) -> OperationResult:
    try:
        player = _load_player(uow, player_id)
    except DomainError as exc:
        return _failure(exc)
    return OperationResult(success=True, player=player)


def get_player_by_email(uow: UnitOfWork, email: str) -> OperationResult:
    player = uow.players.find_by_email(email.strip().lower())
    if player is None:
        return _failure(NotFoundError(f"No player registered with {email}", "PLAYER_NOT_FOUND"))
    return OperationResult(success=True, player=player)


def list_players(uow: UnitOfWork, name: Optional[str] = None) -> OperationResult:
    """All players, newest first, or only those whose name contains `name`."""

    players = uow.players.find_by_name(name) if name else uow.players.find_all()
    return OperationResult(success=True, players=players)


def get_player_stats(
    uow: UnitOfWork,
    player_id: PlayerId,
    stats_service: Optional[PlayerStatsService] = None,
) -> OperationResult:
    """Read-only: no transaction is opened."""

    service = stats_service or PlayerStatsService()
    try:
        player = _load_player(uow, player_id)
        # Oldest first, so streaks and the last session date follow play order.
        sessions = list(reversed(uow.sessions.find_completed_by_player_id(player_id)))
        stats = service.calculate_stats(player, sessions)
    except DomainError as exc:
        return _failure(exc)
    return OperationResult(success=True, player=player, stats=stats)


# Sessions


def start_session(
    uow: UnitOfWork,
    bus: EventBus,
    player_id: PlayerId,
    location: str,
    stakes: Stakes,
    initial_buy_in: Money,
    notes: Optional[str] = None,
) -> OperationResult:
    """Open a session for a player who has no other active session."""

    def operation(uow: UnitOfWork):
        player = _load_player(uow, player_id)
        if uow.sessions.find_active_by_player_id(player_id) is not None:
            raise BusinessError("Player already has an active session", "ACTIVE_SESSION_EXISTS")
        # The result is folded into the bankroll when the session ends.
        if stakes.currency != player.current_bankroll.currency:
            raise BusinessError(
                f"Session currency {stakes.currency} does not match bankroll currency "
                f"{player.current_bankroll.currency}",
                "SESSION_CURRENCY_MISMATCH",
            )
        session = Session.start(player_id, location, stakes, initial_buy_in, notes)
        return [uow.sessions.save(session)]

    try:
        (session,) = run_in_unit_of_work(uow, bus, operation)
    except DomainError as exc:
        return _failure(exc)

    logger.info(
        "Session started",
        extra={"session_id": str(session.id), "player_id": str(player_id), "stakes": stakes.formatted},
    )
    return OperationResult(success=True, session=session)


def add_transaction(
    uow: UnitOfWork,
    bus: EventBus,
    session_id: SessionId,
    type: TransactionType,
    amount: Money,
    description: Optional[str] = None,
    notes: Optional[str] = None,
) -> OperationResult:
    def operation(uow: UnitOfWork):
        session = _load_session(uow, session_id).add_transaction(type, amount, description, notes)
        return [uow.sessions.save(session)]

    try:
        (session,) = run_in_unit_of_work(uow, bus, operation)
    except DomainError as exc:
        return _failure(exc)

    logger.info(
        "Transaction added",
        extra={"session_id": str(session_id), "type": TransactionType(type).value, "amount": str(amount)},
    )
    return OperationResult(success=True, session=session)


def end_session(
    uow: UnitOfWork,
    bus: EventBus,
    session_id: SessionId,
    final_cash_out: Money,
    notes: Optional[str] = None,
) -> OperationResult:
    """
    Complete a session and fold its result into the player's bankroll.

    The session and the player are saved in the same transaction, so the
    bankroll never reflects a session that failed to complete.
    """

    def operation(uow: UnitOfWork):
        session = _load_session(uow, session_id).end(final_cash_out, notes)
        saved = [uow.sessions.save(session)]

        player = uow.players.find_by_id(session.player_id)
        if player is not None:
            player = player.increment_session_count().adjust_bankroll(session.net_result)
            saved.append(uow.players.save(player))
        return saved

    try:
        session, *rest = run_in_unit_of_work(uow, bus, operation)
    except DomainError as exc:
        return _failure(exc)

    logger.info(
        "Session ended",
        extra={"session_id": str(session_id), "net_result": str(session.net_result)},
    )
    return OperationResult(success=True, session=session, player=rest[0] if rest else None)


def cancel_session(
    uow: UnitOfWork,
    bus: EventBus,
    session_id: SessionId,
    reason: Optional[str] = None,
) -> OperationResult:
    def operation(uow: UnitOfWork):
        session = _load_session(uow, session_id).cancel(reason)
        return [uow.sessions.save(session)]

    try:
        (session,) = run_in_unit_of_work(uow, bus, operation)
    except DomainError as exc:
        return _failure(exc)

    logger.info("Session cancelled", extra={"session_id": str(session_id)})
    return OperationResult(success=True, session=session)


def update_session_notes(
    uow: UnitOfWork,
    bus: EventBus,
    session_id: SessionId,
    notes: Optional[str],
) -> OperationResult:
    def operation(uow: UnitOfWork):
        session = _load_session(uow, session_id).update_notes(notes)
        return [uow.sessions.save(session)]

    try:
        (session,) = run_in_unit_of_work(uow, bus, operation)
    except DomainError as exc:
        return _failure(exc)
    return OperationResult(success=True, session=session)


def get_session(uow: UnitOfWork, session_id: SessionId) -> OperationResult:
    try:
        session = _load_session(uow, session_id)
    except DomainError as exc:
        return _failure(exc)
    return OperationResult(success=True, session=session)


def list_sessions(uow: UnitOfWork, filters: Optional[SessionFilters] = None) -> OperationResult:
    """
    One page of sessions, newest first. `page.total` counts every session
    matching the filters, not just the ones on the page.
    """

    filters = filters or SessionFilters()
    if filters.limit is not None and filters.limit < 1:
        return _failure(ValidationError("Page size must be at least 1", "VALIDATION_LIMIT_INVALID"))
    if filters.offset < 0:
        return _failure(ValidationError("Offset cannot be negative", "VALIDATION_OFFSET_INVALID"))

    page = uow.sessions.find_by_filters(filters)
    return OperationResult(success=True, page=page)
