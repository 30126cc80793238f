import copy
import unittest
from dataclasses import replace
from typing import List, Optional

from application.event_bus import EventBus
from application.services import (
    add_transaction,
    adjust_bankroll,
    cancel_session,
    create_player,
    delete_player,
    end_session,
    get_player,
    get_player_by_email,
    get_player_stats,
    get_session,
    link_external_account,
    list_players,
    list_sessions,
    run_in_unit_of_work,
    start_session,
    update_player,
    update_session_notes,
)
from domain.errors import ConflictError, UnitOfWorkError
from domain.events import SessionCancelled, SessionEnded, SessionStarted, TransactionAdded
from domain.identifiers import PlayerId, SessionId, SessionStatus, TransactionId, TransactionType
from domain.models import Player, Session, Transaction
from domain.repositories import (
    PlayerRepository,
    SessionFilters,
    SessionPage,
    SessionRepository,
    TransactionFilters,
    TransactionRepository,
    UnitOfWork,
)
from domain.values import Money, Stakes


class InMemoryPlayerRepository(PlayerRepository):
    def __init__(self):
        self.players = {}

    def find_by_id(self, player_id: PlayerId) -> Optional[Player]:
        return self.players.get(player_id)

    def save(self, player: Player) -> Player:
        stored = self.players.get(player.id)
        if (stored.version if stored else 0) != player.version:
            raise ConflictError(f"Player {player.id} is stale")
        saved = replace(player, version=player.version + 1)
        self.players[player.id] = saved.clear_domain_events()
        return saved

    def delete(self, player_id: PlayerId) -> None:
        self.players.pop(player_id, None)

    def find_by_email(self, email: str) -> Optional[Player]:
        return next((p for p in self.players.values() if p.email == email.lower()), None)

    def find_by_external_id(self, external_id: str) -> Optional[Player]:
        return next((p for p in self.players.values() if p.external_id == external_id), None)

    def find_all(self) -> List[Player]:
        return list(self.players.values())

    def find_by_name(self, name: str) -> List[Player]:
        return [p for p in self.players.values() if name.lower() in p.name.lower()]


class InMemorySessionRepository(SessionRepository):
    def __init__(self):
        self.sessions = {}

    def find_by_id(self, session_id: SessionId) -> Optional[Session]:
        return self.sessions.get(session_id)

    def save(self, session: Session) -> Session:
        stored = self.sessions.get(session.id)
        if (stored.version if stored else 0) != session.version:
            raise ConflictError(f"Session {session.id} is stale")
        saved = replace(session, version=session.version + 1)
        self.sessions[session.id] = saved.clear_domain_events()
        return saved

    def delete(self, session_id: SessionId) -> None:
        self.sessions.pop(session_id, None)

    def find_by_player_id(self, player_id: PlayerId) -> List[Session]:
        found = [s for s in self.sessions.values() if s.player_id == player_id]
        return sorted(found, key=lambda s: s.start_time, reverse=True)

    def find_active_by_player_id(self, player_id: PlayerId) -> Optional[Session]:
        return next((s for s in self.find_by_player_id(player_id) if s.is_active), None)

    def find_by_filters(self, filters: SessionFilters) -> SessionPage:
        found = sorted(self.sessions.values(), key=lambda s: s.start_time, reverse=True)
        if filters.player_id is not None:
            found = [s for s in found if s.player_id == filters.player_id]
        if filters.status is not None:
            found = [s for s in found if s.status == filters.status]
        end = None if filters.limit is None else filters.offset + filters.limit
        return SessionPage(sessions=found[filters.offset:end], total=len(found))

    def find_completed_by_player_id(self, player_id: PlayerId) -> List[Session]:
        return [s for s in self.find_by_player_id(player_id) if s.status == SessionStatus.COMPLETED]

    def find_recent_by_player_id(self, player_id: PlayerId, limit: int) -> List[Session]:
        return self.find_by_player_id(player_id)[:limit]


class InMemoryTransactionRepository(TransactionRepository):
    def __init__(self, sessions: InMemorySessionRepository):
        self.sessions = sessions

    def _all(self) -> List[Transaction]:
        return [t for s in self.sessions.sessions.values() for t in s.transactions]

    def find_by_id(self, transaction_id: TransactionId) -> Optional[Transaction]:
        return next((t for t in self._all() if t.id == transaction_id), None)

    def save(self, transaction: Transaction) -> Transaction:
        raise NotImplementedError

    def delete(self, transaction_id: TransactionId) -> None:
        raise NotImplementedError

    def find_by_session_id(self, session_id: SessionId) -> List[Transaction]:
        session = self.sessions.find_by_id(session_id)
        return list(session.transactions) if session else []

    def find_by_player_id(self, player_id: PlayerId) -> List[Transaction]:
        return [t for t in self._all() if t.player_id == player_id]

    def find_by_filters(self, filters: TransactionFilters) -> List[Transaction]:
        return self.find_by_session_id(filters.session_id)


class InMemoryUnitOfWork(UnitOfWork):
    """Snapshots the stores on begin() and restores them on rollback()."""

    def __init__(self):
        self.players = InMemoryPlayerRepository()
        self.sessions = InMemorySessionRepository()
        self.transactions = InMemoryTransactionRepository(self.sessions)
        self._snapshot = None
        self.commits = 0
        self.rollbacks = 0

    @property
    def active(self) -> bool:
        return self._snapshot is not None

    def begin(self) -> None:
        if self._snapshot is not None:
            raise UnitOfWorkError("A transaction is already active")
        self._snapshot = (copy.copy(self.players.players), copy.copy(self.sessions.sessions))

    def commit(self) -> None:
        if self._snapshot is None:
            raise UnitOfWorkError("No active transaction to commit")
        self._snapshot = None
        self.commits += 1

    def rollback(self) -> None:
        if self._snapshot is None:
            raise UnitOfWorkError("No active transaction to rollback")
        self.players.players, self.sessions.sessions = self._snapshot
        self._snapshot = None
        self.rollbacks += 1


def one_two() -> Stakes:
    return Stakes(Money(1), Money(2))


class ApplicationServicesTests(unittest.TestCase):
    def setUp(self) -> None:
        self.uow = InMemoryUnitOfWork()
        self.bus = EventBus(max_workers=2)
        self.events = []
        for event_type in (SessionStarted, SessionEnded, SessionCancelled, TransactionAdded):
            self.bus.register(event_type, self.events.append)

        result = create_player(self.uow, self.bus, "John Doe", "john@example.com", Money(1000))
        self.assertTrue(result.success)
        self.player = result.player

    def tearDown(self) -> None:
        self.bus.close()

    def _start(self, buy_in: int = 100):
        return start_session(self.uow, self.bus, self.player.id, "Bellagio", one_two(), Money(buy_in))

    def test_create_player_persists_and_versions(self):
        stored = self.uow.players.find_by_id(self.player.id)
        self.assertEqual(stored.name, "John Doe")
        self.assertEqual(stored.version, 1)
        self.assertEqual(self.player.version, 1)

    def test_duplicate_email_is_refused(self):
        result = create_player(self.uow, self.bus, "Other", "JOHN@example.com")
        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "EMAIL_ALREADY_REGISTERED")
        self.assertEqual(len(self.uow.players.find_all()), 1)

    def test_validation_failure_is_reported_not_raised(self):
        result = create_player(self.uow, self.bus, "  ")
        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "VALIDATION_NAME_REQUIRED")
        self.assertEqual(self.uow.rollbacks, 1)

    def test_update_player_and_adjust_bankroll(self):
        result = update_player(self.uow, self.bus, self.player.id, name="Johnny")
        self.assertTrue(result.success)
        self.assertEqual(result.player.name, "Johnny")

        result = adjust_bankroll(self.uow, self.bus, self.player.id, Money(-250))
        self.assertTrue(result.success)
        self.assertEqual(self.uow.players.find_by_id(self.player.id).current_bankroll, Money(750))

    def test_link_external_account_must_be_unique(self):
        other = create_player(self.uow, self.bus, "Jane", external_id="discord:7").player
        self.assertIsNotNone(other)

        result = link_external_account(self.uow, self.bus, self.player.id, "discord:7")
        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "EXTERNAL_ACCOUNT_ALREADY_LINKED")

        result = link_external_account(self.uow, self.bus, self.player.id, "discord:8")
        self.assertTrue(result.success)
        self.assertEqual(result.player.external_id, "discord:8")

    def test_start_session_publishes_after_commit(self):
        result = self._start()
        self.assertTrue(result.success)
        self.assertFalse(result.session.has_domain_events)
        self.assertCountEqual([type(e) for e in self.events], [TransactionAdded, SessionStarted])

    def test_start_session_requires_existing_player(self):
        result = start_session(self.uow, self.bus, PlayerId.generate(), "Aria", one_two(), Money(100))
        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "PLAYER_NOT_FOUND")
        self.assertEqual(self.events, [])

    def test_only_one_active_session_per_player(self):
        self._start()
        self.events.clear()

        result = self._start()
        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "ACTIVE_SESSION_EXISTS")
        self.assertEqual(self.events, [])

    def test_full_session_updates_player(self):
        session_id = self._start().session.id
        add_transaction(self.uow, self.bus, session_id, TransactionType.REBUY, Money(50))
        result = end_session(self.uow, self.bus, session_id, Money(200))

        self.assertTrue(result.success)
        self.assertEqual(result.session.status, SessionStatus.COMPLETED)
        self.assertEqual(result.session.net_result, Money(50))
        self.assertEqual(result.player.total_sessions, 1)
        self.assertEqual(result.player.current_bankroll, Money(1050))
        self.assertIn(SessionEnded, [type(e) for e in self.events])

        stats = get_player_stats(self.uow, self.player.id)
        self.assertTrue(stats.success)
        self.assertEqual(stats.stats.total_sessions, 1)
        self.assertEqual(stats.stats.net_profit, Money(50))

    def test_transaction_on_ended_session_is_refused(self):
        session_id = self._start().session.id
        end_session(self.uow, self.bus, session_id, Money(0))
        self.events.clear()

        result = add_transaction(self.uow, self.bus, session_id, TransactionType.REBUY, Money(50))
        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "SESSION_NOT_ACTIVE")
        self.assertEqual(self.events, [])
        self.assertEqual(len(get_session(self.uow, session_id).session.transactions), 1)

    def test_cancel_session(self):
        session_id = self._start().session.id
        result = cancel_session(self.uow, self.bus, session_id, "Game broke")
        self.assertTrue(result.success)
        self.assertEqual(result.session.status, SessionStatus.CANCELLED)
        self.assertIsInstance(self.events[-1], SessionCancelled)

        result = update_session_notes(self.uow, self.bus, session_id, "too late")
        self.assertFalse(result.success)

    def test_delete_player_refused_while_session_active(self):
        session_id = self._start().session.id
        result = delete_player(self.uow, self.bus, self.player.id)
        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "PLAYER_HAS_ACTIVE_SESSION")

        cancel_session(self.uow, self.bus, session_id)
        self.assertTrue(delete_player(self.uow, self.bus, self.player.id).success)
        self.assertIsNone(self.uow.players.find_by_id(self.player.id))

    def test_session_currency_must_match_bankroll(self):
        eur_stakes = Stakes(Money(1, "EUR"), Money(2, "EUR"))
        result = start_session(self.uow, self.bus, self.player.id, "Casino Baden", eur_stakes, Money(100, "EUR"))

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "SESSION_CURRENCY_MISMATCH")
        self.assertEqual(self.uow.sessions.sessions, {})
        self.assertEqual(self.events, [])

        # Nothing was left active, so a session in the bankroll currency can still start.
        self.assertTrue(self._start().success)

    def test_initial_bankroll_currency_must_match(self):
        result = create_player(self.uow, self.bus, "Eve", initial_bankroll=Money(100, "EUR"), currency="USD")
        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "CURRENCY_MISMATCH")

    def test_get_player_and_lookup_by_email(self):
        result = get_player(self.uow, self.player.id)
        self.assertTrue(result.success)
        self.assertEqual(result.player, self.player)

        result = get_player_by_email(self.uow, " John@Example.com ")
        self.assertTrue(result.success)
        self.assertEqual(result.player.id, self.player.id)

        self.assertEqual(get_player(self.uow, PlayerId.generate()).error_code, "PLAYER_NOT_FOUND")
        self.assertEqual(get_player_by_email(self.uow, "nobody@example.com").error_code, "PLAYER_NOT_FOUND")

    def test_list_players(self):
        create_player(self.uow, self.bus, "Jane Roe")

        self.assertEqual(len(list_players(self.uow).players), 2)
        self.assertEqual([p.name for p in list_players(self.uow, "jane").players], ["Jane Roe"])

    def test_list_sessions_pages_and_counts(self):
        first = self._start().session.id
        end_session(self.uow, self.bus, first, Money(150))
        second = self._start().session.id
        cancel_session(self.uow, self.bus, second)
        self._start()

        result = list_sessions(self.uow, SessionFilters(player_id=self.player.id, limit=2))
        self.assertTrue(result.success)
        self.assertEqual(result.page.total, 3)
        self.assertEqual(len(result.page.sessions), 2)

        completed = list_sessions(
            self.uow, SessionFilters(player_id=self.player.id, status=SessionStatus.COMPLETED)
        )
        self.assertEqual([s.id for s in completed.page.sessions], [first])
        self.assertEqual(completed.page.total, 1)

    def test_list_sessions_rejects_bad_paging(self):
        self.assertEqual(
            list_sessions(self.uow, SessionFilters(limit=0)).error_code, "VALIDATION_LIMIT_INVALID"
        )
        self.assertEqual(
            list_sessions(self.uow, SessionFilters(offset=-1)).error_code, "VALIDATION_OFFSET_INVALID"
        )

    def test_get_session_not_found(self):
        result = get_session(self.uow, SessionId.generate())
        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "SESSION_NOT_FOUND")


class RunInUnitOfWorkTests(unittest.TestCase):
    def setUp(self) -> None:
        self.uow = InMemoryUnitOfWork()
        self.bus = EventBus(max_workers=2)
        self.events = []
        self.bus.register(SessionStarted, self.events.append)
        self.player = Player.create("Alice")

    def tearDown(self) -> None:
        self.bus.close()

    def test_failure_before_commit_rolls_back_and_publishes_nothing(self):
        def operation(uow):
            session = Session.start(self.player.id, "Aria", one_two(), Money(100))
            uow.sessions.save(session)
            raise RuntimeError("crash before commit")

        with self.assertRaises(RuntimeError):
            run_in_unit_of_work(self.uow, self.bus, operation)

        self.assertEqual(self.uow.rollbacks, 1)
        self.assertEqual(self.uow.commits, 0)
        self.assertEqual(self.uow.sessions.sessions, {})
        self.assertEqual(self.events, [])

    def test_failing_commit_publishes_nothing(self):
        def fail_commit():
            raise UnitOfWorkError("commit failed")

        self.uow.commit = fail_commit

        def operation(uow):
            return [uow.sessions.save(Session.start(self.player.id, "Aria", one_two(), Money(100)))]

        with self.assertRaises(UnitOfWorkError):
            run_in_unit_of_work(self.uow, self.bus, operation)
        self.assertEqual(self.events, [])

    def test_stale_version_is_a_conflict(self):
        session = Session.start(self.player.id, "Aria", one_two(), Money(100))
        run_in_unit_of_work(self.uow, self.bus, lambda uow: [uow.sessions.save(session)])

        # `session` still carries version 0, so saving it again is stale.
        with self.assertRaises(ConflictError):
            run_in_unit_of_work(self.uow, self.bus, lambda uow: [uow.sessions.save(session)])
        self.assertEqual(self.uow.rollbacks, 1)


if __name__ == "__main__":
    unittest.main()
