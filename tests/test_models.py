import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from domain.errors import BusinessError, CurrencyMismatchError, ValidationError
from domain.events import SessionCancelled, SessionEnded, SessionStarted, TransactionAdded
from domain.identifiers import PlayerId, SessionStatus, TransactionType
from domain.models import Player, Session
from domain.values import Money, Stakes

START = datetime(2024, 3, 1, 18, 0, tzinfo=timezone.utc)


def one_two() -> Stakes:
    return Stakes(Money(1), Money(2))


class PlayerTests(unittest.TestCase):
    def test_create_normalizes_name_and_email(self):
        player = Player.create("  Alice  ", " Alice@Example.COM ")
        self.assertEqual(player.name, "Alice")
        self.assertEqual(player.email, "alice@example.com")
        self.assertEqual(player.current_bankroll, Money(0))
        self.assertEqual(player.version, 0)

    def test_invalid_email_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            Player.create("Alice", "not-an-email")
        self.assertEqual(ctx.exception.code, "VALIDATION_EMAIL_INVALID")

    def test_empty_name_is_rejected(self):
        with self.assertRaises(ValidationError):
            Player.create("   ")

    def test_transitions_return_new_instances(self):
        player = Player.create("Alice", initial_bankroll=Money(500))
        updated = player.adjust_bankroll(Money(-700)).increment_session_count()

        self.assertEqual(player.current_bankroll, Money(500))
        self.assertEqual(player.total_sessions, 0)
        self.assertEqual(updated.current_bankroll, Money(-200))
        self.assertEqual(updated.total_sessions, 1)
        self.assertEqual(updated.id, player.id)

    def test_link_external_account_only_once(self):
        player = Player.create("Alice").link_external_account("discord:42")
        self.assertEqual(player.external_id, "discord:42")
        with self.assertRaises(BusinessError):
            player.link_external_account("discord:43")

    def test_from_external_account(self):
        player = Player.from_external_account("tg:1", "Bob", currency="EUR")
        self.assertEqual(player.external_id, "tg:1")
        self.assertEqual(player.current_bankroll.currency, "EUR")


class SessionLifecycleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.player_id = PlayerId.generate()
        self.session = Session.start(self.player_id, "Bellagio", one_two(), Money(100), at=START)

    def test_start_opens_active_session_with_buy_in(self):
        session = self.session
        self.assertEqual(session.status, SessionStatus.ACTIVE)
        self.assertEqual(len(session.transactions), 1)
        self.assertEqual(session.transactions[0].type, TransactionType.BUY_IN)
        self.assertEqual(session.total_buy_in, Money(100))
        self.assertEqual(session.net_result, Money(-100))
        self.assertIsNone(session.end_time)
        self.assertIsNone(session.duration)

    def test_start_records_transaction_then_started_events(self):
        events = self.session.domain_events
        self.assertEqual([type(e) for e in events], [TransactionAdded, SessionStarted])
        self.assertEqual(events[1].session_id, self.session.id)

    def test_start_rejects_blank_location(self):
        with self.assertRaises(ValidationError):
            Session.start(self.player_id, "  ", one_two(), Money(100))

    def test_full_session_scenario(self):
        session = self.session.add_transaction(
            TransactionType.REBUY, Money(50), at=START + timedelta(hours=1)
        )
        session = session.end(Money(200), at=START + timedelta(hours=4))

        self.assertEqual(session.status, SessionStatus.COMPLETED)
        self.assertEqual(session.total_buy_in, Money(150))
        self.assertEqual(session.total_cash_out, Money(200))
        self.assertEqual(session.net_result, Money(50))
        self.assertAlmostEqual(session.duration.hours, 4.0)
        self.assertEqual(session.hourly_rate, Money("12.5"))
        self.assertEqual(session.big_blinds_won, Decimal("25"))

        ended = session.domain_events[-1]
        self.assertIsInstance(ended, SessionEnded)
        self.assertEqual(ended.net_result, Money(50))

    def test_zero_cash_out_adds_no_transaction(self):
        session = self.session.end(Money(0), at=START + timedelta(hours=1))
        self.assertEqual(len(session.transactions), 1)
        self.assertEqual(session.net_result, Money(-100))

    def test_net_result_always_matches_ledger(self):
        session = self.session
        for amount in (Money(40), Money(60)):
            session = session.add_transaction(TransactionType.REBUY, amount)
            self.assertEqual(session.net_result, session.total_cash_out.subtract(session.total_buy_in))
        session = session.add_transaction(TransactionType.CASH_OUT, Money(30))
        session = session.add_transaction(TransactionType.TIP, Money(5))
        self.assertEqual(session.total_buy_in, Money(200))
        self.assertEqual(session.net_result, Money(-170))

    def test_original_is_unchanged_by_transitions(self):
        self.session.add_transaction(TransactionType.REBUY, Money(50))
        self.session.end(Money(10))
        self.assertEqual(len(self.session.transactions), 1)
        self.assertTrue(self.session.is_active)

    def test_transaction_amount_must_be_positive(self):
        with self.assertRaises(ValidationError) as ctx:
            self.session.add_transaction(TransactionType.REBUY, Money(0))
        self.assertEqual(ctx.exception.code, "VALIDATION_AMOUNT_MUST_BE_POSITIVE")

    def test_transaction_currency_must_match(self):
        with self.assertRaises(CurrencyMismatchError):
            self.session.add_transaction(TransactionType.REBUY, Money(50, "EUR"))

    def test_no_transactions_after_end_or_cancel(self):
        ended = self.session.end(Money(100))
        cancelled = self.session.cancel("Game broke")
        for session in (ended, cancelled):
            with self.assertRaises(BusinessError) as ctx:
                session.add_transaction(TransactionType.REBUY, Money(50))
            self.assertEqual(ctx.exception.code, "SESSION_NOT_ACTIVE")

    def test_terminal_states_cannot_transition(self):
        ended = self.session.end(Money(100))
        with self.assertRaises(BusinessError):
            ended.end(Money(100))
        with self.assertRaises(BusinessError):
            ended.cancel()
        cancelled = self.session.cancel()
        with self.assertRaises(BusinessError):
            cancelled.end(Money(100))

    def test_cancel_appends_reason_and_records_event(self):
        session = Session.start(
            self.player_id, "Aria", one_two(), Money(100), notes="Tough table", at=START
        )
        cancelled = session.cancel("Game broke", at=START + timedelta(minutes=5))

        self.assertEqual(cancelled.status, SessionStatus.CANCELLED)
        self.assertEqual(cancelled.notes, "Tough table\nCancelled: Game broke")
        self.assertIsInstance(cancelled.domain_events[-1], SessionCancelled)
        self.assertEqual(cancelled.domain_events[-1].reason, "Game broke")

    def test_end_appends_notes(self):
        session = self.session.end(Money(100), notes="Good read on seat 4")
        self.assertEqual(session.notes, "Good read on seat 4")

    def test_end_keeps_existing_notes(self):
        session = Session.start(
            self.player_id, "Aria", one_two(), Money(100), notes="Tough table", at=START
        )
        ended = session.end(Money(80), notes="Left early", at=START + timedelta(hours=1))
        self.assertEqual(ended.notes, "Tough table\nLeft early")

    def test_update_notes_requires_active_session(self):
        self.assertEqual(self.session.update_notes("note").notes, "note")
        with self.assertRaises(BusinessError):
            self.session.cancel().update_notes("late note")

    def test_update_location_is_validated(self):
        self.assertEqual(self.session.update_location("  Wynn ").location, "Wynn")
        with self.assertRaises(ValidationError):
            self.session.update_location("")

    def test_pull_domain_events_drains(self):
        drained, events = self.session.pull_domain_events()
        self.assertEqual(len(events), 2)
        self.assertFalse(drained.has_domain_events)
        self.assertEqual(drained, self.session)


if __name__ == "__main__":
    unittest.main()
