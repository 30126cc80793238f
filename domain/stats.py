from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from .errors import BusinessError
from .identifiers import PlayerId, SessionStatus
from .models import Player, Session
from .values import Duration, Money


@dataclass(frozen=True)
class PlayerStats:
    """Read model computed from a player and their sessions. Never persisted."""

    player_id: PlayerId
    player_name: str
    total_sessions: int
    total_duration: Duration
    total_buy_in: Money
    total_cash_out: Money
    net_profit: Money
    biggest_win: Money
    biggest_loss: Money
    win_rate: float
    average_session: Money
    hourly_rate: Money
    best_streak: int
    worst_streak: int
    current_streak: int
    current_bankroll: Money
    last_session_date: Optional[datetime] = None

    @classmethod
    def empty(cls, player: Player) -> PlayerStats:
        zero = Money.zero(player.current_bankroll.currency)
        return cls(
            player_id=player.id,
            player_name=player.name,
            total_sessions=0,
            total_duration=Duration(0),
            total_buy_in=zero,
            total_cash_out=zero,
            net_profit=zero,
            biggest_win=zero,
            biggest_loss=zero,
            win_rate=0.0,
            average_session=zero,
            hourly_rate=zero,
            best_streak=0,
            worst_streak=0,
            current_streak=0,
            current_bankroll=player.current_bankroll,
        )


def calculate_streaks(sessions: Sequence[Session]) -> Tuple[int, int, int]:
    """
    Return (best, worst, current) streak lengths.

    A winning session extends a positive run (or starts a new one at 1); a
    losing or break-even session extends a negative run (or starts one at
    -1). All three values are returned as non-negative magnitudes.
    """

    streak = 0
    best = 0
    worst = 0
    for session in sessions:
        if session.net_result.is_positive:
            streak = max(streak, 0) + 1
            best = max(best, streak)
        else:
            streak = min(streak, 0) - 1
            worst = min(worst, streak)
    return best, abs(worst), abs(streak)


class PlayerStatsService:
    """
    Aggregate performance statistics over a player's completed sessions.

    Pure computation: no persistence, no clock. Sessions are processed in
    the order given, which matters for streaks and the last session date.
    """

    def calculate_stats(self, player: Player, sessions: Sequence[Session]) -> PlayerStats:
        completed: List[Session] = [s for s in sessions if s.status == SessionStatus.COMPLETED]
        if not completed:
            return PlayerStats.empty(player)

        currency = completed[0].stakes.big_blind.currency
        mixed = sorted({s.currency for s in completed if s.currency != currency})
        if mixed:
            raise BusinessError(
                f"Cannot aggregate sessions in mixed currencies ({currency}, {', '.join(mixed)})",
                "MIXED_CURRENCY_SESSIONS",
            )

        zero = Money.zero(currency)
        total_buy_in = zero
        total_cash_out = zero
        total_duration = Duration(0)
        results: List[Money] = []
        for session in completed:
            total_buy_in = total_buy_in.add(session.total_buy_in)
            total_cash_out = total_cash_out.add(session.total_cash_out)
            if session.duration is not None:
                total_duration = total_duration.add(session.duration)
            results.append(session.net_result)

        net_profit = total_cash_out.subtract(total_buy_in)
        wins = sum(1 for result in results if result.is_positive)
        win_rate = wins / len(completed) * 100

        if total_duration.hours > 0:
            hourly_rate = net_profit.divide(total_duration.hours)
        else:
            hourly_rate = zero

        amounts = [result.amount for result in results]
        biggest_win = Money(max(max(amounts), 0), currency)
        biggest_loss = Money(max(-min(amounts), 0), currency)

        best, worst, current = calculate_streaks(completed)

        return PlayerStats(
            player_id=player.id,
            player_name=player.name,
            total_sessions=len(completed),
            total_duration=total_duration,
            total_buy_in=total_buy_in,
            total_cash_out=total_cash_out,
            net_profit=net_profit,
            biggest_win=biggest_win,
            biggest_loss=biggest_loss,
            win_rate=win_rate,
            average_session=net_profit.divide(len(completed)),
            hourly_rate=hourly_rate,
            best_streak=best,
            worst_streak=worst,
            current_streak=current,
            current_bankroll=player.current_bankroll,
            last_session_date=completed[-1].end_time,
        )
