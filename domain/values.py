from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from .errors import CurrencyMismatchError, ValidationError

AmountLike = Union[Decimal, int, float, str]

DEFAULT_CURRENCY = "USD"


def _to_decimal(value: AmountLike) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # Go through str() so 0.1 stays 0.1 rather than its binary expansion.
        value = str(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid money amount: {value!r}", "VALIDATION_AMOUNT_INVALID") from exc


@dataclass(frozen=True)
class Money:
    """
    An amount in a single currency.

    Negative amounts are allowed: they represent net losses. Arithmetic
    between two values requires the same currency; nothing is ever
    converted.
    """

    amount: Decimal
    currency: str = DEFAULT_CURRENCY

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", _to_decimal(self.amount))
        currency = (self.currency or "").strip().upper()
        if not currency:
            raise ValidationError("Currency is required", "VALIDATION_CURRENCY_REQUIRED")
        object.__setattr__(self, "currency", currency)

    @classmethod
    def zero(cls, currency: str = DEFAULT_CURRENCY) -> Money:
        return cls(Decimal("0"), currency)

    def _check_currency(self, other: Money, verb: str) -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(
                f"Cannot {verb} money with different currencies "
                f"({self.currency} and {other.currency})"
            )

    def add(self, other: Money) -> Money:
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def subtract(self, other: Money) -> Money:
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def multiply(self, factor: AmountLike) -> Money:
        return Money(self.amount * _to_decimal(factor), self.currency)

    def divide(self, divisor: AmountLike) -> Money:
        return Money(self.amount / _to_decimal(divisor), self.currency)

    def negate(self) -> Money:
        return Money(-self.amount, self.currency)

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    def __str__(self) -> str:
        return f"{self.currency} {self.amount:.2f}"


def _format_blind(amount: Decimal) -> str:
    # 1 -> "1", 0.50 -> "0.5"
    return format(amount.normalize(), "f")


@dataclass(frozen=True)
class Stakes:
    """Blind structure of a game. The big blind must exceed the small blind."""

    small_blind: Money
    big_blind: Money
    ante: Optional[Money] = None

    def __post_init__(self) -> None:
        if self.small_blind.currency != self.big_blind.currency:
            raise CurrencyMismatchError("Small blind and big blind must share a currency")
        if self.ante is not None and self.ante.currency != self.big_blind.currency:
            raise CurrencyMismatchError("Ante must use the same currency as the blinds")
        if self.small_blind.amount >= self.big_blind.amount:
            raise ValidationError(
                "Small blind must be less than big blind",
                "VALIDATION_STAKES_INVALID",
            )

    @property
    def currency(self) -> str:
        return self.big_blind.currency

    @property
    def label(self) -> str:
        """Short form used for filtering, e.g. "1/2"."""

        return f"{_format_blind(self.small_blind.amount)}/{_format_blind(self.big_blind.amount)}"

    @property
    def formatted(self) -> str:
        text = f"${_format_blind(self.small_blind.amount)}/${_format_blind(self.big_blind.amount)}"
        if self.ante is not None:
            text += f" (${self.ante.amount:.2f} ante)"
        return text


@dataclass(frozen=True)
class Duration:
    hours: float

    def __post_init__(self) -> None:
        if self.hours < 0:
            raise ValidationError("Duration cannot be negative", "VALIDATION_DURATION_NEGATIVE")

    @classmethod
    def between(cls, start: datetime, end: datetime) -> Duration:
        return cls((end - start).total_seconds() / 3600)

    @property
    def minutes(self) -> float:
        return self.hours * 60

    def add(self, other: Duration) -> Duration:
        return Duration(self.hours + other.hours)

    @property
    def formatted(self) -> str:
        total_minutes = round(self.hours * 60)
        hours, minutes = divmod(total_minutes, 60)
        return f"{hours}h {minutes}m"
