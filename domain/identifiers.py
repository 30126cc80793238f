from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum

from .errors import ValidationError


@dataclass(frozen=True)
class _Identifier:
    value: str

    error_code = "VALIDATION_ID_REQUIRED"

    def __post_init__(self) -> None:
        if not isinstance(self.value, str) or not self.value.strip():
            raise ValidationError(f"{type(self).__name__} cannot be empty", self.error_code)

    @classmethod
    def generate(cls):
        return cls(str(uuid.uuid4()))

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class PlayerId(_Identifier):
    error_code = "VALIDATION_PLAYER_ID_REQUIRED"


@dataclass(frozen=True)
class SessionId(_Identifier):
    error_code = "VALIDATION_SESSION_ID_REQUIRED"


@dataclass(frozen=True)
class TransactionId(_Identifier):
    error_code = "VALIDATION_TRANSACTION_ID_REQUIRED"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.ACTIVE


class TransactionType(str, Enum):
    BUY_IN = "buy_in"
    CASH_OUT = "cash_out"
    REBUY = "rebuy"
    ADD_ON = "add_on"
    TIP = "tip"
    RAKEBACK = "rakeback"
    BONUS = "bonus"
    OTHER = "other"
