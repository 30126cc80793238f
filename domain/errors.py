from __future__ import annotations

from typing import Optional


class DomainError(Exception):
    """
    Base class for failures detected by the domain model itself.

    Every domain error carries a short machine-readable `code` so the
    application layer can report it without parsing the message.
    """

    default_code = "DOMAIN_ERROR"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class ValidationError(DomainError):
    """Malformed input caught at construction or mutation time."""

    default_code = "VALIDATION_ERROR"


class CurrencyMismatchError(ValidationError):
    default_code = "CURRENCY_MISMATCH"


class BusinessError(DomainError):
    """A well-formed request that breaks a rule given the current state."""

    default_code = "BUSINESS_RULE_VIOLATION"


class NotFoundError(DomainError):
    default_code = "NOT_FOUND"


class ConflictError(DomainError):
    """Raised when an aggregate was changed by someone else since it was loaded."""

    default_code = "VERSION_CONFLICT"


class PersistenceError(Exception):
    """Storage or driver failure surfaced by a repository or unit of work."""


class UnitOfWorkError(PersistenceError):
    """begin/commit/rollback called in the wrong order."""
