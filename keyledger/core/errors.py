from __future__ import annotations


class KeyLedgerError(Exception):
    """Base error for keyledger."""


class ValidationError(KeyLedgerError):
    """Credential owner data failed one or more format rules."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class DateRangeError(KeyLedgerError):
    """Subscription window violates the issuance bounds."""

    def __init__(self, rule: str, message: str) -> None:
        self.rule = rule
        super().__init__(message)


class DuplicateCredentialError(KeyLedgerError):
    """Explicit credential id is already in use."""


class StoreUnavailableError(KeyLedgerError):
    """Credential store backend is unreachable, erroring or timed out."""


class UsageConflictError(KeyLedgerError):
    """Optimistic usage update lost every compare-and-set attempt."""
