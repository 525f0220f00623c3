"""Ledger error taxonomy.

Every error aborts the enclosing transaction. The API layer maps each
class to its ``status_code`` and exposes ``code`` so clients can branch
on a stable identifier rather than on message text.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all ledger domain errors."""

    status_code: int = 400
    code: str = "ledger_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


# --- 400 ---


class InvalidAmount(LedgerError):
    """Amount is not a positive integer within the allowed range."""

    code = "invalid_amount"


class InsufficientBalance(LedgerError):
    """Source account does not hold enough bubbles."""

    code = "insufficient_balance"


class InvalidContribution(LedgerError):
    """Contribution target, slot or kind is not acceptable."""

    code = "invalid_contribution"


# --- 404 ---


class AccountNotFound(LedgerError):
    """Account does not exist."""

    status_code = 404
    code = "account_not_found"


class PoolNotFound(LedgerError):
    """No giveaway pool exists for the requested category."""

    status_code = 404
    code = "pool_not_found"


class TransactionNotFound(LedgerError):
    """Transaction does not exist."""

    status_code = 404
    code = "transaction_not_found"


# --- 409 ---


class InvalidTransactionState(LedgerError):
    """Transaction is not in a state that allows this transition."""

    status_code = 409
    code = "invalid_transaction_state"


class NoEligibleRecipients(LedgerError):
    """No account qualifies for this giveaway."""

    status_code = 409
    code = "no_eligible_recipients"


class PoolInactiveOrExhausted(LedgerError):
    """Giveaway pool is disabled or already distributed."""

    status_code = 409
    code = "pool_inactive_or_exhausted"


class PoolAlreadyOpen(LedgerError):
    """An undistributed pool already exists for this category."""

    status_code = 409
    code = "pool_already_open"


# --- 503 ---


class ContentionTimeout(LedgerError):
    """Could not acquire row locks in time. Safe to retry."""

    status_code = 503
    code = "contention_timeout"


class DataIntegrityRecovered(Warning):  # noqa: N818
    """Stored slot progress was corrupted and has been reset.

    A signal, never raised: it is logged and the operation proceeds.
    """
