"""Custody error taxonomy.

Each error carries the HTTP status the API layer answers with. Liquidity
shortfalls and unmatched deposit activity are not exceptions; they are
reported outcomes (see ``withdrawal_processor`` and ``deposit_reconciler``).
"""
from typing import Optional


class AppError(Exception):
    """Base application error."""

    def __init__(self, message: str, http_status: int = 500) -> None:
        self.message = message
        self.http_status = http_status
        super().__init__(message)


class AuthError(AppError):
    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message, 401)


class ValidationError(AppError):
    def __init__(self, message: str) -> None:
        super().__init__(message, 400)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found") -> None:
        super().__init__(message, 404)


class InsufficientBalanceError(AppError):
    def __init__(self, requested, available=None) -> None:
        msg = f"Insufficient balance for withdrawal of {requested}"
        if available is not None:
            msg += f" (available: {available})"
        super().__init__(msg, 400)


class ConcurrencyConflict(AppError):
    """A conditional status update matched zero rows."""

    def __init__(self, record_id: str, expected_status: str) -> None:
        self.record_id = record_id
        self.expected_status = expected_status
        super().__init__(f"Record {record_id} is no longer {expected_status}", 409)


class ChainError(AppError):
    """RPC failure or reverted transaction."""

    def __init__(self, message: str) -> None:
        super().__init__(message, 502)


class TransferUnconfirmedError(ChainError):
    """The transfer was broadcast but its outcome is unknown.

    Never safe to retry automatically.
    """

    def __init__(self, message: str, tx_hash: Optional[str] = None) -> None:
        self.tx_hash = tx_hash
        super().__init__(message)
