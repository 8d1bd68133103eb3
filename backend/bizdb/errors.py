from __future__ import annotations

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for every error the ledger core surfaces to collaborators."""

    code = "error"
    status_code = 400
    retryable = False

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "detail": self.detail}


class NotFoundError(LedgerError):
    code = "not_found"
    status_code = 404


class InvalidArgumentError(LedgerError):
    code = "invalid_argument"
    status_code = 400


class InsufficientBalanceError(LedgerError):
    code = "insufficient_balance"
    status_code = 409


class InsufficientStockError(InsufficientBalanceError):
    code = "insufficient_stock"


class InvalidStateError(LedgerError):
    code = "invalid_state"
    status_code = 409


class InvalidTransitionError(LedgerError):
    code = "invalid_transition"
    status_code = 409


class ConflictError(LedgerError):
    code = "conflict"
    status_code = 409


class TransactionAbortedError(LedgerError):
    """Serialization or lock conflict in the datastore; the whole unit of work may be retried."""

    code = "transaction_aborted"
    status_code = 503
    retryable = True


class InternalError(LedgerError):
    code = "internal_error"
    status_code = 500
