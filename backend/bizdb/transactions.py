from __future__ import annotations

import logging
import os
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .errors import InternalError, LedgerError, TransactionAbortedError

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = int(os.getenv("LEDGER_TX_MAX_ATTEMPTS", "3"))
BASE_BACKOFF_MS = int(os.getenv("LEDGER_TX_BACKOFF_MS", "50"))

# serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_SQLSTATES = {"40001", "40P01", "55P03"}
RETRYABLE_MESSAGES = (
    "database is locked",
    "deadlock",
    "could not serialize",
    "lock wait timeout",
    "could not obtain lock",
)

T = TypeVar("T")


def _backoff_seconds(attempt: int) -> float:
    return BASE_BACKOFF_MS * (2 ** max(attempt - 1, 0)) / 1000.0


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, TransactionAbortedError):
        return True
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, DBAPIError):
        orig = getattr(exc, "orig", None)
        sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if sqlstate in RETRYABLE_SQLSTATES:
            return True
        message = str(orig if orig is not None else exc).lower()
        return any(marker in message for marker in RETRYABLE_MESSAGES)
    return False


def run_atomic(
    db: Session,
    work: Callable[[Session], T],
    *,
    company_id: Optional[str],
    subject_id: Optional[str] = None,
    document_id: Optional[str] = None,
    max_attempts: Optional[int] = None,
) -> T:
    """
    Run `work` as one unit of work and commit it.

    Everything `work` flushes is committed together or rolled back together.
    Only datastore concurrency failures are retried; business errors are
    re-raised untouched and anything unexpected is logged and surfaced as a
    generic InternalError.
    """
    attempts = max_attempts or MAX_ATTEMPTS
    context = {
        "company_id": company_id,
        "subject_id": subject_id,
        "document_id": document_id,
    }

    for attempt in range(1, attempts + 1):
        try:
            result = work(db)
            db.commit()
            return result
        except TransactionAbortedError as exc:
            db.rollback()
            failure = exc
        except LedgerError:
            db.rollback()
            raise
        except (StaleDataError, DBAPIError) as exc:
            db.rollback()
            if not is_retryable(exc):
                logger.exception("Unexpected datastore failure", extra=context)
                raise InternalError("Internal error") from None
            failure = TransactionAbortedError(
                "Transaction aborted by a concurrent update",
                detail={"attempt": attempt},
            )
        except Exception:
            db.rollback()
            logger.exception("Unexpected failure in unit of work", extra=context)
            raise InternalError("Internal error") from None

        if attempt >= attempts:
            logger.error(
                "Transaction retries exhausted",
                extra={**context, "attempts": attempt},
            )
            raise failure
        logger.warning(
            "Retrying aborted transaction",
            extra={**context, "attempt": attempt},
        )
        time.sleep(_backoff_seconds(attempt))

    raise InternalError("Internal error")
