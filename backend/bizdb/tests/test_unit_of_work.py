from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from bizdb import transactions
from bizdb.apps.inventory import models as inventory_models
from bizdb.errors import (
    InsufficientStockError,
    InternalError,
    NotFoundError,
    TransactionAbortedError,
)
from bizdb.transactions import is_retryable, run_atomic


class _Flaky:
    """Fails with `error` for the first `failures` calls, then succeeds."""

    def __init__(self, error: Exception, failures: int):
        self.error = error
        self.failures = failures
        self.calls = 0

    def __call__(self, session):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "done"


def test_commits_successful_work(db_session, company):
    def work(session):
        product = inventory_models.Product(company_id=company.id, sku="A", name="Widget")
        session.add(product)
        session.flush()
        return product

    product = run_atomic(db_session, work, company_id=company.id)

    db_session.expire_all()
    assert db_session.get(inventory_models.Product, product.id) is not None


def test_rolls_back_on_business_error_without_retrying(db_session, company):
    calls = []

    def work(session):
        calls.append(1)
        session.add(inventory_models.Product(company_id=company.id, sku="A", name="Widget"))
        session.flush()
        raise InsufficientStockError("no stock")

    with pytest.raises(InsufficientStockError):
        run_atomic(db_session, work, company_id=company.id)

    assert len(calls) == 1
    assert db_session.query(inventory_models.Product).count() == 0


@pytest.mark.parametrize(
    "error",
    [
        TransactionAbortedError("aborted"),
        StaleDataError("version mismatch"),
        OperationalError("UPDATE products", {}, Exception("database is locked")),
    ],
)
def test_retries_concurrency_failures(db_session, company, no_backoff, error):
    work = _Flaky(error, failures=2)

    assert run_atomic(db_session, work, company_id=company.id) == "done"
    assert work.calls == 3


def test_gives_up_after_max_attempts(db_session, company, no_backoff):
    work = _Flaky(StaleDataError("version mismatch"), failures=10)

    with pytest.raises(TransactionAbortedError):
        run_atomic(db_session, work, company_id=company.id)
    assert work.calls == transactions.MAX_ATTEMPTS


def test_max_attempts_can_be_lowered_per_call(db_session, company, no_backoff):
    work = _Flaky(TransactionAbortedError("aborted"), failures=10)

    with pytest.raises(TransactionAbortedError):
        run_atomic(db_session, work, company_id=company.id, max_attempts=1)
    assert work.calls == 1


def test_non_retryable_datastore_errors_become_internal(db_session, company, caplog):
    work = _Flaky(IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed")), failures=1)

    with pytest.raises(InternalError) as excinfo:
        run_atomic(db_session, work, company_id=company.id)
    assert work.calls == 1
    assert excinfo.value.message == "Internal error"
    assert "Unexpected datastore failure" in caplog.text


def test_unexpected_exceptions_are_wrapped(db_session, company):
    def work(session):
        raise KeyError("boom")

    with pytest.raises(InternalError):
        run_atomic(db_session, work, company_id=company.id)


def test_not_found_passes_through(db_session, company):
    def work(session):
        raise NotFoundError("Product not found.")

    with pytest.raises(NotFoundError):
        run_atomic(db_session, work, company_id=company.id)


def test_is_retryable_classification():
    assert is_retryable(TransactionAbortedError("aborted"))
    assert is_retryable(StaleDataError("stale"))
    assert is_retryable(OperationalError("SELECT 1", {}, Exception("deadlock detected")))
    assert not is_retryable(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")))
    assert not is_retryable(ValueError("nope"))


def test_backoff_doubles(monkeypatch):
    monkeypatch.setattr(transactions, "BASE_BACKOFF_MS", 50)

    assert [transactions._backoff_seconds(attempt) for attempt in (1, 2, 3)] == [0.05, 0.1, 0.2]


def test_stale_version_is_detected_across_sessions(db_session, company):
    product = inventory_models.Product(company_id=company.id, sku="A", name="Widget")
    db_session.add(product)
    db_session.commit()

    # Simulate a concurrent writer bumping the row version behind our back.
    db_session.execute(
        inventory_models.Product.__table__.update()
        .where(inventory_models.Product.__table__.c.id == product.id)
        .values(version=inventory_models.Product.__table__.c.version + 1)
    )
    db_session.commit()

    product.current_stock = 4
    with pytest.raises(StaleDataError):
        db_session.flush()
