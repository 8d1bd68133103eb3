from __future__ import annotations

from decimal import Decimal

import pytest

from bizdb.apps.audit import models as audit_models
from bizdb.apps.finance import schemas as finance_schemas
from bizdb.apps.finance import services as finance_services
from bizdb.apps.inventory import schemas as inventory_schemas
from bizdb.apps.inventory import services as inventory_services
from bizdb.apps.ledger import models as ledger_models
from bizdb.apps.ledger import projector
from bizdb.apps.ledger import reconcile as ledger_reconcile
from bizdb.apps.ledger import services as ledger_services
from bizdb.errors import (
    ConflictError,
    InsufficientBalanceError,
    InsufficientStockError,
    InvalidArgumentError,
    NotFoundError,
)
from bizdb.jobs import reconcile_ledger

ACTOR = "user-1"


def _create_product(db, company_id: str, *, stock: int = 0, sku: str = "P-100"):
    product = inventory_services.create_product(
        db,
        company_id=company_id,
        actor_id=ACTOR,
        payload=inventory_schemas.ProductCreate(sku=sku, name="Widget", initial_stock=stock),
    )
    db.commit()
    return product


def _create_account(db, company_id: str, *, opening: str = "0", credit_limit: str = "0"):
    account = finance_services.create_account(
        db,
        company_id=company_id,
        actor_id=ACTOR,
        payload=finance_schemas.FinancialAccountCreate(
            name="Main",
            opening_balance=Decimal(opening),
            credit_limit=Decimal(credit_limit),
        ),
    )
    db.commit()
    return account


def test_apply_moves_value_and_returns_snapshots(db_session, company):
    product = _create_product(db_session, company.id, stock=5)

    previous, new = projector.apply(db_session, product, -2)

    assert (previous, new) == (5, 3)
    assert product.current_stock == 3


def test_apply_refuses_to_go_below_zero_stock(db_session, company):
    product = _create_product(db_session, company.id, stock=5)

    with pytest.raises(InsufficientStockError):
        projector.apply(db_session, product, -6)
    assert product.current_stock == 5


def test_apply_rejects_fractional_stock(db_session, company):
    product = _create_product(db_session, company.id, stock=5)

    with pytest.raises(InvalidArgumentError):
        projector.apply(db_session, product, Decimal("1.5"))


def test_apply_lets_accounts_use_their_credit_limit(db_session, company):
    account = _create_account(db_session, company.id, opening="10", credit_limit="50")

    previous, new = projector.apply(db_session, account, Decimal("-60"))
    assert (previous, new) == (Decimal("10.00"), Decimal("-50.00"))

    with pytest.raises(InsufficientBalanceError) as excinfo:
        projector.apply(db_session, account, Decimal("-0.01"))
    assert not isinstance(excinfo.value, InsufficientStockError)
    assert account.balance == Decimal("-50.00")


def test_post_movement_records_snapshots_and_cost(db_session, company):
    product = _create_product(db_session, company.id, stock=5)
    product.cost_price = Decimal("2.50")

    entry = projector.post_movement(
        db_session,
        subject=product,
        kind=ledger_models.LedgerEntryKind.OUT,
        amount=-2,
        document_type="test_document",
        document_id="doc-1",
        actor_id=ACTOR,
        unit_cost=product.cost_price,
    )
    db_session.commit()

    assert entry.previous_value == Decimal("5")
    assert entry.new_value == Decimal("3")
    assert entry.total_cost == Decimal("5.00")
    assert entry.subject_type == ledger_models.LedgerSubjectType.PRODUCT


def test_post_movement_replay_leaves_value_untouched(db_session, company):
    product = _create_product(db_session, company.id, stock=5)
    kwargs = dict(
        subject=product,
        kind=ledger_models.LedgerEntryKind.OUT,
        amount=-1,
        document_type="test_document",
        document_id="doc-1",
        actor_id=ACTOR,
    )
    projector.post_movement(db_session, **kwargs)
    db_session.commit()

    with pytest.raises(ConflictError):
        projector.post_movement(db_session, **kwargs)
    assert product.current_stock == 4


def test_lock_subject_is_tenant_scoped(db_session, company):
    product = _create_product(db_session, company.id, stock=1)

    with pytest.raises(NotFoundError):
        projector.lock_subject(
            db_session,
            type(product),
            company_id="another-company",
            subject_id=product.id,
        )


def test_reconcile_reports_consistency_and_drift(db_session, company):
    product = _create_product(db_session, company.id, stock=7)
    account = _create_account(db_session, company.id, opening="150")

    assert ledger_reconcile.reconcile(db_session, company_id=company.id, subject_id=product.id).is_consistent
    assert ledger_reconcile.reconcile(db_session, company_id=company.id, subject_id=account.id).is_consistent

    # A write that bypasses the projector.
    product.current_stock = 9
    db_session.commit()

    result = ledger_reconcile.reconcile(db_session, company_id=company.id, subject_id=product.id)
    assert not result.is_consistent
    assert result.projected_value == Decimal("9.00")
    assert result.ledger_sum == Decimal("7.00")


def test_reconcile_unknown_subject(db_session, company):
    with pytest.raises(NotFoundError):
        ledger_reconcile.reconcile(db_session, company_id=company.id, subject_id="missing")


def test_sweep_records_drift_audit_events(db_session, company):
    product = _create_product(db_session, company.id, stock=3)
    _create_account(db_session, company.id, opening="20")
    product.current_stock = 1
    db_session.commit()

    summary = reconcile_ledger.sweep(db_session)
    db_session.commit()

    assert summary["checked"] == 2
    assert summary["drifted"] == [product.id]
    events = (
        db_session.query(audit_models.AuditEvent)
        .filter(audit_models.AuditEvent.action == "ledger_drift")
        .all()
    )
    assert len(events) == 1
    assert events[0].entity_id == product.id
    assert events[0].after == {"projected_value": "1.00", "ledger_sum": "3.00"}


def test_every_entry_sums_to_projection_after_mixed_movements(db_session, company):
    product = _create_product(db_session, company.id, stock=10)
    for index, delta in enumerate([-3, 4, -6]):
        kind = ledger_models.LedgerEntryKind.IN if delta > 0 else ledger_models.LedgerEntryKind.OUT
        projector.post_movement(
            db_session,
            subject=product,
            kind=kind,
            amount=delta,
            document_type="test_document",
            document_id=f"doc-{index}",
            actor_id=ACTOR,
        )
    db_session.commit()

    assert product.current_stock == 5
    assert ledger_services.sum_for(db_session, company_id=company.id, subject_id=product.id) == Decimal("5.00")
