from __future__ import annotations

from decimal import Decimal

import pytest

from bizdb.apps.inventory import schemas as inventory_schemas
from bizdb.apps.inventory import services as inventory_services
from bizdb.apps.ledger import models as ledger_models
from bizdb.apps.ledger import services as ledger_services
from bizdb.errors import (
    ConflictError,
    InsufficientStockError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)

ACTOR = "user-1"


def _create_product(db, company_id: str, *, stock: int = 0, sku: str = "P-100", track_stock: bool = True):
    product = inventory_services.create_product(
        db,
        company_id=company_id,
        actor_id=ACTOR,
        payload=inventory_schemas.ProductCreate(
            sku=sku,
            name="Widget",
            cost_price=Decimal("4.00"),
            initial_stock=stock,
            track_stock=track_stock,
        ),
    )
    db.commit()
    return product


def test_create_product_posts_opening_stock(db_session, company):
    product = _create_product(db_session, company.id, stock=7, sku=" p-100 ")

    assert product.sku == "P-100"
    assert product.current_stock == 7
    page = ledger_services.list_for(db_session, company_id=company.id, subject_id=product.id)
    assert [(entry.kind, entry.amount) for entry in page.items] == [
        (ledger_models.LedgerEntryKind.IN, Decimal("7")),
    ]


def test_create_product_rejects_duplicate_sku(db_session, company):
    _create_product(db_session, company.id)

    with pytest.raises(ConflictError):
        _create_product(db_session, company.id, sku="p-100")


def test_adjust_stock_posts_the_difference(db_session, company):
    product = _create_product(db_session, company.id, stock=7)

    entry = inventory_services.adjust_stock(
        db_session,
        company_id=company.id,
        actor_id=ACTOR,
        product_id=product.id,
        new_quantity=10,
        reason="cycle count",
    )
    db_session.commit()

    assert product.current_stock == 10
    assert entry.kind == ledger_models.LedgerEntryKind.ADJUSTMENT
    assert entry.amount == Decimal("3")
    assert entry.previous_value == Decimal("7")
    assert entry.new_value == Decimal("10")
    assert entry.reason == "cycle count"
    assert entry.reference.startswith("ADJ-")
    assert entry.total_cost == Decimal("12.00")


def test_adjust_stock_down_to_zero(db_session, company):
    product = _create_product(db_session, company.id, stock=4)

    entry = inventory_services.adjust_stock(
        db_session,
        company_id=company.id,
        actor_id=ACTOR,
        product_id=product.id,
        new_quantity=0,
    )
    db_session.commit()

    assert product.current_stock == 0
    assert entry.amount == Decimal("-4")
    assert ledger_services.sum_for(db_session, company_id=company.id, subject_id=product.id) == Decimal("0.00")


def test_adjust_stock_rejects_no_op_and_negative_targets(db_session, company):
    product = _create_product(db_session, company.id, stock=5)

    with pytest.raises(InvalidArgumentError):
        inventory_services.adjust_stock(
            db_session, company_id=company.id, actor_id=ACTOR, product_id=product.id, new_quantity=5
        )
    with pytest.raises(InvalidArgumentError):
        inventory_services.adjust_stock(
            db_session, company_id=company.id, actor_id=ACTOR, product_id=product.id, new_quantity=-1
        )
    db_session.rollback()

    assert db_session.query(ledger_models.LedgerEntry).filter_by(subject_id=product.id).count() == 1


def test_adjust_stock_requires_tracked_product(db_session, company):
    product = _create_product(db_session, company.id, track_stock=False)

    with pytest.raises(InvalidArgumentError):
        inventory_services.adjust_stock(
            db_session, company_id=company.id, actor_id=ACTOR, product_id=product.id, new_quantity=3
        )


def test_adjust_stock_unknown_product(db_session, company):
    with pytest.raises(NotFoundError):
        inventory_services.adjust_stock(
            db_session, company_id=company.id, actor_id=ACTOR, product_id="missing", new_quantity=3
        )


def test_receive_and_issue_stock_by_document(db_session, company):
    product = _create_product(db_session, company.id, stock=2)

    inventory_services.receive_stock(
        db_session,
        company_id=company.id,
        actor_id=ACTOR,
        product_id=product.id,
        payload=inventory_schemas.StockMovementRequest(quantity=5, document_id="PO-1", document_type="purchase"),
    )
    inventory_services.issue_stock(
        db_session,
        company_id=company.id,
        actor_id=ACTOR,
        product_id=product.id,
        payload=inventory_schemas.StockMovementRequest(quantity=3, document_id="REQ-1"),
    )
    db_session.commit()
    assert product.current_stock == 4

    with pytest.raises(ConflictError):
        inventory_services.receive_stock(
            db_session,
            company_id=company.id,
            actor_id=ACTOR,
            product_id=product.id,
            payload=inventory_schemas.StockMovementRequest(quantity=5, document_id="PO-1", document_type="purchase"),
        )
    with pytest.raises(InsufficientStockError):
        inventory_services.issue_stock(
            db_session,
            company_id=company.id,
            actor_id=ACTOR,
            product_id=product.id,
            payload=inventory_schemas.StockMovementRequest(quantity=5, document_id="REQ-2"),
        )
    db_session.rollback()
    assert product.current_stock == 4


def test_list_products_below_min_stock(db_session, company):
    low = _create_product(db_session, company.id, stock=1, sku="LOW")
    inventory_services.update_product(
        db_session,
        company_id=company.id,
        actor_id=ACTOR,
        product_id=low.id,
        payload=inventory_schemas.ProductUpdate(min_stock=2),
    )
    _create_product(db_session, company.id, stock=9, sku="HIGH")
    db_session.commit()

    products = inventory_services.list_products(db_session, company_id=company.id, below_min_stock=True)
    assert [product.sku for product in products] == ["LOW"]


def test_update_product_leaves_stock_to_the_ledger(db_session, company):
    product = _create_product(db_session, company.id, stock=3)

    inventory_services.update_product(
        db_session,
        company_id=company.id,
        actor_id=ACTOR,
        product_id=product.id,
        payload=inventory_schemas.ProductUpdate(name="Blue widget", sale_price=Decimal("9.90"), min_stock=1),
    )
    db_session.commit()

    assert product.name == "Blue widget"
    assert product.sale_price == Decimal("9.90")
    assert product.min_stock == 1
    assert product.current_stock == 3
    assert ledger_services.sum_for(db_session, company_id=company.id, subject_id=product.id) == 3


def test_deactivated_products_refuse_new_movements(db_session, company):
    product = _create_product(db_session, company.id, stock=3)

    inventory_services.deactivate_product(
        db_session, company_id=company.id, actor_id=ACTOR, product_id=product.id
    )
    db_session.commit()

    assert product.is_active is False
    assert inventory_services.list_products(db_session, company_id=company.id) == []
    with pytest.raises(NotFoundError):
        inventory_services.adjust_stock(
            db_session, company_id=company.id, actor_id=ACTOR, product_id=product.id, new_quantity=5
        )
    with pytest.raises(NotFoundError):
        inventory_services.receive_stock(
            db_session,
            company_id=company.id,
            actor_id=ACTOR,
            product_id=product.id,
            payload=inventory_schemas.StockMovementRequest(quantity=1, document_id="PO-9"),
        )
    with pytest.raises(InvalidStateError):
        inventory_services.deactivate_product(
            db_session, company_id=company.id, actor_id=ACTOR, product_id=product.id
        )
    db_session.rollback()

    assert ledger_services.sum_for(db_session, company_id=company.id, subject_id=product.id) == 3
