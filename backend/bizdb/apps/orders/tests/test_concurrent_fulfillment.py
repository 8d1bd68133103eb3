from __future__ import annotations

import threading
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from bizdb.database import Base
from bizdb.apps.companies import models as company_models
from bizdb.apps.inventory import models as inventory_models
from bizdb.apps.inventory import schemas as inventory_schemas
from bizdb.apps.inventory import services as inventory_services
from bizdb.apps.ledger import models as ledger_models
from bizdb.apps.ledger import services as ledger_services
from bizdb.apps.orders import models as order_models
from bizdb.apps.orders import schemas as order_schemas
from bizdb.apps.orders import services as order_services
from bizdb.errors import LedgerError
from bizdb.transactions import run_atomic


@pytest.fixture()
def session_factory(tmp_path):
    # Threads need a shared database, so this uses a file rather than :memory:.
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    try:
        yield factory
    finally:
        engine.dispose()


def test_concurrent_orders_never_oversell(session_factory):
    setup = session_factory()
    company = company_models.Company(name="Acme", slug="acme")
    setup.add(company)
    setup.commit()
    product = inventory_services.create_product(
        setup,
        company_id=company.id,
        actor_id="user-1",
        payload=inventory_schemas.ProductCreate(sku="A", name="Widget", initial_stock=5),
    )
    setup.commit()
    company_id, product_id = company.id, product.id
    setup.close()

    draft = order_schemas.OrderDraft(
        customer_id="customer-1",
        title="Rush order",
        items=[order_schemas.OrderItemDraft(product_id=product_id, quantity=3, unit_price=Decimal("10.00"))],
    )
    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def place_order(actor_id: str) -> None:
        db = session_factory()
        try:
            barrier.wait()
            run_atomic(
                db,
                lambda session: order_services.fulfill_order(
                    session, company_id=company_id, actor_id=actor_id, draft=draft
                ),
                company_id=company_id,
                subject_id=product_id,
            )
            result = "fulfilled"
        except LedgerError as exc:
            result = exc.code
        finally:
            db.close()
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=place_order, args=(f"user-{index}",)) for index in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert sorted(outcomes) == ["fulfilled", "insufficient_stock"]

    check = session_factory()
    try:
        stored = check.get(inventory_models.Product, product_id)
        assert stored.current_stock == 2
        assert check.query(order_models.Order).count() == 1
        outs = (
            check.query(ledger_models.LedgerEntry)
            .filter(ledger_models.LedgerEntry.kind == ledger_models.LedgerEntryKind.OUT)
            .count()
        )
        assert outs == 1
        assert ledger_services.sum_for(check, company_id=company_id, subject_id=product_id) == Decimal("2.00")
    finally:
        check.close()
