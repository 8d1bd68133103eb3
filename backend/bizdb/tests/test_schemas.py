from __future__ import annotations

import ast
from decimal import Decimal
from pathlib import Path

import pytest

from bizdb.apps.audit import schemas as audit_schemas
from bizdb.apps.finance import schemas as finance_schemas
from bizdb.apps.finance import services as finance_services
from bizdb.apps.inventory import schemas as inventory_schemas
from bizdb.apps.inventory import services as inventory_services
from bizdb.apps.ledger import schemas as ledger_schemas
from bizdb.apps.orders import schemas as order_schemas

APPS_DIR = Path(__file__).resolve().parents[1] / "apps"

READ_SCHEMAS = [
    audit_schemas.AuditEventRead,
    finance_schemas.FinancialAccountRead,
    finance_schemas.FinancialCategoryRead,
    finance_schemas.TransactionRead,
    finance_schemas.TransferRead,
    inventory_schemas.ProductRead,
    ledger_schemas.LedgerEntryRead,
    order_schemas.OrderItemRead,
    order_schemas.OrderRead,
]


@pytest.mark.parametrize("schema", READ_SCHEMAS, ids=lambda schema: schema.__name__)
def test_read_schemas_load_from_attributes(schema):
    assert schema.model_config.get("from_attributes") is True


def test_schema_modules_use_model_config():
    nested_configs = []
    for path in sorted(APPS_DIR.glob("*/schemas.py")):
        tree = ast.parse(path.read_text())
        for node in ast.walk(tree):
            if isinstance(node, ast.ClassDef):
                nested_configs.extend(
                    f"{path.parent.name}.{node.name}"
                    for child in node.body
                    if isinstance(child, ast.ClassDef) and child.name == "Config"
                )
    assert nested_configs == []


def test_read_schemas_render_orm_rows(db_session, company):
    product = inventory_services.create_product(
        db_session,
        company_id=company.id,
        actor_id="user-1",
        payload=inventory_schemas.ProductCreate(sku="A", name="Widget", initial_stock=2),
    )
    account = finance_services.create_account(
        db_session,
        company_id=company.id,
        actor_id="user-1",
        payload=finance_schemas.FinancialAccountCreate(name="Checking", opening_balance=Decimal("12.5")),
    )
    db_session.commit()

    assert inventory_schemas.ProductRead.model_validate(product).current_stock == 2
    assert finance_schemas.FinancialAccountRead.model_validate(account).balance == Decimal("12.50")
