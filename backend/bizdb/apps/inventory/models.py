from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from bizdb.database import Base
from bizdb.errors import InsufficientStockError, InvalidArgumentError
from bizdb.utils.identifiers import generate_uuid7
from bizdb.apps.ledger.models import LedgerSubject, LedgerSubjectType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Product(LedgerSubject, Base):
    """
    Stock-keeping product. `current_stock` is the projection of its ledger
    entries and is written only by the balance projector.
    """

    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("company_id", "sku", name="uq_product_sku"),
        Index("ix_products_company_active", "company_id", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    sku = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    unit = Column(String(16), nullable=False, default="UN")
    cost_price = Column(Numeric(12, 2), nullable=False, default=0)
    sale_price = Column(Numeric(12, 2), nullable=False, default=0)
    current_stock = Column(Integer, nullable=False, default=0)
    min_stock = Column(Integer, nullable=False, default=0)
    track_stock = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    ledger_subject_type = LedgerSubjectType.PRODUCT
    insufficient_error = InsufficientStockError

    @property
    def ledger_value(self) -> int:
        return int(self.current_stock or 0)

    @ledger_value.setter
    def ledger_value(self, value: int) -> None:
        self.current_stock = int(value)

    def coerce_amount(self, amount) -> int:
        if isinstance(amount, bool):
            raise InvalidArgumentError("Stock quantities must be integers.", detail={"amount": str(amount)})
        if isinstance(amount, int):
            return amount
        try:
            value = Decimal(str(amount))
        except InvalidOperation:
            raise InvalidArgumentError("Stock quantities must be integers.", detail={"amount": str(amount)}) from None
        if not value.is_finite() or value != value.to_integral_value():
            raise InvalidArgumentError("Stock quantities must be integers.", detail={"amount": str(amount)})
        return int(value)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku} stock={self.current_stock}>"
