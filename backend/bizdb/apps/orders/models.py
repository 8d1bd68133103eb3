from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from bizdb.database import Base
from bizdb.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatusEnum(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class OrderPriorityEnum(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class DiscountTypeEnum(str, enum.Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class DocumentSequence(Base):
    """
    Per-company counter for human-readable document numbers.

    Rows are read with a row lock and carry a version column, so two
    concurrent allocations can never hand out the same value.
    """

    __tablename__ = "document_sequences"
    __table_args__ = (UniqueConstraint("company_id", "scope", name="uq_document_sequence_scope"),)

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    scope = Column(String(32), nullable=False)
    last_value = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __mapper_args__ = {"version_id_col": version}


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("company_id", "number", name="uq_order_number"),
        Index("ix_orders_company_status", "company_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    number = Column(String(32), nullable=False, index=True)
    quote_id = Column(String(36), nullable=True)
    customer_id = Column(String(36), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(
        SAEnum(OrderStatusEnum, name="order_status_enum", native_enum=False),
        nullable=False,
        default=OrderStatusEnum.PENDING,
    )
    priority = Column(
        SAEnum(OrderPriorityEnum, name="order_priority_enum", native_enum=False),
        nullable=False,
        default=OrderPriorityEnum.MEDIUM,
    )
    expected_start_date = Column(Date, nullable=True)
    expected_end_date = Column(Date, nullable=True)
    actual_start_date = Column(DateTime(timezone=True), nullable=True)
    actual_end_date = Column(DateTime(timezone=True), nullable=True)
    payment_terms = Column(String(255), nullable=True)
    observations = Column(Text, nullable=True)
    discount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_type = Column(
        SAEnum(DiscountTypeEnum, name="order_discount_type_enum", native_enum=False),
        nullable=False,
        default=DiscountTypeEnum.FIXED,
    )
    subtotal = Column(Numeric(14, 2), nullable=False, default=0)
    items_discount_value = Column(Numeric(14, 2), nullable=False, default=0)
    discount_value = Column(Numeric(14, 2), nullable=False, default=0)
    total_value = Column(Numeric(14, 2), nullable=False, default=0)
    created_by = Column(String(36), nullable=True)
    updated_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.number} status={self.status}>"


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (Index("ix_order_items_order", "order_id"),)

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)
    description = Column(String(255), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False, default=0)
    discount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_type = Column(
        SAEnum(DiscountTypeEnum, name="order_item_discount_type_enum", native_enum=False),
        nullable=False,
        default=DiscountTypeEnum.FIXED,
    )
    subtotal = Column(Numeric(14, 2), nullable=False, default=0)
    discount_value = Column(Numeric(14, 2), nullable=False, default=0)
    total = Column(Numeric(14, 2), nullable=False, default=0)
    observations = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")
