from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from . import models


class OrderItemDraft(BaseModel):
    product_id: Optional[str] = None
    description: Optional[str] = None
    quantity: int = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    discount_type: models.DiscountTypeEnum = models.DiscountTypeEnum.FIXED
    observations: Optional[str] = None


class OrderDraft(BaseModel):
    customer_id: str
    title: str = Field(..., min_length=1, max_length=255)
    quote_id: Optional[str] = None
    description: Optional[str] = None
    priority: models.OrderPriorityEnum = models.OrderPriorityEnum.MEDIUM
    expected_start_date: Optional[date] = None
    expected_end_date: Optional[date] = None
    payment_terms: Optional[str] = None
    observations: Optional[str] = None
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    discount_type: models.DiscountTypeEnum = models.DiscountTypeEnum.FIXED
    items: List[OrderItemDraft] = Field(default_factory=list)


class OrderUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    priority: Optional[models.OrderPriorityEnum] = None
    expected_start_date: Optional[date] = None
    expected_end_date: Optional[date] = None
    payment_terms: Optional[str] = None
    observations: Optional[str] = None
    discount: Optional[Decimal] = Field(default=None, ge=0)
    discount_type: Optional[models.DiscountTypeEnum] = None


class OrderStatusUpdate(BaseModel):
    status: models.OrderStatusEnum
    notes: Optional[str] = None


class OrderItemRead(BaseModel):
    id: str
    position: int
    product_id: Optional[str] = None
    description: Optional[str] = None
    quantity: int
    unit_price: Decimal
    discount: Decimal
    discount_type: models.DiscountTypeEnum
    subtotal: Decimal
    discount_value: Decimal
    total: Decimal
    observations: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class OrderRead(BaseModel):
    id: str
    company_id: str
    number: str
    quote_id: Optional[str] = None
    customer_id: str
    title: str
    description: Optional[str] = None
    status: models.OrderStatusEnum
    priority: models.OrderPriorityEnum
    expected_start_date: Optional[date] = None
    expected_end_date: Optional[date] = None
    actual_start_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    payment_terms: Optional[str] = None
    observations: Optional[str] = None
    discount: Decimal
    discount_type: models.DiscountTypeEnum
    subtotal: Decimal
    items_discount_value: Decimal
    discount_value: Decimal
    total_value: Decimal
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None
    items: List[OrderItemRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)
