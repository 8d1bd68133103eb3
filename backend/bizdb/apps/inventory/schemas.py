from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ProductCreate(BaseModel):
    sku: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    unit: str = "UN"
    cost_price: Decimal = Field(default=Decimal("0"), ge=0)
    sale_price: Decimal = Field(default=Decimal("0"), ge=0)
    initial_stock: int = Field(default=0, ge=0)
    min_stock: int = Field(default=0, ge=0)
    track_stock: bool = True


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    unit: Optional[str] = None
    cost_price: Optional[Decimal] = Field(default=None, ge=0)
    sale_price: Optional[Decimal] = Field(default=None, ge=0)
    min_stock: Optional[int] = Field(default=None, ge=0)


class ProductRead(BaseModel):
    id: str
    company_id: str
    sku: str
    name: str
    description: Optional[str] = None
    unit: str
    cost_price: Decimal
    sale_price: Decimal
    current_stock: int
    min_stock: int
    track_stock: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class StockAdjustRequest(BaseModel):
    new_quantity: int = Field(..., ge=0)
    reason: Optional[str] = None


class StockMovementRequest(BaseModel):
    quantity: int = Field(..., gt=0)
    document_type: str = Field(default="stock_movement", max_length=64)
    document_id: str = Field(..., min_length=1, max_length=64)
    unit_cost: Optional[Decimal] = Field(default=None, ge=0)
    reference: Optional[str] = None
    reason: Optional[str] = None
