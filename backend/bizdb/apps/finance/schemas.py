from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from . import models


class FinancialAccountCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    account_type: models.FinancialAccountTypeEnum = models.FinancialAccountTypeEnum.CHECKING
    bank_name: Optional[str] = None
    agency: Optional[str] = None
    account_number: Optional[str] = None
    currency: str = "BRL"
    opening_balance: Decimal = Field(default=Decimal("0"), ge=0)
    credit_limit: Decimal = Field(default=Decimal("0"), ge=0)


class FinancialAccountUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    account_type: Optional[models.FinancialAccountTypeEnum] = None
    bank_name: Optional[str] = None
    agency: Optional[str] = None
    account_number: Optional[str] = None
    credit_limit: Optional[Decimal] = Field(default=None, ge=0)


class FinancialAccountRead(BaseModel):
    id: str
    company_id: str
    name: str
    account_type: models.FinancialAccountTypeEnum
    bank_name: Optional[str] = None
    agency: Optional[str] = None
    account_number: Optional[str] = None
    currency: str
    balance: Decimal
    credit_limit: Decimal
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FinancialCategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    category_type: models.TransactionTypeEnum


class FinancialCategoryRead(FinancialCategoryCreate):
    id: str
    company_id: str
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class PaymentDetails(BaseModel):
    paid_amount: Optional[Decimal] = Field(default=None, gt=0)
    payment_date: Optional[datetime] = None
    payment_method: Optional[models.PaymentMethodEnum] = None
    notes: Optional[str] = None


class TransactionCreate(BaseModel):
    description: str = Field(..., min_length=1, max_length=255)
    transaction_type: models.TransactionTypeEnum
    amount: Decimal = Field(..., gt=0)
    account_id: str
    category_id: Optional[str] = None
    order_id: Optional[str] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    pay_now: bool = False
    payment: Optional[PaymentDetails] = None


class TransactionUpdate(BaseModel):
    description: Optional[str] = Field(default=None, min_length=1, max_length=255)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    account_id: Optional[str] = None
    category_id: Optional[str] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None


class TransactionRead(BaseModel):
    id: str
    company_id: str
    description: str
    transaction_type: models.TransactionTypeEnum
    status: models.TransactionStatusEnum
    amount: Decimal
    paid_amount: Optional[Decimal] = None
    due_date: Optional[date] = None
    payment_date: Optional[datetime] = None
    payment_method: Optional[models.PaymentMethodEnum] = None
    notes: Optional[str] = None
    category_id: Optional[str] = None
    account_id: str
    order_id: Optional[str] = None
    created_at: datetime
    deleted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TransactionReverseRequest(BaseModel):
    reason: Optional[str] = None


class TransferCreate(BaseModel):
    from_account_id: str
    to_account_id: str
    amount: Decimal = Field(..., gt=0)
    fee: Decimal = Field(default=Decimal("0"), ge=0)
    description: Optional[str] = None


class TransferRead(BaseModel):
    id: str
    company_id: str
    from_account_id: str
    to_account_id: str
    amount: Decimal
    fee: Decimal
    description: Optional[str] = None
    transfer_date: datetime
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
