from __future__ import annotations

import enum
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import (
    Boolean,
    CheckConstraint,
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
from bizdb.errors import InvalidArgumentError
from bizdb.utils.identifiers import generate_uuid7
from bizdb.apps.ledger.models import LedgerSubject, LedgerSubjectType

CENT = Decimal("0.01")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FinancialAccountTypeEnum(str, enum.Enum):
    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"
    CASH = "CASH"
    CREDIT_CARD = "CREDIT_CARD"
    INVESTMENT = "INVESTMENT"


class TransactionTypeEnum(str, enum.Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class TransactionStatusEnum(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class PaymentMethodEnum(str, enum.Enum):
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    PIX = "PIX"
    BOLETO = "BOLETO"
    CHECK = "CHECK"
    OTHER = "OTHER"


class FinancialAccount(LedgerSubject, Base):
    """
    Bank, cash or card account. `balance` is the projection of the account's
    ledger entries; it may go down to `-credit_limit`.
    """

    __tablename__ = "financial_accounts"
    __table_args__ = (
        UniqueConstraint("company_id", "name", name="uq_financial_account_name"),
        CheckConstraint("credit_limit >= 0", name="ck_financial_account_credit_limit"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    account_type = Column(
        SAEnum(FinancialAccountTypeEnum, name="financial_account_type_enum", native_enum=False),
        nullable=False,
        default=FinancialAccountTypeEnum.CHECKING,
    )
    bank_name = Column(String(128), nullable=True)
    agency = Column(String(32), nullable=True)
    account_number = Column(String(64), nullable=True)
    currency = Column(String(8), nullable=False, default="BRL")
    balance = Column(Numeric(14, 2), nullable=False, default=0)
    credit_limit = Column(Numeric(14, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    ledger_subject_type = LedgerSubjectType.ACCOUNT

    @property
    def ledger_value(self) -> Decimal:
        return Decimal(str(self.balance or 0)).quantize(CENT)

    @ledger_value.setter
    def ledger_value(self, value: Decimal) -> None:
        self.balance = Decimal(value).quantize(CENT)

    @property
    def ledger_floor(self) -> Decimal:
        return -Decimal(str(self.credit_limit or 0)).quantize(CENT)

    def coerce_amount(self, amount) -> Decimal:
        if isinstance(amount, bool) or amount is None:
            raise InvalidArgumentError("Amounts must be decimal values.", detail={"amount": str(amount)})
        if isinstance(amount, float):
            amount = str(amount)
        try:
            value = Decimal(amount)
        except (InvalidOperation, TypeError, ValueError):
            raise InvalidArgumentError("Amounts must be decimal values.", detail={"amount": str(amount)}) from None
        if not value.is_finite():
            raise InvalidArgumentError("Amounts must be decimal values.", detail={"amount": str(amount)})
        return value.quantize(CENT)

    def __repr__(self) -> str:
        return f"<FinancialAccount id={self.id} name={self.name} balance={self.balance}>"


class FinancialCategory(Base):
    __tablename__ = "financial_categories"
    __table_args__ = (
        UniqueConstraint("company_id", "name", "category_type", name="uq_financial_category_name"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(128), nullable=False)
    category_type = Column(SAEnum(TransactionTypeEnum, name="financial_category_type_enum", native_enum=False), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class FinancialTransaction(Base):
    __tablename__ = "financial_transactions"
    __table_args__ = (
        Index("ix_financial_transactions_company_status", "company_id", "status"),
        Index("ix_financial_transactions_account", "account_id"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(String(255), nullable=False)
    transaction_type = Column(SAEnum(TransactionTypeEnum, name="transaction_type_enum", native_enum=False), nullable=False)
    status = Column(
        SAEnum(TransactionStatusEnum, name="transaction_status_enum", native_enum=False),
        nullable=False,
        default=TransactionStatusEnum.PENDING,
    )
    amount = Column(Numeric(14, 2), nullable=False)
    paid_amount = Column(Numeric(14, 2), nullable=True)
    due_date = Column(Date, nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=True)
    payment_method = Column(SAEnum(PaymentMethodEnum, name="payment_method_enum", native_enum=False), nullable=True)
    notes = Column(Text, nullable=True)
    category_id = Column(String(36), ForeignKey("financial_categories.id", ondelete="SET NULL"), nullable=True)
    account_id = Column(String(36), ForeignKey("financial_accounts.id", ondelete="RESTRICT"), nullable=False)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    account = relationship("FinancialAccount", lazy="joined")
    category = relationship("FinancialCategory", lazy="joined")


class Transfer(Base):
    __tablename__ = "financial_transfers"
    __table_args__ = (
        CheckConstraint("from_account_id <> to_account_id", name="ck_transfer_distinct_accounts"),
        Index("ix_financial_transfers_company_date", "company_id", "transfer_date"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    from_account_id = Column(String(36), ForeignKey("financial_accounts.id", ondelete="RESTRICT"), nullable=False)
    to_account_id = Column(String(36), ForeignKey("financial_accounts.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    fee = Column(Numeric(14, 2), nullable=False, default=0)
    description = Column(String(255), nullable=True)
    transfer_date = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
