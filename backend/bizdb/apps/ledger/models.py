from __future__ import annotations

import enum
from datetime import datetime, timezone
from decimal import Decimal
from typing import Union

from sqlalchemy import (
    Column,
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

from bizdb.database import Base
from bizdb.errors import InsufficientBalanceError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerEntryKind(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"
    ADJUSTMENT = "ADJUSTMENT"
    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"


class LedgerSubjectType(str, enum.Enum):
    PRODUCT = "PRODUCT"
    ACCOUNT = "ACCOUNT"


Amount = Union[int, Decimal]


class LedgerSubject:
    """
    Mixin for rows that own a denormalized current value.

    The value may only be changed by the balance projector, which keeps it
    equal to the signed sum of the subject's ledger entries.
    """

    ledger_subject_type: LedgerSubjectType
    insufficient_error = InsufficientBalanceError

    @property
    def ledger_value(self) -> Amount:
        raise NotImplementedError

    @ledger_value.setter
    def ledger_value(self, value: Amount) -> None:
        raise NotImplementedError

    @property
    def ledger_floor(self) -> Amount:
        return 0

    def coerce_amount(self, amount) -> Amount:
        raise NotImplementedError


class LedgerEntry(Base):
    """
    Immutable, append-only record of one signed movement against a subject.
    """

    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint("document_id", "subject_id", "kind", name="uq_ledger_entry_document_subject_kind"),
        Index("ix_ledger_entries_subject_time", "company_id", "subject_id", "occurred_at", "id"),
        Index("ix_ledger_entries_document", "company_id", "document_type", "document_id"),
    )

    # Insertion id; breaks ties between entries with the same timestamp.
    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    subject_type = Column(SAEnum(LedgerSubjectType, name="ledger_subject_type_enum", native_enum=False), nullable=False)
    subject_id = Column(String(36), nullable=False, index=True)
    kind = Column(SAEnum(LedgerEntryKind, name="ledger_entry_kind_enum", native_enum=False), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    unit_cost = Column(Numeric(12, 2), nullable=True)
    total_cost = Column(Numeric(14, 2), nullable=True)
    reason = Column(Text, nullable=True)
    reference = Column(String(128), nullable=True)
    document_type = Column(String(64), nullable=False)
    document_id = Column(String(64), nullable=False)
    reverses_entry_id = Column(Integer, ForeignKey("ledger_entries.id", ondelete="RESTRICT"), nullable=True)
    actor_id = Column(String(36), nullable=True, index=True)
    previous_value = Column(Numeric(18, 2), nullable=False)
    new_value = Column(Numeric(18, 2), nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} subject={self.subject_type}:{self.subject_id} "
            f"kind={self.kind} amount={self.amount}>"
        )
