from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from . import models


class LedgerEntryRead(BaseModel):
    id: int
    company_id: str
    subject_type: models.LedgerSubjectType
    subject_id: str
    kind: models.LedgerEntryKind
    amount: Decimal
    unit_cost: Optional[Decimal] = None
    total_cost: Optional[Decimal] = None
    reason: Optional[str] = None
    reference: Optional[str] = None
    document_type: str
    document_id: str
    reverses_entry_id: Optional[int] = None
    actor_id: Optional[str] = None
    previous_value: Decimal
    new_value: Decimal
    occurred_at: datetime
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LedgerPageRead(BaseModel):
    items: List[LedgerEntryRead]
    next_cursor: Optional[str] = None


class ReconcileRead(BaseModel):
    subject_type: models.LedgerSubjectType
    subject_id: str
    projected_value: Decimal
    ledger_sum: Decimal
    is_consistent: bool
