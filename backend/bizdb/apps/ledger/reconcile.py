from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List

from sqlalchemy.orm import Session

from bizdb.apps.finance import models as finance_models
from bizdb.apps.inventory import models as inventory_models
from bizdb.errors import NotFoundError

from . import models
from . import services as ledger_services

logger = logging.getLogger(__name__)

SUBJECT_MODELS = (inventory_models.Product, finance_models.FinancialAccount)


@dataclass
class ReconcileResult:
    subject_type: models.LedgerSubjectType
    subject_id: str
    projected_value: Decimal
    ledger_sum: Decimal
    is_consistent: bool


def _find_subject(db: Session, *, company_id: str, subject_id: str) -> models.LedgerSubject:
    for model in SUBJECT_MODELS:
        subject = (
            db.query(model)
            .filter(model.id == subject_id, model.company_id == company_id)
            .first()
        )
        if subject:
            return subject
    raise NotFoundError("Ledger subject not found.", detail={"subject_id": subject_id})


def _check(db: Session, subject: models.LedgerSubject) -> ReconcileResult:
    projected = ledger_services.quantize(subject.ledger_value)
    ledger_sum = ledger_services.sum_for(db, company_id=subject.company_id, subject_id=subject.id)
    result = ReconcileResult(
        subject_type=subject.ledger_subject_type,
        subject_id=subject.id,
        projected_value=projected,
        ledger_sum=ledger_sum,
        is_consistent=projected == ledger_sum,
    )
    if not result.is_consistent:
        logger.warning(
            "Ledger drift detected",
            extra={
                "company_id": subject.company_id,
                "subject_type": subject.ledger_subject_type.value,
                "subject_id": subject.id,
                "projected_value": str(projected),
                "ledger_sum": str(ledger_sum),
            },
        )
    return result


def reconcile(db: Session, *, company_id: str, subject_id: str) -> ReconcileResult:
    """
    Compare a subject's projected value with the full sum of its ledger.

    Meant for audits and background sweeps, not the request hot path.
    """
    subject = _find_subject(db, company_id=company_id, subject_id=subject_id)
    return _check(db, subject)


def reconcile_company(db: Session, *, company_id: str) -> List[ReconcileResult]:
    results: List[ReconcileResult] = []
    products = (
        db.query(inventory_models.Product)
        .filter(
            inventory_models.Product.company_id == company_id,
            inventory_models.Product.track_stock.is_(True),
        )
        .order_by(inventory_models.Product.id.asc())
        .all()
    )
    accounts = (
        db.query(finance_models.FinancialAccount)
        .filter(finance_models.FinancialAccount.company_id == company_id)
        .order_by(finance_models.FinancialAccount.id.asc())
        .all()
    )
    for subject in [*products, *accounts]:
        results.append(_check(db, subject))
    return results
