"""Ledger reconciliation sweep.

Intended for cron (e.g. nightly) to:
 - compare every product's stock and account's balance against its ledger sum
 - record an audit event for each subject that has drifted
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import Session

from bizdb.database import WriteSessionLocal
from bizdb.apps.audit import services as audit_services
from bizdb.apps.companies import models as company_models
from bizdb.apps.ledger import reconcile as ledger_reconcile


def sweep(db: Session) -> dict:
    checked = 0
    drifted = []
    companies = (
        db.query(company_models.Company)
        .filter(company_models.Company.is_active.is_(True))
        .order_by(company_models.Company.id.asc())
        .all()
    )
    for company in companies:
        for result in ledger_reconcile.reconcile_company(db, company_id=company.id):
            checked += 1
            if result.is_consistent:
                continue
            drifted.append(result.subject_id)
            audit_services.log_event(
                db,
                company_id=company.id,
                actor_id=None,
                entity_type=result.subject_type.value.lower(),
                entity_id=result.subject_id,
                action="ledger_drift",
                after={
                    "projected_value": result.projected_value,
                    "ledger_sum": result.ledger_sum,
                },
                metadata={"checked_at": datetime.now(timezone.utc)},
            )
    return {"checked": checked, "drifted": drifted}


def run() -> dict:
    """Execute the sweep and return a summary dict."""
    db = WriteSessionLocal()
    try:
        summary = sweep(db)
        db.commit()
        return summary
    finally:
        db.close()


if __name__ == "__main__":
    result = run()
    print("Ledger reconciliation completed:", result)
