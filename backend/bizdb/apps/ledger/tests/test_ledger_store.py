from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from bizdb.apps.ledger import models as ledger_models
from bizdb.apps.ledger import services as ledger_services
from bizdb.errors import ConflictError, InternalError, InvalidArgumentError
from bizdb.transactions import run_atomic

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _entry(
    company_id: str,
    *,
    amount,
    document_id: str,
    subject_id: str = "subject-1",
    kind: ledger_models.LedgerEntryKind = ledger_models.LedgerEntryKind.IN,
    occurred_at: datetime = T0,
) -> ledger_models.LedgerEntry:
    return ledger_models.LedgerEntry(
        company_id=company_id,
        subject_type=ledger_models.LedgerSubjectType.PRODUCT,
        subject_id=subject_id,
        kind=kind,
        amount=Decimal(amount),
        document_type="test_document",
        document_id=document_id,
        previous_value=Decimal("0"),
        new_value=Decimal(amount),
        occurred_at=occurred_at,
    )


def test_append_assigns_increasing_insertion_ids(db_session, company):
    first = ledger_services.append(db_session, entry=_entry(company.id, amount=5, document_id="doc-1"))
    second = ledger_services.append(db_session, entry=_entry(company.id, amount=3, document_id="doc-2"))
    db_session.commit()

    assert first.id is not None
    assert second.id > first.id


def test_append_rejects_duplicate_document_subject_kind(db_session, company):
    ledger_services.append(db_session, entry=_entry(company.id, amount=5, document_id="doc-1"))
    db_session.commit()

    with pytest.raises(ConflictError) as excinfo:
        ledger_services.append(db_session, entry=_entry(company.id, amount=5, document_id="doc-1"))
    assert excinfo.value.detail["document_id"] == "doc-1"
    db_session.rollback()

    # Same document and subject with a different kind is a separate movement.
    ledger_services.append(
        db_session,
        entry=_entry(
            company.id,
            amount=-2,
            document_id="doc-1",
            kind=ledger_models.LedgerEntryKind.OUT,
        ),
    )
    # Same document and kind on another subject is allowed too.
    ledger_services.append(
        db_session,
        entry=_entry(company.id, amount=4, document_id="doc-1", subject_id="subject-2"),
    )
    db_session.commit()

    assert db_session.query(ledger_models.LedgerEntry).count() == 3


def test_append_refuses_to_reinsert_persisted_entry(db_session, company):
    entry = ledger_services.append(db_session, entry=_entry(company.id, amount=5, document_id="doc-1"))
    db_session.commit()

    with pytest.raises(InvalidArgumentError):
        ledger_services.append(db_session, entry=entry)



def test_unique_constraint_race_is_reported_as_conflict(db_session, company):
    # The first entry is pending but not flushed, so only the constraint sees it.
    db_session.add(_entry(company.id, amount=5, document_id="doc-1"))

    with pytest.raises(ConflictError) as excinfo:
        ledger_services.append(db_session, entry=_entry(company.id, amount=5, document_id="doc-1"))
    assert excinfo.value.detail["kind"] == "IN"
    db_session.rollback()


def test_other_integrity_errors_are_not_reported_as_conflict(db_session, company):
    broken = _entry(company.id, amount=5, document_id="doc-1")
    broken.document_type = None

    with pytest.raises(IntegrityError):
        ledger_services.append(db_session, entry=broken)
    db_session.rollback()

    def work(session):
        entry = _entry(company.id, amount=5, document_id="doc-2")
        entry.document_type = None
        return ledger_services.append(session, entry=entry)

    with pytest.raises(InternalError):
        run_atomic(db_session, work, company_id=company.id)
    assert db_session.query(ledger_models.LedgerEntry).count() == 0

def test_sum_for_totals_signed_amounts_and_honours_as_of(db_session, company):
    ledger_services.append(db_session, entry=_entry(company.id, amount=5, document_id="doc-1", occurred_at=T0))
    ledger_services.append(
        db_session,
        entry=_entry(
            company.id,
            amount=-2,
            document_id="doc-2",
            kind=ledger_models.LedgerEntryKind.OUT,
            occurred_at=T0 + timedelta(hours=1),
        ),
    )
    ledger_services.append(
        db_session,
        entry=_entry(company.id, amount=4, document_id="doc-3", occurred_at=T0 + timedelta(hours=2)),
    )
    db_session.commit()

    assert ledger_services.sum_for(db_session, company_id=company.id, subject_id="subject-1") == Decimal("7.00")
    assert ledger_services.sum_for(
        db_session,
        company_id=company.id,
        subject_id="subject-1",
        as_of=T0 + timedelta(hours=1),
    ) == Decimal("3.00")
    assert ledger_services.sum_for(db_session, company_id=company.id, subject_id="unknown") == Decimal("0.00")


def test_sum_for_is_scoped_to_company(db_session, company):
    ledger_services.append(db_session, entry=_entry(company.id, amount=5, document_id="doc-1"))
    db_session.commit()

    assert ledger_services.sum_for(db_session, company_id="other-company", subject_id="subject-1") == Decimal("0.00")


def test_list_for_orders_by_time_then_insertion_id_and_pages(db_session, company):
    # Two entries share a timestamp; the later insert sorts after the earlier one.
    late = ledger_services.append(
        db_session,
        entry=_entry(company.id, amount=1, document_id="doc-late", occurred_at=T0 + timedelta(minutes=5)),
    )
    tie_a = ledger_services.append(db_session, entry=_entry(company.id, amount=2, document_id="doc-a"))
    tie_b = ledger_services.append(db_session, entry=_entry(company.id, amount=3, document_id="doc-b"))
    db_session.commit()

    first_page = ledger_services.list_for(db_session, company_id=company.id, subject_id="subject-1", limit=2)
    assert [entry.id for entry in first_page.items] == [tie_a.id, tie_b.id]
    assert first_page.next_cursor == str(tie_b.id)

    second_page = ledger_services.list_for(
        db_session,
        company_id=company.id,
        subject_id="subject-1",
        cursor=first_page.next_cursor,
        limit=2,
    )
    assert [entry.id for entry in second_page.items] == [late.id]
    assert second_page.next_cursor is None


def test_list_for_filters_by_kind_and_window(db_session, company):
    ledger_services.append(db_session, entry=_entry(company.id, amount=5, document_id="doc-1"))
    ledger_services.append(
        db_session,
        entry=_entry(
            company.id,
            amount=-1,
            document_id="doc-2",
            kind=ledger_models.LedgerEntryKind.OUT,
            occurred_at=T0 + timedelta(days=1),
        ),
    )
    db_session.commit()

    outs = ledger_services.list_for(
        db_session,
        company_id=company.id,
        subject_id="subject-1",
        kind=ledger_models.LedgerEntryKind.OUT,
    )
    assert [entry.document_id for entry in outs.items] == ["doc-2"]

    window = ledger_services.list_for(
        db_session,
        company_id=company.id,
        subject_id="subject-1",
        until=T0 + timedelta(hours=1),
    )
    assert [entry.document_id for entry in window.items] == ["doc-1"]


def test_list_for_rejects_bad_cursor_and_limit(db_session, company):
    with pytest.raises(InvalidArgumentError):
        ledger_services.list_for(db_session, company_id=company.id, subject_id="subject-1", cursor="not-a-number")
    with pytest.raises(InvalidArgumentError):
        ledger_services.list_for(db_session, company_id=company.id, subject_id="subject-1", cursor="999")
    with pytest.raises(InvalidArgumentError):
        ledger_services.list_for(db_session, company_id=company.id, subject_id="subject-1", limit=0)


def test_iter_for_walks_every_page(db_session, company):
    for index in range(5):
        ledger_services.append(
            db_session,
            entry=_entry(company.id, amount=1, document_id=f"doc-{index}", occurred_at=T0 + timedelta(minutes=index)),
        )
    db_session.commit()

    documents = [
        entry.document_id
        for entry in ledger_services.iter_for(db_session, company_id=company.id, subject_id="subject-1", page_size=2)
    ]
    assert documents == [f"doc-{index}" for index in range(5)]
