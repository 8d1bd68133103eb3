from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy.orm import Session

from bizdb.apps.audit import services as audit_services
from bizdb.apps.ledger import models as ledger_models
from bizdb.apps.ledger import projector
from bizdb.apps.ledger import services as ledger_services
from bizdb.errors import (
    ConflictError,
    InsufficientBalanceError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)

from . import models, schemas

CENT = Decimal("0.01")

TRANSACTION_DOCUMENT = "financial_transaction"
TRANSFER_DOCUMENT = "transfer"

PAYABLE_STATUSES = {models.TransactionStatusEnum.PENDING}

EDITABLE_STATUSES = {
    models.TransactionStatusEnum.PENDING,
    models.TransactionStatusEnum.OVERDUE,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _money(value, *, field: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise InvalidArgumentError(f"{field} must be a decimal amount.", detail={field: str(value)})
    try:
        amount = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidArgumentError(f"{field} must be a decimal amount.", detail={field: str(value)}) from None
    if not amount.is_finite():
        raise InvalidArgumentError(f"{field} must be a decimal amount.", detail={field: str(value)})
    return amount.quantize(CENT)


def _audit_event(
    db: Session,
    *,
    company_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    actor_id: Optional[str],
    after: dict,
    before: Optional[dict] = None,
) -> None:
    audit_services.log_event(
        db,
        company_id=company_id,
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        before=before,
        after=after,
        critical=True,
    )


# ---------------------------------------------------------------------------
# Accounts and categories
# ---------------------------------------------------------------------------


def get_account(db: Session, *, company_id: str, account_id: str) -> models.FinancialAccount:
    account = (
        db.query(models.FinancialAccount)
        .filter(
            models.FinancialAccount.id == account_id,
            models.FinancialAccount.company_id == company_id,
        )
        .first()
    )
    if not account:
        raise NotFoundError("Financial account not found.", detail={"account_id": account_id})
    return account


def list_accounts(
    db: Session,
    *,
    company_id: str,
    include_inactive: bool = False,
) -> List[models.FinancialAccount]:
    query = db.query(models.FinancialAccount).filter(models.FinancialAccount.company_id == company_id)
    if not include_inactive:
        query = query.filter(models.FinancialAccount.is_active.is_(True))
    return query.order_by(models.FinancialAccount.name.asc()).all()


def _lock_active_account(db: Session, *, company_id: str, account_id: str) -> models.FinancialAccount:
    account = projector.lock_subject(
        db,
        models.FinancialAccount,
        company_id=company_id,
        subject_id=account_id,
        label="Financial account",
    )
    if not account.is_active:
        raise NotFoundError("Financial account not found or inactive.", detail={"account_id": account_id})
    return account


def create_account(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    payload: schemas.FinancialAccountCreate,
) -> models.FinancialAccount:
    existing = (
        db.query(models.FinancialAccount.id)
        .filter(
            models.FinancialAccount.company_id == company_id,
            models.FinancialAccount.name == payload.name,
        )
        .first()
    )
    if existing:
        raise ConflictError("A financial account with this name already exists.", detail={"name": payload.name})

    account = models.FinancialAccount(
        company_id=company_id,
        name=payload.name,
        account_type=payload.account_type,
        bank_name=payload.bank_name,
        agency=payload.agency,
        account_number=payload.account_number,
        currency=payload.currency,
        balance=Decimal("0.00"),
        credit_limit=_money(payload.credit_limit, field="credit_limit"),
        created_by=actor_id,
    )
    db.add(account)
    db.flush()

    opening = _money(payload.opening_balance, field="opening_balance")
    if opening:
        projector.post_movement(
            db,
            subject=account,
            kind=ledger_models.LedgerEntryKind.IN,
            amount=opening,
            document_type="account_opening",
            document_id=account.id,
            actor_id=actor_id,
            reason="Opening balance",
        )

    _audit_event(
        db,
        company_id=company_id,
        entity_type="financial_account",
        entity_id=account.id,
        action="create",
        actor_id=actor_id,
        after={"name": account.name, "opening_balance": opening, "credit_limit": account.credit_limit},
    )
    return account


def update_account(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    account_id: str,
    payload: schemas.FinancialAccountUpdate,
) -> models.FinancialAccount:
    """
    Edit account details. The balance is never written here; a lower credit
    limit is refused when the current balance already relies on it.
    """
    account = projector.lock_subject(
        db,
        models.FinancialAccount,
        company_id=company_id,
        subject_id=account_id,
        label="Financial account",
    )
    changes = payload.model_dump(exclude_unset=True)

    new_name = changes.get("name")
    if new_name and new_name != account.name:
        duplicate = (
            db.query(models.FinancialAccount.id)
            .filter(
                models.FinancialAccount.company_id == company_id,
                models.FinancialAccount.name == new_name,
                models.FinancialAccount.id != account.id,
            )
            .first()
        )
        if duplicate:
            raise ConflictError("A financial account with this name already exists.", detail={"name": new_name})

    if changes.get("credit_limit") is not None:
        credit_limit = _money(changes["credit_limit"], field="credit_limit")
        if account.ledger_value < -credit_limit:
            raise InvalidStateError(
                "Credit limit is below the amount the account already uses.",
                detail={
                    "account_id": account.id,
                    "balance": str(account.ledger_value),
                    "credit_limit": str(credit_limit),
                },
            )
        changes["credit_limit"] = credit_limit

    before = {key: getattr(account, key) for key in changes}
    for key, value in changes.items():
        if value is None and key in {"name", "account_type", "credit_limit"}:
            continue
        setattr(account, key, value)
    db.add(account)
    db.flush()

    _audit_event(
        db,
        company_id=company_id,
        entity_type="financial_account",
        entity_id=account.id,
        action="update",
        actor_id=actor_id,
        before=before,
        after={key: getattr(account, key) for key in changes},
    )
    return account


def deactivate_account(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    account_id: str,
) -> models.FinancialAccount:
    """
    Close an account. Accounts that transactions or transfers point at are
    kept open so their history stays postable.
    """
    account = projector.lock_subject(
        db,
        models.FinancialAccount,
        company_id=company_id,
        subject_id=account_id,
        label="Financial account",
    )
    if not account.is_active:
        raise InvalidStateError("Financial account is already inactive.", detail={"account_id": account.id})

    linked_transactions = (
        db.query(models.FinancialTransaction.id)
        .filter(
            models.FinancialTransaction.company_id == company_id,
            models.FinancialTransaction.account_id == account.id,
        )
        .count()
    )
    if linked_transactions:
        raise ConflictError(
            "Cannot deactivate an account with linked transactions.",
            detail={"account_id": account.id, "transactions": linked_transactions},
        )
    linked_transfers = (
        db.query(models.Transfer.id)
        .filter(
            models.Transfer.company_id == company_id,
            (models.Transfer.from_account_id == account.id) | (models.Transfer.to_account_id == account.id),
        )
        .count()
    )
    if linked_transfers:
        raise ConflictError(
            "Cannot deactivate an account with linked transfers.",
            detail={"account_id": account.id, "transfers": linked_transfers},
        )

    account.is_active = False
    db.add(account)
    db.flush()

    _audit_event(
        db,
        company_id=company_id,
        entity_type="financial_account",
        entity_id=account.id,
        action="deactivate",
        actor_id=actor_id,
        before={"is_active": True},
        after={"is_active": False},
    )
    return account


def create_category(
    db: Session,
    *,
    company_id: str,
    payload: schemas.FinancialCategoryCreate,
) -> models.FinancialCategory:
    category = models.FinancialCategory(
        company_id=company_id,
        name=payload.name,
        category_type=payload.category_type,
    )
    db.add(category)
    db.flush()
    return category


# ---------------------------------------------------------------------------
# Transactions and payments
# ---------------------------------------------------------------------------


def get_transaction(
    db: Session,
    *,
    company_id: str,
    transaction_id: str,
    for_update: bool = False,
    include_deleted: bool = False,
) -> models.FinancialTransaction:
    query = db.query(models.FinancialTransaction).filter(
        models.FinancialTransaction.id == transaction_id,
        models.FinancialTransaction.company_id == company_id,
    )
    if not include_deleted:
        query = query.filter(models.FinancialTransaction.deleted_at.is_(None))
    if for_update:
        query = query.with_for_update(of=models.FinancialTransaction)
    txn = query.first()
    if not txn:
        raise NotFoundError("Financial transaction not found.", detail={"transaction_id": transaction_id})
    return txn


def list_transactions(
    db: Session,
    *,
    company_id: str,
    status: Optional[models.TransactionStatusEnum] = None,
    transaction_type: Optional[models.TransactionTypeEnum] = None,
    account_id: Optional[str] = None,
) -> List[models.FinancialTransaction]:
    query = db.query(models.FinancialTransaction).filter(
        models.FinancialTransaction.company_id == company_id,
        models.FinancialTransaction.deleted_at.is_(None),
    )
    if status:
        query = query.filter(models.FinancialTransaction.status == status)
    if transaction_type:
        query = query.filter(models.FinancialTransaction.transaction_type == transaction_type)
    if account_id:
        query = query.filter(models.FinancialTransaction.account_id == account_id)
    return query.order_by(models.FinancialTransaction.created_at.desc()).all()


def create_transaction(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    payload: schemas.TransactionCreate,
) -> models.FinancialTransaction:
    amount = _money(payload.amount, field="amount")
    if amount <= 0:
        raise InvalidArgumentError("amount must be greater than zero.", detail={"amount": str(amount)})

    account = get_account(db, company_id=company_id, account_id=payload.account_id)
    if not account.is_active:
        raise NotFoundError("Financial account not found or inactive.", detail={"account_id": account.id})

    if payload.category_id:
        category = (
            db.query(models.FinancialCategory)
            .filter(
                models.FinancialCategory.id == payload.category_id,
                models.FinancialCategory.company_id == company_id,
            )
            .first()
        )
        if not category:
            raise NotFoundError("Financial category not found.", detail={"category_id": payload.category_id})
        if category.category_type != payload.transaction_type:
            raise InvalidArgumentError(
                "Category type does not match the transaction type.",
                detail={"category_type": category.category_type, "transaction_type": payload.transaction_type},
            )

    txn = models.FinancialTransaction(
        company_id=company_id,
        description=payload.description,
        transaction_type=payload.transaction_type,
        status=models.TransactionStatusEnum.PENDING,
        amount=amount,
        due_date=payload.due_date,
        notes=payload.notes,
        category_id=payload.category_id,
        account_id=account.id,
        order_id=payload.order_id,
        created_by=actor_id,
    )
    db.add(txn)
    db.flush()

    _audit_event(
        db,
        company_id=company_id,
        entity_type=TRANSACTION_DOCUMENT,
        entity_id=txn.id,
        action="create",
        actor_id=actor_id,
        after={"type": txn.transaction_type, "amount": amount, "account_id": account.id},
    )

    if payload.pay_now:
        return pay_transaction(
            db,
            company_id=company_id,
            actor_id=actor_id,
            transaction_id=txn.id,
            payment=payload.payment or schemas.PaymentDetails(),
        )
    return txn


def update_transaction(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    transaction_id: str,
    payload: schemas.TransactionUpdate,
) -> models.FinancialTransaction:
    """Edit an unsettled transaction. Nothing is posted until it is paid."""
    txn = get_transaction(db, company_id=company_id, transaction_id=transaction_id, for_update=True)
    if txn.status not in EDITABLE_STATUSES:
        raise InvalidStateError(
            "Only unpaid transactions can be edited.",
            detail={"transaction_id": txn.id, "status": txn.status},
        )

    changes = payload.model_dump(exclude_unset=True)
    if changes.get("amount") is not None:
        amount = _money(changes["amount"], field="amount")
        if amount <= 0:
            raise InvalidArgumentError("amount must be greater than zero.", detail={"amount": str(amount)})
        changes["amount"] = amount
    if changes.get("account_id"):
        account = get_account(db, company_id=company_id, account_id=changes["account_id"])
        if not account.is_active:
            raise NotFoundError("Financial account not found or inactive.", detail={"account_id": account.id})
    if changes.get("category_id"):
        category = (
            db.query(models.FinancialCategory)
            .filter(
                models.FinancialCategory.id == changes["category_id"],
                models.FinancialCategory.company_id == company_id,
            )
            .first()
        )
        if not category:
            raise NotFoundError("Financial category not found.", detail={"category_id": changes["category_id"]})
        if category.category_type != txn.transaction_type:
            raise InvalidArgumentError(
                "Category type does not match the transaction type.",
                detail={"category_type": category.category_type, "transaction_type": txn.transaction_type},
            )

    before = {key: getattr(txn, key) for key in changes}
    for key, value in changes.items():
        if value is None and key in {"description", "amount", "account_id"}:
            continue
        setattr(txn, key, value)
    db.add(txn)
    db.flush()

    _audit_event(
        db,
        company_id=company_id,
        entity_type=TRANSACTION_DOCUMENT,
        entity_id=txn.id,
        action="update",
        actor_id=actor_id,
        before=before,
        after={key: getattr(txn, key) for key in changes},
    )
    return txn


def _payment_kind(txn: models.FinancialTransaction) -> ledger_models.LedgerEntryKind:
    if txn.transaction_type == models.TransactionTypeEnum.INCOME:
        return ledger_models.LedgerEntryKind.IN
    return ledger_models.LedgerEntryKind.OUT


def _signed_payment(txn: models.FinancialTransaction, amount: Decimal):
    kind = _payment_kind(txn)
    return kind, amount if kind == ledger_models.LedgerEntryKind.IN else -amount


def pay_transaction(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    transaction_id: str,
    payment: schemas.PaymentDetails,
) -> models.FinancialTransaction:
    """
    Settle a pending transaction and post it to its account.

    Income credits the account, expense debits it; an expense may take the
    account down to its credit limit but no further.
    """
    txn = get_transaction(db, company_id=company_id, transaction_id=transaction_id, for_update=True)
    if txn.status not in PAYABLE_STATUSES:
        raise InvalidStateError(
            "Only pending transactions can be paid.",
            detail={"transaction_id": txn.id, "status": txn.status},
        )

    paid_amount = _money(payment.paid_amount, field="paid_amount") if payment.paid_amount is not None else _money(
        txn.amount, field="amount"
    )
    if paid_amount <= 0:
        raise InvalidArgumentError("paid_amount must be greater than zero.", detail={"paid_amount": str(paid_amount)})

    account = projector.lock_subject(
        db,
        models.FinancialAccount,
        company_id=company_id,
        subject_id=txn.account_id,
        label="Financial account",
    )
    if not account.is_active:
        raise InvalidStateError("Cannot post to an inactive account.", detail={"account_id": account.id})

    kind, signed = _signed_payment(txn, paid_amount)
    entry = projector.post_movement(
        db,
        subject=account,
        kind=kind,
        amount=signed,
        document_type=TRANSACTION_DOCUMENT,
        document_id=txn.id,
        actor_id=actor_id,
        reason=txn.description,
    )

    previous_status = txn.status
    txn.status = models.TransactionStatusEnum.PAID
    txn.paid_amount = paid_amount
    txn.payment_date = payment.payment_date or _utcnow()
    txn.payment_method = payment.payment_method
    if payment.notes:
        txn.notes = payment.notes
    db.add(txn)
    db.flush()

    _audit_event(
        db,
        company_id=company_id,
        entity_type=TRANSACTION_DOCUMENT,
        entity_id=txn.id,
        action="pay",
        actor_id=actor_id,
        before={"status": previous_status},
        after={"status": txn.status, "paid_amount": paid_amount, "ledger_entry_id": entry.id},
    )
    return txn


def reverse_transaction(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    transaction_id: str,
    reason: Optional[str] = None,
) -> models.FinancialTransaction:
    """
    Delete a transaction. A paid one is compensated with an entry of the
    opposite sign; the original ledger entry is left untouched.
    """
    txn = get_transaction(
        db,
        company_id=company_id,
        transaction_id=transaction_id,
        for_update=True,
        include_deleted=True,
    )
    if txn.status == models.TransactionStatusEnum.CANCELLED:
        raise InvalidStateError(
            "Transaction is already cancelled.",
            detail={"transaction_id": txn.id, "status": txn.status},
        )

    compensation = None
    if txn.status == models.TransactionStatusEnum.PAID:
        original_kind = _payment_kind(txn)
        original = next(
            (
                entry
                for entry in ledger_services.list_for_document(
                    db,
                    company_id=company_id,
                    document_type=TRANSACTION_DOCUMENT,
                    document_id=txn.id,
                )
                if entry.kind == original_kind and entry.reverses_entry_id is None
            ),
            None,
        )
        if original is None:
            raise InvalidStateError(
                "Paid transaction has no ledger entry to reverse.",
                detail={"transaction_id": txn.id},
            )
        account = projector.lock_subject(
            db,
            models.FinancialAccount,
            company_id=company_id,
            subject_id=original.subject_id,
            label="Financial account",
        )
        reverse_kind = (
            ledger_models.LedgerEntryKind.OUT
            if original_kind == ledger_models.LedgerEntryKind.IN
            else ledger_models.LedgerEntryKind.IN
        )
        compensation = projector.post_movement(
            db,
            subject=account,
            kind=reverse_kind,
            amount=-Decimal(original.amount),
            document_type=TRANSACTION_DOCUMENT,
            document_id=txn.id,
            actor_id=actor_id,
            reason=reason or f"Reversal of {txn.description}",
            reverses_entry_id=original.id,
        )

    previous_status = txn.status
    txn.status = models.TransactionStatusEnum.CANCELLED
    txn.deleted_at = _utcnow()
    db.add(txn)
    db.flush()

    _audit_event(
        db,
        company_id=company_id,
        entity_type=TRANSACTION_DOCUMENT,
        entity_id=txn.id,
        action="reverse",
        actor_id=actor_id,
        before={"status": previous_status},
        after={
            "status": txn.status,
            "reason": reason,
            "compensating_entry_id": compensation.id if compensation else None,
        },
    )
    return txn


# ---------------------------------------------------------------------------
# Transfers
# ---------------------------------------------------------------------------


def transfer_funds(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    from_account_id: str,
    to_account_id: str,
    amount,
    fee=Decimal("0"),
    description: Optional[str] = None,
) -> models.Transfer:
    """
    Move `amount` between two accounts of the same company.

    The source is debited `amount + fee` and the destination credited
    `amount`; both postings and the transfer row commit together.
    """
    if from_account_id == to_account_id:
        raise InvalidArgumentError(
            "Source and destination accounts must be different.",
            detail={"account_id": from_account_id},
        )
    amount = _money(amount, field="amount")
    fee = _money(fee if fee is not None else Decimal("0"), field="fee")
    if amount <= 0:
        raise InvalidArgumentError("amount must be greater than zero.", detail={"amount": str(amount)})
    if fee < 0:
        raise InvalidArgumentError("fee cannot be negative.", detail={"fee": str(fee)})

    # Lock in id order so two opposite transfers cannot deadlock.
    locked = {}
    for account_id in sorted([from_account_id, to_account_id]):
        locked[account_id] = _lock_active_account(db, company_id=company_id, account_id=account_id)
    source = locked[from_account_id]
    destination = locked[to_account_id]

    debit = amount + fee
    available = source.ledger_value - source.ledger_floor
    if available < debit:
        raise InsufficientBalanceError(
            "Insufficient balance for transfer.",
            detail={
                "account_id": source.id,
                "available": str(available),
                "requested": str(debit),
            },
        )

    transfer = models.Transfer(
        company_id=company_id,
        from_account_id=source.id,
        to_account_id=destination.id,
        amount=amount,
        fee=fee,
        description=description,
        transfer_date=_utcnow(),
        created_by=actor_id,
    )
    db.add(transfer)
    db.flush()

    projector.post_movement(
        db,
        subject=source,
        kind=ledger_models.LedgerEntryKind.TRANSFER_OUT,
        amount=-debit,
        document_type=TRANSFER_DOCUMENT,
        document_id=transfer.id,
        actor_id=actor_id,
        reason=description or f"Transfer to {destination.name}",
    )
    projector.post_movement(
        db,
        subject=destination,
        kind=ledger_models.LedgerEntryKind.TRANSFER_IN,
        amount=amount,
        document_type=TRANSFER_DOCUMENT,
        document_id=transfer.id,
        actor_id=actor_id,
        reason=description or f"Transfer from {source.name}",
    )

    _audit_event(
        db,
        company_id=company_id,
        entity_type=TRANSFER_DOCUMENT,
        entity_id=transfer.id,
        action="create",
        actor_id=actor_id,
        after={
            "from_account_id": source.id,
            "to_account_id": destination.id,
            "amount": amount,
            "fee": fee,
        },
    )
    return transfer


def list_transfers(
    db: Session,
    *,
    company_id: str,
    account_id: Optional[str] = None,
) -> List[models.Transfer]:
    query = db.query(models.Transfer).filter(models.Transfer.company_id == company_id)
    if account_id:
        query = query.filter(
            (models.Transfer.from_account_id == account_id) | (models.Transfer.to_account_id == account_id)
        )
    return query.order_by(models.Transfer.transfer_date.desc()).all()
