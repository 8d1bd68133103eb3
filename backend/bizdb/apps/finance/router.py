from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from bizdb.database import get_read_db, get_write_db
from bizdb.security import ActorContext, get_actor_context
from bizdb.transactions import run_atomic

from . import models, schemas, services

router = APIRouter(prefix="/financial", tags=["finance"])


@router.post("/accounts", response_model=schemas.FinancialAccountRead, status_code=status.HTTP_201_CREATED)
def create_account(
    payload: schemas.FinancialAccountCreate,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.create_account(
            session, company_id=ctx.company_id, actor_id=ctx.actor_id, payload=payload
        ),
        company_id=ctx.company_id,
    )


@router.get("/accounts", response_model=List[schemas.FinancialAccountRead])
def list_accounts(
    include_inactive: bool = False,
    db: Session = Depends(get_read_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return services.list_accounts(db, company_id=ctx.company_id, include_inactive=include_inactive)


@router.get("/accounts/{account_id}", response_model=schemas.FinancialAccountRead)
def get_account(
    account_id: str,
    db: Session = Depends(get_read_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return services.get_account(db, company_id=ctx.company_id, account_id=account_id)


@router.patch("/accounts/{account_id}", response_model=schemas.FinancialAccountRead)
def update_account(
    account_id: str,
    payload: schemas.FinancialAccountUpdate,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.update_account(
            session,
            company_id=ctx.company_id,
            actor_id=ctx.actor_id,
            account_id=account_id,
            payload=payload,
        ),
        company_id=ctx.company_id,
        subject_id=account_id,
    )


@router.delete("/accounts/{account_id}", response_model=schemas.FinancialAccountRead)
def deactivate_account(
    account_id: str,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.deactivate_account(
            session, company_id=ctx.company_id, actor_id=ctx.actor_id, account_id=account_id
        ),
        company_id=ctx.company_id,
        subject_id=account_id,
    )


@router.post("/categories", response_model=schemas.FinancialCategoryRead, status_code=status.HTTP_201_CREATED)
def create_category(
    payload: schemas.FinancialCategoryCreate,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.create_category(session, company_id=ctx.company_id, payload=payload),
        company_id=ctx.company_id,
    )


@router.post("/transactions", response_model=schemas.TransactionRead, status_code=status.HTTP_201_CREATED)
def create_transaction(
    payload: schemas.TransactionCreate,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.create_transaction(
            session, company_id=ctx.company_id, actor_id=ctx.actor_id, payload=payload
        ),
        company_id=ctx.company_id,
        subject_id=payload.account_id,
    )


@router.get("/transactions", response_model=List[schemas.TransactionRead])
def list_transactions(
    status_filter: Optional[models.TransactionStatusEnum] = None,
    transaction_type: Optional[models.TransactionTypeEnum] = None,
    account_id: Optional[str] = None,
    db: Session = Depends(get_read_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return services.list_transactions(
        db,
        company_id=ctx.company_id,
        status=status_filter,
        transaction_type=transaction_type,
        account_id=account_id,
    )


@router.get("/transactions/{transaction_id}", response_model=schemas.TransactionRead)
def get_transaction(
    transaction_id: str,
    db: Session = Depends(get_read_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return services.get_transaction(db, company_id=ctx.company_id, transaction_id=transaction_id)


@router.patch("/transactions/{transaction_id}", response_model=schemas.TransactionRead)
def update_transaction(
    transaction_id: str,
    payload: schemas.TransactionUpdate,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.update_transaction(
            session,
            company_id=ctx.company_id,
            actor_id=ctx.actor_id,
            transaction_id=transaction_id,
            payload=payload,
        ),
        company_id=ctx.company_id,
        document_id=transaction_id,
    )


@router.post("/transactions/{transaction_id}/pay", response_model=schemas.TransactionRead)
def pay_transaction(
    transaction_id: str,
    payload: schemas.PaymentDetails,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.pay_transaction(
            session,
            company_id=ctx.company_id,
            actor_id=ctx.actor_id,
            transaction_id=transaction_id,
            payment=payload,
        ),
        company_id=ctx.company_id,
        document_id=transaction_id,
    )


@router.post("/transactions/{transaction_id}/reverse", response_model=schemas.TransactionRead)
def reverse_transaction(
    transaction_id: str,
    payload: schemas.TransactionReverseRequest,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.reverse_transaction(
            session,
            company_id=ctx.company_id,
            actor_id=ctx.actor_id,
            transaction_id=transaction_id,
            reason=payload.reason,
        ),
        company_id=ctx.company_id,
        document_id=transaction_id,
    )


@router.post("/transfers", response_model=schemas.TransferRead, status_code=status.HTTP_201_CREATED)
def create_transfer(
    payload: schemas.TransferCreate,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.transfer_funds(
            session,
            company_id=ctx.company_id,
            actor_id=ctx.actor_id,
            from_account_id=payload.from_account_id,
            to_account_id=payload.to_account_id,
            amount=payload.amount,
            fee=payload.fee,
            description=payload.description,
        ),
        company_id=ctx.company_id,
        subject_id=payload.from_account_id,
    )


@router.get("/transfers", response_model=List[schemas.TransferRead])
def list_transfers(
    account_id: Optional[str] = None,
    db: Session = Depends(get_read_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return services.list_transfers(db, company_id=ctx.company_id, account_id=account_id)
