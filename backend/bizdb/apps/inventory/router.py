from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from bizdb.database import get_read_db, get_write_db
from bizdb.security import ActorContext, get_actor_context
from bizdb.transactions import run_atomic
from bizdb.apps.ledger import models as ledger_models
from bizdb.apps.ledger import schemas as ledger_schemas

from . import schemas, services

router = APIRouter(prefix="/products", tags=["inventory"])


@router.post("", response_model=schemas.ProductRead, status_code=status.HTTP_201_CREATED)
def create_product(
    payload: schemas.ProductCreate,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.create_product(
            session, company_id=ctx.company_id, actor_id=ctx.actor_id, payload=payload
        ),
        company_id=ctx.company_id,
    )


@router.get("", response_model=List[schemas.ProductRead])
def list_products(
    include_inactive: bool = False,
    below_min_stock: bool = False,
    db: Session = Depends(get_read_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return services.list_products(
        db,
        company_id=ctx.company_id,
        include_inactive=include_inactive,
        below_min_stock=below_min_stock,
    )


@router.get("/{product_id}", response_model=schemas.ProductRead)
def get_product(
    product_id: str,
    db: Session = Depends(get_read_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return services.get_product(db, company_id=ctx.company_id, product_id=product_id)


@router.patch("/{product_id}", response_model=schemas.ProductRead)
def update_product(
    product_id: str,
    payload: schemas.ProductUpdate,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.update_product(
            session,
            company_id=ctx.company_id,
            actor_id=ctx.actor_id,
            product_id=product_id,
            payload=payload,
        ),
        company_id=ctx.company_id,
        subject_id=product_id,
    )


@router.delete("/{product_id}", response_model=schemas.ProductRead)
def deactivate_product(
    product_id: str,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.deactivate_product(
            session, company_id=ctx.company_id, actor_id=ctx.actor_id, product_id=product_id
        ),
        company_id=ctx.company_id,
        subject_id=product_id,
    )


@router.post(
    "/{product_id}/adjust",
    response_model=ledger_schemas.LedgerEntryRead,
    status_code=status.HTTP_201_CREATED,
)
def adjust_stock(
    product_id: str,
    payload: schemas.StockAdjustRequest,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.adjust_stock(
            session,
            company_id=ctx.company_id,
            actor_id=ctx.actor_id,
            product_id=product_id,
            new_quantity=payload.new_quantity,
            reason=payload.reason,
        ),
        company_id=ctx.company_id,
        subject_id=product_id,
    )


@router.post(
    "/{product_id}/receive",
    response_model=ledger_schemas.LedgerEntryRead,
    status_code=status.HTTP_201_CREATED,
)
def receive_stock(
    product_id: str,
    payload: schemas.StockMovementRequest,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.receive_stock(
            session, company_id=ctx.company_id, actor_id=ctx.actor_id, product_id=product_id, payload=payload
        ),
        company_id=ctx.company_id,
        subject_id=product_id,
        document_id=payload.document_id,
    )


@router.post(
    "/{product_id}/issue",
    response_model=ledger_schemas.LedgerEntryRead,
    status_code=status.HTTP_201_CREATED,
)
def issue_stock(
    product_id: str,
    payload: schemas.StockMovementRequest,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.issue_stock(
            session, company_id=ctx.company_id, actor_id=ctx.actor_id, product_id=product_id, payload=payload
        ),
        company_id=ctx.company_id,
        subject_id=product_id,
        document_id=payload.document_id,
    )


@router.get("/{product_id}/movements", response_model=ledger_schemas.LedgerPageRead)
def list_movements(
    product_id: str,
    kind: Optional[ledger_models.LedgerEntryKind] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    cursor: Optional[str] = None,
    limit: Optional[int] = None,
    db: Session = Depends(get_read_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    page = services.list_movements(
        db,
        company_id=ctx.company_id,
        product_id=product_id,
        kind=kind,
        since=since,
        until=until,
        cursor=cursor,
        limit=limit,
    )
    return {"items": page.items, "next_cursor": page.next_cursor}
