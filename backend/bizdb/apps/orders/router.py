from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from bizdb.database import get_read_db, get_write_db
from bizdb.security import ActorContext, get_actor_context
from bizdb.transactions import run_atomic

from . import models, schemas, services

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=schemas.OrderRead, status_code=status.HTTP_201_CREATED)
def fulfill_order(
    payload: schemas.OrderDraft,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.fulfill_order(
            session, company_id=ctx.company_id, actor_id=ctx.actor_id, draft=payload
        ),
        company_id=ctx.company_id,
    )


@router.get("", response_model=List[schemas.OrderRead])
def list_orders(
    status_filter: Optional[models.OrderStatusEnum] = None,
    customer_id: Optional[str] = None,
    include_deleted: bool = False,
    db: Session = Depends(get_read_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return services.list_orders(
        db,
        company_id=ctx.company_id,
        status=status_filter,
        customer_id=customer_id,
        include_deleted=include_deleted,
    )


@router.get("/{order_id}", response_model=schemas.OrderRead)
def get_order(
    order_id: str,
    db: Session = Depends(get_read_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return services.get_order(db, company_id=ctx.company_id, order_id=order_id)


@router.patch("/{order_id}", response_model=schemas.OrderRead)
def update_order(
    order_id: str,
    payload: schemas.OrderUpdate,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.update_order(
            session, company_id=ctx.company_id, actor_id=ctx.actor_id, order_id=order_id, payload=payload
        ),
        company_id=ctx.company_id,
        document_id=order_id,
    )


@router.patch("/{order_id}/status", response_model=schemas.OrderRead)
def change_order_status(
    order_id: str,
    payload: schemas.OrderStatusUpdate,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.change_order_status(
            session,
            company_id=ctx.company_id,
            actor_id=ctx.actor_id,
            order_id=order_id,
            status=payload.status,
            notes=payload.notes,
        ),
        company_id=ctx.company_id,
        document_id=order_id,
    )


@router.delete("/{order_id}", response_model=schemas.OrderRead)
def delete_order(
    order_id: str,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.delete_order(
            session, company_id=ctx.company_id, actor_id=ctx.actor_id, order_id=order_id
        ),
        company_id=ctx.company_id,
        document_id=order_id,
    )


@router.post("/{order_id}/restore", response_model=schemas.OrderRead)
def restore_order(
    order_id: str,
    db: Session = Depends(get_write_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    return run_atomic(
        db,
        lambda session: services.restore_order(
            session, company_id=ctx.company_id, actor_id=ctx.actor_id, order_id=order_id
        ),
        company_id=ctx.company_id,
        document_id=order_id,
    )
