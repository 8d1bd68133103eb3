from __future__ import annotations

import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bizdb.apps.audit import services as audit_services
from bizdb.apps.inventory import models as inventory_models
from bizdb.apps.ledger import models as ledger_models
from bizdb.apps.ledger import projector
from bizdb.apps.workflow import apply_transition
from bizdb.errors import (
    InsufficientStockError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    TransactionAbortedError,
)
from bizdb.utils.identifiers import format_document_number

from . import models, schemas

ORDER_NUMBER_WIDTH = int(os.getenv("ORDER_NUMBER_WIDTH", "6"))
ORDER_DOCUMENT = "order"

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

LOCKED_FOR_EDIT = {models.OrderStatusEnum.COMPLETED, models.OrderStatusEnum.CANCELLED}
LOCKED_FOR_DELETE = {models.OrderStatusEnum.IN_PROGRESS}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _q(value) -> Decimal:
    return Decimal(value).quantize(CENT)


def discount_value(subtotal: Decimal, discount: Decimal, discount_type: models.DiscountTypeEnum) -> Decimal:
    """Same branch for item and order level: percentage of the subtotal, or a fixed amount."""
    if discount_type == models.DiscountTypeEnum.PERCENTAGE:
        if discount > HUNDRED:
            raise InvalidArgumentError("Percentage discount cannot exceed 100.", detail={"discount": str(discount)})
        return _q(subtotal * discount / HUNDRED)
    return _q(discount)


def compute_item_totals(item: schemas.OrderItemDraft) -> Dict[str, Decimal]:
    subtotal = _q(Decimal(item.quantity) * Decimal(item.unit_price))
    discount = discount_value(subtotal, Decimal(item.discount), item.discount_type)
    total = subtotal - discount
    if total < 0:
        raise InvalidArgumentError(
            "Item discount exceeds the item subtotal.",
            detail={"product_id": item.product_id, "subtotal": str(subtotal), "discount": str(discount)},
        )
    return {"subtotal": subtotal, "discount_value": discount, "total": total}


def compute_order_totals(
    item_totals: List[Dict[str, Decimal]],
    *,
    discount: Decimal,
    discount_type: models.DiscountTypeEnum,
) -> Dict[str, Decimal]:
    subtotal = _q(sum((totals["subtotal"] for totals in item_totals), Decimal("0")))
    items_discount = _q(sum((totals["discount_value"] for totals in item_totals), Decimal("0")))
    return _order_totals(subtotal, items_discount, discount=discount, discount_type=discount_type)


def _order_totals(
    subtotal: Decimal,
    items_discount: Decimal,
    *,
    discount: Decimal,
    discount_type: models.DiscountTypeEnum,
) -> Dict[str, Decimal]:
    order_discount = discount_value(subtotal, Decimal(discount), discount_type)
    total = subtotal - items_discount - order_discount
    if total < 0:
        raise InvalidArgumentError(
            "Order discount exceeds the order total.",
            detail={"subtotal": str(subtotal), "discount": str(order_discount)},
        )
    return {
        "subtotal": subtotal,
        "items_discount_value": items_discount,
        "discount_value": order_discount,
        "total_value": total,
    }


def next_document_number(db: Session, *, company_id: str, scope: str, width: int = ORDER_NUMBER_WIDTH) -> str:
    """
    Allocate the next number for `scope` from the company's locked sequence row.

    A concurrent allocation surfaces as TransactionAbortedError (version
    mismatch or a lost race to create the row) and is retried by the unit of work.
    """
    sequence = (
        db.query(models.DocumentSequence)
        .filter(
            models.DocumentSequence.company_id == company_id,
            models.DocumentSequence.scope == scope,
        )
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not sequence:
        sequence = models.DocumentSequence(company_id=company_id, scope=scope, last_value=0)
        db.add(sequence)
        try:
            db.flush()
        except IntegrityError:
            raise TransactionAbortedError(
                "Document sequence created concurrently.",
                detail={"scope": scope},
            ) from None

    sequence.last_value = (sequence.last_value or 0) + 1
    db.flush()
    return format_document_number(sequence.last_value, width)


def _audit_event(
    db: Session,
    *,
    company_id: str,
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
        entity_type=ORDER_DOCUMENT,
        entity_id=entity_id,
        action=action,
        before=before,
        after=after,
        critical=True,
    )


def _load_products(
    db: Session,
    *,
    company_id: str,
    product_ids: List[str],
) -> Dict[str, inventory_models.Product]:
    products: Dict[str, inventory_models.Product] = {}
    # Stable lock order across concurrent orders touching the same products.
    for product_id in sorted(set(product_ids)):
        product = projector.lock_subject(
            db,
            inventory_models.Product,
            company_id=company_id,
            subject_id=product_id,
            label="Product",
        )
        if not product.is_active:
            raise NotFoundError("Product not found.", detail={"subject_id": product_id})
        products[product_id] = product
    return products


def _validate_draft(draft: schemas.OrderDraft) -> None:
    if not draft.items:
        raise InvalidArgumentError("An order needs at least one item.")
    for index, item in enumerate(draft.items):
        if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity <= 0:
            raise InvalidArgumentError(
                "Item quantity must be a positive integer.",
                detail={"item": index, "quantity": str(item.quantity)},
            )
        if not item.product_id and not item.description:
            raise InvalidArgumentError(
                "Items without a product need a description.",
                detail={"item": index},
            )


def fulfill_order(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    draft: schemas.OrderDraft,
) -> models.Order:
    """
    Create an order and deduct stock for its tracked items in one unit of work.

    Availability is checked for every item before anything is written; a
    shortfall on any product aborts the whole order.
    """
    _validate_draft(draft)

    products = _load_products(
        db,
        company_id=company_id,
        product_ids=[item.product_id for item in draft.items if item.product_id],
    )

    required: Dict[str, int] = {}
    for item in draft.items:
        product = products.get(item.product_id) if item.product_id else None
        if product is None or not product.track_stock:
            continue
        required[product.id] = required.get(product.id, 0) + item.quantity

    for product_id, quantity in required.items():
        product = products[product_id]
        if product.ledger_value < quantity:
            raise InsufficientStockError(
                f"Insufficient stock for product {product.sku}.",
                detail={
                    "product_id": product.id,
                    "available": product.ledger_value,
                    "requested": quantity,
                },
            )

    item_totals = [compute_item_totals(item) for item in draft.items]
    totals = compute_order_totals(
        item_totals,
        discount=Decimal(draft.discount),
        discount_type=draft.discount_type,
    )

    number = next_document_number(db, company_id=company_id, scope=ORDER_DOCUMENT)
    order = models.Order(
        company_id=company_id,
        number=number,
        quote_id=draft.quote_id,
        customer_id=draft.customer_id,
        title=draft.title,
        description=draft.description,
        status=models.OrderStatusEnum.PENDING,
        priority=draft.priority,
        expected_start_date=draft.expected_start_date,
        expected_end_date=draft.expected_end_date,
        payment_terms=draft.payment_terms,
        observations=draft.observations,
        discount=_q(draft.discount),
        discount_type=draft.discount_type,
        created_by=actor_id,
        updated_by=actor_id,
        **totals,
    )
    for position, (item, item_total) in enumerate(zip(draft.items, item_totals)):
        product = products.get(item.product_id) if item.product_id else None
        order.items.append(
            models.OrderItem(
                position=position,
                product_id=item.product_id,
                description=item.description or (product.name if product else None),
                quantity=item.quantity,
                unit_price=_q(item.unit_price),
                discount=_q(item.discount),
                discount_type=item.discount_type,
                observations=item.observations,
                **item_total,
            )
        )
    db.add(order)
    db.flush()

    for product_id, quantity in required.items():
        product = products[product_id]
        projector.post_movement(
            db,
            subject=product,
            kind=ledger_models.LedgerEntryKind.OUT,
            amount=-quantity,
            document_type=ORDER_DOCUMENT,
            document_id=order.id,
            actor_id=actor_id,
            reason=f"Order {order.number}",
            reference=order.number,
            unit_cost=product.cost_price,
        )

    _audit_event(
        db,
        company_id=company_id,
        entity_id=order.id,
        action="create",
        actor_id=actor_id,
        after={
            "number": order.number,
            "total_value": order.total_value,
            "stock_deducted": dict(required),
        },
    )
    return order


def get_order(
    db: Session,
    *,
    company_id: str,
    order_id: str,
    include_deleted: bool = False,
    for_update: bool = False,
) -> models.Order:
    query = db.query(models.Order).filter(
        models.Order.id == order_id,
        models.Order.company_id == company_id,
    )
    if not include_deleted:
        query = query.filter(models.Order.deleted_at.is_(None))
    if for_update:
        query = query.with_for_update(of=models.Order)
    order = query.first()
    if not order:
        raise NotFoundError("Order not found.", detail={"order_id": order_id})
    return order


def list_orders(
    db: Session,
    *,
    company_id: str,
    status: Optional[models.OrderStatusEnum] = None,
    customer_id: Optional[str] = None,
    include_deleted: bool = False,
) -> List[models.Order]:
    query = db.query(models.Order).filter(models.Order.company_id == company_id)
    if not include_deleted:
        query = query.filter(models.Order.deleted_at.is_(None))
    if status:
        query = query.filter(models.Order.status == status)
    if customer_id:
        query = query.filter(models.Order.customer_id == customer_id)
    return query.order_by(models.Order.number.desc()).all()


def change_order_status(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    order_id: str,
    status: models.OrderStatusEnum,
    notes: Optional[str] = None,
) -> models.Order:
    order = get_order(db, company_id=company_id, order_id=order_id, include_deleted=True, for_update=True)
    from_state = models.OrderStatusEnum(order.status)
    to_state = models.OrderStatusEnum(status)

    apply_transition(
        db,
        company_id=company_id,
        actor_id=actor_id,
        entity_type=ORDER_DOCUMENT,
        entity_id=order.id,
        from_state=from_state.value,
        to_state=to_state.value,
        before_obj={"deleted_at": order.deleted_at, "item_count": len(order.items)},
        after_obj={"notes": notes} if notes else None,
    )

    now = _utcnow()
    order.status = to_state
    if to_state == models.OrderStatusEnum.IN_PROGRESS and order.actual_start_date is None:
        order.actual_start_date = now
    if to_state == models.OrderStatusEnum.COMPLETED:
        order.actual_end_date = now
    order.updated_by = actor_id
    db.add(order)
    db.flush()
    return order


def update_order(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    order_id: str,
    payload: schemas.OrderUpdate,
) -> models.Order:
    """Edit header fields. Line items are fixed once stock has been deducted."""
    order = get_order(db, company_id=company_id, order_id=order_id, for_update=True)
    if order.status in LOCKED_FOR_EDIT:
        raise InvalidStateError(
            "Completed or cancelled orders cannot be edited.",
            detail={"order_id": order.id, "status": order.status},
        )

    changes = payload.model_dump(exclude_unset=True)
    before = {key: getattr(order, key) for key in changes}
    for key, value in changes.items():
        if key == "discount" and value is not None:
            value = _q(value)
        if value is None and key in {"title", "priority", "discount", "discount_type"}:
            continue
        setattr(order, key, value)

    if "discount" in changes or "discount_type" in changes:
        totals = _order_totals(
            _q(order.subtotal),
            _q(order.items_discount_value),
            discount=Decimal(order.discount),
            discount_type=models.DiscountTypeEnum(order.discount_type),
        )
        for key, value in totals.items():
            setattr(order, key, value)

    order.updated_by = actor_id
    db.add(order)
    db.flush()

    _audit_event(
        db,
        company_id=company_id,
        entity_id=order.id,
        action="update",
        actor_id=actor_id,
        before=before,
        after={key: getattr(order, key) for key in changes},
    )
    return order


def delete_order(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    order_id: str,
) -> models.Order:
    order = get_order(db, company_id=company_id, order_id=order_id, for_update=True)
    if order.status in LOCKED_FOR_DELETE:
        raise InvalidStateError(
            "Orders in progress cannot be deleted.",
            detail={"order_id": order.id, "status": order.status},
        )
    order.deleted_at = _utcnow()
    order.updated_by = actor_id
    db.add(order)
    db.flush()
    _audit_event(
        db,
        company_id=company_id,
        entity_id=order.id,
        action="delete",
        actor_id=actor_id,
        after={"deleted_at": order.deleted_at},
    )
    return order


def restore_order(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    order_id: str,
) -> models.Order:
    order = get_order(db, company_id=company_id, order_id=order_id, include_deleted=True, for_update=True)
    if order.deleted_at is None:
        raise InvalidStateError("Order is not deleted.", detail={"order_id": order.id})
    order.deleted_at = None
    order.updated_by = actor_id
    db.add(order)
    db.flush()
    _audit_event(
        db,
        company_id=company_id,
        entity_id=order.id,
        action="restore",
        actor_id=actor_id,
        after={"status": order.status},
    )
    return order
