from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from bizdb.apps.audit import services as audit_services
from bizdb.apps.ledger import models as ledger_models
from bizdb.apps.ledger import projector
from bizdb.apps.ledger import services as ledger_services
from bizdb.errors import ConflictError, InvalidArgumentError, InvalidStateError, NotFoundError
from bizdb.utils.identifiers import adjustment_reference, generate_uuid7

from . import models, schemas


def _normalize_sku(sku: str) -> str:
    return (sku or "").strip().upper()


def _audit_event(
    db: Session,
    *,
    company_id: str,
    entity_id: str,
    action: str,
    actor_id: Optional[str],
    after: dict,
) -> None:
    audit_services.log_event(
        db,
        company_id=company_id,
        actor_id=actor_id,
        entity_type="product",
        entity_id=entity_id,
        action=action,
        after=after,
        critical=True,
    )


def get_product(db: Session, *, company_id: str, product_id: str) -> models.Product:
    product = (
        db.query(models.Product)
        .filter(models.Product.id == product_id, models.Product.company_id == company_id)
        .first()
    )
    if not product:
        raise NotFoundError("Product not found.", detail={"product_id": product_id})
    return product


def _lock_product(db: Session, *, company_id: str, product_id: str) -> models.Product:
    return projector.lock_subject(
        db,
        models.Product,
        company_id=company_id,
        subject_id=product_id,
        label="Product",
    )


def _lock_active_product(db: Session, *, company_id: str, product_id: str) -> models.Product:
    product = _lock_product(db, company_id=company_id, product_id=product_id)
    if not product.is_active:
        raise NotFoundError("Product not found or inactive.", detail={"product_id": product_id})
    return product


def _require_tracked(product: models.Product) -> None:
    if not product.track_stock:
        raise InvalidArgumentError(
            "Product does not track stock.",
            detail={"product_id": product.id},
        )


def list_products(
    db: Session,
    *,
    company_id: str,
    include_inactive: bool = False,
    below_min_stock: bool = False,
) -> List[models.Product]:
    query = db.query(models.Product).filter(models.Product.company_id == company_id)
    if not include_inactive:
        query = query.filter(models.Product.is_active.is_(True))
    if below_min_stock:
        query = query.filter(
            models.Product.track_stock.is_(True),
            models.Product.current_stock <= models.Product.min_stock,
        )
    return query.order_by(models.Product.sku.asc()).all()


def create_product(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    payload: schemas.ProductCreate,
) -> models.Product:
    sku = _normalize_sku(payload.sku)
    existing = (
        db.query(models.Product.id)
        .filter(models.Product.company_id == company_id, models.Product.sku == sku)
        .first()
    )
    if existing:
        raise ConflictError("A product with this SKU already exists.", detail={"sku": sku})
    if payload.initial_stock and not payload.track_stock:
        raise InvalidArgumentError(
            "initial_stock requires a stock-tracked product.",
            detail={"sku": sku},
        )

    product = models.Product(
        company_id=company_id,
        sku=sku,
        name=payload.name,
        description=payload.description,
        unit=payload.unit,
        cost_price=payload.cost_price,
        sale_price=payload.sale_price,
        current_stock=0,
        min_stock=payload.min_stock,
        track_stock=payload.track_stock,
        created_by=actor_id,
    )
    db.add(product)
    db.flush()

    if payload.initial_stock:
        projector.post_movement(
            db,
            subject=product,
            kind=ledger_models.LedgerEntryKind.IN,
            amount=payload.initial_stock,
            document_type="product_opening",
            document_id=product.id,
            actor_id=actor_id,
            reason="Initial stock",
            unit_cost=product.cost_price,
        )

    _audit_event(
        db,
        company_id=company_id,
        entity_id=product.id,
        action="create",
        actor_id=actor_id,
        after={"sku": sku, "initial_stock": payload.initial_stock, "track_stock": payload.track_stock},
    )
    return product


def update_product(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    product_id: str,
    payload: schemas.ProductUpdate,
) -> models.Product:
    """Edit catalogue fields. Stock only moves through ledger entries."""
    product = _lock_product(db, company_id=company_id, product_id=product_id)
    changes = {key: value for key, value in payload.model_dump(exclude_unset=True).items() if value is not None}
    for key, value in changes.items():
        setattr(product, key, value)
    db.add(product)
    db.flush()

    _audit_event(
        db,
        company_id=company_id,
        entity_id=product.id,
        action="update",
        actor_id=actor_id,
        after=changes,
    )
    return product


def deactivate_product(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    product_id: str,
) -> models.Product:
    product = _lock_product(db, company_id=company_id, product_id=product_id)
    if not product.is_active:
        raise InvalidStateError("Product is already inactive.", detail={"product_id": product.id})

    product.is_active = False
    db.add(product)
    db.flush()

    _audit_event(
        db,
        company_id=company_id,
        entity_id=product.id,
        action="deactivate",
        actor_id=actor_id,
        after={"is_active": False, "current_stock": product.current_stock},
    )
    return product


def adjust_stock(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    product_id: str,
    new_quantity: int,
    reason: Optional[str] = None,
) -> ledger_models.LedgerEntry:
    """
    Set a product's stock to `new_quantity` by posting the difference as an
    ADJUSTMENT entry.
    """
    if isinstance(new_quantity, bool) or not isinstance(new_quantity, int) or new_quantity < 0:
        raise InvalidArgumentError(
            "new_quantity must be a non-negative integer.",
            detail={"new_quantity": str(new_quantity)},
        )

    product = _lock_active_product(db, company_id=company_id, product_id=product_id)
    _require_tracked(product)

    delta = new_quantity - product.ledger_value
    if delta == 0:
        raise InvalidArgumentError(
            "Stock already at the requested quantity.",
            detail={"product_id": product.id, "quantity": new_quantity},
        )

    now = datetime.now(timezone.utc)
    entry = projector.post_movement(
        db,
        subject=product,
        kind=ledger_models.LedgerEntryKind.ADJUSTMENT,
        amount=delta,
        document_type="stock_adjustment",
        document_id=generate_uuid7(),
        actor_id=actor_id,
        reason=reason or "Stock adjustment",
        reference=adjustment_reference(now),
        unit_cost=product.cost_price,
    )
    _audit_event(
        db,
        company_id=company_id,
        entity_id=product.id,
        action="adjust_stock",
        actor_id=actor_id,
        after={"previous": entry.previous_value, "new": entry.new_value, "delta": delta, "reason": reason},
    )
    return entry


def _post_stock_movement(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    product_id: str,
    payload: schemas.StockMovementRequest,
    kind: ledger_models.LedgerEntryKind,
    sign: int,
) -> ledger_models.LedgerEntry:
    product = _lock_active_product(db, company_id=company_id, product_id=product_id)
    _require_tracked(product)
    entry = projector.post_movement(
        db,
        subject=product,
        kind=kind,
        amount=sign * payload.quantity,
        document_type=payload.document_type,
        document_id=payload.document_id,
        actor_id=actor_id,
        reason=payload.reason,
        reference=payload.reference,
        unit_cost=payload.unit_cost if payload.unit_cost is not None else product.cost_price,
    )
    _audit_event(
        db,
        company_id=company_id,
        entity_id=product.id,
        action=kind.value.lower(),
        actor_id=actor_id,
        after={"quantity": payload.quantity, "document_id": payload.document_id, "new": entry.new_value},
    )
    return entry


def receive_stock(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    product_id: str,
    payload: schemas.StockMovementRequest,
) -> ledger_models.LedgerEntry:
    return _post_stock_movement(
        db,
        company_id=company_id,
        actor_id=actor_id,
        product_id=product_id,
        payload=payload,
        kind=ledger_models.LedgerEntryKind.IN,
        sign=1,
    )


def issue_stock(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    product_id: str,
    payload: schemas.StockMovementRequest,
) -> ledger_models.LedgerEntry:
    return _post_stock_movement(
        db,
        company_id=company_id,
        actor_id=actor_id,
        product_id=product_id,
        payload=payload,
        kind=ledger_models.LedgerEntryKind.OUT,
        sign=-1,
    )


def list_movements(
    db: Session,
    *,
    company_id: str,
    product_id: str,
    kind: Optional[ledger_models.LedgerEntryKind] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    cursor: Optional[str] = None,
    limit: Optional[int] = None,
) -> ledger_services.LedgerPage:
    product = get_product(db, company_id=company_id, product_id=product_id)
    return ledger_services.list_for(
        db,
        company_id=company_id,
        subject_id=product.id,
        kind=kind,
        since=since,
        until=until,
        cursor=cursor,
        limit=limit,
    )
