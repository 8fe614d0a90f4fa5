# Overview: Service-layer operations for stock on hand; every mutation is a conditional or expression UPDATE.

"""
Stock Ledger Invariants (authoritative)

Quantity model:
- StockEntry.quantity is the on-hand quantity of one product at one location.
- It is never negative: the check constraint rejects it and every write path
  is a single UPDATE evaluated by the database, never read-modify-write.

Decrement (sales):
- Strict. `quantity = quantity - n WHERE quantity >= n`; zero affected rows
  means another writer got there first or stock was short.
- Runs inside the caller's unit of work and never commits on its own.

Manual adjustments:
- ADD adds, SUBTRACT floors at zero, SET replaces (floor zero).
- A missing stock row is created with the configured default threshold.
- Commits its own unit of work.

Audit:
- Each mutation appends a StockMovement in the same DB transaction.
- A StockLow event is queued when the result is at or below the threshold;
  it is delivered only after commit and can never undo the change.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import case, select, update

from ..errors import AccessDeniedError, InsufficientStockError, LocationInactiveError, ProductNotFoundError
from ..extensions import db
from ..models import Location, Product, Shift, StockEntry, StockMovement
from ..models.inventory import MOVEMENT_ADD, MOVEMENT_SALE, MOVEMENT_SET, MOVEMENT_SUBTRACT
from ..models.shifts import SHIFT_OPEN
from ..validation import MAX_QUANTITY, ValidationError
from .concurrency import lock_for_update, queue_event, unit_of_work
from .event_service import StockLow

logger = logging.getLogger(__name__)

ADJUST_MODES = (MOVEMENT_ADD, MOVEMENT_SUBTRACT, MOVEMENT_SET)


def check_availability(location_id: int, items) -> dict[int, int]:
    """
    Read-only availability for the given products at one location.

    `items` may be product ids or (product_id, quantity) pairs. Products
    without a stock row report 0.
    """
    product_ids = {item[0] if isinstance(item, (tuple, list)) else item for item in items}
    if not product_ids:
        return {}

    rows = db.session.execute(
        select(StockEntry.product_id, StockEntry.quantity).where(
            StockEntry.location_id == location_id,
            StockEntry.product_id.in_(product_ids),
        )
    ).all()
    available = {pid: 0 for pid in product_ids}
    for product_id, quantity in rows:
        available[product_id] = int(quantity)
    return available


def _read_levels(location_id: int, product_id: int):
    return db.session.execute(
        select(StockEntry.quantity, StockEntry.minimum_threshold).where(
            StockEntry.location_id == location_id,
            StockEntry.product_id == product_id,
        )
    ).first()


def _maybe_queue_low(location_id: int, product_id: int, quantity: int, threshold: int) -> None:
    if quantity <= threshold:
        queue_event(StockLow(
            product_id=product_id,
            location_id=location_id,
            quantity=quantity,
            threshold=threshold,
        ))


def decrement(
    location_id: int,
    product_id: int,
    quantity: int,
    *,
    sale_id: int | None = None,
    user_id: int | None = None,
) -> int:
    """
    Strictly remove `quantity` units; returns the remaining quantity.

    Must be called inside a unit of work. Raises InsufficientStockError
    (and leaves the row untouched) when on-hand is below `quantity`.
    """
    if quantity <= 0:
        raise ValidationError("quantity must be > 0", {"product_id": product_id, "quantity": quantity})

    result = db.session.execute(
        update(StockEntry)
        .where(
            StockEntry.location_id == location_id,
            StockEntry.product_id == product_id,
            StockEntry.quantity >= quantity,
        )
        .values(quantity=StockEntry.quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        levels = _read_levels(location_id, product_id)
        available = int(levels.quantity) if levels else 0
        product = db.session.get(Product, product_id)
        raise InsufficientStockError(
            f"Insufficient stock for {product.name if product else product_id}",
            {
                "product_id": product_id,
                "product_name": product.name if product else None,
                "location_id": location_id,
                "available": available,
                "requested": quantity,
            },
        )

    levels = _read_levels(location_id, product_id)
    after = int(levels.quantity)
    db.session.add(StockMovement(
        product_id=product_id,
        location_id=location_id,
        movement_type=MOVEMENT_SALE,
        quantity=quantity,
        quantity_before=after + quantity,
        quantity_after=after,
        sale_id=sale_id,
        user_id=user_id,
    ))
    _maybe_queue_low(location_id, product_id, after, int(levels.minimum_threshold))
    return after


def _insert_ignoring_conflict(values: dict) -> None:
    dialect = db.session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Stock upsert is not supported on {dialect}")
    db.session.execute(
        insert(StockEntry)
        .values(**values)
        .on_conflict_do_nothing(index_elements=["product_id", "location_id"])
    )


def _ensure_stock_row(location_id: int, product_id: int, threshold: int) -> None:
    # A concurrent adjustment may create the row first; the conflict is ignored and both update it.
    _insert_ignoring_conflict({
        "product_id": product_id,
        "location_id": location_id,
        "quantity": 0,
        "minimum_threshold": threshold,
    })


def _require_adjust_access(actor, location_id: int) -> None:
    """Sellers may only correct stock at the location of their open shift."""
    if actor is None or actor.is_admin:
        return
    shift = (
        db.session.query(Shift)
        .filter_by(seller_id=actor.id, status=SHIFT_OPEN)
        .first()
    )
    if shift is None or shift.location_id != location_id:
        raise AccessDeniedError(
            "Sellers can only adjust stock at the location of their open shift",
            {"location_id": location_id, "shift_location_id": shift.location_id if shift else None},
        )


def adjust_stock(
    location_id: int,
    product_id: int,
    quantity: int,
    mode: str = MOVEMENT_ADD,
    *,
    minimum_threshold: int | None = None,
    actor=None,
    note: str | None = None,
) -> StockEntry:
    """
    Manual stock correction (receiving, shrinkage, recount).

    WHY: Stock arrives and disappears outside of sales. Corrections are
    expressed as SQL expressions so two concurrent adjustments both apply.
    """
    mode = (mode or "").upper()
    if mode not in ADJUST_MODES:
        raise ValidationError(f"mode must be one of {', '.join(ADJUST_MODES)}", {"mode": mode})
    if quantity < 0 or quantity > MAX_QUANTITY:
        raise ValidationError(f"quantity must be between 0 and {MAX_QUANTITY}", {"quantity": quantity})
    if mode != MOVEMENT_SET and quantity == 0:
        raise ValidationError(f"quantity must be > 0 for {mode}", {"quantity": quantity})
    if minimum_threshold is not None and minimum_threshold < 0:
        raise ValidationError("minimum_threshold must be >= 0", {"minimum_threshold": minimum_threshold})

    location = db.session.get(Location, location_id)
    if location is None or not location.is_active:
        raise LocationInactiveError(
            f"Location {location_id} not found or inactive",
            {"location_id": location_id},
        )
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFoundError(f"Product {product_id} not found", {"missing_product_ids": [product_id]})
    _require_adjust_access(actor, location_id)

    default_threshold = current_app.config.get("DEFAULT_STOCK_THRESHOLD", 10)

    with unit_of_work():
        _ensure_stock_row(
            location_id,
            product_id,
            minimum_threshold if minimum_threshold is not None else default_threshold,
        )

        before = lock_for_update(
            db.session.query(StockEntry.quantity).filter_by(location_id=location_id, product_id=product_id)
        ).scalar()

        if mode == MOVEMENT_ADD:
            new_quantity = StockEntry.quantity + quantity
        elif mode == MOVEMENT_SUBTRACT:
            new_quantity = case(
                (StockEntry.quantity >= quantity, StockEntry.quantity - quantity),
                else_=0,
            )
        else:
            new_quantity = quantity

        values = {"quantity": new_quantity}
        if minimum_threshold is not None:
            values["minimum_threshold"] = minimum_threshold
        db.session.execute(
            update(StockEntry)
            .where(StockEntry.location_id == location_id, StockEntry.product_id == product_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        levels = _read_levels(location_id, product_id)
        after = int(levels.quantity)
        db.session.add(StockMovement(
            product_id=product_id,
            location_id=location_id,
            movement_type=mode,
            quantity=quantity,
            quantity_before=int(before or 0),
            quantity_after=after,
            user_id=actor.id if actor is not None else None,
            note=note,
        ))
        _maybe_queue_low(location_id, product_id, after, int(levels.minimum_threshold))

    logger.info(
        "Stock %s product=%s location=%s qty=%s -> %s",
        mode, product_id, location_id, quantity, after,
    )
    entry = (
        db.session.query(StockEntry)
        .filter_by(location_id=location_id, product_id=product_id)
        .populate_existing()
        .one()
    )
    return entry


def increment(location_id: int, product_id: int, quantity: int, **kwargs) -> StockEntry:
    """Add units to a location's stock (ADD adjustment)."""
    return adjust_stock(location_id, product_id, quantity, MOVEMENT_ADD, **kwargs)


def list_stock(location_id: int, *, low_only: bool = False) -> list[StockEntry]:
    query = db.session.query(StockEntry).filter(StockEntry.location_id == location_id)
    if low_only:
        query = query.filter(StockEntry.quantity <= StockEntry.minimum_threshold)
    return query.order_by(StockEntry.product_id.asc()).all()


def list_movements(location_id: int, product_id: int | None = None, limit: int = 100) -> list[StockMovement]:
    query = db.session.query(StockMovement).filter(StockMovement.location_id == location_id)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    return query.order_by(StockMovement.id.desc()).limit(limit).all()
