# Overview: Service-layer operations for seller shifts and cash reconciliation.

"""
Shift Lifecycle

States: OPEN -> CLOSED (terminal). No suspended or partial states.

Invariants:
- At most one OPEN shift per seller. The lookup and the insert share one
  transaction, and the partial unique index on (seller_id) WHERE
  status = 'OPEN' turns a racing second insert into ShiftAlreadyOpenError.
- Closing is a conditional UPDATE (WHERE status = 'OPEN'), taken before the
  cash total is read, so two closes cannot both succeed and a sale cannot
  slip in between the total and the close.
- expected = opening float + cash portion of COMPLETED CASH/MIXED sales;
  variance = counted - expected. Integer cents, no rounding.
"""

from __future__ import annotations

import logging

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError

from ..errors import (
    LocationInactiveError,
    ShiftAccessDeniedError,
    ShiftAlreadyClosedError,
    ShiftAlreadyOpenError,
    ShiftNotFoundError,
)
from ..extensions import db
from ..models import Location, Sale, Shift, User
from ..models.sales import PAYMENT_CASH, PAYMENT_CREDIT, PAYMENT_MIXED, SALE_COMPLETED
from ..models.shifts import SHIFT_CLOSED, SHIFT_OPEN
from ..time_utils import format_cents, utcnow
from ..validation import MAX_PRICE_CENTS, ValidationError
from .concurrency import lock_for_update, run_with_retry, store_guard, unit_of_work

logger = logging.getLogger(__name__)

# Cash kept in the drawer per sale: the full total for CASH, the part not covered by credit for MIXED.
CASH_PORTION = case(
    (Sale.payment_method == PAYMENT_CASH, Sale.total_cents),
    (Sale.payment_method == PAYMENT_MIXED, Sale.total_cents - Sale.credit_applied_cents),
    else_=0,
)


def _validate_amount(name: str, value: int) -> None:
    if value is None or value < 0 or value > MAX_PRICE_CENTS:
        raise ValidationError(f"{name} must be >= 0", {"field": name, "value": value})


def cash_collected(shift_id: int) -> int:
    """Cash portion of all COMPLETED CASH/MIXED sales linked to the shift."""
    total = db.session.execute(
        select(func.coalesce(func.sum(CASH_PORTION), 0)).where(
            Sale.shift_id == shift_id,
            Sale.status == SALE_COMPLETED,
            Sale.payment_method.in_((PAYMENT_CASH, PAYMENT_MIXED)),
        )
    ).scalar()
    return int(total or 0)


def shift_totals(shift: Shift) -> dict:
    """Running sale totals for a shift (live view for open shifts)."""
    row = db.session.execute(
        select(
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_cents), 0),
            func.coalesce(func.sum(Sale.credit_applied_cents), 0),
            func.coalesce(func.sum(case((Sale.payment_method == PAYMENT_CREDIT, 1), else_=0)), 0),
        ).where(Sale.shift_id == shift.id, Sale.status == SALE_COMPLETED)
    ).one()
    collected = cash_collected(shift.id)
    expected = shift.opening_float_cents + collected
    return {
        "sales_count": int(row[0]),
        "sales_total_cents": int(row[1]),
        "credit_applied_cents": int(row[2]),
        "credit_sales_count": int(row[3]),
        "cash_collected_cents": collected,
        "expected_cash_cents": shift.expected_cash_cents if shift.status == SHIFT_CLOSED else expected,
    }


def open_shift(seller_id: int, location_id: int, opening_float_cents: int = 0) -> Shift:
    """
    Open a new shift for a seller at a location.

    Raises:
        ShiftAlreadyOpenError: seller already has an OPEN shift
        LocationInactiveError: location missing or inactive
    """
    _validate_amount("opening_float_cents", opening_float_cents)

    with store_guard():
        seller = db.session.get(User, seller_id)
        location = db.session.get(Location, location_id)

    if seller is None or not seller.is_active:
        raise ValidationError(f"User {seller_id} not found or inactive", {"seller_id": seller_id})

    if location is None or not location.is_active:
        raise LocationInactiveError(
            f"Location {location_id} not found or inactive",
            {"location_id": location_id},
        )

    try:
        with unit_of_work():
            existing = lock_for_update(
                db.session.query(Shift).filter_by(seller_id=seller_id, status=SHIFT_OPEN)
            ).first()
            if existing:
                raise ShiftAlreadyOpenError(
                    f"Seller already has an open shift (shift {existing.id})",
                    {"seller_id": seller_id, "shift_id": existing.id},
                )

            shift = Shift(
                seller_id=seller_id,
                location_id=location_id,
                status=SHIFT_OPEN,
                opening_float_cents=opening_float_cents,
                opened_at=utcnow(),
            )
            db.session.add(shift)
            db.session.flush()
            shift_id = shift.id
    except IntegrityError as exc:
        # Lost the race against a concurrent open for the same seller
        raise ShiftAlreadyOpenError(
            "Seller already has an open shift",
            {"seller_id": seller_id},
        ) from exc

    logger.info(
        "Shift %s opened seller=%s location=%s float=%s",
        shift_id, seller_id, location_id, format_cents(opening_float_cents),
    )
    return db.session.get(Shift, shift_id)


def close_shift(
    shift_id: int,
    closing_cash_cents: int,
    notes: str | None = None,
    *,
    actor=None,
) -> Shift:
    """
    Close a shift and calculate cash variance.

    WHY: Shift close compares counted cash with the cash the shift's sales
    should have left in the drawer, to surface shortages and overages.

    IMMUTABLE: Once closed, a shift cannot be reopened or modified.
    """
    _validate_amount("closing_cash_cents", closing_cash_cents)
    if notes is not None and not isinstance(notes, str):
        raise ValidationError("notes must be a string", {"field": "notes"})

    def _op():
        with store_guard():
            shift = db.session.query(Shift).populate_existing().filter_by(id=shift_id).first()
        if shift is None:
            raise ShiftNotFoundError(f"Shift {shift_id} not found", {"shift_id": shift_id})
        if shift.status != SHIFT_OPEN:
            raise ShiftAlreadyClosedError(f"Shift {shift_id} is already closed", {"shift_id": shift_id})
        if actor is not None and not actor.is_admin and shift.seller_id != actor.id:
            raise ShiftAccessDeniedError(
                "Only the shift owner or an administrator can close this shift",
                {"shift_id": shift_id, "seller_id": shift.seller_id},
            )
        opening_float = shift.opening_float_cents

        with unit_of_work():
            closed = db.session.execute(
                update(Shift)
                .where(Shift.id == shift_id, Shift.status == SHIFT_OPEN)
                .values(
                    status=SHIFT_CLOSED,
                    closed_at=utcnow(),
                    closing_cash_cents=closing_cash_cents,
                    notes=notes,
                    version_id=Shift.version_id + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if closed.rowcount != 1:
                raise ShiftAlreadyClosedError(f"Shift {shift_id} is already closed", {"shift_id": shift_id})

            expected = opening_float + cash_collected(shift_id)
            variance = closing_cash_cents - expected
            db.session.execute(
                update(Shift)
                .where(Shift.id == shift_id)
                .values(expected_cash_cents=expected, variance_cents=variance)
                .execution_options(synchronize_session=False)
            )

        logger.info(
            "Shift %s closed expected=%s counted=%s variance=%s",
            shift_id, format_cents(expected), format_cents(closing_cash_cents), format_cents(variance),
        )
        return db.session.query(Shift).populate_existing().filter_by(id=shift_id).one()

    return run_with_retry(_op)


def get_active_shift(seller_id: int) -> Shift | None:
    """The seller's OPEN shift, if any."""
    return (
        db.session.query(Shift)
        .populate_existing()
        .filter_by(seller_id=seller_id, status=SHIFT_OPEN)
        .first()
    )


def get_shift(shift_id: int, *, actor=None) -> Shift:
    shift = db.session.query(Shift).populate_existing().filter_by(id=shift_id).first()
    if shift is None:
        raise ShiftNotFoundError(f"Shift {shift_id} not found", {"shift_id": shift_id})
    if actor is not None and not actor.is_admin and shift.seller_id != actor.id:
        raise ShiftAccessDeniedError(
            "Sellers can only view their own shifts",
            {"shift_id": shift_id},
        )
    return shift


def get_shift_summary(shift_id: int, *, actor=None) -> dict:
    shift = get_shift(shift_id, actor=actor)
    data = shift.to_dict()
    data["summary"] = shift_totals(shift)
    return data


def list_shifts(
    *,
    seller_id: int | None = None,
    location_id: int | None = None,
    status: str | None = None,
    start=None,
    end=None,
    limit: int = 100,
) -> list[Shift]:
    query = db.session.query(Shift)
    if seller_id is not None:
        query = query.filter(Shift.seller_id == seller_id)
    if location_id is not None:
        query = query.filter(Shift.location_id == location_id)
    if status:
        query = query.filter(Shift.status == status.upper())
    if start is not None:
        query = query.filter(Shift.opened_at >= start)
    if end is not None:
        query = query.filter(Shift.opened_at <= end)
    return query.order_by(Shift.id.desc()).limit(limit).all()
