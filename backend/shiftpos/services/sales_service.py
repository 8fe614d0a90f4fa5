"""
Sales Service - atomic sale transactions

WHY: A sale touches stock, customer credit and the cash drawer at once.
Every check runs before the first write, and every write (credit debit,
stock decrements, sale and line rows) shares one unit of work, so a sale
either exists with all of its effects or not at all.

DESIGN:
- Input validation happens on plain dataclasses before any database I/O.
- Stock and credit are re-checked at write time by conditional UPDATEs;
  a concurrent sale that won the race makes this one fail with the same
  InsufficientStockError / InsufficientCreditError as the pre-check.
- Sales are never retried here. Identical payloads create distinct sales.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import selectinload

from ..errors import (
    CustomerNotFoundError,
    InsufficientCreditError,
    InsufficientStockError,
    LocationInactiveError,
    NoOpenShiftError,
    PaymentRuleError,
    ProductNotFoundError,
    SaleNotFoundError,
)
from ..extensions import db
from ..models import Customer, Location, Product, Sale, SaleLine, Shift
from ..models.sales import PAYMENT_CASH, PAYMENT_CREDIT, PAYMENT_METHODS, PAYMENT_MIXED, SALE_COMPLETED
from ..models.shifts import SHIFT_OPEN
from ..time_utils import format_cents, utcnow
from ..validation import MAX_PRICE_CENTS, MAX_QUANTITY, ValidationError, coerce_int, get_int
from .concurrency import lock_for_update, queue_event, store_guard, unit_of_work
from .credit_service import debit
from .event_service import SaleCreated
from .inventory_service import check_availability, decrement
from .pricing_service import apply_override

logger = logging.getLogger(__name__)

MAX_LINES = 500


@dataclass(frozen=True)
class SaleLineRequest:
    product_id: int
    quantity: int
    requested_unit_price_cents: int | None = None


@dataclass(frozen=True)
class SaleRequest:
    payment_method: str
    lines: tuple[SaleLineRequest, ...] = field(default_factory=tuple)
    customer_id: int | None = None
    credit_requested_cents: int = 0
    cash_tendered_cents: int | None = None
    # Only honored for administrators selling without a shift
    location_id: int | None = None


def validate_sale_request(request: SaleRequest) -> None:
    """Input checks that need no database access."""
    if not request.lines:
        raise ValidationError("Sale must contain at least one line", {"field": "lines"})
    if len(request.lines) > MAX_LINES:
        raise ValidationError(f"Sale cannot contain more than {MAX_LINES} lines", {"field": "lines"})
    if request.payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of {', '.join(PAYMENT_METHODS)}",
            {"field": "payment_method", "value": request.payment_method},
        )
    for index, line in enumerate(request.lines, start=1):
        if line.quantity < 1 or line.quantity > MAX_QUANTITY:
            raise ValidationError(
                f"Line {index}: quantity must be between 1 and {MAX_QUANTITY}",
                {"line": index, "product_id": line.product_id, "quantity": line.quantity},
            )
        if line.requested_unit_price_cents is not None and line.requested_unit_price_cents <= 0:
            raise ValidationError(
                f"Line {index}: requested unit price must be > 0",
                {"line": index, "product_id": line.product_id},
            )
    if request.credit_requested_cents < 0:
        raise ValidationError("credit_requested_cents must be >= 0", {"field": "credit_requested_cents"})
    if request.cash_tendered_cents is not None and request.cash_tendered_cents < 0:
        raise ValidationError("cash_tendered_cents must be >= 0", {"field": "cash_tendered_cents"})


def parse_sale_request(payload: dict) -> SaleRequest:
    """Build a SaleRequest from a JSON body; raises ValidationError on bad shapes."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    raw_lines = payload.get("lines")
    if not isinstance(raw_lines, list):
        raise ValidationError("lines must be a list", {"field": "lines"})

    lines = []
    for index, raw in enumerate(raw_lines, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Line {index} must be an object", {"line": index})
        if raw.get("product_id") is None or raw.get("quantity") is None:
            raise ValidationError(f"Line {index}: product_id and quantity are required", {"line": index})
        price = raw.get("requested_unit_price_cents")
        lines.append(SaleLineRequest(
            product_id=coerce_int("product_id", raw["product_id"]),
            quantity=coerce_int("quantity", raw["quantity"]),
            requested_unit_price_cents=coerce_int("requested_unit_price_cents", price) if price is not None else None,
        ))

    method = payload.get("payment_method")
    request = SaleRequest(
        payment_method=str(method).strip().upper() if method is not None else "",
        lines=tuple(lines),
        customer_id=get_int(payload, "customer_id"),
        credit_requested_cents=get_int(payload, "credit_requested_cents", default=0, maximum=MAX_PRICE_CENTS),
        cash_tendered_cents=get_int(payload, "cash_tendered_cents", maximum=MAX_PRICE_CENTS),
        location_id=get_int(payload, "location_id"),
    )
    validate_sale_request(request)
    return request


def _resolve_shift_and_location(request: SaleRequest, actor) -> tuple[Shift | None, int]:
    shift = None
    if actor.is_admin and request.location_id is not None:
        location_id = request.location_id
    else:
        shift = (
            db.session.query(Shift)
            .filter_by(seller_id=actor.id, status=SHIFT_OPEN)
            .first()
        )
        if shift is None:
            raise NoOpenShiftError(
                "No open shift for this seller",
                {"seller_id": actor.id},
            )
        if request.location_id is not None and request.location_id != shift.location_id:
            raise NoOpenShiftError(
                f"No open shift for this seller at location {request.location_id}",
                {"seller_id": actor.id, "location_id": request.location_id, "shift_location_id": shift.location_id},
            )
        location_id = shift.location_id

    location = db.session.get(Location, location_id)
    if location is None or not location.is_active:
        raise LocationInactiveError(
            f"Location {location_id} not found or inactive",
            {"location_id": location_id},
        )
    return shift, location_id


def _load_products(request: SaleRequest) -> dict[int, Product]:
    product_ids = {line.product_id for line in request.lines}
    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()
    }
    missing = sorted(pid for pid in product_ids if pid not in products or not products[pid].is_active)
    if missing:
        raise ProductNotFoundError(
            f"Products not found or inactive: {', '.join(str(pid) for pid in missing)}",
            {"missing_product_ids": missing},
        )
    return products


def _validate_stock(location_id: int, request: SaleRequest, products: dict[int, Product]) -> None:
    """Lines are checked in input order; only the first shortfall is reported."""
    available = check_availability(
        location_id,
        [(line.product_id, line.quantity) for line in request.lines],
    )
    requested_so_far: dict[int, int] = {}
    for index, line in enumerate(request.lines, start=1):
        requested = requested_so_far.get(line.product_id, 0) + line.quantity
        requested_so_far[line.product_id] = requested
        if requested > available[line.product_id]:
            product = products[line.product_id]
            raise InsufficientStockError(
                f"Insufficient stock for {product.name}: available {available[line.product_id]}, requested {requested}",
                {
                    "line": index,
                    "product_id": product.id,
                    "product_name": product.name,
                    "location_id": location_id,
                    "available": available[line.product_id],
                    "requested": requested,
                },
            )


def _price_lines(request: SaleRequest, products: dict[int, Product], location_id: int, actor) -> list[dict]:
    priced = []
    for index, line in enumerate(request.lines, start=1):
        product = products[line.product_id]
        unit_price, catalog_price = apply_override(
            product, location_id, line.requested_unit_price_cents, actor,
        )
        priced.append({
            "line_number": index,
            "product_id": product.id,
            "quantity": line.quantity,
            "unit_price_cents": unit_price,
            "catalog_price_cents": catalog_price,
            "subtotal_cents": line.quantity * unit_price,
        })
    return priced


def _validate_payment(request: SaleRequest, total_cents: int) -> Customer | None:
    customer = None
    if request.customer_id is not None:
        customer = db.session.get(Customer, request.customer_id)
        if customer is None or not customer.is_active:
            raise CustomerNotFoundError(
                f"Customer {request.customer_id} not found",
                {"customer_id": request.customer_id},
            )

    credit = request.credit_requested_cents
    method = request.payment_method

    if method == PAYMENT_CASH:
        if credit != 0:
            raise PaymentRuleError(
                "Cash sales cannot apply store credit",
                {"payment_method": method, "credit_requested_cents": credit},
            )
        return customer

    if customer is None:
        raise PaymentRuleError(
            f"{method} sales require a customer",
            {"payment_method": method},
        )

    if method == PAYMENT_CREDIT:
        if request.cash_tendered_cents:
            raise PaymentRuleError(
                "Credit sales cannot take cash",
                {"payment_method": method, "cash_tendered_cents": request.cash_tendered_cents},
            )
        if credit != total_cents:
            raise PaymentRuleError(
                "Credit sales must be fully covered by credit",
                {"payment_method": method, "credit_requested_cents": credit, "total_cents": total_cents},
            )
    elif credit > total_cents:
        raise PaymentRuleError(
            "Credit applied cannot exceed the sale total",
            {"payment_method": method, "credit_requested_cents": credit, "total_cents": total_cents},
        )

    # MIXED: cash sufficiency (credit + tendered >= total) is deliberately not a commit blocker.
    if credit > customer.credit_balance_cents:
        raise InsufficientCreditError(
            "Insufficient credit balance",
            {"customer_id": customer.id, "balance": customer.credit_balance_cents, "requested": credit},
        )
    return customer


def create_sale(request: SaleRequest, actor) -> Sale:
    """
    Validate and commit one sale.

    Raises ValidationError before any I/O; business-rule errors before any
    write; StoreUnavailableError when the store fails during the checks or
    mid-transaction (the sale is then not committed and is not retried).
    """
    validate_sale_request(request)

    with store_guard():
        shift, location_id = _resolve_shift_and_location(request, actor)
        products = _load_products(request)
        _validate_stock(location_id, request, products)
        priced = _price_lines(request, products, location_id, actor)
        total_cents = sum(line["subtotal_cents"] for line in priced)
        customer = _validate_payment(request, total_cents)

    credit = request.credit_requested_cents
    created_at = utcnow()

    with unit_of_work():
        sale = Sale(
            location_id=location_id,
            seller_id=actor.id,
            customer_id=customer.id if customer else None,
            shift_id=shift.id if shift else None,
            payment_method=request.payment_method,
            status=SALE_COMPLETED,
            total_cents=total_cents,
            credit_applied_cents=credit,
            cash_tendered_cents=request.cash_tendered_cents,
            created_at=created_at,
        )
        db.session.add(sale)
        db.session.flush()

        if shift is not None:
            # The shift may have been closed since it was resolved; a closed shift takes no more sales.
            shift_status = lock_for_update(
                db.session.query(Shift.status).filter(Shift.id == shift.id)
            ).scalar()
            if shift_status != SHIFT_OPEN:
                raise NoOpenShiftError(
                    "Shift was closed before the sale could be recorded",
                    {"seller_id": actor.id, "shift_id": shift.id},
                )

        if credit > 0:
            debit(customer.id, credit, sale_id=sale.id, user_id=actor.id)

        for line in priced:
            decrement(location_id, line["product_id"], line["quantity"], sale_id=sale.id, user_id=actor.id)
            db.session.add(SaleLine(sale_id=sale.id, **line))

        sale_id = sale.id
        queue_event(SaleCreated(
            sale_id=sale_id,
            location_id=location_id,
            total_cents=total_cents,
            timestamp=created_at,
        ))

    logger.info(
        "Sale %s committed location=%s seller=%s method=%s total=%s",
        sale_id, location_id, actor.id, request.payment_method, format_cents(total_cents),
    )
    return get_sale(sale_id)


def _visible_to(query, actor):
    if actor is None or actor.is_admin:
        return query
    if actor.location_id is not None:
        return query.filter((Sale.location_id == actor.location_id) | (Sale.seller_id == actor.id))
    return query.filter(Sale.seller_id == actor.id)


def get_sale(sale_id: int, *, actor=None) -> Sale:
    query = db.session.query(Sale).options(selectinload(Sale.lines)).filter(Sale.id == sale_id)
    sale = _visible_to(query, actor).first()
    if sale is None:
        raise SaleNotFoundError(f"Sale {sale_id} not found", {"sale_id": sale_id})
    return sale


def list_sales(
    *,
    actor=None,
    location_id: int | None = None,
    seller_id: int | None = None,
    shift_id: int | None = None,
    customer_id: int | None = None,
    payment_method: str | None = None,
    start=None,
    end=None,
    limit: int = 100,
) -> list[Sale]:
    query = _visible_to(db.session.query(Sale).options(selectinload(Sale.lines)), actor)
    if location_id is not None:
        query = query.filter(Sale.location_id == location_id)
    if seller_id is not None:
        query = query.filter(Sale.seller_id == seller_id)
    if shift_id is not None:
        query = query.filter(Sale.shift_id == shift_id)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    if payment_method:
        query = query.filter(Sale.payment_method == payment_method.upper())
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)
    return query.order_by(Sale.id.desc()).limit(limit).all()
