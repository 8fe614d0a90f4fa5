# Overview: Service-layer operations for customer accounts and store credit.

"""
Credit Account Invariants

- Customer.credit_balance_cents is never negative.
- It is only changed here, by a single conditional UPDATE evaluated in the
  database; request payloads can never assign it.
- Every change appends a CreditTransaction (DEBIT negative, TOP_UP positive)
  in the same DB transaction.
"""

from __future__ import annotations

import logging

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError

from ..errors import CustomerNotFoundError, InsufficientCreditError
from ..extensions import db
from ..models import CreditTransaction, Customer
from ..models.customers import CREDIT_DEBIT, CREDIT_TOP_UP
from ..time_utils import format_cents
from ..validation import (
    MAX_PRICE_CENTS,
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    get_int,
    validate_payload,
)
from .concurrency import unit_of_work

logger = logging.getLogger(__name__)

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "document_number", "email", "phone", "is_active"},
    required_on_create={"name"},
)


def _balance_row(customer_id: int):
    return db.session.execute(
        select(Customer.credit_balance_cents).where(Customer.id == customer_id)
    ).first()


def balance(customer_id: int) -> int:
    """Current credit balance in cents."""
    row = _balance_row(customer_id)
    if row is None:
        raise CustomerNotFoundError(f"Customer {customer_id} not found", {"customer_id": customer_id})
    return int(row.credit_balance_cents)


def debit(
    customer_id: int,
    amount_cents: int,
    *,
    sale_id: int | None = None,
    user_id: int | None = None,
) -> int:
    """
    Consume store credit; returns the new balance.

    Must be called inside a unit of work. The balance check and the write
    are one statement, so two concurrent debits can never overdraw.
    """
    if amount_cents <= 0:
        raise ValidationError("amount_cents must be > 0", {"amount_cents": amount_cents})

    result = db.session.execute(
        update(Customer)
        .where(Customer.id == customer_id, Customer.credit_balance_cents >= amount_cents)
        .values(credit_balance_cents=Customer.credit_balance_cents - amount_cents)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = balance(customer_id)
        raise InsufficientCreditError(
            "Insufficient credit balance",
            {"customer_id": customer_id, "balance": current, "requested": amount_cents},
        )

    after = balance(customer_id)
    db.session.add(CreditTransaction(
        customer_id=customer_id,
        transaction_type=CREDIT_DEBIT,
        amount_cents=-amount_cents,
        balance_after_cents=after,
        sale_id=sale_id,
        user_id=user_id,
    ))
    return after


def _credit(customer_id: int, amount_cents: int, *, user_id: int | None, reason: str | None) -> int:
    result = db.session.execute(
        update(Customer)
        .where(Customer.id == customer_id)
        .values(credit_balance_cents=Customer.credit_balance_cents + amount_cents)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise CustomerNotFoundError(f"Customer {customer_id} not found", {"customer_id": customer_id})

    after = balance(customer_id)
    db.session.add(CreditTransaction(
        customer_id=customer_id,
        transaction_type=CREDIT_TOP_UP,
        amount_cents=amount_cents,
        balance_after_cents=after,
        user_id=user_id,
        reason=reason,
    ))
    return after


def top_up(customer_id: int, amount_cents: int, *, actor=None, reason: str | None = None) -> Customer:
    """Deposit store credit on a customer account."""
    if amount_cents <= 0 or amount_cents > MAX_PRICE_CENTS:
        raise ValidationError("amount_cents must be > 0", {"amount_cents": amount_cents})

    with unit_of_work():
        after = _credit(customer_id, amount_cents, user_id=actor.id if actor else None, reason=reason)

    logger.info("Credit top-up customer=%s amount=%s balance=%s", customer_id, format_cents(amount_cents), format_cents(after))
    return get_customer(customer_id)


def list_transactions(customer_id: int, limit: int = 100) -> list[CreditTransaction]:
    get_customer(customer_id)
    return (
        db.session.query(CreditTransaction)
        .filter(CreditTransaction.customer_id == customer_id)
        .order_by(CreditTransaction.id.desc())
        .limit(limit)
        .all()
    )


def get_customer(customer_id: int) -> Customer:
    customer = db.session.query(Customer).populate_existing().filter_by(id=customer_id).first()
    if customer is None:
        raise CustomerNotFoundError(f"Customer {customer_id} not found", {"customer_id": customer_id})
    return customer


def list_customers(*, search: str | None = None, include_inactive: bool = False, limit: int = 100) -> list[Customer]:
    query = db.session.query(Customer)
    if not include_inactive:
        query = query.filter(Customer.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            Customer.name.ilike(like),
            Customer.email.ilike(like),
            Customer.document_number.ilike(like),
        ))
    return query.order_by(Customer.name.asc()).limit(limit).all()


def create_customer(payload: dict, *, actor=None) -> Customer:
    """
    Create a customer. An opening `credit_balance_cents` is accepted here
    only, and is recorded as a TOP_UP so the ledger explains the balance.
    """
    payload = dict(payload or {})
    opening = get_int(payload, "credit_balance_cents", default=0, minimum=0, maximum=MAX_PRICE_CENTS)
    payload.pop("credit_balance_cents", None)
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)

    try:
        with unit_of_work():
            customer = Customer(**patch, credit_balance_cents=0)
            db.session.add(customer)
            db.session.flush()
            if opening:
                _credit(customer.id, opening, user_id=actor.id if actor else None, reason="Opening balance")
    except IntegrityError as exc:
        raise ConflictError("Customer email already exists", {"email": patch.get("email")}) from exc

    return get_customer(customer.id)


def update_customer(customer_id: int, payload: dict) -> Customer:
    if payload and "credit_balance_cents" in payload:
        raise ValidationError(
            "credit_balance_cents cannot be set directly; use a credit top-up",
            {"field": "credit_balance_cents"},
        )
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
    try:
        with unit_of_work():
            customer = get_customer(customer_id)
            for key, value in patch.items():
                setattr(customer, key, value)
    except IntegrityError as exc:
        raise ConflictError("Customer email already exists", {"email": patch.get("email")}) from exc
    return get_customer(customer_id)
