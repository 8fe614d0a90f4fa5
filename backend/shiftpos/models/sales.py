from __future__ import annotations

from sqlalchemy import event, inspect

from ..errors import ImmutableRecordError
from ..extensions import db
from ..time_utils import to_utc_z

PAYMENT_CASH = "CASH"
PAYMENT_CREDIT = "CREDIT"
PAYMENT_MIXED = "MIXED"
PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_CREDIT, PAYMENT_MIXED)

SALE_COMPLETED = "COMPLETED"
SALE_CANCELLED = "CANCELLED"


class Sale(db.Model):
    """
    Committed sale document.

    WHY: A sale is the atomic outcome of stock, credit and pricing checks made
    together. It is written once by the sale coordinator with its lines in the
    same transaction as the stock decrements and the credit debit.

    IMMUTABLE: No column is ever updated after insert (see listeners below).
    Corrections are separate documents, never edits.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("total_cents >= 0", name="ck_sales_total_non_negative"),
        db.CheckConstraint("credit_applied_cents >= 0", name="ck_sales_credit_non_negative"),
        db.CheckConstraint("credit_applied_cents <= total_cents", name="ck_sales_credit_within_total"),
        # Shift reconciliation sums cash sales per shift
        db.Index("ix_sales_shift_status_method", "shift_id", "status", "payment_method"),
        db.Index("ix_sales_location_created", "location_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    # NULL for admin sales made directly against a location
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)

    payment_method = db.Column(db.String(16), nullable=False)  # CASH, CREDIT, MIXED
    status = db.Column(db.String(16), nullable=False, default=SALE_COMPLETED, index=True)

    # All amounts in cents
    total_cents = db.Column(db.Integer, nullable=False)
    credit_applied_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_tendered_cents = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    lines = db.relationship(
        "SaleLine",
        backref="sale",
        lazy=True,
        order_by="SaleLine.line_number",
        cascade="all, delete-orphan",
    )
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    location = db.relationship("Location", backref=db.backref("sales", lazy=True))
    seller = db.relationship("User", backref=db.backref("sales", lazy=True))
    shift = db.relationship("Shift", backref=db.backref("sales", lazy=True))

    @property
    def cash_portion_cents(self) -> int:
        """Cash kept in the drawer for this sale (tendered excess is change)."""
        if self.payment_method == PAYMENT_CASH:
            return self.total_cents
        if self.payment_method == PAYMENT_MIXED:
            return self.total_cents - (self.credit_applied_cents or 0)
        return 0

    @property
    def change_due_cents(self) -> int:
        if self.cash_tendered_cents is None:
            return 0
        return max(0, self.cash_tendered_cents - self.cash_portion_cents)

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "location_id": self.location_id,
            "seller_id": self.seller_id,
            "customer_id": self.customer_id,
            "shift_id": self.shift_id,
            "payment_method": self.payment_method,
            "status": self.status,
            "total_cents": self.total_cents,
            "credit_applied_cents": self.credit_applied_cents,
            "cash_tendered_cents": self.cash_tendered_cents,
            "cash_portion_cents": self.cash_portion_cents,
            "change_due_cents": self.change_due_cents,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """
    One product line of a sale.

    Prices are snapshots: unit_price_cents is what was charged,
    catalog_price_cents is what the catalog said at sale time. They differ
    only when a price override was accepted.
    """
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_number", name="uq_sale_lines_sale_line_number"),
        db.CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_positive"),
        db.CheckConstraint("unit_price_cents > 0", name="ck_sale_lines_unit_price_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    line_number = db.Column(db.Integer, nullable=False)  # 1-based, request order
    quantity = db.Column(db.Integer, nullable=False)

    unit_price_cents = db.Column(db.Integer, nullable=False)
    catalog_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product")

    @property
    def is_price_override(self) -> bool:
        return self.unit_price_cents != self.catalog_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "line_number": self.line_number,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "catalog_price_cents": self.catalog_price_cents,
            "subtotal_cents": self.subtotal_cents,
            "is_price_override": self.is_price_override,
        }


def _changed_columns(target) -> list[str]:
    # Collection changes (lines appended) also mark a parent dirty; only columns count.
    state = inspect(target)
    return [attr.key for attr in state.mapper.column_attrs if state.attrs[attr.key].history.has_changes()]


@event.listens_for(Sale, "before_update")
@event.listens_for(SaleLine, "before_update")
def _reject_sale_update(mapper, connection, target):
    changed = _changed_columns(target)
    if changed:
        raise ImmutableRecordError(
            f"{type(target).__name__} {target.id} is immutable",
            {"entity": type(target).__name__, "id": target.id, "fields": changed},
        )


@event.listens_for(Sale, "before_delete")
@event.listens_for(SaleLine, "before_delete")
def _reject_sale_delete(mapper, connection, target):
    raise ImmutableRecordError(
        f"{type(target).__name__} {target.id} cannot be deleted",
        {"entity": type(target).__name__, "id": target.id},
    )
