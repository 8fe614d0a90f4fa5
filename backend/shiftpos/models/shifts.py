from __future__ import annotations

from sqlalchemy import event, inspect, select, text

from ..errors import ImmutableRecordError
from ..extensions import db
from ..time_utils import to_utc_z

SHIFT_OPEN = "OPEN"
SHIFT_CLOSED = "CLOSED"


class Shift(db.Model):
    """
    Seller cash-drawer shift at one location.

    WHY: Cash accountability. Each shift records the opening float and the
    counted closing cash; expected cash and variance are computed from the
    shift's committed sales when it closes.

    LIFECYCLE:
    - OPEN: seller can take sales, at most one per seller
    - CLOSED: reconciled, terminal

    IMMUTABLE: Once closed, a shift cannot be reopened or modified.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        # One OPEN shift per seller, even under racing opens
        db.Index(
            "uq_shifts_one_open_per_seller",
            "seller_id",
            unique=True,
            sqlite_where=text("status = 'OPEN'"),
            postgresql_where=text("status = 'OPEN'"),
        ),
        db.CheckConstraint("opening_float_cents >= 0", name="ck_shifts_opening_float_non_negative"),
        db.CheckConstraint(
            "closing_cash_cents IS NULL OR closing_cash_cents >= 0",
            name="ck_shifts_closing_cash_non_negative",
        ),
        db.Index("ix_shifts_location_opened", "location_id", "opened_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=SHIFT_OPEN, index=True)  # OPEN, CLOSED

    # Cash tracking (all amounts in cents)
    opening_float_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_cash_cents = db.Column(db.Integer, nullable=True)  # Set when closing

    # Calculated when closing
    expected_cash_cents = db.Column(db.Integer, nullable=True)  # opening + cash portion of sales
    variance_cents = db.Column(db.Integer, nullable=True)  # closing - expected

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    seller = db.relationship("User", backref=db.backref("shifts", lazy=True))
    location = db.relationship("Location", backref=db.backref("shifts", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == SHIFT_OPEN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "location_id": self.location_id,
            "status": self.status,
            "opening_float_cents": self.opening_float_cents,
            "closing_cash_cents": self.closing_cash_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "variance_cents": self.variance_cents,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "notes": self.notes,
            "version_id": self.version_id,
        }


@event.listens_for(Shift, "before_update")
def _reject_closed_shift_update(mapper, connection, target):
    state = inspect(target)
    status_history = state.attrs.status.history
    if status_history.deleted:
        previous = status_history.deleted[0]
    elif status_history.unchanged:
        previous = status_history.unchanged[0]
    else:
        # Expired or never loaded: the stored row is the only source of truth.
        previous = connection.execute(
            select(Shift.__table__.c.status).where(Shift.__table__.c.id == target.id)
        ).scalar()

    # OPEN -> CLOSED is the close itself; anything after that is a rewrite.
    if previous != SHIFT_CLOSED:
        return

    changed = [
        attr.key
        for attr in state.mapper.column_attrs
        if attr.key != "version_id" and state.attrs[attr.key].history.has_changes()
    ]
    if changed:
        raise ImmutableRecordError(
            f"Shift {target.id} is closed and cannot be modified",
            {"entity": "Shift", "id": target.id, "fields": changed},
        )
