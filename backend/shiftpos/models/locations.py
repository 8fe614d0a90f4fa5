from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Location(db.Model):
    """
    Physical selling location (store, kiosk, branch).

    WHY: Stock, shifts and sales are all scoped to a location. Locations are
    never deleted; an inactive location cannot open shifts or take sales.
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_locations_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    address = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Location id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "phone": self.phone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
