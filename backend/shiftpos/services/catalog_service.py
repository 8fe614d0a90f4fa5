"""
Catalog Service - products and locations

The sale engine reads the catalog (active flag, catalog price) and never
writes it. Products and locations are soft-deleted only, so historical
sales, shifts and stock rows keep valid references.
"""
from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from ..errors import LocationInactiveError, ProductNotFoundError
from ..extensions import db
from ..models import Location, Product
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    enforce_rules_product,
    validate_payload,
)
from .concurrency import queue_event, run_with_retry, unit_of_work
from .event_service import PriceChanged

logger = logging.getLogger(__name__)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"sku", "name", "description", "category", "price_cents", "is_active"},
    required_on_create={"sku", "name", "price_cents"},
)

LOCATION_POLICY = ModelValidationPolicy(
    writable_fields={"name", "address", "phone", "is_active"},
    required_on_create={"name"},
)


def _paginate(query, page: int | None, per_page: int | None) -> dict:
    # If no pagination requested, return all items
    if page is None:
        items = query.all()
        return {"items": [i.to_dict() for i in items], "count": len(items)}

    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    items = query.offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": [i.to_dict() for i in items],
        "count": len(items),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


# ---------------------------------------------------------------- products


def list_products(
    *,
    include_inactive: bool = False,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(Product.name.ilike(like) | Product.sku.ilike(like))
    return _paginate(query.order_by(Product.name.asc(), Product.id.asc()), page, per_page)


def get_product(product_id: int) -> Product:
    product = db.session.query(Product).populate_existing().filter_by(id=product_id).first()
    if product is None:
        raise ProductNotFoundError(f"Product {product_id} not found", {"missing_product_ids": [product_id]})
    return product


def create_product(payload: dict) -> Product:
    """
    Create product from a raw JSON payload.

    Raises:
        ValidationError: payload fails column or price rules
        ConflictError: SKU already exists
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    if db.session.query(Product.id).filter(Product.sku == patch["sku"]).first():
        raise ConflictError("SKU already exists.", {"sku": patch["sku"]})

    try:
        with unit_of_work():
            product = Product(**patch)
            db.session.add(product)
            db.session.flush()
            product_id = product.id
    except IntegrityError as exc:
        raise ConflictError("SKU already exists.", {"sku": patch["sku"]}) from exc

    logger.info("Product %s created sku=%s", product_id, patch["sku"])
    return get_product(product_id)


def update_product(product_id: int, payload: dict) -> Product:
    """
    Update a product. A price change queues a PriceChanged event that is
    published once the update commits.
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)

    def _op():
        with unit_of_work():
            product = get_product(product_id)

            if "sku" in patch and patch["sku"] != product.sku:
                clash = (
                    db.session.query(Product.id)
                    .filter(Product.sku == patch["sku"], Product.id != product.id)
                    .first()
                )
                if clash:
                    raise ConflictError("SKU already exists.", {"sku": patch["sku"]})

            old_price = product.price_cents
            for key, value in patch.items():
                setattr(product, key, value)

            if "price_cents" in patch and patch["price_cents"] != old_price:
                queue_event(PriceChanged(
                    product_id=product.id,
                    old_price_cents=old_price,
                    new_price_cents=patch["price_cents"],
                ))
        return get_product(product_id)

    try:
        return run_with_retry(_op)
    except IntegrityError as exc:
        raise ConflictError("SKU already exists.", {"sku": patch.get("sku")}) from exc


def deactivate_product(product_id: int) -> Product:
    """Soft-delete: preserve IDs and historical references."""
    with unit_of_work():
        product = get_product(product_id)
        if product.is_active:
            product.is_active = False
    return get_product(product_id)


# --------------------------------------------------------------- locations


def list_locations(*, include_inactive: bool = False) -> list[Location]:
    query = db.session.query(Location)
    if not include_inactive:
        query = query.filter(Location.is_active.is_(True))
    return query.order_by(Location.name.asc()).all()


def get_location(location_id: int) -> Location:
    location = db.session.query(Location).populate_existing().filter_by(id=location_id).first()
    if location is None:
        raise LocationInactiveError(f"Location {location_id} not found", {"location_id": location_id})
    return location


def create_location(payload: dict) -> Location:
    patch = validate_payload(model=Location, payload=payload, policy=LOCATION_POLICY, partial=False)
    try:
        with unit_of_work():
            location = Location(**patch)
            db.session.add(location)
            db.session.flush()
            location_id = location.id
    except IntegrityError as exc:
        raise ConflictError("Location name already exists.", {"name": patch.get("name")}) from exc
    logger.info("Location %s created name=%s", location_id, patch["name"])
    return get_location(location_id)


def update_location(location_id: int, payload: dict) -> Location:
    patch = validate_payload(model=Location, payload=payload, policy=LOCATION_POLICY, partial=True)
    try:
        with unit_of_work():
            location = get_location(location_id)
            for key, value in patch.items():
                setattr(location, key, value)
    except IntegrityError as exc:
        raise ConflictError("Location name already exists.", {"name": patch.get("name")}) from exc
    return get_location(location_id)


def deactivate_location(location_id: int) -> Location:
    return update_location(location_id, {"is_active": False})
