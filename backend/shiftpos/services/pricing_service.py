# Overview: Unit price resolution for sale lines, including the price override policy.

"""
Pricing Resolver

WHY: The sale coordinator never reads Product.price_cents directly. All
pricing goes through `resolve`, so per-location pricing can be added here
without touching the transaction logic.

Override policy (PRICE_OVERRIDE_POLICY, admins are never restricted):
- NOT_ABOVE_CATALOG: sellers may discount, never mark up
- ADMIN_ONLY: sellers may not override at all
- ALLOW: any positive override is accepted
"""

from __future__ import annotations

from flask import current_app

from ..errors import PriceOverrideError
from ..validation import MAX_PRICE_CENTS, ValidationError

POLICY_NOT_ABOVE_CATALOG = "NOT_ABOVE_CATALOG"
POLICY_ADMIN_ONLY = "ADMIN_ONLY"
POLICY_ALLOW = "ALLOW"
OVERRIDE_POLICIES = (POLICY_NOT_ABOVE_CATALOG, POLICY_ADMIN_ONLY, POLICY_ALLOW)


def resolve(product, location_id: int | None = None) -> int:
    """Catalog unit price for `product` at `location_id`, in cents."""
    return int(product.price_cents)


def current_policy() -> str:
    policy = (current_app.config.get("PRICE_OVERRIDE_POLICY") or POLICY_NOT_ABOVE_CATALOG).upper()
    if policy not in OVERRIDE_POLICIES:
        raise ValueError(f"Unknown PRICE_OVERRIDE_POLICY: {policy}")
    return policy


def apply_override(
    product,
    location_id: int | None,
    requested_unit_price_cents: int | None,
    actor,
) -> tuple[int, int]:
    """
    Decide the charged unit price for one line.

    Returns (unit_price_cents, catalog_price_cents). Without an override
    both are the resolved catalog price.
    """
    catalog = resolve(product, location_id)
    if requested_unit_price_cents is None or requested_unit_price_cents == catalog:
        return catalog, catalog

    if requested_unit_price_cents <= 0 or requested_unit_price_cents > MAX_PRICE_CENTS:
        raise ValidationError(
            "Requested unit price must be > 0",
            {"product_id": product.id, "requested_unit_price_cents": requested_unit_price_cents},
        )

    if actor is not None and actor.is_admin:
        return requested_unit_price_cents, catalog

    policy = current_policy()
    details = {
        "product_id": product.id,
        "catalog_price_cents": catalog,
        "requested_unit_price_cents": requested_unit_price_cents,
        "policy": policy,
    }
    if policy == POLICY_ADMIN_ONLY:
        raise PriceOverrideError("Only administrators may override prices", details)
    if policy == POLICY_NOT_ABOVE_CATALOG and requested_unit_price_cents > catalog:
        raise PriceOverrideError("Price override cannot exceed the catalog price", details)
    return requested_unit_price_cents, catalog
