import pytest

from shiftpos.errors import PriceOverrideError
from shiftpos.services import pricing_service
from shiftpos.validation import ValidationError


def test_resolve_returns_catalog_price(product_a, location):
    assert pricing_service.resolve(product_a, location.id) == 1000


def test_no_override_uses_catalog(product_a, location, seller):
    assert pricing_service.apply_override(product_a, location.id, None, seller) == (1000, 1000)


def test_seller_discount_allowed_by_default(product_a, location, seller):
    assert pricing_service.apply_override(product_a, location.id, 800, seller) == (800, 1000)


def test_seller_markup_denied_by_default(product_a, location, seller):
    with pytest.raises(PriceOverrideError) as exc_info:
        pricing_service.apply_override(product_a, location.id, 1200, seller)
    assert exc_info.value.details["catalog_price_cents"] == 1000
    assert exc_info.value.http_status == 403


def test_admin_only_policy_blocks_sellers(app, monkeypatch, product_a, location, seller, admin):
    monkeypatch.setitem(app.config, "PRICE_OVERRIDE_POLICY", "ADMIN_ONLY")
    with pytest.raises(PriceOverrideError):
        pricing_service.apply_override(product_a, location.id, 900, seller)
    assert pricing_service.apply_override(product_a, location.id, 900, admin) == (900, 1000)


def test_allow_policy_accepts_markup(app, monkeypatch, product_a, location, seller):
    monkeypatch.setitem(app.config, "PRICE_OVERRIDE_POLICY", "ALLOW")
    assert pricing_service.apply_override(product_a, location.id, 1500, seller) == (1500, 1000)


def test_admin_markup_allowed(product_a, location, admin):
    assert pricing_service.apply_override(product_a, location.id, 5000, admin) == (5000, 1000)


def test_requested_price_matching_catalog_is_not_an_override(app, monkeypatch, product_a, location, seller):
    monkeypatch.setitem(app.config, "PRICE_OVERRIDE_POLICY", "ADMIN_ONLY")
    assert pricing_service.apply_override(product_a, location.id, 1000, seller) == (1000, 1000)


@pytest.mark.parametrize("price", [0, -5])
def test_non_positive_override_rejected(product_a, location, admin, price):
    with pytest.raises(ValidationError):
        pricing_service.apply_override(product_a, location.id, price, admin)


def test_unknown_policy_is_a_configuration_error(app, monkeypatch):
    monkeypatch.setitem(app.config, "PRICE_OVERRIDE_POLICY", "WHATEVER")
    with pytest.raises(ValueError):
        pricing_service.current_policy()
