"""
Unit tests for the tier catalog
"""
import pytest

from config.settings import Settings
from exceptions import ConfigurationError
from services.tier_catalog import TierCatalog
from tests.conftest import PRO_MONTHLY, STUDENT_PRO_MONTHLY, VIP_MONTHLY


def test_resolve_known_price(catalog):
    assert catalog.resolve_tier(PRO_MONTHLY) == "pro"
    assert catalog.resolve_tier(VIP_MONTHLY) == "vip"


def test_resolve_by_lookup_key(catalog):
    assert catalog.resolve_tier(None, "vip_yearly_lookup") == "vip"


def test_resolve_uses_first_mapped_key(catalog):
    assert catalog.resolve_tier("price_unknown", PRO_MONTHLY) == "pro"


def test_unknown_price_is_not_found(catalog):
    assert catalog.resolve_tier("price_unknown") is None
    assert catalog.resolve_tier() is None
    assert catalog.resolve_tier(None, "") is None


def test_student_axis(catalog):
    assert catalog.is_student_price(STUDENT_PRO_MONTHLY) is True
    assert catalog.is_student_price(PRO_MONTHLY) is False
    assert catalog.is_student_price("price_unknown") is False


def test_products_for_portal(catalog):
    regular = catalog.products_for(student=False)
    student = catalog.products_for(student=True)

    assert {"product": "prod_pro", "prices": ["price_pro_monthly", "price_pro_annual"]} in regular
    assert {"product": "prod_vip", "prices": [VIP_MONTHLY]} in regular
    assert student == [{"product": "prod_student_pro", "prices": [STUDENT_PRO_MONTHLY]}]


def test_from_settings_skips_unset_prices():
    settings = Settings(
        STRIPE_PRO_MONTHLY_PRICE_ID="price_a",
        STRIPE_STUDENT_VIP_ANNUAL_PRICE_ID="price_b",
        EXTRA_TIER_PRICES={"legacy_pro": "pro"},
    )
    catalog = TierCatalog.from_settings(settings)

    assert len(catalog) == 3
    assert catalog.resolve_tier("price_a") == "pro"
    assert catalog.resolve_tier("price_b") == "vip"
    assert catalog.is_student_price("price_b") is True
    assert catalog.resolve_tier("legacy_pro") == "pro"


def test_from_settings_rejects_unknown_extra_tier():
    settings = Settings(EXTRA_TIER_PRICES={"price_gold": "gold"})

    with pytest.raises(ConfigurationError) as exc_info:
        TierCatalog.from_settings(settings)
    assert exc_info.value.price_key == "price_gold"
