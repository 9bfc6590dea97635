"""
Tier Catalog - static mapping from provider price ids / lookup keys to tier ids
"""
import logging
from typing import Dict, Iterable, List, NamedTuple, Optional

from config.settings import Settings, TIER_PRO, TIER_VIP
from exceptions import ConfigurationError

logger = logging.getLogger(__name__)

PAID_TIERS = (TIER_PRO, TIER_VIP)


class TierEntry(NamedTuple):
    price_key: str
    tier_id: str
    interval: Optional[str] = None
    student: bool = False
    product_id: Optional[str] = None


class TierCatalog:
    """
    Pure lookup over configured price entries. No state beyond the entries
    it was built from.
    """

    def __init__(self, entries: Iterable[TierEntry]):
        self._entries: Dict[str, TierEntry] = {}
        for entry in entries:
            if entry.price_key:
                self._entries[entry.price_key] = entry

    @classmethod
    def from_settings(cls, settings: Settings) -> "TierCatalog":
        entries = [
            TierEntry(settings.stripe_pro_monthly_price_id, TIER_PRO, "month", False, settings.stripe_pro_product_id),
            TierEntry(settings.stripe_pro_annual_price_id, TIER_PRO, "year", False, settings.stripe_pro_product_id),
            TierEntry(settings.stripe_vip_monthly_price_id, TIER_VIP, "month", False, settings.stripe_vip_product_id),
            TierEntry(settings.stripe_vip_annual_price_id, TIER_VIP, "year", False, settings.stripe_vip_product_id),
            TierEntry(settings.stripe_student_pro_monthly_price_id, TIER_PRO, "month", True,
                      settings.stripe_student_pro_product_id),
            TierEntry(settings.stripe_student_pro_annual_price_id, TIER_PRO, "year", True,
                      settings.stripe_student_pro_product_id),
            TierEntry(settings.stripe_student_vip_monthly_price_id, TIER_VIP, "month", True,
                      settings.stripe_student_vip_product_id),
            TierEntry(settings.stripe_student_vip_annual_price_id, TIER_VIP, "year", True,
                      settings.stripe_student_vip_product_id),
        ]
        for key, tier in settings.extra_tier_prices.items():
            if tier not in PAID_TIERS:
                raise ConfigurationError(f"EXTRA_TIER_PRICES maps {key} to unknown tier {tier!r}", price_key=key)
        entries.extend(TierEntry(key, tier) for key, tier in settings.extra_tier_prices.items())
        catalog = cls(entries)
        if not catalog:
            logger.warning("Tier catalog is empty. Every checkout will be treated as a configuration error.")
        return catalog

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, price_key: Optional[str]) -> Optional[TierEntry]:
        if not price_key:
            return None
        return self._entries.get(price_key)

    def resolve_tier(self, *price_keys: Optional[str]) -> Optional[str]:
        """Tier id for the first key that maps, or None when nothing does."""
        for key in price_keys:
            entry = self.get(key)
            if entry is not None:
                return entry.tier_id
        return None

    def is_student_price(self, price_key: str) -> bool:
        entry = self.get(price_key)
        return bool(entry and entry.student)

    def products_for(self, student: bool) -> List[dict]:
        """Portal product set: each product with the prices it may switch between."""
        products: Dict[str, List[str]] = {}
        for entry in self._entries.values():
            if entry.student != student or not entry.product_id:
                continue
            products.setdefault(entry.product_id, []).append(entry.price_key)
        return [{"product": product, "prices": prices} for product, prices in products.items()]
