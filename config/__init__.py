from config.settings import settings, IS_PRODUCTION, TIER_BASIC, TIER_PRO, TIER_VIP

__all__ = ["settings", "IS_PRODUCTION", "TIER_BASIC", "TIER_PRO", "TIER_VIP"]
