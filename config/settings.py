"""
Configuration settings for the application
"""
from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Normalized tier ids
TIER_BASIC = "basic"
TIER_PRO = "pro"
TIER_VIP = "vip"


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Core authentication and security
    jwt_secret_key: Optional[str] = Field(default=None, alias="JWT_SECRET_KEY")

    # Stripe billing configuration
    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_webhook_tolerance_seconds: int = Field(default=300, alias="STRIPE_WEBHOOK_TOLERANCE_SECONDS")

    # Tier catalog: regular products
    stripe_pro_monthly_price_id: Optional[str] = Field(default=None, alias="STRIPE_PRO_MONTHLY_PRICE_ID")
    stripe_pro_annual_price_id: Optional[str] = Field(default=None, alias="STRIPE_PRO_ANNUAL_PRICE_ID")
    stripe_vip_monthly_price_id: Optional[str] = Field(default=None, alias="STRIPE_VIP_MONTHLY_PRICE_ID")
    stripe_vip_annual_price_id: Optional[str] = Field(default=None, alias="STRIPE_VIP_ANNUAL_PRICE_ID")
    stripe_pro_product_id: Optional[str] = Field(default=None, alias="STRIPE_PRO_PRODUCT_ID")
    stripe_vip_product_id: Optional[str] = Field(default=None, alias="STRIPE_VIP_PRODUCT_ID")

    # Tier catalog: student products
    stripe_student_pro_monthly_price_id: Optional[str] = Field(default=None, alias="STRIPE_STUDENT_PRO_MONTHLY_PRICE_ID")
    stripe_student_pro_annual_price_id: Optional[str] = Field(default=None, alias="STRIPE_STUDENT_PRO_ANNUAL_PRICE_ID")
    stripe_student_vip_monthly_price_id: Optional[str] = Field(default=None, alias="STRIPE_STUDENT_VIP_MONTHLY_PRICE_ID")
    stripe_student_vip_annual_price_id: Optional[str] = Field(default=None, alias="STRIPE_STUDENT_VIP_ANNUAL_PRICE_ID")
    stripe_student_pro_product_id: Optional[str] = Field(default=None, alias="STRIPE_STUDENT_PRO_PRODUCT_ID")
    stripe_student_vip_product_id: Optional[str] = Field(default=None, alias="STRIPE_STUDENT_VIP_PRODUCT_ID")

    # Additional price id / lookup key -> tier id mappings (JSON object)
    extra_tier_prices: Dict[str, str] = Field(default_factory=dict, alias="EXTRA_TIER_PRICES")

    # Trial and reconciliation behaviour
    trial_period_days: int = Field(default=7, alias="TRIAL_PERIOD_DAYS")
    reconciliation_timeout_seconds: float = Field(default=10.0, alias="RECONCILIATION_TIMEOUT_SECONDS")

    # Infrastructure configuration
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./sql_app.db", alias="DATABASE_URL")

    # Frontend configuration
    frontend_url: Optional[str] = Field(default="http://localhost:3000", alias="FRONTEND_URL")

    # Render.com deployment configuration
    render: Optional[str] = Field(default=None, alias="RENDER")
    render_external_url: Optional[str] = Field(default=None, alias="RENDER_EXTERNAL_URL")
    render_service_name: Optional[str] = Field(default=None, alias="RENDER_SERVICE_NAME")

    # Environment configuration
    env: Optional[str] = Field(default=None, alias="ENV")


# Instantiate settings object
settings = Settings()

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.render) or bool(settings.env and settings.env.lower() == "production")
