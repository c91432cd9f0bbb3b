"""
Revenue Cycle Engine Configuration
Engine-level settings for scoring, invoicing, payments and risk sync.
Source: https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from revcycle.core.enums import GatewayMode, InitialScoringMode, RiskScoringProvider


class EngineSettings(BaseSettings):
    """
    Engine configuration settings.

    All engine settings are prefixed with REVCYCLE_ in the environment.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="REVCYCLE_",
    )

    # =========================================================================
    # Invoicing
    # =========================================================================
    INVOICE_GRACE_PERIOD_DAYS: int = Field(
        default=30,
        ge=0,
        description="Days between invoice creation and its due date",
    )
    MONEY_DECIMAL_PLACES: int = Field(
        default=2,
        ge=0,
        le=4,
        description="Fixed-point scale for all monetary amounts",
    )
    CURRENCY: str = Field(
        default="INR",
        min_length=3,
        max_length=3,
        description="ISO currency code for invoices and gateway orders",
    )

    # =========================================================================
    # Risk Scoring Provider
    # =========================================================================
    RISK_SCORING_PRIMARY_PROVIDER: RiskScoringProvider = Field(
        default=RiskScoringProvider.DEMO,
        description="Primary risk scoring provider",
    )
    RISK_SCORING_FALLBACK_PROVIDER: Optional[RiskScoringProvider] = Field(
        default=None,
        description="Fallback provider when the primary fails (None keeps prior score)",
    )
    RISK_SCORING_URL: str = Field(
        default="http://localhost:8090/score",
        description="Scoring endpoint used by the live provider",
    )
    RISK_SCORING_API_KEY: Optional[str] = Field(
        default=None,
        description="Bearer token for the scoring endpoint",
    )
    RISK_SCORING_TIMEOUT_SECONDS: float = Field(
        default=5.0,
        gt=0,
        description="Budget for a single scoring call",
    )
    INITIAL_SCORING_MODE: InitialScoringMode = Field(
        default=InitialScoringMode.INLINE,
        description="Score new claims inline (bounded) or in a background task",
    )
    TOP_FACTOR_LIMIT: int = Field(
        default=5,
        ge=1,
        description="Number of contributing factors reported per score",
    )

    # =========================================================================
    # Risk Sync
    # =========================================================================
    RISK_SYNC_INTERVAL_SECONDS: float = Field(
        default=20.0,
        gt=0,
        description="Default reconciliation interval per entity set",
    )

    # =========================================================================
    # Payment Gateway
    # =========================================================================
    PAYMENT_GATEWAY_MODE: GatewayMode = Field(
        default=GatewayMode.DEMO,
        description="demo (local orders) or live (gateway API)",
    )
    PAYMENT_GATEWAY_BASE_URL: str = Field(
        default="https://api.razorpay.com/v1",
        description="Gateway REST API base URL",
    )
    PAYMENT_GATEWAY_KEY_ID: str = Field(
        default="rzp_test_demo",
        description="Public key id handed to the checkout widget",
    )
    PAYMENT_GATEWAY_KEY_SECRET: str = Field(
        default="demo_gateway_secret",
        min_length=8,
        description="Secret used for API auth and signature verification",
    )
    PAYMENT_GATEWAY_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for order creation and payment lookup",
    )

    @field_validator("CURRENCY")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        """Currency codes are stored upper-case."""
        return v.upper()

    @property
    def money_quantum(self) -> Decimal:
        """Smallest representable monetary step, e.g. Decimal('0.01')."""
        return Decimal(1).scaleb(-self.MONEY_DECIMAL_PLACES)


@lru_cache
def get_engine_settings() -> EngineSettings:
    """Get cached engine settings instance."""
    return EngineSettings()
