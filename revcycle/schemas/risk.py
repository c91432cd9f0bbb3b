"""
Risk scoring schemas.

The scoring-input contract (``CodedAttributes``, ``ScoringFeatures``) and
what the provider hands back (``RiskAssessment``). The snapshot type is
what the sync scheduler polls.
"""

import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from revcycle.core.enums import FactorDirection, RiskEntityType, RiskTier

LOW_RISK_CEILING = 40.0
MEDIUM_RISK_CEILING = 70.0


def risk_tier(score: Optional[float]) -> Optional[RiskTier]:
    """Band a 0-100 score: low below 40, medium below 70, high otherwise."""
    if score is None:
        return None
    if score < LOW_RISK_CEILING:
        return RiskTier.LOW
    if score < MEDIUM_RISK_CEILING:
        return RiskTier.MEDIUM
    return RiskTier.HIGH


class CodedAttributes(BaseModel):
    """
    Optional coded inputs used only for scoring.

    Every field may be omitted. Codes are passed through as given; the
    engine does not check them against a code set.
    """

    model_config = ConfigDict(extra="forbid")

    icd_codes: list[str] = Field(default_factory=list)
    cpt_codes: list[str] = Field(default_factory=list)
    documentation_complete: Optional[bool] = None
    prior_denial_count: Optional[int] = Field(default=None, ge=0)
    prior_authorization: Optional[bool] = None
    days_since_service: Optional[int] = Field(default=None, ge=0)
    patient_age: Optional[int] = Field(default=None, ge=0, le=150)
    is_emergency: Optional[bool] = None
    length_of_stay_days: Optional[int] = Field(default=None, ge=0)


class ScoringFeatures(BaseModel):
    """Request payload sent to the risk scoring provider."""

    entity_type: RiskEntityType = RiskEntityType.CLAIM
    entity_id: Optional[str] = None
    patient_id: Optional[str] = None
    payer_name: Optional[str] = None
    amount: Optional[Decimal] = None
    attributes: CodedAttributes = Field(default_factory=CodedAttributes)


class ContributingFactor(BaseModel):
    """One ranked driver of a risk score."""

    name: str
    impact: float  # signed; positive pushes the score up
    direction: FactorDirection
    description: Optional[str] = None

    @classmethod
    def of(cls, name: str, impact: float, description: Optional[str] = None) -> "ContributingFactor":
        """Build a factor with direction derived from the impact sign."""
        direction = FactorDirection.INCREASES if impact >= 0 else FactorDirection.DECREASES
        return cls(name=name, impact=impact, direction=direction, description=description)


def rank_factors(
    factors: list[ContributingFactor],
    limit: int = 5,
) -> list[ContributingFactor]:
    """Sort by absolute impact descending and keep the top ``limit``.

    ``sorted`` is stable, so equal impacts keep provider order.
    """
    return sorted(factors, key=lambda f: abs(f.impact), reverse=True)[:limit]


class RiskAssessment(BaseModel):
    """A single score returned by the scoring provider."""

    score: float
    explanation: Optional[str] = None
    factors: list[ContributingFactor] = Field(default_factory=list)
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    provider: Optional[str] = None
    scored_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("score")
    @classmethod
    def clamp_score(cls, v: float) -> float:
        """Scores are percentages; providers occasionally overshoot."""
        value = float(v)
        if not math.isfinite(value):
            raise ValueError("Risk score must be a finite number")
        return round(min(max(value, 0.0), 100.0), 2)

    @property
    def tier(self) -> Optional[RiskTier]:
        return risk_tier(self.score)

    def top_factors(self, limit: int = 5) -> list[ContributingFactor]:
        return rank_factors(self.factors, limit)


class RiskSnapshot(BaseModel):
    """Current risk overlay for one entity, as served to pollers."""

    entity_id: str
    entity_type: RiskEntityType = RiskEntityType.CLAIM
    score: Optional[float] = None
    explanation: Optional[str] = None
    factors: list[ContributingFactor] = Field(default_factory=list)
    tier: Optional[RiskTier] = None
    scored_at: Optional[datetime] = None
    error: Optional[str] = None
    version: int = 0
