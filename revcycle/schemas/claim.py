"""
Claim schemas.

``Claim`` is the ledger's record. Instances handed out by the ledger are
snapshots; the ledger swaps in a new copy on every write.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field

from revcycle.core.enums import ClaimStatus, DecisionAction, RiskTier
from revcycle.schemas.risk import (
    CodedAttributes,
    ContributingFactor,
    RiskSnapshot,
    risk_tier as tier_for,
)

DECIDABLE_STATUSES = frozenset({ClaimStatus.PENDING, ClaimStatus.RESUBMITTED})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Claim(BaseModel):
    """Billing request submitted to a payer."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    claim_number: str
    patient_id: str
    payer_name: str
    amount: Decimal = Field(gt=0)
    status: ClaimStatus = ClaimStatus.PENDING

    # Risk overlay
    risk_score: Optional[float] = Field(default=None, ge=0, le=100)
    risk_explanation: Optional[str] = None
    risk_factors: list[ContributingFactor] = Field(default_factory=list)
    risk_scored_at: Optional[datetime] = None
    risk_error: Optional[str] = None

    # Lifecycle
    submitted_by: Optional[str] = None
    submitted_at: datetime = Field(default_factory=_utcnow)
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None

    # Links
    appointment_id: Optional[str] = None
    resubmitted_from: Optional[str] = None
    attributes: CodedAttributes = Field(default_factory=CodedAttributes)

    version: int = 1
    updated_at: datetime = Field(default_factory=_utcnow)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def risk_tier(self) -> Optional[RiskTier]:
        return tier_for(self.risk_score)

    @property
    def is_scorable(self) -> bool:
        """Only claims still awaiting a payer decision take new scores."""
        return self.status in DECIDABLE_STATUSES

    def to_snapshot(self) -> RiskSnapshot:
        """Risk overlay view served to pollers."""
        return RiskSnapshot(
            entity_id=self.id,
            score=self.risk_score,
            explanation=self.risk_explanation,
            factors=self.risk_factors,
            tier=self.risk_tier,
            scored_at=self.risk_scored_at,
            error=self.risk_error,
            version=self.version,
        )


class ClaimSubmission(BaseModel):
    """Input to ``ClaimLedger.submit``."""

    patient_id: str = Field(..., min_length=1)
    payer_name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal
    appointment_id: Optional[str] = None
    attributes: Optional[CodedAttributes] = None


class ClaimDecision(BaseModel):
    """Payer decision request."""

    claim_id: str
    action: DecisionAction


class ClaimApprovedEvent(BaseModel):
    """Emitted when a claim is approved; billing staff invoice it later."""

    claim_id: str
    claim_number: str
    patient_id: str
    amount: Decimal
    approved_at: datetime
    approved_by: Optional[str] = None


class RescoreSummary(BaseModel):
    """Outcome of a batch rescore."""

    updated: list[str] = Field(default_factory=list)
    stale: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    claims: list[Claim] = Field(default_factory=list)
