"""
Claims API Endpoints.

Provides:
- Claim submission and resubmission
- Listing (patients see their own claims only)
- Batch rescoring and "predict before creating"
- Payer decisions (approve/reject)
"""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from revcycle.api.deps import Actor, get_engine, require_permission
from revcycle.core.enums import ClaimStatus, Permission
from revcycle.schemas import (
    Claim,
    ClaimDecision,
    CodedAttributes,
    RescoreSummary,
    RiskAssessment,
    ScoringFeatures,
)
from revcycle.services.engine import RevenueCycleEngine

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/claims",
    tags=["claims"],
)


# =============================================================================
# Request Schemas
# =============================================================================


class ClaimCreate(BaseModel):
    """Schema for submitting a claim."""

    patient_id: str = Field(..., min_length=1)
    payer_name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal
    appointment_id: Optional[str] = None
    attributes: Optional[CodedAttributes] = None


class RescoreRequest(BaseModel):
    """Rescore every open claim, or only ``claim_ids``."""

    claim_ids: Optional[list[str]] = None


class ResubmitRequest(BaseModel):
    attributes: Optional[CodedAttributes] = None


# =============================================================================
# Endpoints
# =============================================================================


@router.post("", response_model=Claim, status_code=status.HTTP_201_CREATED)
async def submit_claim(
    payload: ClaimCreate,
    actor: Actor = Depends(require_permission(Permission.CLAIMS_CREATE)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> Claim:
    """Submit a claim; the response carries the initial risk score when available."""
    return await engine.claims.submit(
        patient_id=payload.patient_id,
        payer_name=payload.payer_name,
        amount=payload.amount,
        appointment_id=payload.appointment_id,
        attributes=payload.attributes,
        submitted_by=actor.user_id,
    )


@router.get("", response_model=list[Claim])
async def list_claims(
    patient_id: Optional[str] = Query(None),
    claim_status: Optional[ClaimStatus] = Query(None, alias="status"),
    actor: Actor = Depends(require_permission(Permission.CLAIMS_READ)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> list[Claim]:
    return engine.claims.list_claims(
        patient_id=actor.scope_patient(patient_id),
        status=claim_status,
    )


@router.post("/predict", response_model=RiskAssessment)
async def predict_risk(
    features: ScoringFeatures,
    actor: Actor = Depends(require_permission(Permission.CLAIMS_PREDICT)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> RiskAssessment:
    """
    Score a claim before it is created.

    A scoring timeout is returned as 504 rather than a default score.
    """
    return await engine.claims.predict(features)


@router.post("/rescore", response_model=RescoreSummary)
async def rescore_claims(
    payload: RescoreRequest,
    actor: Actor = Depends(require_permission(Permission.CLAIMS_RESCORE)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> RescoreSummary:
    logger.info(f"Rescore requested by {actor.user_id}")
    return await engine.claims.rescore(payload.claim_ids)


@router.post("/manage", response_model=Claim)
async def decide_claim(
    decision: ClaimDecision,
    actor: Actor = Depends(require_permission(Permission.CLAIMS_DECIDE)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> Claim:
    """Approve or reject a pending claim."""
    return await engine.claims.decide(
        decision.claim_id,
        decision.action,
        decided_by=actor.user_id,
        permissions=actor.permissions,
    )


@router.post("/{claim_id}/resubmit", response_model=Claim, status_code=status.HTTP_201_CREATED)
async def resubmit_claim(
    claim_id: str,
    payload: Optional[ResubmitRequest] = None,
    actor: Actor = Depends(require_permission(Permission.CLAIMS_CREATE)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> Claim:
    return await engine.claims.resubmit(
        claim_id,
        attributes=payload.attributes if payload else None,
        submitted_by=actor.user_id,
        permissions=actor.permissions,
    )


@router.get("/{claim_id}", response_model=Claim)
async def get_claim(
    claim_id: str,
    actor: Actor = Depends(require_permission(Permission.CLAIMS_READ)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> Claim:
    claim = engine.claims.get(claim_id)
    actor.ensure_owns(claim.patient_id)
    return claim
