"""
Invoice and Doctor Recommendation API Endpoints.

Billing staff invoice approved claims or fold pending doctor
recommendations into an invoice; patients read their own invoices.
"""

import logging
from decimal import Decimal
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from revcycle.api.deps import Actor, get_engine, require_permission
from revcycle.core.enums import Permission, RecommendationStatus
from revcycle.schemas import (
    ClaimApprovedEvent,
    DoctorRecommendation,
    Invoice,
    InvoiceItem,
    InvoiceItemInput,
    InvoiceReceipt,
)
from revcycle.schemas.invoice import DESCRIPTION_MAX_LENGTH, SERVICE_ID_MAX_LENGTH
from revcycle.services.engine import RevenueCycleEngine

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/invoices",
    tags=["invoices"],
)

recommendations_router = APIRouter(
    prefix="/api/doctor-recommendations",
    tags=["doctor-recommendations"],
)


# =============================================================================
# Request Schemas
# =============================================================================


class InvoiceFromClaim(BaseModel):
    claim_id: str
    items: list[InvoiceItemInput] = Field(default_factory=list)


class InvoiceFromRecommendations(BaseModel):
    patient_id: str
    recommendation_ids: list[str] = Field(default_factory=list)


class RecommendationCreate(BaseModel):
    appointment_id: str = Field(..., min_length=1)
    patient_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1, max_length=SERVICE_ID_MAX_LENGTH)
    recommended_price: Decimal
    service_name: Optional[str] = Field(default=None, max_length=DESCRIPTION_MAX_LENGTH)
    notes: Optional[str] = None


# =============================================================================
# Invoices
# =============================================================================


@router.post("/generate", response_model=Invoice, status_code=status.HTTP_201_CREATED)
async def generate_invoice(
    payload: InvoiceFromClaim,
    actor: Actor = Depends(require_permission(Permission.INVOICES_CREATE)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> Invoice:
    """Invoice an approved claim."""
    return await engine.invoices.from_claim(
        payload.claim_id, payload.items, created_by=actor.user_id
    )


@router.post(
    "/from-recommendations", response_model=Invoice, status_code=status.HTTP_201_CREATED
)
async def invoice_recommendations(
    payload: InvoiceFromRecommendations,
    actor: Actor = Depends(require_permission(Permission.INVOICES_CREATE)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> Invoice:
    return await engine.invoices.from_recommendations(
        payload.patient_id, payload.recommendation_ids, created_by=actor.user_id
    )


@router.get("", response_model=list[Invoice])
async def list_invoices(
    patient_id: Optional[str] = Query(None),
    actor: Actor = Depends(require_permission(Permission.INVOICES_READ)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> list[Invoice]:
    return engine.invoices.list_invoices(patient_id=actor.scope_patient(patient_id))


@router.get("/awaiting", response_model=list[ClaimApprovedEvent])
async def awaiting_invoice(
    actor: Actor = Depends(require_permission(Permission.INVOICES_CREATE)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> list[ClaimApprovedEvent]:
    """Approved claims that have not been invoiced yet."""
    return engine.invoices.awaiting_invoice()


@router.get("/{invoice_id}/items", response_model=list[InvoiceItem])
async def invoice_items(
    invoice_id: str,
    actor: Actor = Depends(require_permission(Permission.INVOICES_READ)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> list[InvoiceItem]:
    actor.ensure_owns(engine.invoices.get(invoice_id).patient_id)
    return engine.invoices.items(invoice_id)


@router.get("/{invoice_id}/receipt", response_model=None)
async def invoice_receipt(
    invoice_id: str,
    format: str = Query("json", pattern="^(json|text)$"),
    actor: Actor = Depends(require_permission(Permission.INVOICES_READ)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> Union[InvoiceReceipt, PlainTextResponse]:
    actor.ensure_owns(engine.invoices.get(invoice_id).patient_id)
    receipt = engine.invoices.receipt(invoice_id)
    if format == "text":
        return PlainTextResponse(receipt.render_text())
    return receipt


# =============================================================================
# Doctor Recommendations
# =============================================================================


@recommendations_router.post(
    "", response_model=DoctorRecommendation, status_code=status.HTTP_201_CREATED
)
async def create_recommendation(
    payload: RecommendationCreate,
    actor: Actor = Depends(require_permission(Permission.RECOMMENDATIONS_CREATE)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> DoctorRecommendation:
    return await engine.invoices.recommend(
        appointment_id=payload.appointment_id,
        patient_id=payload.patient_id,
        service_id=payload.service_id,
        recommended_price=payload.recommended_price,
        service_name=payload.service_name,
        notes=payload.notes,
        created_by=actor.user_id,
    )


@recommendations_router.get("", response_model=list[DoctorRecommendation])
async def list_recommendations(
    patient_id: Optional[str] = Query(None),
    rec_status: Optional[RecommendationStatus] = Query(None, alias="status"),
    appointment_id: Optional[str] = Query(None),
    actor: Actor = Depends(require_permission(Permission.RECOMMENDATIONS_READ)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> list[DoctorRecommendation]:
    return engine.invoices.recommendations(
        patient_id=actor.scope_patient(patient_id),
        status=rec_status,
        appointment_id=appointment_id,
    )
