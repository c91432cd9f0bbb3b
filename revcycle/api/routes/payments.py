"""
Payments API Endpoints.

Provides:
- Direct payment recording
- Gateway order creation (checkout widget handle)
- Gateway payment verification (signature checked before anything is applied)
"""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from revcycle.api.deps import Actor, get_engine, require_permission
from revcycle.core.enums import PaymentMethod, Permission
from revcycle.schemas import GatewayOrder, GatewayVerification, Payment, PaymentResult
from revcycle.services.engine import RevenueCycleEngine

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/payments",
    tags=["payments"],
)


# =============================================================================
# Request Schemas
# =============================================================================


class PaymentCreate(BaseModel):
    invoice_id: str
    amount: Decimal
    method: PaymentMethod
    external_txn_id: Optional[str] = Field(None, max_length=200)


class OrderCreate(BaseModel):
    """Order for an invoice (amount defaults to the balance) or a booking."""

    invoice_id: Optional[str] = None
    amount: Optional[Decimal] = None


class PaymentVerify(BaseModel):
    order_id: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)
    invoice_id: Optional[str] = None


# =============================================================================
# Endpoints
# =============================================================================


@router.post("", response_model=PaymentResult, status_code=status.HTTP_201_CREATED)
async def record_payment(
    payload: PaymentCreate,
    actor: Actor = Depends(require_permission(Permission.PAYMENTS_CREATE)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> PaymentResult:
    """Record a payment against an invoice."""
    actor.ensure_owns(engine.invoices.get(payload.invoice_id).patient_id)
    return await engine.payments.apply_payment(
        payload.invoice_id,
        payload.amount,
        payload.method,
        external_txn_id=payload.external_txn_id,
        recorded_by=actor.user_id,
    )


@router.get("", response_model=list[Payment])
async def list_payments(
    invoice_id: Optional[str] = Query(None),
    patient_id: Optional[str] = Query(None),
    actor: Actor = Depends(require_permission(Permission.PAYMENTS_READ)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> list[Payment]:
    if invoice_id is not None:
        actor.ensure_owns(engine.invoices.get(invoice_id).patient_id)
    return engine.payments.payments(
        invoice_id=invoice_id,
        patient_id=actor.scope_patient(patient_id),
    )


@router.post("/orders", response_model=GatewayOrder, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    actor: Actor = Depends(require_permission(Permission.PAYMENTS_CREATE)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> GatewayOrder:
    if payload.invoice_id is not None:
        actor.ensure_owns(engine.invoices.get(payload.invoice_id).patient_id)
    return await engine.payments.create_order(payload.invoice_id, payload.amount)


@router.post("/verify", response_model=GatewayVerification)
async def verify_payment(
    payload: PaymentVerify,
    actor: Actor = Depends(require_permission(Permission.PAYMENTS_CREATE)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> GatewayVerification:
    """Verify the gateway signature and apply the payment."""
    return await engine.payments.verify_payment(
        payload.order_id,
        payload.payment_id,
        payload.signature,
        invoice_id=payload.invoice_id,
        recorded_by=actor.user_id,
    )
