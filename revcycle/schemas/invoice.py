"""
Invoice and doctor recommendation schemas.

Invoices are immutable once built apart from ``payment_status``; the
total is always derived from the items.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field

from revcycle.core.enums import (
    InvoiceItemType,
    InvoicePaymentStatus,
    RecommendationStatus,
)
from revcycle.utils.money import money_sum


DESCRIPTION_MAX_LENGTH = 500
SERVICE_ID_MAX_LENGTH = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvoiceItem(BaseModel):
    """Single invoice line."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    description: str = Field(..., min_length=1, max_length=DESCRIPTION_MAX_LENGTH)
    amount: Decimal = Field(gt=0)
    item_type: InvoiceItemType = InvoiceItemType.OTHER
    recommendation_id: Optional[str] = None


class InvoiceItemInput(BaseModel):
    """Line item as supplied by billing staff."""

    description: str = Field(..., max_length=DESCRIPTION_MAX_LENGTH)
    amount: Decimal
    item_type: InvoiceItemType = InvoiceItemType.OTHER


class Invoice(BaseModel):
    """Itemized bill owed by a patient."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    invoice_number: str
    patient_id: str
    claim_id: Optional[str] = None
    items: tuple[InvoiceItem, ...]
    due_date: date
    payment_status: InvoicePaymentStatus = InvoicePaymentStatus.UNPAID
    recommendation_ids: tuple[str, ...] = ()
    currency: str = "INR"
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    version: int = 1
    updated_at: datetime = Field(default_factory=_utcnow)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_amount(self) -> Decimal:
        return money_sum(item.amount for item in self.items)


class DoctorRecommendation(BaseModel):
    """Clinician-proposed billable service awaiting invoicing."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    appointment_id: str
    patient_id: str
    service_id: str = Field(..., min_length=1, max_length=SERVICE_ID_MAX_LENGTH)
    service_name: Optional[str] = Field(default=None, max_length=DESCRIPTION_MAX_LENGTH)
    recommended_price: Decimal = Field(gt=0)
    status: RecommendationStatus = RecommendationStatus.PENDING
    invoice_id: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    version: int = 1
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def description(self) -> str:
        return self.service_name or f"Service {self.service_id}"
