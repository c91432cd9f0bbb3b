"""
Payment schemas.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from revcycle.core.enums import InvoicePaymentStatus, PaymentMethod
from revcycle.schemas.invoice import Invoice, InvoiceItem


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Payment(BaseModel):
    """Payment record applied to an invoice."""

    id: str = Field(default_factory=lambda: f"PAY-{uuid4().hex[:12].upper()}")
    invoice_id: str
    amount_paid: Decimal = Field(gt=0)
    method: PaymentMethod
    external_txn_id: Optional[str] = None
    order_id: Optional[str] = None
    paid_at: datetime = Field(default_factory=_utcnow)
    recorded_by: Optional[str] = None


class PaymentResult(BaseModel):
    """A payment together with the invoice state it produced."""

    payment: Payment
    invoice: Invoice
    replayed: bool = False


class GatewayOrder(BaseModel):
    """Payment intent opened with the external gateway."""

    order_id: str
    invoice_id: Optional[str] = None
    amount: Decimal
    amount_minor: int  # paise / cents, as the checkout widget expects
    currency: str
    key_id: str
    receipt: Optional[str] = None
    status: str = "created"
    created_at: datetime = Field(default_factory=_utcnow)


class GatewayVerification(BaseModel):
    """Outcome of a verified gateway payment."""

    order_id: str
    payment_id: str
    invoice_id: Optional[str] = None
    verified: bool = True
    replayed: bool = False
    payment: Optional[Payment] = None
    invoice: Optional[Invoice] = None
    verified_at: datetime = Field(default_factory=_utcnow)


class InvoiceReceipt(BaseModel):
    """Rendered summary of an invoice and what has been paid against it."""

    invoice_id: str
    invoice_number: str
    patient_id: str
    claim_id: Optional[str] = None
    items: list[InvoiceItem]
    total_amount: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    payment_status: InvoicePaymentStatus
    due_date: date
    currency: str
    payments: list[Payment] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=_utcnow)

    def render_text(self) -> str:
        """Plain-text receipt for printing or email bodies."""
        lines = [
            f"Receipt for {self.invoice_number}",
            f"Patient: {self.patient_id}",
            "",
        ]
        for item in self.items:
            lines.append(f"  {item.description:<40} {item.amount:>12} {self.currency}")
        lines.extend(
            [
                "",
                f"  {'Total':<40} {self.total_amount:>12} {self.currency}",
                f"  {'Paid':<40} {self.amount_paid:>12} {self.currency}",
                f"  {'Balance due':<40} {self.balance_due:>12} {self.currency}",
                f"Status: {self.payment_status.value}",
            ]
        )
        return "\n".join(lines)
