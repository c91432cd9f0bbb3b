"""
Schemas for the Revenue Cycle Engine.

Exports the entity records and request/response value objects.
"""

from revcycle.schemas.claim import (
    Claim,
    ClaimApprovedEvent,
    ClaimDecision,
    ClaimSubmission,
    RescoreSummary,
)
from revcycle.schemas.invoice import (
    DoctorRecommendation,
    Invoice,
    InvoiceItem,
    InvoiceItemInput,
)
from revcycle.schemas.payment import (
    GatewayOrder,
    GatewayVerification,
    InvoiceReceipt,
    Payment,
    PaymentResult,
)
from revcycle.schemas.risk import (
    CodedAttributes,
    ContributingFactor,
    RiskAssessment,
    RiskSnapshot,
    ScoringFeatures,
    rank_factors,
    risk_tier,
)

__all__ = [
    # Claims
    "Claim",
    "ClaimApprovedEvent",
    "ClaimDecision",
    "ClaimSubmission",
    "RescoreSummary",
    # Invoices
    "DoctorRecommendation",
    "Invoice",
    "InvoiceItem",
    "InvoiceItemInput",
    "InvoiceReceipt",
    # Payments
    "GatewayOrder",
    "GatewayVerification",
    "Payment",
    "PaymentResult",
    # Risk
    "CodedAttributes",
    "ContributingFactor",
    "RiskAssessment",
    "RiskSnapshot",
    "ScoringFeatures",
    "rank_factors",
    "risk_tier",
]
