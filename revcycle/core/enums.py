"""
Core Enumerations for the Revenue Cycle Engine.

Claim, invoice, payment and recommendation lifecycles plus the
provider/role enums shared by the gateways and the API layer.
"""

from enum import Enum


# =============================================================================
# Provider Configuration Enums
# =============================================================================


class RiskScoringProvider(str, Enum):
    """Available risk scoring providers."""

    LIVE = "live"  # Remote scoring service over HTTP
    DEMO = "demo"  # Deterministic local heuristic


class GatewayMode(str, Enum):
    """Payment gateway operating mode."""

    DEMO = "demo"  # Orders minted locally, no network calls
    LIVE = "live"  # Real gateway API


class InitialScoringMode(str, Enum):
    """How a freshly submitted claim gets its first risk score."""

    INLINE = "inline"  # Awaited inside submit, bounded by the scoring timeout
    BACKGROUND = "background"  # Fire-and-forget task


class ProviderStatus(str, Enum):
    """Health status of a provider."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


# =============================================================================
# Claim Processing Enums
# =============================================================================


class ClaimStatus(str, Enum):
    """Claim lifecycle status.

    State Machine Transitions:
    PENDING -> APPROVED | DENIED
    RESUBMITTED -> APPROVED | DENIED

    RESUBMITTED is only ever the initial status of a new claim created
    from a DENIED one.
    """

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    RESUBMITTED = "RESUBMITTED"


class DecisionAction(str, Enum):
    """Payer decision on a claim."""

    APPROVE = "approve"
    REJECT = "reject"


class RiskTier(str, Enum):
    """Banding of a 0-100 risk score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FactorDirection(str, Enum):
    """Whether a contributing factor pushes the score up or down."""

    INCREASES = "increases"
    DECREASES = "decreases"


class RiskEntityType(str, Enum):
    """Entities that can carry a risk score."""

    CLAIM = "claim"
    INVOICE = "invoice"
    APPOINTMENT = "appointment"


# =============================================================================
# Billing Enums
# =============================================================================


class InvoicePaymentStatus(str, Enum):
    """Invoice settlement status. Only ever advances UNPAID -> PARTIAL -> PAID."""

    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class InvoiceItemType(str, Enum):
    """Kinds of invoice line items."""

    CONSULTATION = "CONSULTATION"
    LAB = "LAB"
    PROCEDURE = "PROCEDURE"
    MEDICATION = "MEDICATION"
    ROOM = "ROOM"
    SERVICE = "SERVICE"
    OTHER = "OTHER"


class RecommendationStatus(str, Enum):
    """Doctor recommendation lifecycle."""

    PENDING = "PENDING"
    INVOICED = "INVOICED"
    PAID = "PAID"


class PaymentMethod(str, Enum):
    """Payment method values."""

    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    BANK_TRANSFER = "bank_transfer"
    INSURANCE = "insurance"
    GATEWAY = "gateway"


# =============================================================================
# Security Enums
# =============================================================================


class Role(str, Enum):
    """System roles for RBAC."""

    SUPER_ADMIN = "SUPER_ADMIN"  # System-wide admin
    HOSPITAL_ADMIN = "HOSPITAL_ADMIN"  # Hospital administrator
    BILLING = "BILLING"  # Billing staff
    INSURANCE = "INSURANCE"  # Payer-side claim reviewer
    AI_ANALYST = "AI_ANALYST"  # Risk model monitoring, read-mostly
    PATIENT = "PATIENT"
    DOCTOR = "DOCTOR"


class Permission(str, Enum):
    """Granular permissions for RBAC."""

    # Claims
    CLAIMS_READ = "claims:read"
    CLAIMS_CREATE = "claims:create"
    CLAIMS_DECIDE = "claims:decide"
    CLAIMS_RESCORE = "claims:rescore"
    CLAIMS_PREDICT = "claims:predict"

    # Invoices
    INVOICES_READ = "invoices:read"
    INVOICES_CREATE = "invoices:create"

    # Payments
    PAYMENTS_READ = "payments:read"
    PAYMENTS_CREATE = "payments:create"

    # Doctor recommendations
    RECOMMENDATIONS_READ = "recommendations:read"
    RECOMMENDATIONS_CREATE = "recommendations:create"

    # Risk
    RISK_READ = "risk:read"
