"""
External provider gateways: risk scoring and the payment gateway.
"""

from revcycle.gateways.base import (
    BaseGateway,
    GatewayConfig,
    GatewayError,
    GatewayResult,
    ProviderHealth,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from revcycle.gateways.payment_gateway import (
    PaymentGatewayClient,
    sign,
    verify_signature,
)
from revcycle.gateways.risk_gateway import (
    RiskScoreProvider,
    RiskScoringGateway,
    heuristic_assessment,
)

__all__ = [
    "BaseGateway",
    "GatewayConfig",
    "GatewayError",
    "GatewayResult",
    "ProviderHealth",
    "ProviderRateLimitError",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
    "PaymentGatewayClient",
    "sign",
    "verify_signature",
    "RiskScoreProvider",
    "RiskScoringGateway",
    "heuristic_assessment",
]
