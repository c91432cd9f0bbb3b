"""
Risk Scoring Gateway.

Wraps the external scoring model behind the provider gateway:
- Live: POSTs the scoring features to the model service over HTTP
- Demo: deterministic heuristic over the coded attributes

The model itself is a black box; this module only moves features out
and scores back in, under a strict time budget.
"""

import logging
from decimal import Decimal
from typing import Any, Optional, Protocol

import httpx

from revcycle.core.config import EngineSettings, get_engine_settings
from revcycle.core.enums import RiskScoringProvider
from revcycle.gateways.base import (
    BaseGateway,
    GatewayConfig,
    GatewayError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from revcycle.schemas.risk import (
    ContributingFactor,
    RiskAssessment,
    ScoringFeatures,
    rank_factors,
)
from revcycle.utils.errors import UpstreamTimeoutError

logger = logging.getLogger(__name__)


class RiskScoreProvider(Protocol):
    """Anything that can turn scoring features into a risk assessment."""

    async def score(self, features: ScoringFeatures) -> RiskAssessment:
        """Score one entity. Raises UpstreamTimeoutError on failure."""
        ...


# =============================================================================
# Demo Heuristic
# =============================================================================


HIGH_AMOUNT = Decimal("100000")
ELEVATED_AMOUNT = Decimal("50000")
BASELINE_SCORE = 10.0


def heuristic_assessment(features: ScoringFeatures, factor_limit: int = 5) -> RiskAssessment:
    """Deterministic denial-risk estimate used in demo mode."""
    attrs = features.attributes
    factors: list[ContributingFactor] = []

    if attrs.prior_denial_count:
        factors.append(
            ContributingFactor.of(
                "prior_denials",
                min(attrs.prior_denial_count * 12.0, 36.0),
                f"{attrs.prior_denial_count} prior denial(s) for this patient",
            )
        )
    if attrs.documentation_complete is False:
        factors.append(
            ContributingFactor.of("documentation_incomplete", 20.0, "Supporting documents missing")
        )
    elif attrs.documentation_complete is True:
        factors.append(
            ContributingFactor.of("documentation_complete", -8.0, "All documents attached")
        )
    if not attrs.icd_codes:
        factors.append(ContributingFactor.of("missing_diagnosis_codes", 10.0))
    if not attrs.cpt_codes:
        factors.append(ContributingFactor.of("missing_procedure_codes", 8.0))
    if attrs.prior_authorization is False:
        factors.append(ContributingFactor.of("no_prior_authorization", 10.0))
    elif attrs.prior_authorization is True:
        factors.append(ContributingFactor.of("prior_authorization_on_file", -6.0))
    if attrs.days_since_service is not None and attrs.days_since_service > 90:
        factors.append(
            ContributingFactor.of("late_submission", 12.0, f"{attrs.days_since_service} days after service")
        )
    if attrs.is_emergency:
        factors.append(ContributingFactor.of("emergency_admission", 5.0))
    if features.amount is not None:
        if features.amount > HIGH_AMOUNT:
            factors.append(ContributingFactor.of("high_claim_amount", 15.0))
        elif features.amount > ELEVATED_AMOUNT:
            factors.append(ContributingFactor.of("elevated_claim_amount", 8.0))

    score = BASELINE_SCORE + sum(f.impact for f in factors)
    ranked = rank_factors(factors, factor_limit)
    if ranked:
        drivers = ", ".join(f.name.replace("_", " ") for f in ranked[:3])
        explanation = f"Estimated denial risk driven by: {drivers}"
    else:
        explanation = "No risk drivers found in the supplied attributes"

    return RiskAssessment(
        score=score,
        explanation=explanation,
        factors=ranked,
        confidence=0.6,
        provider=RiskScoringProvider.DEMO.value,
    )


# =============================================================================
# Gateway
# =============================================================================


class RiskScoringGateway(BaseGateway[ScoringFeatures, RiskAssessment, RiskScoringProvider]):
    """
    Risk scoring gateway with primary/fallback providers.

    ``score`` is the only entry point the engine uses. Any failure,
    including a blown time budget, surfaces as UpstreamTimeoutError so
    callers can keep the prior score.
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        settings = settings or get_engine_settings()
        config = GatewayConfig(
            primary_provider=settings.RISK_SCORING_PRIMARY_PROVIDER.value,
            fallback_provider=(
                settings.RISK_SCORING_FALLBACK_PROVIDER.value
                if settings.RISK_SCORING_FALLBACK_PROVIDER
                else None
            ),
            timeout_seconds=settings.RISK_SCORING_TIMEOUT_SECONDS,
        )
        super().__init__(config)
        self._settings = settings
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def gateway_name(self) -> str:
        return "RiskScoring"

    def _parse_provider(self, provider_str: str) -> RiskScoringProvider:
        return RiskScoringProvider(provider_str)

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._settings.RISK_SCORING_TIMEOUT_SECONDS
            )
        return self._http_client

    async def _execute_request(
        self, request: ScoringFeatures, provider: RiskScoringProvider
    ) -> RiskAssessment:
        if provider == RiskScoringProvider.DEMO:
            return heuristic_assessment(request, self._settings.TOP_FACTOR_LIMIT)
        if provider == RiskScoringProvider.LIVE:
            return await self._score_remote(request)
        raise ProviderUnavailableError(f"Unknown provider: {provider}")

    async def _score_remote(self, request: ScoringFeatures) -> RiskAssessment:
        """POST features to the model service and parse its answer."""
        headers = {"Content-Type": "application/json"}
        if self._settings.RISK_SCORING_API_KEY:
            headers["Authorization"] = f"Bearer {self._settings.RISK_SCORING_API_KEY}"

        try:
            response = await self._client().post(
                self._settings.RISK_SCORING_URL,
                json=request.model_dump(mode="json"),
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                "Scoring request timed out", provider="live", original_error=e
            )
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(
                f"Could not reach scoring service: {e}", provider="live", original_error=e
            )

        if response.status_code == 429:
            raise ProviderRateLimitError("Scoring service rate limited", provider="live")
        if response.status_code >= 400:
            raise GatewayError(
                f"Scoring service returned {response.status_code}", provider="live"
            )

        return self._parse_assessment(response.json())

    def _parse_assessment(self, payload: dict[str, Any]) -> RiskAssessment:
        """Accept both ``score`` and ``ai_risk_score`` style payloads."""
        score = payload.get("score", payload.get("ai_risk_score"))
        if score is None:
            raise GatewayError("Scoring response has no score", provider="live")

        factors = []
        for raw in payload.get("factors") or payload.get("contributing_factors") or []:
            impact = float(raw.get("impact", 0.0))
            if raw.get("direction") == "decreases" and impact > 0:
                impact = -impact
            factors.append(ContributingFactor.of(raw["name"], impact, raw.get("description")))

        return RiskAssessment(
            score=float(score),
            explanation=payload.get("explanation") or payload.get("ai_explanation"),
            factors=rank_factors(factors, self._settings.TOP_FACTOR_LIMIT),
            confidence=payload.get("confidence"),
            provider=RiskScoringProvider.LIVE.value,
        )

    async def score(self, features: ScoringFeatures) -> RiskAssessment:
        """Score one entity within the configured time budget."""
        result = await self.execute(features)
        if result.success and result.data is not None:
            return result.data

        reason = "timed out" if result.timed_out else "failed"
        raise UpstreamTimeoutError(
            f"Risk scoring {reason}: {result.error}",
            entity_id=features.entity_id,
            timeout_seconds=self._settings.RISK_SCORING_TIMEOUT_SECONDS,
        )

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
        await super().close()
