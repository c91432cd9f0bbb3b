"""
Unit tests for the risk scoring gateway and the demo heuristic.
"""

import asyncio
import json
from decimal import Decimal

import httpx
import pytest
from pydantic import ValidationError as PydanticValidationError

from revcycle.core.enums import FactorDirection, ProviderStatus, RiskScoringProvider, RiskTier
from revcycle.gateways.base import GatewayConfig, ProviderHealth
from revcycle.gateways.risk_gateway import RiskScoringGateway, heuristic_assessment
from revcycle.schemas import CodedAttributes, ContributingFactor, ScoringFeatures, rank_factors
from revcycle.schemas.risk import RiskAssessment, risk_tier
from revcycle.utils.errors import UpstreamTimeoutError


class TestRiskTier:
    @pytest.mark.parametrize(
        "score,tier",
        [(0, RiskTier.LOW), (39.99, RiskTier.LOW), (40, RiskTier.MEDIUM), (70, RiskTier.HIGH)],
    )
    def test_banding(self, score, tier):
        assert risk_tier(score) == tier

    def test_unscored(self):
        assert risk_tier(None) is None

    def test_score_is_clamped(self):
        assert RiskAssessment(score=130).score == 100.0
        assert RiskAssessment(score=-3).score == 0.0

    @pytest.mark.parametrize("score", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_score_rejected(self, score):
        with pytest.raises(PydanticValidationError):
            RiskAssessment(score=score)


class TestRankFactors:
    def test_sorted_by_absolute_impact(self):
        factors = [
            ContributingFactor.of("small", 2.0),
            ContributingFactor.of("negative", -15.0),
            ContributingFactor.of("large", 10.0),
        ]
        assert [f.name for f in rank_factors(factors)] == ["negative", "large", "small"]
        assert rank_factors(factors)[0].direction == FactorDirection.DECREASES

    def test_limit(self):
        factors = [ContributingFactor.of(f"f{i}", float(i)) for i in range(10)]
        assert len(rank_factors(factors, limit=3)) == 3


class TestHeuristic:
    """Tests for the deterministic demo heuristic."""

    def test_clean_claim_scores_low(self):
        features = ScoringFeatures(
            amount=Decimal("1000"),
            attributes=CodedAttributes(
                icd_codes=["J18.9"],
                cpt_codes=["99213"],
                documentation_complete=True,
                prior_authorization=True,
            ),
        )
        assessment = heuristic_assessment(features)

        assert assessment.score == 0.0
        assert assessment.tier == RiskTier.LOW
        assert assessment.provider == RiskScoringProvider.DEMO.value

    def test_risky_claim_scores_high(self):
        features = ScoringFeatures(
            amount=Decimal("150000"),
            attributes=CodedAttributes(
                prior_denial_count=2,
                documentation_complete=False,
                prior_authorization=False,
                days_since_service=120,
            ),
        )
        assessment = heuristic_assessment(features)

        assert assessment.score == 100.0
        assert assessment.tier == RiskTier.HIGH
        assert assessment.factors[0].name == "prior_denials"
        assert len(assessment.factors) == 5

    def test_prior_denials_are_capped(self):
        few = heuristic_assessment(
            ScoringFeatures(attributes=CodedAttributes(prior_denial_count=3))
        )
        many = heuristic_assessment(
            ScoringFeatures(attributes=CodedAttributes(prior_denial_count=9))
        )
        assert few.score == many.score


class TestGatewayHealth:
    def test_circuit_opens_after_threshold(self):
        health = ProviderHealth()
        for _ in range(3):
            health.record_failure("boom", circuit_breaker_threshold=3, timeout_seconds=60)
        assert health.is_circuit_open
        assert health.status == ProviderStatus.UNHEALTHY

    def test_success_resets(self):
        health = ProviderHealth()
        health.record_failure("boom", circuit_breaker_threshold=3, timeout_seconds=60)
        health.record_success(12.0)
        assert health.consecutive_failures == 0
        assert health.status == ProviderStatus.HEALTHY

    def test_config_defaults(self):
        config = GatewayConfig(primary_provider="demo")
        assert config.fallback_provider is None
        assert config.rate_limit_retries == 1


class TestRiskScoringGateway:
    """Tests for the gateway entry point."""

    @pytest.mark.asyncio
    async def test_demo_provider(self, engine_settings):
        gateway = RiskScoringGateway(engine_settings)

        assessment = await gateway.score(ScoringFeatures(amount=Decimal("500")))

        assert 0 <= assessment.score <= 100
        assert gateway.get_provider_status("demo").status == ProviderStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_live_provider_parses_payload(self, engine_settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "ai_risk_score": 72,
                    "ai_explanation": "Documentation gaps",
                    "contributing_factors": [
                        {"name": "documentation_incomplete", "impact": 20, "direction": "increases"},
                        {"name": "prior_authorization_on_file", "impact": 6, "direction": "decreases"},
                        {"name": "prior_denials", "impact": 24},
                    ],
                },
            )

        settings = engine_settings.model_copy(
            update={
                "RISK_SCORING_PRIMARY_PROVIDER": RiskScoringProvider.LIVE,
                "RISK_SCORING_API_KEY": "model-key",
            }
        )
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        gateway = RiskScoringGateway(settings, http_client=http)

        assessment = await gateway.score(
            ScoringFeatures(entity_id="claim-1", amount=Decimal("1000"))
        )

        assert seen["auth"] == "Bearer model-key"
        assert seen["body"]["entity_id"] == "claim-1"
        assert assessment.score == 72.0
        assert assessment.explanation == "Documentation gaps"
        assert [f.name for f in assessment.factors] == [
            "prior_denials",
            "documentation_incomplete",
            "prior_authorization_on_file",
        ]
        assert assessment.factors[-1].impact == -6.0

    @pytest.mark.asyncio
    async def test_live_error_raises_upstream_error(self, engine_settings):
        settings = engine_settings.model_copy(
            update={"RISK_SCORING_PRIMARY_PROVIDER": RiskScoringProvider.LIVE}
        )
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        gateway = RiskScoringGateway(settings, http_client=http)

        with pytest.raises(UpstreamTimeoutError):
            await gateway.score(ScoringFeatures(entity_id="claim-1"))
        assert gateway.get_provider_status("live").error_count == 1

    @pytest.mark.asyncio
    async def test_live_nan_score_is_a_failed_call(self, engine_settings):
        settings = engine_settings.model_copy(
            update={"RISK_SCORING_PRIMARY_PROVIDER": RiskScoringProvider.LIVE}
        )
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"score": "NaN"}))
        )
        gateway = RiskScoringGateway(settings, http_client=http)

        with pytest.raises(UpstreamTimeoutError):
            await gateway.score(ScoringFeatures(entity_id="claim-1"))
        assert gateway.get_provider_status("live").error_count == 1

    @pytest.mark.asyncio
    async def test_time_budget(self, engine_settings):
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1.0)
            return httpx.Response(200, json={"score": 10})

        settings = engine_settings.model_copy(
            update={
                "RISK_SCORING_PRIMARY_PROVIDER": RiskScoringProvider.LIVE,
                "RISK_SCORING_TIMEOUT_SECONDS": 0.05,
            }
        )
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        gateway = RiskScoringGateway(settings, http_client=http)

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await gateway.score(ScoringFeatures(entity_id="claim-1"))
        assert "timed out" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_fallback_to_demo(self, engine_settings):
        settings = engine_settings.model_copy(
            update={
                "RISK_SCORING_PRIMARY_PROVIDER": RiskScoringProvider.LIVE,
                "RISK_SCORING_FALLBACK_PROVIDER": RiskScoringProvider.DEMO,
            }
        )
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503)))
        gateway = RiskScoringGateway(settings, http_client=http)

        result = await gateway.execute(ScoringFeatures(entity_id="claim-1"))

        assert result.success
        assert result.fallback_used
        assert result.provider_used == "demo"
