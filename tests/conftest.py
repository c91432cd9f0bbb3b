"""
Pytest Configuration and Fixtures.
Shared test fixtures for all test modules.
"""

import asyncio
import os
from typing import Union

import pytest

# API settings are read at import time.
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-revcycle-suite-0123456789")
os.environ.setdefault("ENVIRONMENT", "testing")

from revcycle.core.config import EngineSettings  # noqa: E402
from revcycle.core.enums import InitialScoringMode  # noqa: E402
from revcycle.schemas import ContributingFactor, RiskAssessment, ScoringFeatures  # noqa: E402
from revcycle.services.engine import RevenueCycleEngine  # noqa: E402

GATEWAY_SECRET = "test_gateway_secret_key"

ScriptedScore = Union[float, Exception, tuple]


class StubScorer:
    """
    Scripted risk scoring provider.

    Each call pops the next entry of ``script``: a score, an exception
    to raise, or ``(score_or_exception, delay_seconds)``. With an empty
    script it returns ``default_score``.
    """

    def __init__(self, default_score: float = 50.0):
        self.default_score = default_score
        self.script: list[ScriptedScore] = []
        self.calls: list[ScoringFeatures] = []

    async def score(self, features: ScoringFeatures) -> RiskAssessment:
        self.calls.append(features)
        entry = self.script.pop(0) if self.script else self.default_score
        delay = 0.0
        if isinstance(entry, tuple):
            entry, delay = entry
        if delay:
            await asyncio.sleep(delay)
        if isinstance(entry, Exception):
            raise entry
        return RiskAssessment(
            score=entry,
            explanation=f"stub score {entry}",
            factors=[
                ContributingFactor.of("prior_denials", 12.0),
                ContributingFactor.of("documentation_complete", -8.0),
            ],
            provider="stub",
        )


@pytest.fixture
def engine_settings() -> EngineSettings:
    """Engine settings pinned for tests, independent of the environment."""
    return EngineSettings(
        INITIAL_SCORING_MODE=InitialScoringMode.INLINE,
        INVOICE_GRACE_PERIOD_DAYS=30,
        PAYMENT_GATEWAY_KEY_SECRET=GATEWAY_SECRET,
        RISK_SCORING_TIMEOUT_SECONDS=1.0,
        RISK_SYNC_INTERVAL_SECONDS=20.0,
        CURRENCY="INR",
    )


@pytest.fixture
def scorer() -> StubScorer:
    return StubScorer()


@pytest.fixture
def engine(engine_settings: EngineSettings, scorer: StubScorer) -> RevenueCycleEngine:
    """Fresh engine with a scripted scorer and a demo payment gateway."""
    return RevenueCycleEngine(settings=engine_settings, scorer=scorer)


@pytest.fixture
def ledger(engine: RevenueCycleEngine):
    return engine.claims


@pytest.fixture
def builder(engine: RevenueCycleEngine):
    return engine.invoices


@pytest.fixture
def processor(engine: RevenueCycleEngine):
    return engine.payments


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "api: mark test as an API test")
