"""
Revenue Cycle Engine.

Wires the store, event bus, gateways and the four services together.
"""

import logging
from typing import Optional

from revcycle.core.config import EngineSettings, get_engine_settings
from revcycle.gateways.payment_gateway import PaymentGatewayClient
from revcycle.gateways.risk_gateway import RiskScoreProvider, RiskScoringGateway
from revcycle.services.claim_ledger import ClaimLedger
from revcycle.services.events import Event, EventBus, EventType
from revcycle.services.invoice_builder import InvoiceBuilder
from revcycle.services.payment_processor import PaymentProcessor
from revcycle.services.risk_sync import LedgerRiskScoreSource, RiskSyncScheduler
from revcycle.services.store import RevenueCycleStore

logger = logging.getLogger(__name__)


class RevenueCycleEngine:
    """Claims and billing lifecycle engine."""

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        scorer: Optional[RiskScoreProvider] = None,
        payment_gateway: Optional[PaymentGatewayClient] = None,
    ):
        self.settings = settings or get_engine_settings()
        self.store = RevenueCycleStore()
        self.events = EventBus()
        self.scorer = scorer or RiskScoringGateway(self.settings)
        self.payment_gateway = payment_gateway or PaymentGatewayClient(self.settings)

        self.claims = ClaimLedger(self.store, self.scorer, self.events, self.settings)
        self.invoices = InvoiceBuilder(self.store, self.events, self.settings)
        self.payments = PaymentProcessor(
            self.store, self.events, self.payment_gateway, self.settings
        )
        self.risk_sync = RiskSyncScheduler(
            LedgerRiskScoreSource(self.claims),
            default_interval_seconds=self.settings.RISK_SYNC_INTERVAL_SECONDS,
        )
        self.events.subscribe(EventType.RISK_UPDATED, self._on_risk_updated)

    def _on_risk_updated(self, event: Event) -> None:
        self.risk_sync.notify(event.payload.get("ids", []))

    async def close(self) -> None:
        await self.risk_sync.stop()
        await self.claims.drain()
        close_scorer = getattr(self.scorer, "close", None)
        if close_scorer is not None:
            await close_scorer()
        await self.payment_gateway.close()
        logger.info("Revenue cycle engine closed")


_engine: Optional[RevenueCycleEngine] = None


def get_engine() -> RevenueCycleEngine:
    """Get singleton engine instance."""
    global _engine
    if _engine is None:
        _engine = RevenueCycleEngine()
    return _engine


def reset_engine() -> None:
    """Drop the singleton, e.g. between tests."""
    global _engine
    _engine = None
