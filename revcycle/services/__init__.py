"""
Engine services: claim ledger, invoice builder, payment processor and
risk sync scheduler.
"""

from revcycle.services.claim_ledger import ClaimLedger
from revcycle.services.claim_state_machine import (
    ClaimStateMachine,
    TransitionEvent,
    get_claim_state_machine,
)
from revcycle.services.engine import RevenueCycleEngine, get_engine, reset_engine
from revcycle.services.events import Event, EventBus, EventType
from revcycle.services.invoice_builder import InvoiceBuilder
from revcycle.services.payment_processor import PaymentProcessor, settlement_status
from revcycle.services.risk_sync import (
    HttpRiskScoreSource,
    LedgerRiskScoreSource,
    RiskSyncScheduler,
    merge_snapshot,
)
from revcycle.services.store import RevenueCycleStore

__all__ = [
    "ClaimLedger",
    "ClaimStateMachine",
    "TransitionEvent",
    "get_claim_state_machine",
    "RevenueCycleEngine",
    "get_engine",
    "reset_engine",
    "Event",
    "EventBus",
    "EventType",
    "InvoiceBuilder",
    "PaymentProcessor",
    "settlement_status",
    "HttpRiskScoreSource",
    "LedgerRiskScoreSource",
    "RiskSyncScheduler",
    "merge_snapshot",
    "RevenueCycleStore",
]
