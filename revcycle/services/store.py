"""
In-memory Revenue Cycle Store.

Holds every entity the engine owns plus the uniqueness indexes and
per-entity locks. Records are immutable pydantic models; writers swap
in a new copy with a bumped ``version`` rather than mutating in place.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncIterator, Optional

from revcycle.schemas import (
    Claim,
    DoctorRecommendation,
    GatewayOrder,
    GatewayVerification,
    Invoice,
    Payment,
)
from revcycle.utils.money import money_sum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RevenueCycleStore:
    """Entity tables, indexes and locks shared by the engine services."""

    def __init__(self):
        self.claims: dict[str, Claim] = {}
        self.invoices: dict[str, Invoice] = {}
        self.payments: dict[str, Payment] = {}
        self.recommendations: dict[str, DoctorRecommendation] = {}
        self.orders: dict[str, GatewayOrder] = {}
        self.verifications: dict[tuple[str, str], GatewayVerification] = {}

        # Uniqueness indexes
        self.claim_by_appointment: dict[str, str] = {}
        self.invoice_by_claim: dict[str, str] = {}
        self.resubmission_of: dict[str, str] = {}
        self.payment_by_txn: dict[tuple[str, str], str] = {}
        self._payments_by_invoice: dict[str, list[str]] = defaultdict(list)

        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = defaultdict(int)
        self._sequences: dict[tuple[str, int], int] = defaultdict(int)

        # Rescore ordering: tickets issued per claim, highest applied so far.
        self._score_tickets: dict[str, int] = defaultdict(int)
        self.applied_score_ticket: dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def lock(self, kind: str, entity_id: str) -> AsyncIterator[None]:
        """Per-entity mutex, dropped once no task holds or waits on it."""
        key = f"{kind}:{entity_id}"
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._locks[key]

    @property
    def live_lock_count(self) -> int:
        return len(self._locks)

    def next_score_ticket(self, claim_id: str) -> int:
        """Issue the next rescore request number for a claim."""
        self._score_tickets[claim_id] += 1
        return self._score_tickets[claim_id]

    def next_number(self, prefix: str) -> str:
        """Human-readable sequence number, e.g. ``CLM-2025-000001``."""
        year = utcnow().year
        self._sequences[(prefix, year)] += 1
        return f"{prefix}-{year}-{self._sequences[(prefix, year)]:06d}"

    def add_payment(self, payment: Payment) -> None:
        self.payments[payment.id] = payment
        self._payments_by_invoice[payment.invoice_id].append(payment.id)
        if payment.external_txn_id:
            self.payment_by_txn[(payment.invoice_id, payment.external_txn_id)] = payment.id

    def payments_for(self, invoice_id: str) -> list[Payment]:
        return [self.payments[pid] for pid in self._payments_by_invoice.get(invoice_id, [])]

    def paid_total(self, invoice_id: str) -> Decimal:
        """Cumulative amount applied to an invoice."""
        return money_sum(p.amount_paid for p in self.payments_for(invoice_id))

    def find_payment(self, invoice_id: str, external_txn_id: str) -> Optional[Payment]:
        payment_id = self.payment_by_txn.get((invoice_id, external_txn_id))
        return self.payments.get(payment_id) if payment_id else None
