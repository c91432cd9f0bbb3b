"""
Claim Ledger.

Owns every claim write:
- submit (with an initial risk score, inline or in the background)
- rescore (ordered per claim: an older request never overwrites a newer one)
- decide (approve/reject, exactly once)
- resubmit (new claim referencing the denied original)

Risk scoring happens outside the claim lock. The claim's ``version`` is
read before the provider call and re-checked under the lock before the
write; any intervening write, including a decision, fences the result.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Iterable, Literal, Optional

from revcycle.core.config import EngineSettings, get_engine_settings
from revcycle.core.enums import ClaimStatus, DecisionAction, InitialScoringMode, RiskEntityType
from revcycle.gateways.risk_gateway import RiskScoreProvider
from revcycle.schemas import (
    Claim,
    ClaimApprovedEvent,
    CodedAttributes,
    RescoreSummary,
    RiskAssessment,
    RiskSnapshot,
    ScoringFeatures,
)
from revcycle.services.claim_state_machine import (
    ClaimStateMachine,
    TransitionContext,
    TransitionEvent,
    get_claim_state_machine,
)
from revcycle.services.events import EventBus, EventType
from revcycle.services.store import RevenueCycleStore, utcnow
from revcycle.utils.errors import (
    ConflictError,
    DuplicateAppointmentError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    UpstreamTimeoutError,
    ValidationError,
)
from revcycle.utils.money import MoneyInput, to_money

logger = logging.getLogger(__name__)

RescoreOutcome = Literal["updated", "stale", "failed", "skipped"]


class ClaimLedger:
    """Claim records and the claim state machine."""

    def __init__(
        self,
        store: RevenueCycleStore,
        scorer: RiskScoreProvider,
        events: EventBus,
        settings: Optional[EngineSettings] = None,
        state_machine: Optional[ClaimStateMachine] = None,
    ):
        self._store = store
        self._scorer = scorer
        self._events = events
        self._settings = settings or get_engine_settings()
        self._state_machine = state_machine or get_claim_state_machine()
        self._background: set[asyncio.Task] = set()

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, claim_id: str) -> Claim:
        claim = self._store.claims.get(claim_id)
        if claim is None:
            raise NotFoundError(f"Claim {claim_id} not found", claim_id=claim_id)
        return claim

    def list_claims(
        self,
        patient_id: Optional[str] = None,
        status: Optional[ClaimStatus] = None,
    ) -> list[Claim]:
        """Claims newest first, optionally scoped to a patient or status."""
        claims = [
            c
            for c in self._store.claims.values()
            if (patient_id is None or c.patient_id == patient_id)
            and (status is None or c.status == status)
        ]
        return sorted(claims, key=lambda c: c.submitted_at, reverse=True)

    def current_scores(self, claim_ids: Iterable[str]) -> list[RiskSnapshot]:
        """Risk overlay for the requested claims. Unknown ids are omitted."""
        snapshots = []
        for claim_id in claim_ids:
            claim = self._store.claims.get(claim_id)
            if claim is not None:
                snapshots.append(claim.to_snapshot())
        return snapshots

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit(
        self,
        patient_id: str,
        payer_name: str,
        amount: MoneyInput,
        appointment_id: Optional[str] = None,
        attributes: Optional[CodedAttributes] = None,
        submitted_by: Optional[str] = None,
    ) -> Claim:
        """Create a PENDING claim and request its initial risk score."""
        value = self._validate_amount(amount)
        if not patient_id or not payer_name:
            raise ValidationError("Patient and payer are required")

        # No await between the uniqueness check and the insert.
        if appointment_id is not None and appointment_id in self._store.claim_by_appointment:
            raise DuplicateAppointmentError(
                f"Appointment {appointment_id} is already linked to a claim",
                appointment_id=appointment_id,
                claim_id=self._store.claim_by_appointment[appointment_id],
            )

        claim = Claim(
            claim_number=self._store.next_number("CLM"),
            patient_id=patient_id,
            payer_name=payer_name,
            amount=value,
            appointment_id=appointment_id,
            attributes=attributes or CodedAttributes(),
            submitted_by=submitted_by,
        )
        self._store.claims[claim.id] = claim
        if appointment_id is not None:
            self._store.claim_by_appointment[appointment_id] = claim.id

        logger.info(f"Claim {claim.claim_number} submitted for patient {patient_id}: {value}")
        await self._events.publish(
            EventType.CLAIM_SUBMITTED, claim_id=claim.id, patient_id=patient_id
        )
        await self._initial_score(claim.id)
        return self.get(claim.id)

    async def resubmit(
        self,
        claim_id: str,
        attributes: Optional[CodedAttributes] = None,
        submitted_by: Optional[str] = None,
        permissions: Optional[Iterable[str]] = None,
    ) -> Claim:
        """
        Resubmit a denied claim as a new claim in RESUBMITTED status.

        The original stays DENIED and keeps its appointment link. Each
        denied claim can be resubmitted once.
        """
        async with self._store.lock("claim", claim_id):
            original = self.get(claim_id)
            self._check_transition(original, TransitionEvent.RESUBMIT, submitted_by, permissions)

            if claim_id in self._store.resubmission_of:
                raise ConflictError(
                    f"Claim {original.claim_number} was already resubmitted",
                    claim_id=claim_id,
                    resubmission_id=self._store.resubmission_of[claim_id],
                )

            successor = Claim(
                claim_number=self._store.next_number("CLM"),
                patient_id=original.patient_id,
                payer_name=original.payer_name,
                amount=original.amount,
                status=ClaimStatus.RESUBMITTED,
                attributes=attributes or original.attributes,
                resubmitted_from=original.id,
                submitted_by=submitted_by,
            )
            self._store.claims[successor.id] = successor
            self._store.resubmission_of[claim_id] = successor.id

        logger.info(f"Claim {original.claim_number} resubmitted as {successor.claim_number}")
        await self._events.publish(
            EventType.CLAIM_SUBMITTED,
            claim_id=successor.id,
            patient_id=successor.patient_id,
            resubmitted_from=original.id,
        )
        await self._initial_score(successor.id)
        return self.get(successor.id)

    # =========================================================================
    # Decision
    # =========================================================================

    async def decide(
        self,
        claim_id: str,
        action: DecisionAction,
        decided_by: Optional[str] = None,
        permissions: Optional[Iterable[str]] = None,
    ) -> Claim:
        """
        Approve or reject a PENDING/RESUBMITTED claim.

        Raises:
            InvalidStateError: Claim was already decided
        """
        event = TransitionEvent.from_action(DecisionAction(action))
        async with self._store.lock("claim", claim_id):
            claim = self.get(claim_id)
            result = self._check_transition(claim, event, decided_by, permissions)

            now = utcnow()
            decided = claim.model_copy(
                update={
                    "status": result.to_status,
                    "processed_at": now,
                    "processed_by": decided_by,
                    "version": claim.version + 1,
                    "updated_at": now,
                }
            )
            self._store.claims[claim_id] = decided

        if decided.status == ClaimStatus.APPROVED:
            await self._events.publish(
                EventType.CLAIM_APPROVED,
                approval=ClaimApprovedEvent(
                    claim_id=decided.id,
                    claim_number=decided.claim_number,
                    patient_id=decided.patient_id,
                    amount=decided.amount,
                    approved_at=now,
                    approved_by=decided_by,
                ),
            )
        else:
            await self._events.publish(
                EventType.CLAIM_DENIED, claim_id=decided.id, patient_id=decided.patient_id
            )
        return decided

    def _check_transition(
        self,
        claim: Claim,
        event: TransitionEvent,
        actor: Optional[str],
        permissions: Optional[Iterable[str]],
    ):
        result = self._state_machine.execute_transition(
            TransitionContext(
                claim_id=claim.id,
                current_status=claim.status,
                event=event,
                triggered_by=actor,
            ),
            permissions,
        )
        if result.permission_denied:
            raise PermissionDeniedError(result.error)
        if not result.success:
            raise InvalidStateError(
                "Claim not in a decidable state"
                if event != TransitionEvent.RESUBMIT
                else "Only a denied claim can be resubmitted",
                claim_id=claim.id,
                status=claim.status.value,
                event=event.value,
            )
        return result

    # =========================================================================
    # Risk Scoring
    # =========================================================================

    async def predict(self, features: ScoringFeatures) -> RiskAssessment:
        """
        Synchronous score for the "predict before creating" flow.

        Raises:
            UpstreamTimeoutError: Provider timed out or failed
        """
        try:
            assessment = await self._scorer.score(features)
        except UpstreamTimeoutError as e:
            logger.warning(f"Prediction unavailable: {e.message}")
            raise
        return self._trim(assessment)

    async def rescore(self, claim_ids: Optional[Iterable[str]] = None) -> RescoreSummary:
        """
        Re-query scores for PENDING/RESUBMITTED claims, optionally scoped.

        Safe to call concurrently: the most recently requested result wins,
        and nothing lands once the claim has been decided.
        """
        if claim_ids is None:
            targets = [c.id for c in self._store.claims.values()]
        else:
            targets = list(dict.fromkeys(claim_ids))
            missing = [cid for cid in targets if cid not in self._store.claims]
            if missing:
                raise NotFoundError("Claims not found", claim_ids=missing)

        outcomes = await asyncio.gather(*(self._rescore_one(cid) for cid in targets))

        summary = RescoreSummary()
        for claim_id, outcome in zip(targets, outcomes):
            getattr(summary, outcome).append(claim_id)
            if outcome != "skipped":
                summary.claims.append(self.get(claim_id))

        if summary.updated:
            await self._events.publish(EventType.RISK_UPDATED, ids=list(summary.updated))
        logger.info(
            f"Rescore: {len(summary.updated)} updated, {len(summary.stale)} stale, "
            f"{len(summary.failed)} failed, {len(summary.skipped)} skipped"
        )
        return summary

    async def _rescore_one(self, claim_id: str) -> RescoreOutcome:
        claim = self.get(claim_id)
        if not claim.is_scorable:
            return "skipped"

        # Taken before the first await, so tickets follow request order.
        ticket = self._store.next_score_ticket(claim_id)
        try:
            assessment = self._trim(await self._scorer.score(self._features_for(claim)))
        except UpstreamTimeoutError as e:
            logger.warning(f"Scoring failed for claim {claim.claim_number}, keeping prior score: {e.message}")
            await self._record_score_error(claim_id, ticket, e.message)
            return "failed"

        return await self._apply_score(claim_id, ticket, assessment)

    async def _apply_score(
        self, claim_id: str, ticket: int, assessment: RiskAssessment
    ) -> RescoreOutcome:
        async with self._store.lock("claim", claim_id):
            current = self.get(claim_id)
            applied = self._store.applied_score_ticket[claim_id]
            if not current.is_scorable or ticket <= applied:
                logger.info(
                    f"Discarding stale score for claim {current.claim_number} "
                    f"(request #{ticket}, applied #{applied}, {current.status.value})"
                )
                return "stale"

            self._store.applied_score_ticket[claim_id] = ticket
            self._store.claims[claim_id] = current.model_copy(
                update={
                    "risk_score": assessment.score,
                    "risk_explanation": assessment.explanation,
                    "risk_factors": assessment.factors,
                    "risk_scored_at": assessment.scored_at,
                    "risk_error": None,
                    "version": current.version + 1,
                    "updated_at": utcnow(),
                }
            )
        return "updated"

    async def _record_score_error(self, claim_id: str, ticket: int, error: str) -> None:
        """Note a failed rescore; the applied ticket is left for later successes."""
        async with self._store.lock("claim", claim_id):
            current = self.get(claim_id)
            if not current.is_scorable or ticket <= self._store.applied_score_ticket[claim_id]:
                return
            self._store.claims[claim_id] = current.model_copy(
                update={
                    "risk_error": error,
                    "version": current.version + 1,
                    "updated_at": utcnow(),
                }
            )

    async def _initial_score(self, claim_id: str) -> None:
        if self._settings.INITIAL_SCORING_MODE == InitialScoringMode.BACKGROUND:
            task = asyncio.create_task(self._score_new_claim(claim_id))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
            return
        await self._score_new_claim(claim_id)

    async def _score_new_claim(self, claim_id: str) -> None:
        outcome = await self._rescore_one(claim_id)
        if outcome == "updated":
            await self._events.publish(EventType.RISK_UPDATED, ids=[claim_id])

    async def drain(self) -> None:
        """Wait for background scoring tasks to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _features_for(self, claim: Claim) -> ScoringFeatures:
        return ScoringFeatures(
            entity_type=RiskEntityType.CLAIM,
            entity_id=claim.id,
            patient_id=claim.patient_id,
            payer_name=claim.payer_name,
            amount=claim.amount,
            attributes=claim.attributes,
        )

    def _trim(self, assessment: RiskAssessment) -> RiskAssessment:
        return assessment.model_copy(
            update={"factors": assessment.top_factors(self._settings.TOP_FACTOR_LIMIT)}
        )

    def _validate_amount(self, amount: MoneyInput) -> Decimal:
        try:
            value = to_money(amount, self._settings.money_quantum)
        except ValueError as e:
            raise ValidationError(str(e), amount=amount)
        if value <= 0:
            raise ValidationError("Claim amount must be greater than zero", amount=amount)
        return value
