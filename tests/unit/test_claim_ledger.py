"""
Unit tests for the claim ledger.

Covers:
- Submission with the initial risk score
- Appointment uniqueness
- Decisions (exactly once) and resubmission
- Rescoring ordered by request, fenced by decisions
"""

import asyncio
from decimal import Decimal

import pytest

from revcycle.core.enums import ClaimStatus, DecisionAction, InitialScoringMode, Permission
from revcycle.schemas import CodedAttributes, ScoringFeatures
from revcycle.services.engine import RevenueCycleEngine
from revcycle.services.events import EventType
from revcycle.utils.errors import (
    ConflictError,
    DuplicateAppointmentError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    UpstreamTimeoutError,
    ValidationError,
)


def _timeout() -> UpstreamTimeoutError:
    return UpstreamTimeoutError("Risk scoring timed out")


class TestSubmit:
    """Tests for claim submission."""

    @pytest.mark.asyncio
    async def test_submit_creates_pending_claim_with_score(self, ledger, scorer):
        scorer.script = [72.0]
        claim = await ledger.submit("patient-1", "Acme Health", 1000)

        assert claim.status == ClaimStatus.PENDING
        assert claim.amount == Decimal("1000.00")
        assert claim.claim_number.startswith("CLM-")
        assert claim.risk_score == 72.0
        assert claim.risk_tier.value == "high"
        assert claim.risk_scored_at is not None
        assert len(scorer.calls) == 1
        assert scorer.calls[0].entity_id == claim.id

    @pytest.mark.asyncio
    async def test_claim_numbers_are_sequential(self, ledger):
        first = await ledger.submit("patient-1", "Acme Health", 100)
        second = await ledger.submit("patient-1", "Acme Health", 100)
        assert first.claim_number[-6:] == "000001"
        assert second.claim_number[-6:] == "000002"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5, "0.00", "abc"])
    async def test_non_positive_amount_rejected(self, ledger, amount):
        with pytest.raises(ValidationError):
            await ledger.submit("patient-1", "Acme Health", amount)
        assert ledger.list_claims() == []

    @pytest.mark.asyncio
    async def test_duplicate_appointment_rejected(self, ledger):
        first = await ledger.submit("patient-1", "Acme Health", 500, appointment_id="appt-1")

        with pytest.raises(DuplicateAppointmentError) as exc_info:
            await ledger.submit("patient-1", "Acme Health", 700, appointment_id="appt-1")

        assert isinstance(exc_info.value, ConflictError)
        assert isinstance(exc_info.value, ValidationError)
        assert exc_info.value.context["claim_id"] == first.id
        assert len(ledger.list_claims()) == 1

    @pytest.mark.asyncio
    async def test_scoring_timeout_keeps_claim_unscored(self, ledger, scorer):
        scorer.script = [_timeout()]
        claim = await ledger.submit("patient-1", "Acme Health", 1000)

        assert claim.status == ClaimStatus.PENDING
        assert claim.risk_score is None
        assert "timed out" in claim.risk_error

    @pytest.mark.asyncio
    async def test_submit_publishes_events(self, engine, ledger):
        claim = await ledger.submit("patient-1", "Acme Health", 1000)

        submitted = engine.events.recent(EventType.CLAIM_SUBMITTED)
        assert submitted[-1].payload["claim_id"] == claim.id
        assert engine.events.recent(EventType.RISK_UPDATED)[-1].payload["ids"] == [claim.id]

    @pytest.mark.asyncio
    async def test_background_scoring(self, engine_settings, scorer):
        settings = engine_settings.model_copy(
            update={"INITIAL_SCORING_MODE": InitialScoringMode.BACKGROUND}
        )
        engine = RevenueCycleEngine(settings=settings, scorer=scorer)
        scorer.script = [(64.0, 0.01)]

        claim = await engine.claims.submit("patient-1", "Acme Health", 1000)
        assert claim.risk_score is None

        await engine.claims.drain()
        assert engine.claims.get(claim.id).risk_score == 64.0


class TestDecide:
    """Tests for approve/reject."""

    @pytest.mark.asyncio
    async def test_approve(self, engine, ledger):
        claim = await ledger.submit("patient-1", "Acme Health", 1000)
        decided = await ledger.decide(claim.id, DecisionAction.APPROVE, decided_by="payer-1")

        assert decided.status == ClaimStatus.APPROVED
        assert decided.processed_by == "payer-1"
        assert decided.processed_at is not None
        approval = engine.events.recent(EventType.CLAIM_APPROVED)[-1].payload["approval"]
        assert approval.claim_id == claim.id
        assert approval.amount == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_reject(self, engine, ledger):
        claim = await ledger.submit("patient-1", "Acme Health", 1000)
        decided = await ledger.decide(claim.id, "reject")

        assert decided.status == ClaimStatus.DENIED
        assert engine.events.recent(EventType.CLAIM_DENIED)[-1].payload["claim_id"] == claim.id

    @pytest.mark.asyncio
    async def test_decide_twice_fails_and_keeps_state(self, ledger):
        claim = await ledger.submit("patient-1", "Acme Health", 1000)
        approved = await ledger.decide(claim.id, DecisionAction.APPROVE)

        with pytest.raises(InvalidStateError) as exc_info:
            await ledger.decide(claim.id, DecisionAction.REJECT)

        assert exc_info.value.message == "Claim not in a decidable state"
        current = ledger.get(claim.id)
        assert current.status == ClaimStatus.APPROVED
        assert current.version == approved.version

    @pytest.mark.asyncio
    async def test_concurrent_decisions_only_one_wins(self, ledger):
        claim = await ledger.submit("patient-1", "Acme Health", 1000)

        results = await asyncio.gather(
            ledger.decide(claim.id, DecisionAction.APPROVE),
            ledger.decide(claim.id, DecisionAction.REJECT),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, InvalidStateError)]
        assert len(errors) == 1
        assert ledger.get(claim.id).status == ClaimStatus.APPROVED

    @pytest.mark.asyncio
    async def test_decide_requires_permission(self, ledger):
        claim = await ledger.submit("patient-1", "Acme Health", 1000)

        with pytest.raises(PermissionDeniedError):
            await ledger.decide(
                claim.id,
                DecisionAction.APPROVE,
                permissions=[Permission.CLAIMS_READ.value],
            )
        assert ledger.get(claim.id).status == ClaimStatus.PENDING

    @pytest.mark.asyncio
    async def test_decide_unknown_claim(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.decide("missing", DecisionAction.APPROVE)


class TestResubmit:
    """Tests for resubmitting denied claims."""

    @pytest.mark.asyncio
    async def test_resubmit_creates_linked_claim(self, ledger):
        original = await ledger.submit("patient-1", "Acme Health", 800, appointment_id="appt-9")
        await ledger.decide(original.id, DecisionAction.REJECT)

        successor = await ledger.resubmit(
            original.id, attributes=CodedAttributes(documentation_complete=True)
        )

        assert successor.id != original.id
        assert successor.status == ClaimStatus.RESUBMITTED
        assert successor.resubmitted_from == original.id
        assert successor.amount == original.amount
        assert successor.attributes.documentation_complete is True
        assert ledger.get(original.id).status == ClaimStatus.DENIED

    @pytest.mark.asyncio
    async def test_resubmitted_claim_is_decidable(self, ledger):
        original = await ledger.submit("patient-1", "Acme Health", 800)
        await ledger.decide(original.id, DecisionAction.REJECT)
        successor = await ledger.resubmit(original.id)

        approved = await ledger.decide(successor.id, DecisionAction.APPROVE)
        assert approved.status == ClaimStatus.APPROVED

    @pytest.mark.asyncio
    async def test_only_denied_claims_resubmit(self, ledger):
        claim = await ledger.submit("patient-1", "Acme Health", 800)
        with pytest.raises(InvalidStateError):
            await ledger.resubmit(claim.id)

    @pytest.mark.asyncio
    async def test_resubmit_once(self, ledger):
        original = await ledger.submit("patient-1", "Acme Health", 800)
        await ledger.decide(original.id, DecisionAction.REJECT)
        await ledger.resubmit(original.id)

        with pytest.raises(ConflictError):
            await ledger.resubmit(original.id)


class TestRescore:
    """Tests for request-ordered rescoring."""

    @pytest.mark.asyncio
    async def test_rescore_updates_pending_claims(self, ledger, scorer):
        claim = await ledger.submit("patient-1", "Acme Health", 1000)
        scorer.script = [35.0]

        summary = await ledger.rescore([claim.id])

        assert summary.updated == [claim.id]
        assert ledger.get(claim.id).risk_score == 35.0

    @pytest.mark.asyncio
    async def test_rescore_skips_decided_claims(self, ledger, scorer):
        claim = await ledger.submit("patient-1", "Acme Health", 1000)
        await ledger.decide(claim.id, DecisionAction.APPROVE)
        calls_before = len(scorer.calls)

        summary = await ledger.rescore()

        assert summary.skipped == [claim.id]
        assert len(scorer.calls) == calls_before

    @pytest.mark.asyncio
    async def test_older_result_does_not_overwrite_newer(self, ledger, scorer):
        claim = await ledger.submit("patient-1", "Acme Health", 1000)
        scorer.script = [(30.0, 0.05), 72.0]

        slow = asyncio.create_task(ledger.rescore([claim.id]))
        await asyncio.sleep(0.01)
        fast = await ledger.rescore([claim.id])
        slow_summary = await slow

        assert fast.updated == [claim.id]
        assert slow_summary.stale == [claim.id]
        assert ledger.get(claim.id).risk_score == 72.0

    @pytest.mark.asyncio
    async def test_newer_request_wins_when_it_lands_last(self, ledger, scorer):
        claim = await ledger.submit("patient-1", "Acme Health", 1000)
        scorer.script = [(30.0, 0.02), (72.0, 0.08)]

        earlier = asyncio.create_task(ledger.rescore([claim.id]))
        await asyncio.sleep(0.005)
        later = asyncio.create_task(ledger.rescore([claim.id]))
        earlier_summary, later_summary = await asyncio.gather(earlier, later)

        assert earlier_summary.updated == [claim.id]
        assert later_summary.updated == [claim.id]
        assert ledger.get(claim.id).risk_score == 72.0

    @pytest.mark.asyncio
    async def test_failed_request_does_not_block_newer_score(self, ledger, scorer):
        scorer.script = [61.0]
        claim = await ledger.submit("patient-1", "Acme Health", 1000)
        scorer.script = [(_timeout(), 0.01), (80.0, 0.05)]

        failing = asyncio.create_task(ledger.rescore([claim.id]))
        await asyncio.sleep(0.002)
        succeeding = asyncio.create_task(ledger.rescore([claim.id]))
        failed_summary, good_summary = await asyncio.gather(failing, succeeding)

        assert failed_summary.failed == [claim.id]
        assert good_summary.updated == [claim.id]
        current = ledger.get(claim.id)
        assert current.risk_score == 80.0
        assert current.risk_error is None

    @pytest.mark.asyncio
    async def test_late_failure_does_not_flag_newer_score(self, ledger, scorer):
        claim = await ledger.submit("patient-1", "Acme Health", 1000)
        scorer.script = [(_timeout(), 0.05), 72.0]

        slow = asyncio.create_task(ledger.rescore([claim.id]))
        await asyncio.sleep(0.01)
        await ledger.rescore([claim.id])
        await slow

        current = ledger.get(claim.id)
        assert current.risk_score == 72.0
        assert current.risk_error is None

    @pytest.mark.asyncio
    async def test_decision_fences_inflight_score(self, ledger, scorer):
        claim = await ledger.submit("patient-1", "Acme Health", 1000)
        scorer.script = [(90.0, 0.05)]

        rescore = asyncio.create_task(ledger.rescore([claim.id]))
        await asyncio.sleep(0.01)
        decided = await ledger.decide(claim.id, DecisionAction.APPROVE)
        summary = await rescore

        assert summary.stale == [claim.id]
        current = ledger.get(claim.id)
        assert current.status == ClaimStatus.APPROVED
        assert current.risk_score == decided.risk_score

    @pytest.mark.asyncio
    async def test_failure_keeps_prior_score(self, ledger, scorer):
        scorer.script = [61.0]
        claim = await ledger.submit("patient-1", "Acme Health", 1000)
        scorer.script = [_timeout()]

        summary = await ledger.rescore([claim.id])

        assert summary.failed == [claim.id]
        current = ledger.get(claim.id)
        assert current.risk_score == 61.0
        assert current.risk_error is not None

    @pytest.mark.asyncio
    async def test_success_clears_previous_error(self, ledger, scorer):
        scorer.script = [_timeout(), 44.0]
        claim = await ledger.submit("patient-1", "Acme Health", 1000)
        assert claim.risk_error is not None

        await ledger.rescore([claim.id])
        current = ledger.get(claim.id)
        assert current.risk_score == 44.0
        assert current.risk_error is None

    @pytest.mark.asyncio
    async def test_rescore_unknown_id(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.rescore(["missing"])

    @pytest.mark.asyncio
    async def test_factors_are_ranked_and_trimmed(self, engine_settings, scorer):
        settings = engine_settings.model_copy(update={"TOP_FACTOR_LIMIT": 1})
        engine = RevenueCycleEngine(settings=settings, scorer=scorer)

        claim = await engine.claims.submit("patient-1", "Acme Health", 1000)

        assert [f.name for f in claim.risk_factors] == ["prior_denials"]


class TestPredict:
    """Tests for the predict-before-create flow."""

    @pytest.mark.asyncio
    async def test_predict_returns_assessment(self, ledger, scorer):
        scorer.script = [55.5]
        assessment = await ledger.predict(ScoringFeatures(amount=Decimal("1200")))

        assert assessment.score == 55.5
        assert assessment.factors[0].name == "prior_denials"
        assert ledger.list_claims() == []

    @pytest.mark.asyncio
    async def test_predict_timeout(self, ledger, scorer):
        scorer.script = [_timeout()]
        with pytest.raises(UpstreamTimeoutError):
            await ledger.predict(ScoringFeatures())


class TestReads:
    @pytest.mark.asyncio
    async def test_list_filters(self, ledger):
        a = await ledger.submit("patient-1", "Acme Health", 100)
        b = await ledger.submit("patient-2", "Acme Health", 200)
        await ledger.decide(b.id, DecisionAction.APPROVE)

        assert [c.id for c in ledger.list_claims(patient_id="patient-1")] == [a.id]
        assert [c.id for c in ledger.list_claims(status=ClaimStatus.APPROVED)] == [b.id]

    @pytest.mark.asyncio
    async def test_current_scores_omits_unknown(self, ledger, scorer):
        scorer.script = [20.0]
        claim = await ledger.submit("patient-1", "Acme Health", 100)

        snapshots = ledger.current_scores([claim.id, "missing"])

        assert len(snapshots) == 1
        assert snapshots[0].entity_id == claim.id
        assert snapshots[0].score == 20.0
        assert snapshots[0].tier.value == "low"
