"""
Invoice Builder.

Turns an approved claim's line items, or a patient's pending doctor
recommendations, into an immutable invoice. Totals are always the
decimal sum of the items.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Iterable, Optional, Union

from pydantic import ValidationError as SchemaValidationError

from revcycle.core.config import EngineSettings, get_engine_settings
from revcycle.core.enums import ClaimStatus, InvoiceItemType, RecommendationStatus
from revcycle.schemas import (
    ClaimApprovedEvent,
    DoctorRecommendation,
    Invoice,
    InvoiceItem,
    InvoiceItemInput,
    InvoiceReceipt,
)
from revcycle.services.events import Event, EventBus, EventType
from revcycle.services.store import RevenueCycleStore, utcnow
from revcycle.utils.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from revcycle.utils.money import MoneyInput, to_money

logger = logging.getLogger(__name__)

ItemLike = Union[InvoiceItemInput, dict]


class InvoiceBuilder:
    """Sole creator of invoices and doctor recommendations."""

    def __init__(
        self,
        store: RevenueCycleStore,
        events: EventBus,
        settings: Optional[EngineSettings] = None,
    ):
        self._store = store
        self._events = events
        self._settings = settings or get_engine_settings()
        self._awaiting: dict[str, ClaimApprovedEvent] = {}
        events.subscribe(EventType.CLAIM_APPROVED, self._on_claim_approved)

    def _on_claim_approved(self, event: Event) -> None:
        approval: ClaimApprovedEvent = event.payload["approval"]
        if approval.claim_id not in self._store.invoice_by_claim:
            self._awaiting[approval.claim_id] = approval

    # =========================================================================
    # Invoice Creation
    # =========================================================================

    async def from_claim(
        self,
        claim_id: str,
        items: Iterable[ItemLike],
        created_by: Optional[str] = None,
    ) -> Invoice:
        """
        Invoice an approved claim.

        Raises:
            NotFoundError: Unknown claim
            InvalidStateError: Claim is not APPROVED
            ConflictError: Claim already has an invoice
            ValidationError: Empty item list or a non-positive amount
        """
        line_items = self._build_items(items)

        async with self._store.lock("claim-invoice", claim_id):
            claim = self._store.claims.get(claim_id)
            if claim is None:
                raise NotFoundError(f"Claim {claim_id} not found", claim_id=claim_id)
            if claim.status != ClaimStatus.APPROVED:
                raise InvalidStateError(
                    "Only approved claims can be invoiced",
                    claim_id=claim_id,
                    status=claim.status.value,
                )
            if claim_id in self._store.invoice_by_claim:
                raise ConflictError(
                    f"Claim {claim.claim_number} already has an invoice",
                    claim_id=claim_id,
                    invoice_id=self._store.invoice_by_claim[claim_id],
                )

            invoice = self._new_invoice(
                patient_id=claim.patient_id,
                items=line_items,
                claim_id=claim_id,
                created_by=created_by,
            )
            self._store.invoices[invoice.id] = invoice
            self._store.invoice_by_claim[claim_id] = invoice.id
            self._awaiting.pop(claim_id, None)

        if invoice.total_amount != claim.amount:
            logger.info(
                f"Invoice {invoice.invoice_number} total {invoice.total_amount} "
                f"differs from claim amount {claim.amount}"
            )
        logger.info(f"Invoice {invoice.invoice_number} created for claim {claim.claim_number}")
        await self._events.publish(
            EventType.INVOICE_CREATED, invoice_id=invoice.id, patient_id=invoice.patient_id
        )
        return invoice

    async def from_recommendations(
        self,
        patient_id: str,
        recommendation_ids: Iterable[str],
        created_by: Optional[str] = None,
    ) -> Invoice:
        """
        Fold PENDING recommendations into one invoice, all or nothing.

        Raises:
            ValidationError: No ids, duplicate ids or another patient's recommendation
            NotFoundError: Unknown recommendation
            ConflictError: Any recommendation is not PENDING
        """
        ids = list(recommendation_ids)
        if not ids:
            raise ValidationError("At least one recommendation is required")
        if len(set(ids)) != len(ids):
            raise ValidationError("Duplicate recommendation ids", recommendation_ids=ids)

        async with self._store.lock("recommendations", patient_id):
            recommendations = []
            for rec_id in ids:
                rec = self._store.recommendations.get(rec_id)
                if rec is None:
                    raise NotFoundError(
                        f"Recommendation {rec_id} not found", recommendation_id=rec_id
                    )
                recommendations.append(rec)

            foreign = [r.id for r in recommendations if r.patient_id != patient_id]
            if foreign:
                raise ValidationError(
                    "Recommendations must all belong to the same patient",
                    patient_id=patient_id,
                    recommendation_ids=foreign,
                )
            taken = [r.id for r in recommendations if r.status != RecommendationStatus.PENDING]
            if taken:
                raise ConflictError(
                    "Recommendation already invoiced",
                    recommendation_ids=taken,
                )

            items = [
                InvoiceItem(
                    description=rec.description,
                    amount=to_money(rec.recommended_price, self._settings.money_quantum),
                    item_type=InvoiceItemType.SERVICE,
                    recommendation_id=rec.id,
                )
                for rec in recommendations
            ]
            invoice = self._new_invoice(
                patient_id=patient_id,
                items=items,
                recommendation_ids=tuple(ids),
                created_by=created_by,
            )

            # Commit: invoice and every status flip land together.
            now = utcnow()
            self._store.invoices[invoice.id] = invoice
            for rec in recommendations:
                self._store.recommendations[rec.id] = rec.model_copy(
                    update={
                        "status": RecommendationStatus.INVOICED,
                        "invoice_id": invoice.id,
                        "version": rec.version + 1,
                        "updated_at": now,
                    }
                )

        logger.info(
            f"Invoice {invoice.invoice_number} created from {len(ids)} recommendation(s) "
            f"for patient {patient_id}"
        )
        await self._events.publish(
            EventType.INVOICE_CREATED, invoice_id=invoice.id, patient_id=patient_id
        )
        return invoice

    def _build_items(self, items: Iterable[ItemLike]) -> list[InvoiceItem]:
        raw_items = list(items or [])
        if not raw_items:
            raise ValidationError("Invoice needs at least one item")

        built = []
        for index, raw in enumerate(raw_items):
            try:
                data = raw if isinstance(raw, InvoiceItemInput) else InvoiceItemInput.model_validate(raw)
            except SchemaValidationError as e:
                raise ValidationError(f"Malformed invoice item: {e.errors()[0]['msg']}", item_index=index)
            amount = self._validate_amount(data.amount, index)
            if not data.description or not data.description.strip():
                raise ValidationError("Item description is required", item_index=index)
            built.append(
                InvoiceItem(
                    description=data.description.strip(),
                    amount=amount,
                    item_type=data.item_type,
                )
            )
        return built

    def _validate_amount(self, amount: MoneyInput, index: int) -> Decimal:
        try:
            value = to_money(amount, self._settings.money_quantum)
        except ValueError as e:
            raise ValidationError(str(e), item_index=index)
        if value <= 0:
            raise ValidationError(
                "Item amount must be greater than zero", item_index=index, amount=amount
            )
        return value

    def _new_invoice(
        self,
        patient_id: str,
        items: list[InvoiceItem],
        claim_id: Optional[str] = None,
        recommendation_ids: tuple[str, ...] = (),
        created_by: Optional[str] = None,
    ) -> Invoice:
        now = utcnow()
        return Invoice(
            invoice_number=self._store.next_number("INV"),
            patient_id=patient_id,
            claim_id=claim_id,
            items=tuple(items),
            due_date=(now + timedelta(days=self._settings.INVOICE_GRACE_PERIOD_DAYS)).date(),
            recommendation_ids=recommendation_ids,
            currency=self._settings.CURRENCY,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )

    # =========================================================================
    # Doctor Recommendations
    # =========================================================================

    async def recommend(
        self,
        appointment_id: str,
        patient_id: str,
        service_id: str,
        recommended_price: MoneyInput,
        service_name: Optional[str] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> DoctorRecommendation:
        """Record a PENDING billable service proposed by a doctor."""
        try:
            price = to_money(recommended_price, self._settings.money_quantum)
        except ValueError as e:
            raise ValidationError(str(e), recommended_price=recommended_price)
        if price <= 0:
            raise ValidationError(
                "Recommended price must be greater than zero",
                recommended_price=recommended_price,
            )

        try:
            rec = DoctorRecommendation(
                appointment_id=appointment_id,
                patient_id=patient_id,
                service_id=service_id,
                service_name=service_name,
                recommended_price=price,
                notes=notes,
                created_by=created_by,
            )
        except SchemaValidationError as e:
            error = e.errors()[0]
            raise ValidationError(
                f"Malformed recommendation: {error['msg']}",
                field=".".join(str(part) for part in error["loc"]),
            )
        self._store.recommendations[rec.id] = rec
        logger.info(f"Recommendation {rec.id} recorded for patient {patient_id}: {price}")
        return rec

    def recommendations(
        self,
        patient_id: Optional[str] = None,
        status: Optional[RecommendationStatus] = None,
        appointment_id: Optional[str] = None,
    ) -> list[DoctorRecommendation]:
        recs = [
            r
            for r in self._store.recommendations.values()
            if (patient_id is None or r.patient_id == patient_id)
            and (status is None or r.status == status)
            and (appointment_id is None or r.appointment_id == appointment_id)
        ]
        return sorted(recs, key=lambda r: r.created_at, reverse=True)

    # =========================================================================
    # Reads
    # =========================================================================

    def awaiting_invoice(self) -> list[ClaimApprovedEvent]:
        """Approved claims billing staff still have to invoice, oldest first."""
        pending = [
            a for cid, a in self._awaiting.items() if cid not in self._store.invoice_by_claim
        ]
        return sorted(pending, key=lambda a: a.approved_at)

    def get(self, invoice_id: str) -> Invoice:
        invoice = self._store.invoices.get(invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", invoice_id=invoice_id)
        return invoice

    def list_invoices(self, patient_id: Optional[str] = None) -> list[Invoice]:
        invoices = [
            i
            for i in self._store.invoices.values()
            if patient_id is None or i.patient_id == patient_id
        ]
        return sorted(invoices, key=lambda i: i.created_at, reverse=True)

    def items(self, invoice_id: str) -> list[InvoiceItem]:
        return list(self.get(invoice_id).items)

    def receipt(self, invoice_id: str) -> InvoiceReceipt:
        """Items, total, what has been paid and what is still owed."""
        invoice = self.get(invoice_id)
        paid = self._store.paid_total(invoice_id)
        return InvoiceReceipt(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            patient_id=invoice.patient_id,
            claim_id=invoice.claim_id,
            items=list(invoice.items),
            total_amount=invoice.total_amount,
            amount_paid=paid,
            balance_due=invoice.total_amount - paid,
            payment_status=invoice.payment_status,
            due_date=invoice.due_date,
            currency=invoice.currency,
            payments=self._store.payments_for(invoice_id),
        )
