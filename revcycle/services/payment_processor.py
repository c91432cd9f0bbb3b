"""
Payment Processor.

Applies payments to invoices and owns ``payment_status``:
- Direct payments, serialized per invoice
- Gateway orders and signature-verified gateway payments
- The recommendation cascade when an invoice settles

Status is a pure function of what has been paid against the total, so
it can only move UNPAID -> PARTIAL -> PAID.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Optional

from revcycle.core.config import EngineSettings, get_engine_settings
from revcycle.core.enums import InvoicePaymentStatus, PaymentMethod, RecommendationStatus
from revcycle.gateways.base import GatewayError, ProviderTimeoutError
from revcycle.gateways.payment_gateway import PaymentGatewayClient
from revcycle.schemas import (
    GatewayOrder,
    GatewayVerification,
    Invoice,
    Payment,
    PaymentResult,
)
from revcycle.services.events import EventBus, EventType
from revcycle.services.store import RevenueCycleStore, utcnow
from revcycle.utils.errors import (
    InvalidStateError,
    NotFoundError,
    OverpaymentError,
    UpstreamTimeoutError,
    ValidationError,
    VerificationError,
)
from revcycle.utils.money import MoneyInput, from_minor_units, to_minor_units, to_money

logger = logging.getLogger(__name__)

_STATUS_RANK = {
    InvoicePaymentStatus.UNPAID: 0,
    InvoicePaymentStatus.PARTIAL: 1,
    InvoicePaymentStatus.PAID: 2,
}

CAPTURED_STATES = frozenset({"captured", "authorized"})


def settlement_status(paid: Decimal, total: Decimal) -> InvoicePaymentStatus:
    """PAID iff paid == total, PARTIAL iff 0 < paid < total, UNPAID iff nothing paid."""
    if paid <= 0:
        return InvoicePaymentStatus.UNPAID
    if paid >= total:
        return InvoicePaymentStatus.PAID
    return InvoicePaymentStatus.PARTIAL


class PaymentProcessor:
    """Sole writer of payments and invoice payment status."""

    def __init__(
        self,
        store: RevenueCycleStore,
        events: EventBus,
        gateway: Optional[PaymentGatewayClient] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self._store = store
        self._events = events
        self._settings = settings or get_engine_settings()
        self._gateway = gateway or PaymentGatewayClient(self._settings)

    @property
    def gateway(self) -> PaymentGatewayClient:
        return self._gateway

    # =========================================================================
    # Direct Payments
    # =========================================================================

    async def apply_payment(
        self,
        invoice_id: str,
        amount: MoneyInput,
        method: PaymentMethod,
        external_txn_id: Optional[str] = None,
        recorded_by: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> PaymentResult:
        """
        Apply a payment to an invoice.

        A repeated ``external_txn_id`` on the same invoice returns the
        original payment instead of applying it again.

        Raises:
            NotFoundError: Unknown invoice
            ValidationError: Non-positive amount
            OverpaymentError: Amount plus prior payments exceeds the total
        """
        value = self._validate_amount(amount)
        method = PaymentMethod(method)

        async with self._store.lock("invoice", invoice_id):
            invoice = self._get_invoice(invoice_id)

            if external_txn_id:
                existing = self._store.find_payment(invoice_id, external_txn_id)
                if existing is not None:
                    logger.info(
                        f"Payment {external_txn_id} already applied to "
                        f"{invoice.invoice_number}, replaying"
                    )
                    return PaymentResult(payment=existing, invoice=invoice, replayed=True)

            total = invoice.total_amount
            paid = self._store.paid_total(invoice_id)
            if paid >= total:
                raise OverpaymentError(
                    "Invoice already fully paid",
                    invoice_id=invoice_id,
                    total_amount=total,
                    amount=value,
                )
            if paid + value > total:
                raise OverpaymentError(
                    f"Payment of {value} exceeds balance due {total - paid}",
                    invoice_id=invoice_id,
                    total_amount=total,
                    amount_paid=paid,
                    amount=value,
                )

            new_status = settlement_status(paid + value, total)
            if _STATUS_RANK[new_status] < _STATUS_RANK[invoice.payment_status]:
                raise InvalidStateError(
                    f"Invoice status would regress "
                    f"{invoice.payment_status.value} -> {new_status.value}",
                    invoice_id=invoice_id,
                )

            payment = Payment(
                invoice_id=invoice_id,
                amount_paid=value,
                method=method,
                external_txn_id=external_txn_id,
                order_id=order_id,
                recorded_by=recorded_by,
            )
            now = utcnow()
            updated = invoice.model_copy(
                update={
                    "payment_status": new_status,
                    "version": invoice.version + 1,
                    "updated_at": now,
                }
            )

            # Payment, status and cascade land together with no await between.
            self._store.add_payment(payment)
            self._store.invoices[invoice_id] = updated
            if new_status == InvoicePaymentStatus.PAID:
                self._settle_recommendations(updated)

        logger.info(
            f"Payment {payment.id} of {value} applied to {invoice.invoice_number} "
            f"({paid + value}/{total}, {new_status.value})"
        )
        if new_status == InvoicePaymentStatus.PAID:
            await self._events.publish(
                EventType.INVOICE_SETTLED,
                invoice_id=invoice_id,
                patient_id=updated.patient_id,
                recommendation_ids=list(updated.recommendation_ids),
            )
        return PaymentResult(payment=payment, invoice=updated)

    def _settle_recommendations(self, invoice: Invoice) -> None:
        now = utcnow()
        for rec_id in invoice.recommendation_ids:
            rec = self._store.recommendations.get(rec_id)
            if rec is None or rec.status != RecommendationStatus.INVOICED:
                continue
            self._store.recommendations[rec_id] = rec.model_copy(
                update={
                    "status": RecommendationStatus.PAID,
                    "version": rec.version + 1,
                    "updated_at": now,
                }
            )
        if invoice.recommendation_ids:
            logger.info(
                f"{len(invoice.recommendation_ids)} recommendation(s) on "
                f"{invoice.invoice_number} marked paid"
            )

    # =========================================================================
    # Gateway Payments
    # =========================================================================

    async def create_order(
        self,
        invoice_id: Optional[str] = None,
        amount: Optional[MoneyInput] = None,
        receipt: Optional[str] = None,
    ) -> GatewayOrder:
        """
        Open a payment intent with the gateway.

        With an invoice the amount defaults to the outstanding balance and
        may not exceed it. Without one (booking payments) an amount is
        required.
        """
        if invoice_id is not None:
            invoice = self._get_invoice(invoice_id)
            balance = invoice.total_amount - self._store.paid_total(invoice_id)
            if balance <= 0:
                raise OverpaymentError("Invoice already fully paid", invoice_id=invoice_id)
            value = balance if amount is None else self._validate_amount(amount)
            if value > balance:
                raise OverpaymentError(
                    f"Order amount {value} exceeds balance due {balance}",
                    invoice_id=invoice_id,
                    amount=value,
                )
            receipt = receipt or invoice.invoice_number
        else:
            if amount is None:
                raise ValidationError("Amount is required for an order without an invoice")
            value = self._validate_amount(amount)

        quantum = self._settings.money_quantum
        currency = self._settings.CURRENCY
        amount_minor = to_minor_units(value, quantum)
        try:
            raw = await asyncio.wait_for(
                self._gateway.create_order(amount_minor, currency, receipt=receipt),
                timeout=self._settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS,
            )
        except (asyncio.TimeoutError, ProviderTimeoutError):
            logger.warning(f"Gateway order creation timed out for invoice {invoice_id}")
            raise UpstreamTimeoutError("Payment gateway timed out creating order", invoice_id=invoice_id)
        except GatewayError as e:
            logger.warning(f"Gateway order creation failed for invoice {invoice_id}: {e}")
            raise UpstreamTimeoutError(f"Payment gateway unavailable: {e}", invoice_id=invoice_id)

        order = GatewayOrder(
            order_id=raw["id"],
            invoice_id=invoice_id,
            amount=from_minor_units(int(raw.get("amount", amount_minor)), quantum),
            amount_minor=int(raw.get("amount", amount_minor)),
            currency=raw.get("currency", currency),
            key_id=self._gateway.key_id,
            receipt=raw.get("receipt", receipt),
            status=raw.get("status", "created"),
        )
        self._store.orders[order.order_id] = order
        logger.info(f"Gateway order {order.order_id} opened for {order.amount} {order.currency}")
        return order

    async def verify_payment(
        self,
        order_id: str,
        payment_id: str,
        signature: str,
        invoice_id: Optional[str] = None,
        recorded_by: Optional[str] = None,
    ) -> GatewayVerification:
        """
        Verify a gateway checkout and apply it.

        The signature is checked before anything is written. Replaying a
        verified (order, payment) pair returns the first verification.

        Raises:
            VerificationError: Unknown order, invoice mismatch, bad signature,
                payment lookup failure or timeout
        """
        order = self._store.orders.get(order_id)
        if order is None:
            raise VerificationError("Unknown gateway order", order_id=order_id)
        if order.invoice_id != invoice_id:
            logger.warning(f"Order {order_id} verified against wrong invoice {invoice_id}")
            raise VerificationError(
                "Order does not belong to this invoice",
                order_id=order_id,
                invoice_id=invoice_id,
            )
        if not self._gateway.verify_signature(order_id, payment_id, signature):
            logger.warning(f"Signature mismatch for order {order_id} payment {payment_id}")
            raise VerificationError(
                "Payment signature verification failed",
                order_id=order_id,
                payment_id=payment_id,
            )

        async with self._store.lock("order", order_id):
            prior = self._store.verifications.get((order_id, payment_id))
            if prior is not None:
                logger.info(f"Verification replay for order {order_id} payment {payment_id}")
                current = self._store.invoices.get(order.invoice_id) if order.invoice_id else None
                return prior.model_copy(update={"replayed": True, "invoice": current})

            order = self._store.orders[order_id]
            if order.status == "paid":
                raise VerificationError(
                    "Order already settled by another payment",
                    order_id=order_id,
                    payment_id=payment_id,
                )

            await self._confirm_capture(order, payment_id)

            result: Optional[PaymentResult] = None
            if order.invoice_id is not None:
                result = await self.apply_payment(
                    order.invoice_id,
                    order.amount,
                    PaymentMethod.GATEWAY,
                    external_txn_id=payment_id,
                    recorded_by=recorded_by,
                    order_id=order_id,
                )

            verification = GatewayVerification(
                order_id=order_id,
                payment_id=payment_id,
                invoice_id=order.invoice_id,
                payment=result.payment if result else None,
                invoice=result.invoice if result else None,
            )
            self._store.verifications[(order_id, payment_id)] = verification
            self._store.orders[order_id] = order.model_copy(update={"status": "paid"})

        logger.info(f"Gateway payment {payment_id} verified for order {order_id}")
        return verification

    async def _confirm_capture(self, order: GatewayOrder, payment_id: str) -> None:
        """Live mode: the gateway must report the payment captured for this order."""
        try:
            captured = await asyncio.wait_for(
                self._gateway.fetch_payment(payment_id),
                timeout=self._settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS,
            )
        except (asyncio.TimeoutError, ProviderTimeoutError):
            logger.warning(f"Payment lookup timed out for {payment_id}")
            raise VerificationError(
                "Payment verification timed out", order_id=order.order_id, payment_id=payment_id
            )
        except GatewayError as e:
            raise VerificationError(
                f"Payment lookup failed: {e}", order_id=order.order_id, payment_id=payment_id
            )

        if captured is None:
            return
        if captured.get("order_id") != order.order_id:
            raise VerificationError(
                "Payment belongs to a different order",
                order_id=order.order_id,
                payment_id=payment_id,
            )
        if captured.get("status") not in CAPTURED_STATES:
            raise VerificationError(
                f"Payment not captured: {captured.get('status')}",
                order_id=order.order_id,
                payment_id=payment_id,
            )
        if int(captured.get("amount", order.amount_minor)) != order.amount_minor:
            raise VerificationError(
                "Captured amount does not match order",
                order_id=order.order_id,
                payment_id=payment_id,
            )

    # =========================================================================
    # Reads
    # =========================================================================

    def payments(
        self,
        invoice_id: Optional[str] = None,
        patient_id: Optional[str] = None,
    ) -> list[Payment]:
        """Payments newest first, optionally scoped to an invoice or patient."""
        if invoice_id is not None:
            self._get_invoice(invoice_id)
            found = self._store.payments_for(invoice_id)
        else:
            found = list(self._store.payments.values())
        if patient_id is not None:
            found = [
                p
                for p in found
                if self._store.invoices[p.invoice_id].patient_id == patient_id
            ]
        return sorted(found, key=lambda p: p.paid_at, reverse=True)

    def balance_due(self, invoice_id: str) -> Decimal:
        invoice = self._get_invoice(invoice_id)
        return invoice.total_amount - self._store.paid_total(invoice_id)

    def _get_invoice(self, invoice_id: str) -> Invoice:
        invoice = self._store.invoices.get(invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", invoice_id=invoice_id)
        return invoice

    def _validate_amount(self, amount: MoneyInput) -> Decimal:
        try:
            value = to_money(amount, self._settings.money_quantum)
        except ValueError as e:
            raise ValidationError(str(e), amount=amount)
        if value <= 0:
            raise ValidationError("Payment amount must be greater than zero", amount=amount)
        return value
