"""Payment application and invoice balance reconciliation.

Balance writes are doubly guarded: the invoice row is locked with
``select_for_update`` for the duration of the check-then-write, and the
UPDATE itself only matches the ``version`` that was read. A mismatch raises
:class:`~rentals.exceptions.ConcurrencyConflict`; it is never retried here
because a blind retry could apply the same payment twice.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Optional

from django.db import OperationalError, transaction
from django.db.models import F
from django.utils import timezone

from .activity import resolve_actor
from .exceptions import (
    ConcurrencyConflict,
    InvalidAmount,
    InvalidTransition,
    InvoiceNotPayable,
    NotFound,
    Overpayment,
    ValidationFailed,
)
from .models import DocumentSequence, Invoice, Payment, ZERO, ensure_decimal, quantize_money


logger = logging.getLogger(__name__)

PAYMENT_NUMBER_PREFIX = "PMT"
PAYMENT_METHODS = {choice for choice, _label in Payment.METHOD_CHOICES}
# Fragments of backend errors raised when a row or table lock cannot be taken.
LOCK_FAILURE_MARKERS = ("locked", "could not obtain lock", "deadlock")


def compute_invoice_status(paid_amount, total_amount) -> str:
    """Status implied by an invoice balance alone (never Overdue or Cancelled)."""
    paid_amount = quantize_money(paid_amount)
    total_amount = quantize_money(total_amount)
    if total_amount - paid_amount <= ZERO:
        return Invoice.STATUS_PAID
    if paid_amount > ZERO:
        return Invoice.STATUS_PARTIAL
    return Invoice.STATUS_UNPAID


def settled_invoice_status(invoice, paid_amount, today=None) -> str:
    """Status after a balance change: an unpaid balance past its due date stays Overdue."""
    status = compute_invoice_status(paid_amount, invoice.total_amount)
    today = today or timezone.localdate()
    if status != Invoice.STATUS_PAID and invoice.due_date < today:
        return Invoice.STATUS_OVERDUE
    return status


@contextmanager
def lock_conflicts_as_concurrency(**detail):
    """Surface lock timeouts and deadlocks as a retryable ConcurrencyConflict."""
    try:
        yield
    except OperationalError as exc:
        message = str(exc).lower()
        if not any(marker in message for marker in LOCK_FAILURE_MARKERS):
            raise
        logger.warning(f"Lock conflict while updating an invoice balance: {exc}")
        raise ConcurrencyConflict(**detail) from exc


class PaymentReconciler:

    def _get_invoice(self, invoice_id, lock=False) -> Invoice:
        queryset = Invoice.objects.all()
        if lock:
            queryset = queryset.select_for_update()
        invoice = queryset.filter(pk=invoice_id).first()
        if invoice is None:
            raise NotFound(f"Invoice {invoice_id} does not exist.", invoice_id=invoice_id)
        return invoice

    def _write_balance(self, invoice: Invoice, paid_amount: Decimal, status: str, actor=None) -> Invoice:
        """Persist a new balance if nobody else changed the invoice since it was read."""
        now = timezone.now()
        remaining = quantize_money(invoice.total_amount - paid_amount)
        updated = Invoice.objects.filter(pk=invoice.pk, version=invoice.version).update(
            paid_amount=paid_amount,
            remaining_amount=remaining,
            status=status,
            version=F('version') + 1,
            modified_at=now,
            modified_by=actor,
        )
        if updated != 1:
            logger.warning(
                f"Invoice {invoice.invoice_number} changed concurrently (expected version {invoice.version})."
            )
            raise ConcurrencyConflict(invoice_id=invoice.pk, version=invoice.version)

        invoice.paid_amount = paid_amount
        invoice.remaining_amount = remaining
        invoice.status = status
        invoice.version += 1
        invoice.modified_at = now
        invoice.modified_by = actor
        return invoice

    def apply_payment(self, invoice_id, amount, method, payment_date=None, bank_account=None,
                      transaction_code=None, notes=None, actor=None,
                      expected_version: Optional[int] = None) -> Payment:
        """Record a payment and move the invoice balance and status.

        ``expected_version`` lets a client that displayed the invoice insist
        that it has not changed since; a stale value raises ConcurrencyConflict.
        """
        actor = resolve_actor(actor)
        amount = quantize_money(ensure_decimal(amount))
        if amount <= ZERO:
            logger.warning(f"Rejected payment of {amount} on invoice {invoice_id}: not positive.")
            raise InvalidAmount(amount=str(amount))
        if method not in PAYMENT_METHODS:
            raise ValidationFailed(f"Unknown payment method {method!r}.", payment_method=method)
        payment_date = payment_date or timezone.localdate()

        with lock_conflicts_as_concurrency(invoice_id=invoice_id), transaction.atomic():
            invoice = self._get_invoice(invoice_id, lock=True)
            if expected_version is not None and int(expected_version) != invoice.version:
                logger.warning(
                    f"Payment on invoice {invoice.invoice_number} used stale version {expected_version} "
                    f"(current {invoice.version})."
                )
                raise ConcurrencyConflict(invoice_id=invoice.pk, version=invoice.version)
            if invoice.status == Invoice.STATUS_CANCELLED:
                logger.warning(f"Rejected payment on cancelled invoice {invoice.invoice_number}.")
                raise InvoiceNotPayable(
                    f"Invoice {invoice.invoice_number} is cancelled and cannot receive payments.",
                    invoice_id=invoice.pk,
                )
            if amount > invoice.remaining_amount:
                logger.warning(
                    f"Rejected payment of {amount} on invoice {invoice.invoice_number}: "
                    f"only {invoice.remaining_amount} remaining."
                )
                raise Overpayment(
                    f"Payment of {amount:,.2f} exceeds the remaining balance of {invoice.remaining_amount:,.2f}.",
                    amount=str(amount),
                    remaining_amount=str(invoice.remaining_amount),
                )

            paid_amount = quantize_money(invoice.paid_amount + amount)
            status = settled_invoice_status(invoice, paid_amount)
            self._write_balance(invoice, paid_amount, status, actor)

            payment = Payment.objects.create(
                payment_number=DocumentSequence.next_number(PAYMENT_NUMBER_PREFIX),
                invoice=invoice,
                payment_date=payment_date,
                amount=amount,
                payment_method=method,
                bank_account=bank_account or None,
                transaction_code=transaction_code or None,
                notes=notes,
                created_by=actor,
            )

        logger.info(
            f"Recorded payment {payment.payment_number} of {amount} on invoice {invoice.invoice_number}; "
            f"remaining {invoice.remaining_amount}, status {invoice.status}."
        )
        return payment

    def void_payment(self, payment_id, reason=None, actor=None) -> Payment:
        """Reverse a payment's effect on its invoice; the payment row is kept, flagged void."""
        actor = resolve_actor(actor)
        with lock_conflicts_as_concurrency(payment_id=payment_id), transaction.atomic():
            payment = Payment.objects.select_for_update().filter(pk=payment_id).first()
            if payment is None:
                raise NotFound(f"Payment {payment_id} does not exist.", payment_id=payment_id)
            if payment.is_voided:
                raise InvalidTransition(
                    f"Payment {payment.payment_number} is already void.",
                    payment_id=payment.pk,
                )
            invoice = self._get_invoice(payment.invoice_id, lock=True)
            if invoice.status == Invoice.STATUS_CANCELLED:
                raise InvoiceNotPayable(
                    f"Invoice {invoice.invoice_number} is cancelled.",
                    invoice_id=invoice.pk,
                )

            paid_amount = quantize_money(invoice.paid_amount - payment.amount)
            if paid_amount < ZERO:
                raise ValidationFailed(
                    f"Voiding {payment.payment_number} would make invoice {invoice.invoice_number} negative.",
                )
            status = settled_invoice_status(invoice, paid_amount)
            self._write_balance(invoice, paid_amount, status, actor)

            payment.is_voided = True
            payment.voided_at = timezone.now()
            payment.voided_by = actor
            payment.void_reason = reason
            payment.save(update_fields=['is_voided', 'voided_at', 'voided_by', 'void_reason'])

        logger.info(
            f"Voided payment {payment.payment_number} of {payment.amount} on invoice {invoice.invoice_number}; "
            f"remaining {invoice.remaining_amount}, status {invoice.status}."
        )
        return payment

    def refresh_overdue_status(self, as_of=None, actor=None) -> int:
        """Flag Unpaid/Partial invoices whose due date is before ``as_of``. Returns the count."""
        as_of = as_of or timezone.localdate()
        actor = resolve_actor(actor)
        updated = Invoice.objects.filter(
            status__in=Invoice.OVERDUE_CANDIDATE_STATUSES,
            due_date__lt=as_of,
        ).update(
            status=Invoice.STATUS_OVERDUE,
            version=F('version') + 1,
            modified_at=timezone.now(),
            modified_by=actor,
        )
        logger.info(f"Marked {updated} invoice(s) overdue as of {as_of}.")
        return updated
