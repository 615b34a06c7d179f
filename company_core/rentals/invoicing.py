from __future__ import annotations

import datetime
import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from .activity import resolve_actor
from .conf import default_tax_rate, get_setting
from .exceptions import AlreadyInvoiced, InvalidTransition, NotFound, ValidationFailed
from .lifecycle import RentalLifecycle
from .models import (
    DocumentSequence,
    Invoice,
    InvoiceDetail,
    RentalOrder,
    ZERO,
    ensure_decimal,
    quantize_money,
)
from .payments import compute_invoice_status


logger = logging.getLogger(__name__)

INVOICE_NUMBER_PREFIX = "INV"
HUNDRED = ensure_decimal('100')


def _display_date(value):
    if isinstance(value, datetime.datetime) and timezone.is_aware(value):
        value = timezone.localtime(value)
    return f"{value:%d/%m/%Y}"


class InvoiceGenerator:
    """Turns a Completed rental order into its one and only invoice."""

    def __init__(self, lifecycle=None):
        self.lifecycle = lifecycle or RentalLifecycle()

    def _get_invoice(self, invoice_id, lock=False):
        queryset = Invoice.objects.all()
        if lock:
            queryset = queryset.select_for_update()
        invoice = queryset.filter(pk=invoice_id).first()
        if invoice is None:
            raise NotFound(f"Invoice {invoice_id} does not exist.", invoice_id=invoice_id)
        return invoice

    def _build_lines(self, order):
        vehicle = order.vehicle
        lines = [
            InvoiceDetail(
                description=(
                    f"Vehicle rental {vehicle.code} "
                    f"({_display_date(order.start_date)} - {_display_date(order.end_date)})"
                ),
                quantity=ensure_decimal(order.total_days),
                unit_price=order.daily_rental_price,
                amount=order.sub_total,
                sort_order=1,
            )
        ]
        if order.discount_amount > ZERO:
            label = f"Promotion {order.promotion_code}" if order.promotion_code else "Discount"
            lines.append(
                InvoiceDetail(
                    description=label,
                    quantity=ensure_decimal('1'),
                    unit_price=-order.discount_amount,
                    amount=-order.discount_amount,
                    sort_order=2,
                )
            )
        return lines

    def generate(self, rental_order_id, invoice_date=None, due_date=None, tax_rate=None,
                 notes=None, actor=None) -> Invoice:
        actor = resolve_actor(actor)
        invoice_date = invoice_date or timezone.localdate()
        if due_date is None:
            due_date = invoice_date + datetime.timedelta(days=int(get_setting('INVOICE_DUE_DAYS')))
        if due_date < invoice_date:
            raise ValidationFailed("Due date cannot be before the invoice date.")
        tax_rate = default_tax_rate() if tax_rate is None else ensure_decimal(tax_rate, default='-1')
        if tax_rate < ZERO or tax_rate > HUNDRED:
            raise ValidationFailed("Tax rate must be between 0 and 100.", tax_rate=str(tax_rate))

        try:
            with transaction.atomic():
                order = (
                    RentalOrder.objects.not_deleted()
                    .select_for_update()
                    .select_related('vehicle')
                    .filter(pk=rental_order_id)
                    .first()
                )
                if order is None:
                    raise NotFound(f"Rental order {rental_order_id} does not exist.", rental_order_id=rental_order_id)
                existing = Invoice.objects.filter(rental_order_id=order.pk).first()
                if existing is not None:
                    logger.warning(
                        f"Rental order {order.order_number} already has invoice {existing.invoice_number}."
                    )
                    raise AlreadyInvoiced(
                        f"Rental order {order.order_number} is already billed on invoice {existing.invoice_number}.",
                        invoice_id=existing.pk,
                    )
                self.lifecycle.check_transition(order, RentalOrder.STATUS_INVOICED)

                sub_total = quantize_money(order.sub_total)
                discount = quantize_money(order.discount_amount)
                taxable = sub_total - discount
                tax_amount = quantize_money(taxable * tax_rate / HUNDRED)
                total = quantize_money(taxable + tax_amount)

                invoice = Invoice.objects.create(
                    invoice_number=DocumentSequence.next_number(INVOICE_NUMBER_PREFIX),
                    rental_order=order,
                    customer_id=order.customer_id,
                    invoice_date=invoice_date,
                    due_date=due_date,
                    sub_total=sub_total,
                    tax_rate=tax_rate,
                    tax_amount=tax_amount,
                    discount_amount=discount,
                    total_amount=total,
                    paid_amount=ZERO,
                    remaining_amount=total,
                    status=compute_invoice_status(ZERO, total),
                    notes=notes,
                    created_by=actor,
                )
                lines = self._build_lines(order)
                for line in lines:
                    line.invoice = invoice
                InvoiceDetail.objects.bulk_create(lines)

                self.lifecycle.transition(
                    order,
                    RentalOrder.STATUS_INVOICED,
                    actor=actor,
                    notes=f"Invoice {invoice.invoice_number} generated",
                )
        except IntegrityError as exc:
            if Invoice.objects.filter(rental_order_id=rental_order_id).exists():
                raise AlreadyInvoiced(rental_order_id=rental_order_id) from exc
            raise

        logger.info(
            f"Generated invoice {invoice.invoice_number} for rental order {order.order_number}: "
            f"total {invoice.total_amount} due {invoice.due_date}."
        )
        return invoice

    def update_invoice(self, invoice_id, due_date=None, notes=None, actor=None) -> Invoice:
        """Amend the due date or notes of an invoice that is still open."""
        actor = resolve_actor(actor)
        with transaction.atomic():
            invoice = self._get_invoice(invoice_id, lock=True)
            if invoice.status in (Invoice.STATUS_PAID, Invoice.STATUS_CANCELLED):
                raise InvalidTransition(
                    f"Invoice {invoice.invoice_number} is {invoice.status} and can no longer be amended.",
                    status=invoice.status,
                )
            if due_date is not None:
                if due_date < invoice.invoice_date:
                    raise ValidationFailed("Due date cannot be before the invoice date.")
                invoice.due_date = due_date
                if (
                    invoice.status == Invoice.STATUS_OVERDUE
                    and due_date >= timezone.localdate()
                    and get_setting('REVERT_OVERDUE_ON_DUE_DATE_CHANGE')
                ):
                    invoice.status = compute_invoice_status(invoice.paid_amount, invoice.total_amount)
                    logger.info(f"Invoice {invoice.invoice_number} no longer overdue after due date change.")
            if notes is not None:
                invoice.notes = notes
            invoice.version += 1
            invoice.modified_at = timezone.now()
            invoice.modified_by = actor
            invoice.save(update_fields=['due_date', 'status', 'notes', 'version', 'modified_at', 'modified_by'])

        logger.info(f"Updated invoice {invoice.invoice_number}.")
        return invoice

    def cancel_invoice(self, invoice_id, reason=None, actor=None) -> Invoice:
        """Cancel an invoice nothing has been paid on. Cancelled invoices stay cancelled."""
        actor = resolve_actor(actor)
        with transaction.atomic():
            invoice = self._get_invoice(invoice_id, lock=True)
            if invoice.status == Invoice.STATUS_CANCELLED:
                raise InvalidTransition(f"Invoice {invoice.invoice_number} is already cancelled.")
            if invoice.paid_amount > ZERO:
                logger.warning(f"Rejected cancel of invoice {invoice.invoice_number}: payments recorded.")
                raise InvalidTransition(
                    f"Invoice {invoice.invoice_number} has payments; void them before cancelling.",
                    paid_amount=str(invoice.paid_amount),
                )
            invoice.status = Invoice.STATUS_CANCELLED
            if reason:
                invoice.notes = f"{invoice.notes}\n{reason}" if invoice.notes else reason
            invoice.version += 1
            invoice.modified_at = timezone.now()
            invoice.modified_by = actor
            invoice.save(update_fields=['status', 'notes', 'version', 'modified_at', 'modified_by'])

        logger.info(f"Cancelled invoice {invoice.invoice_number}.")
        return invoice
