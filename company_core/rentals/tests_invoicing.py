import datetime
from decimal import Decimal

from django.contrib.auth.models import User
from django.test import TestCase
from django.test.utils import override_settings
from django.utils import timezone

from .exceptions import (
    AlreadyInvoiced,
    InvalidTransition,
    InvoiceNotPayable,
    NotFound,
    RentalError,
    ValidationFailed,
)
from .invoicing import InvoiceGenerator
from .lifecycle import RentalLifecycle
from .models import DocumentSequence, Invoice, InvoiceDetail, RentalOrder, RentalStatusHistory
from .payments import PaymentReconciler
from .testing import FakeVehicleTracker, make_customer, make_promotion, make_vehicle, rental_window


class InvoiceGeneratorTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="accountant", password="p")
        self.customer = make_customer()
        self.vehicle = make_vehicle()
        self.lifecycle = RentalLifecycle(vehicle_tracker=FakeVehicleTracker())
        self.generator = InvoiceGenerator(lifecycle=self.lifecycle)
        self.invoice_date = datetime.date(2026, 3, 5)

    def _completed_order(self, **kwargs):
        start, end = rental_window(days=3)
        order = self.lifecycle.create_order(
            customer_id=self.customer.pk,
            vehicle_id=self.vehicle.pk,
            start_date=start,
            end_date=end,
            **kwargs,
        )
        self.lifecycle.confirm(order.pk)
        self.lifecycle.start(order.pk)
        self.lifecycle.complete(order.pk)
        return order

    def test_generate_copies_amounts_and_adds_tax(self):
        make_promotion(max_discount="100000")
        order = self._completed_order(promotion_code="SPRING10")

        invoice = self.generator.generate(
            order.pk,
            invoice_date=self.invoice_date,
            tax_rate=Decimal("10"),
            notes="March rental",
            actor=self.user,
        )

        self.assertEqual(invoice.invoice_number, f"INV{timezone.localdate():%Y%m%d}00001")
        self.assertEqual(invoice.sub_total, Decimal("1500000.00"))
        self.assertEqual(invoice.discount_amount, Decimal("100000.00"))
        self.assertEqual(invoice.tax_amount, Decimal("140000.00"))
        self.assertEqual(invoice.total_amount, Decimal("1540000.00"))
        self.assertEqual(invoice.paid_amount, Decimal("0.00"))
        self.assertEqual(invoice.remaining_amount, Decimal("1540000.00"))
        self.assertEqual(invoice.status, Invoice.STATUS_UNPAID)
        self.assertEqual(invoice.customer, self.customer)
        self.assertEqual(invoice.created_by, self.user)

    def test_generate_writes_rental_and_discount_lines(self):
        make_promotion(max_discount="100000")
        order = self._completed_order(promotion_code="SPRING10")

        invoice = self.generator.generate(order.pk, invoice_date=self.invoice_date)

        lines = list(InvoiceDetail.objects.filter(invoice=invoice))
        self.assertEqual(len(lines), 2)
        rental, discount = lines
        self.assertEqual(rental.quantity, Decimal("3.00"))
        self.assertEqual(rental.unit_price, Decimal("500000.00"))
        self.assertEqual(rental.amount, Decimal("1500000.00"))
        self.assertIn(self.vehicle.code, rental.description)
        self.assertEqual(discount.amount, Decimal("-100000.00"))
        self.assertEqual(discount.description, "Promotion SPRING10")

    def test_generate_without_discount_has_single_line(self):
        order = self._completed_order()

        invoice = self.generator.generate(order.pk, invoice_date=self.invoice_date)

        self.assertEqual(invoice.details.count(), 1)

    def test_generate_marks_order_invoiced_in_history(self):
        order = self._completed_order()

        invoice = self.generator.generate(order.pk, invoice_date=self.invoice_date, actor=self.user)

        order.refresh_from_db()
        self.assertEqual(order.status, RentalOrder.STATUS_INVOICED)
        last = RentalStatusHistory.objects.filter(rental_order=order).last()
        self.assertEqual(last.old_status, RentalOrder.STATUS_COMPLETED)
        self.assertEqual(last.new_status, RentalOrder.STATUS_INVOICED)
        self.assertIn(invoice.invoice_number, last.notes)

    def test_second_generation_fails_with_already_invoiced(self):
        order = self._completed_order()
        self.generator.generate(order.pk, invoice_date=self.invoice_date)

        with self.assertRaises(AlreadyInvoiced):
            self.generator.generate(order.pk, invoice_date=self.invoice_date)

        self.assertEqual(Invoice.objects.filter(rental_order=order).count(), 1)

    def test_only_completed_orders_are_invoiced(self):
        start, end = rental_window()
        order = self.lifecycle.create_order(
            customer_id=self.customer.pk, vehicle_id=self.vehicle.pk, start_date=start, end_date=end,
        )
        self.lifecycle.confirm(order.pk)

        with self.assertRaises(InvalidTransition):
            self.generator.generate(order.pk, invoice_date=self.invoice_date)

        self.assertFalse(Invoice.objects.exists())
        order.refresh_from_db()
        self.assertEqual(order.status, RentalOrder.STATUS_CONFIRMED)

    def test_back_dated_invoice_still_gets_a_later_number(self):
        first = self.generator.generate(self._completed_order().pk, invoice_date=datetime.date(2026, 3, 10))
        self.vehicle = make_vehicle(code="51A-55555")
        second = self.generator.generate(self._completed_order().pk, invoice_date=datetime.date(2026, 3, 5))

        self.assertGreater(second.invoice_number, first.invoice_number)
        self.assertEqual(second.invoice_date, datetime.date(2026, 3, 5))

    def test_unknown_order(self):
        with self.assertRaises(NotFound):
            self.generator.generate(987654)

    def test_defaults_come_from_settings(self):
        order = self._completed_order()

        invoice = self.generator.generate(order.pk, invoice_date=self.invoice_date)

        self.assertEqual(invoice.due_date, self.invoice_date + datetime.timedelta(days=7))
        self.assertEqual(invoice.tax_rate, Decimal("10.00"))
        self.assertEqual(invoice.tax_amount, Decimal("150000.00"))

    @override_settings(RENTALS={"DEFAULT_TAX_RATE": "0", "INVOICE_DUE_DAYS": 30})
    def test_configured_defaults(self):
        order = self._completed_order()

        invoice = self.generator.generate(order.pk, invoice_date=self.invoice_date)

        self.assertEqual(invoice.due_date, datetime.date(2026, 4, 4))
        self.assertEqual(invoice.tax_amount, Decimal("0.00"))
        self.assertEqual(invoice.total_amount, Decimal("1500000.00"))

    def test_due_date_before_invoice_date_is_rejected(self):
        order = self._completed_order()

        with self.assertRaises(ValidationFailed):
            self.generator.generate(
                order.pk,
                invoice_date=self.invoice_date,
                due_date=self.invoice_date - datetime.timedelta(days=1),
            )

        order.refresh_from_db()
        self.assertEqual(order.status, RentalOrder.STATUS_COMPLETED)

    def test_tax_rate_out_of_range_is_rejected(self):
        order = self._completed_order()

        with self.assertRaises(ValidationFailed):
            self.generator.generate(order.pk, tax_rate=Decimal("120"))


class InvoiceAmendmentTests(TestCase):
    def setUp(self):
        self.customer = make_customer()
        self.vehicle = make_vehicle()
        self.lifecycle = RentalLifecycle(vehicle_tracker=FakeVehicleTracker())
        self.generator = InvoiceGenerator(lifecycle=self.lifecycle)
        start, end = rental_window(days=2)
        order = self.lifecycle.create_order(
            customer_id=self.customer.pk, vehicle_id=self.vehicle.pk, start_date=start, end_date=end,
        )
        self.lifecycle.confirm(order.pk)
        self.lifecycle.start(order.pk)
        self.lifecycle.complete(order.pk)
        self.invoice = self.generator.generate(
            order.pk,
            invoice_date=datetime.date(2026, 3, 3),
            due_date=timezone.localdate() + datetime.timedelta(days=30),
            tax_rate=Decimal("0"),
        )

    def _make_overdue(self):
        Invoice.objects.filter(pk=self.invoice.pk).update(status=Invoice.STATUS_OVERDUE)

    def test_update_due_date_and_notes(self):
        invoice = self.generator.update_invoice(
            self.invoice.pk, due_date=datetime.date(2026, 3, 20), notes="Extended terms",
        )

        invoice.refresh_from_db()
        self.assertEqual(invoice.due_date, datetime.date(2026, 3, 20))
        self.assertEqual(invoice.notes, "Extended terms")
        self.assertEqual(invoice.version, self.invoice.version + 1)

    def test_overdue_is_sticky_on_due_date_change_by_default(self):
        self._make_overdue()
        future = timezone.localdate() + datetime.timedelta(days=30)

        invoice = self.generator.update_invoice(self.invoice.pk, due_date=future)

        self.assertEqual(invoice.status, Invoice.STATUS_OVERDUE)

    @override_settings(RENTALS={"REVERT_OVERDUE_ON_DUE_DATE_CHANGE": True})
    def test_overdue_reverts_when_enabled(self):
        self._make_overdue()
        future = timezone.localdate() + datetime.timedelta(days=30)

        invoice = self.generator.update_invoice(self.invoice.pk, due_date=future)

        self.assertEqual(invoice.status, Invoice.STATUS_UNPAID)

    def test_paid_invoice_cannot_be_amended(self):
        PaymentReconciler().apply_payment(self.invoice.pk, self.invoice.total_amount, "Cash")

        with self.assertRaises(InvalidTransition):
            self.generator.update_invoice(self.invoice.pk, notes="late edit")

    def test_cancel_unpaid_invoice_is_sticky(self):
        invoice = self.generator.cancel_invoice(self.invoice.pk, reason="Issued in error")

        self.assertEqual(invoice.status, Invoice.STATUS_CANCELLED)
        self.assertIn("Issued in error", invoice.notes)
        with self.assertRaises(InvoiceNotPayable):
            PaymentReconciler().apply_payment(self.invoice.pk, Decimal("10"), "Cash")
        with self.assertRaises(InvalidTransition):
            self.generator.cancel_invoice(self.invoice.pk)
        with self.assertRaises(InvalidTransition):
            self.generator.update_invoice(self.invoice.pk, notes="reopen")

    def test_cannot_cancel_invoice_with_payments(self):
        PaymentReconciler().apply_payment(self.invoice.pk, Decimal("100000"), "BankTransfer")

        with self.assertRaises(InvalidTransition):
            self.generator.cancel_invoice(self.invoice.pk)

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, Invoice.STATUS_PARTIAL)


class DocumentSequenceTests(TestCase):
    def setUp(self):
        self.key = f"INV{timezone.localdate():%Y%m%d}"

    def test_numbers_keep_sorting_past_a_thousand(self):
        DocumentSequence.objects.create(key=self.key, last_value=999)

        number = DocumentSequence.next_number("INV")

        self.assertEqual(number, f"{self.key}01000")
        self.assertGreater(number, f"{self.key}00999")

    def test_exhausted_day_is_rejected(self):
        DocumentSequence.objects.create(key=self.key, last_value=10 ** DocumentSequence.NUMBER_WIDTH - 1)

        with self.assertRaises(RentalError):
            DocumentSequence.next_number("INV")

        self.assertEqual(
            DocumentSequence.objects.get(key=self.key).last_value,
            10 ** DocumentSequence.NUMBER_WIDTH - 1,
        )
