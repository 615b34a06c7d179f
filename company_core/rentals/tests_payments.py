import datetime
from decimal import Decimal
from io import StringIO

from django.contrib.auth.models import User
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from . import queries
from .cron import RefreshOverdueInvoicesCronJob
from .exceptions import (
    InvalidAmount,
    InvalidTransition,
    InvoiceNotPayable,
    NotFound,
    Overpayment,
    ValidationFailed,
)
from .models import Invoice, Payment
from .payments import PaymentReconciler, compute_invoice_status, settled_invoice_status
from .testing import RENTAL_DAY, make_invoice


class ComputeInvoiceStatusTests(TestCase):
    def test_status_follows_balance(self):
        cases = [
            ("0", "100", Invoice.STATUS_UNPAID),
            ("40", "100", Invoice.STATUS_PARTIAL),
            ("99.99", "100", Invoice.STATUS_PARTIAL),
            ("100", "100", Invoice.STATUS_PAID),
            ("0", "0", Invoice.STATUS_PAID),
        ]
        for paid, total, expected in cases:
            with self.subTest(paid=paid, total=total):
                self.assertEqual(compute_invoice_status(Decimal(paid), Decimal(total)), expected)


class SettledInvoiceStatusTests(TestCase):
    def test_unpaid_balance_past_due_is_overdue(self):
        invoice = Invoice(total_amount=Decimal("100.00"), due_date=datetime.date(2026, 3, 8))
        cases = [
            ("40", datetime.date(2026, 3, 9), Invoice.STATUS_OVERDUE),
            ("0", datetime.date(2026, 3, 9), Invoice.STATUS_OVERDUE),
            ("100", datetime.date(2026, 3, 9), Invoice.STATUS_PAID),
            ("40", datetime.date(2026, 3, 8), Invoice.STATUS_PARTIAL),
        ]
        for paid, today, expected in cases:
            with self.subTest(paid=paid, today=today):
                self.assertEqual(settled_invoice_status(invoice, Decimal(paid), today=today), expected)


class ApplyPaymentTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="cashier", password="p")
        self.reconciler = PaymentReconciler()
        self.invoice = make_invoice(total="100.00")

    def test_partial_overpayment_then_exact_settlement(self):
        first = self.reconciler.apply_payment(self.invoice.pk, Decimal("40"), "Cash", actor=self.user)
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, Invoice.STATUS_PARTIAL)
        self.assertEqual(self.invoice.remaining_amount, Decimal("60.00"))
        self.assertEqual(first.created_by, self.user)
        self.assertRegex(first.payment_number, r"^PMT\d{13}$")

        with self.assertRaises(Overpayment):
            self.reconciler.apply_payment(self.invoice.pk, Decimal("70"), "Cash")
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.remaining_amount, Decimal("60.00"))
        self.assertEqual(self.invoice.paid_amount, Decimal("40.00"))

        self.reconciler.apply_payment(self.invoice.pk, Decimal("60"), "BankTransfer", transaction_code="FT123")
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, Invoice.STATUS_PAID)
        self.assertEqual(self.invoice.remaining_amount, Decimal("0.00"))
        self.assertEqual(self.invoice.paid_amount, Decimal("100.00"))
        self.assertEqual(self.invoice.version, 2)
        self.assertEqual(Payment.objects.filter(invoice=self.invoice).count(), 2)

    def test_non_positive_amounts_are_rejected(self):
        for amount in ("0", "-5", "0.001"):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidAmount):
                    self.reconciler.apply_payment(self.invoice.pk, Decimal(amount), "Cash")
        self.assertFalse(Payment.objects.exists())

    def test_unknown_method_is_rejected(self):
        with self.assertRaises(ValidationFailed):
            self.reconciler.apply_payment(self.invoice.pk, Decimal("10"), "Cheque")

    def test_unknown_invoice(self):
        with self.assertRaises(NotFound):
            self.reconciler.apply_payment(55555, Decimal("10"), "Cash")

    def test_cancelled_invoice_rejects_payments(self):
        Invoice.objects.filter(pk=self.invoice.pk).update(status=Invoice.STATUS_CANCELLED)

        with self.assertRaises(InvoiceNotPayable):
            self.reconciler.apply_payment(self.invoice.pk, Decimal("10"), "Cash")

    def test_paid_invoice_rejects_further_payment(self):
        self.reconciler.apply_payment(self.invoice.pk, Decimal("100"), "Cash")

        with self.assertRaises(Overpayment):
            self.reconciler.apply_payment(self.invoice.pk, Decimal("0.01"), "Cash")

    def test_payment_on_overdue_invoice_not_past_due_follows_balance(self):
        Invoice.objects.filter(pk=self.invoice.pk).update(status=Invoice.STATUS_OVERDUE)

        self.reconciler.apply_payment(self.invoice.pk, Decimal("30"), "CreditCard")
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, Invoice.STATUS_PARTIAL)

    def test_payment_on_past_due_invoice_stays_overdue(self):
        invoice = make_invoice(total="100.00", number="INV20260301009", due_date=RENTAL_DAY)

        self.reconciler.apply_payment(invoice.pk, Decimal("30"), "Cash")
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, Invoice.STATUS_OVERDUE)

        self.reconciler.apply_payment(invoice.pk, Decimal("70"), "Cash")
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, Invoice.STATUS_PAID)

    def test_payment_date_defaults_to_today(self):
        payment = self.reconciler.apply_payment(self.invoice.pk, Decimal("10"), "Cash")
        self.assertIsNotNone(payment.payment_date)

        dated = self.reconciler.apply_payment(
            self.invoice.pk, Decimal("10"), "Cash", payment_date=datetime.date(2026, 3, 2),
        )
        self.assertEqual(dated.payment_date, datetime.date(2026, 3, 2))


class VoidPaymentTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="manager", password="p")
        self.reconciler = PaymentReconciler()
        self.invoice = make_invoice(total="100.00")

    def test_void_reverses_balance_and_keeps_row(self):
        payment = self.reconciler.apply_payment(self.invoice.pk, Decimal("40"), "Cash")

        voided = self.reconciler.void_payment(payment.pk, reason="Duplicate entry", actor=self.user)

        self.invoice.refresh_from_db()
        self.assertTrue(voided.is_voided)
        self.assertEqual(voided.voided_by, self.user)
        self.assertEqual(voided.void_reason, "Duplicate entry")
        self.assertEqual(self.invoice.paid_amount, Decimal("0.00"))
        self.assertEqual(self.invoice.remaining_amount, Decimal("100.00"))
        self.assertEqual(self.invoice.status, Invoice.STATUS_UNPAID)
        self.assertTrue(Payment.objects.filter(pk=payment.pk).exists())

    def test_void_twice_is_rejected(self):
        payment = self.reconciler.apply_payment(self.invoice.pk, Decimal("40"), "Cash")
        self.reconciler.void_payment(payment.pk)

        with self.assertRaises(InvalidTransition):
            self.reconciler.void_payment(payment.pk)

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.paid_amount, Decimal("0.00"))

    def test_void_on_paid_invoice_returns_to_partial(self):
        self.reconciler.apply_payment(self.invoice.pk, Decimal("40"), "Cash")
        second = self.reconciler.apply_payment(self.invoice.pk, Decimal("60"), "Cash")

        self.reconciler.void_payment(second.pk)

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, Invoice.STATUS_PARTIAL)
        self.assertEqual(self.invoice.remaining_amount, Decimal("60.00"))

    def test_void_on_past_due_invoice_keeps_overdue(self):
        invoice = make_invoice(total="100.00", number="INV20260301009", due_date=RENTAL_DAY)
        payment = self.reconciler.apply_payment(invoice.pk, Decimal("40"), "Cash")

        self.reconciler.void_payment(payment.pk)

        invoice.refresh_from_db()
        self.assertEqual(invoice.status, Invoice.STATUS_OVERDUE)
        self.assertEqual(invoice.paid_amount, Decimal("0.00"))

    def test_void_and_payment_agree_on_overdue(self):
        past_due = make_invoice(total="100.00", number="INV20260301009", due_date=RENTAL_DAY)
        first = self.reconciler.apply_payment(past_due.pk, Decimal("40"), "Cash")
        self.reconciler.apply_payment(past_due.pk, Decimal("10"), "Cash")
        after_payment = Invoice.objects.get(pk=past_due.pk).status

        self.reconciler.void_payment(first.pk)

        self.assertEqual(after_payment, Invoice.objects.get(pk=past_due.pk).status)

    def test_void_on_overdue_flag_before_due_date_follows_balance(self):
        payment = self.reconciler.apply_payment(self.invoice.pk, Decimal("40"), "Cash")
        Invoice.objects.filter(pk=self.invoice.pk).update(status=Invoice.STATUS_OVERDUE)

        self.reconciler.void_payment(payment.pk)

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, Invoice.STATUS_UNPAID)

    def test_voided_payments_are_hidden_from_invoice_listing(self):
        kept = self.reconciler.apply_payment(self.invoice.pk, Decimal("40"), "Cash")
        dropped = self.reconciler.apply_payment(self.invoice.pk, Decimal("10"), "Cash")
        self.reconciler.void_payment(dropped.pk)

        self.assertEqual(list(queries.list_invoice_payments(self.invoice.pk)), [kept])
        self.assertEqual(len(queries.list_invoice_payments(self.invoice.pk, include_voided=True)), 2)

    def test_unknown_payment(self):
        with self.assertRaises(NotFound):
            self.reconciler.void_payment(123456)


class RefreshOverdueTests(TestCase):
    def setUp(self):
        self.reconciler = PaymentReconciler()
        due = RENTAL_DAY + datetime.timedelta(days=7)
        self.unpaid = make_invoice(number="INV20260301001", due_date=due)
        self.partial = make_invoice(
            number="INV20260301002", due_date=due, status=Invoice.STATUS_PARTIAL, paid="30.00",
        )
        self.paid = make_invoice(number="INV20260301003", due_date=due, status=Invoice.STATUS_PAID, paid="100.00")
        self.cancelled = make_invoice(number="INV20260301004", due_date=due, status=Invoice.STATUS_CANCELLED)
        self.not_due = make_invoice(number="INV20260301005", due_date=due + datetime.timedelta(days=30))
        self.as_of = due + datetime.timedelta(days=1)

    def _statuses(self):
        return {
            invoice.invoice_number: invoice.status
            for invoice in Invoice.objects.all()
        }

    def test_marks_only_open_invoices_past_due(self):
        updated = self.reconciler.refresh_overdue_status(as_of=self.as_of)

        self.assertEqual(updated, 2)
        statuses = self._statuses()
        self.assertEqual(statuses["INV20260301001"], Invoice.STATUS_OVERDUE)
        self.assertEqual(statuses["INV20260301002"], Invoice.STATUS_OVERDUE)
        self.assertEqual(statuses["INV20260301003"], Invoice.STATUS_PAID)
        self.assertEqual(statuses["INV20260301004"], Invoice.STATUS_CANCELLED)
        self.assertEqual(statuses["INV20260301005"], Invoice.STATUS_UNPAID)

    def test_due_date_itself_is_not_overdue(self):
        updated = self.reconciler.refresh_overdue_status(as_of=self.unpaid.due_date)
        self.assertEqual(updated, 0)

    def test_refresh_is_idempotent(self):
        self.reconciler.refresh_overdue_status(as_of=self.as_of)
        self.assertEqual(self.reconciler.refresh_overdue_status(as_of=self.as_of), 0)

    def test_management_command(self):
        out = StringIO()

        call_command("refresh_overdue_invoices", "--as-of", self.as_of.isoformat(), stdout=out)

        self.assertIn("Marked 2 invoice(s) overdue", out.getvalue())
        self.unpaid.refresh_from_db()
        self.assertEqual(self.unpaid.status, Invoice.STATUS_OVERDUE)

    def test_management_command_records_actor(self):
        clerk = User.objects.create_user(username="night-clerk", password="pw")

        call_command(
            "refresh_overdue_invoices", "--as-of", self.as_of.isoformat(), "--actor", "night-clerk",
            stdout=StringIO(),
        )

        self.unpaid.refresh_from_db()
        self.not_due.refresh_from_db()
        self.assertEqual(self.unpaid.modified_by, clerk)
        self.assertIsNone(self.not_due.modified_by)

    def test_management_command_rejects_unknown_actor(self):
        with self.assertRaises(CommandError):
            call_command("refresh_overdue_invoices", "--actor", "nobody", stdout=StringIO())
        self.unpaid.refresh_from_db()
        self.assertEqual(self.unpaid.status, Invoice.STATUS_UNPAID)

    def test_management_command_rejects_bad_date(self):
        with self.assertRaises(CommandError):
            call_command("refresh_overdue_invoices", "--as-of", "03/08/2026", stdout=StringIO())

    def test_cron_job_uses_today(self):
        message = RefreshOverdueInvoicesCronJob().do()

        # Fixture due dates are in March 2026; anything later sees them as past due.
        self.assertTrue(message.startswith("Marked "))
        self.unpaid.refresh_from_db()
        self.assertIn(self.unpaid.status, (Invoice.STATUS_UNPAID, Invoice.STATUS_OVERDUE))
