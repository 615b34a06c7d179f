import threading
from decimal import Decimal

from django.db import OperationalError, connection
from django.test import TestCase, TransactionTestCase, skipUnlessDBFeature

from .exceptions import ConcurrencyConflict, PromotionUsageExhausted, RentalError
from .models import Invoice
from .payments import PaymentReconciler
from .promotions import PromotionValidator
from .testing import make_invoice, make_promotion


class PromotionCounterGuardTests(TestCase):
    def setUp(self):
        self.validator = PromotionValidator()

    def test_consume_stops_at_usage_limit(self):
        promotion = make_promotion(usage_limit=1)

        self.validator.consume(promotion.pk)
        with self.assertRaises(PromotionUsageExhausted):
            self.validator.consume(promotion.pk)

        promotion.refresh_from_db()
        self.assertEqual(promotion.used_count, 1)

    def test_unlimited_promotion_keeps_counting(self):
        promotion = make_promotion()

        for _ in range(4):
            self.validator.consume(promotion.pk)

        promotion.refresh_from_db()
        self.assertEqual(promotion.used_count, 4)

    def test_release_never_goes_below_zero(self):
        promotion = make_promotion(usage_limit=2)
        self.validator.consume(promotion.pk)

        self.assertTrue(self.validator.release(promotion.pk))
        self.assertFalse(self.validator.release(promotion.pk))

        promotion.refresh_from_db()
        self.assertEqual(promotion.used_count, 0)


class LockedInvoiceReconciler(PaymentReconciler):
    """Fails the way a backend does when the invoice row stays locked."""

    def __init__(self, message):
        self.message = message

    def _get_invoice(self, invoice_id, lock=False):
        raise OperationalError(self.message)


class InvoiceVersionGuardTests(TestCase):
    def setUp(self):
        self.reconciler = PaymentReconciler()
        self.invoice = make_invoice(total="100.00")

    def test_stale_balance_write_is_rejected(self):
        stale = Invoice.objects.get(pk=self.invoice.pk)
        self.reconciler.apply_payment(self.invoice.pk, Decimal("60"), "Cash")

        with self.assertRaises(ConcurrencyConflict):
            self.reconciler._write_balance(stale, Decimal("80.00"), Invoice.STATUS_PARTIAL)

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.paid_amount, Decimal("60.00"))
        self.assertEqual(self.invoice.version, 1)

    def test_stale_expected_version_is_rejected(self):
        self.reconciler.apply_payment(self.invoice.pk, Decimal("10"), "Cash", expected_version=0)

        with self.assertRaises(ConcurrencyConflict) as ctx:
            self.reconciler.apply_payment(self.invoice.pk, Decimal("10"), "Cash", expected_version=0)

        self.assertEqual(ctx.exception.code, "concurrency_conflict")
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.paid_amount, Decimal("10.00"))

    def test_lock_failure_becomes_concurrency_conflict(self):
        for message in ("database table is locked: rentals_invoice", "deadlock detected"):
            with self.subTest(message=message):
                with self.assertRaises(ConcurrencyConflict):
                    LockedInvoiceReconciler(message).apply_payment(self.invoice.pk, Decimal("10"), "Cash")

        self.assertFalse(self.invoice.payments.exists())

    def test_other_database_errors_propagate(self):
        with self.assertRaises(OperationalError):
            LockedInvoiceReconciler("no such column: paid_amount").apply_payment(
                self.invoice.pk, Decimal("10"), "Cash",
            )


class ConcurrentRequestTests(TransactionTestCase):
    """Races real connections against each other."""

    def _race(self, *calls):
        barrier = threading.Barrier(len(calls))
        outcomes = []
        outcomes_lock = threading.Lock()

        def runner(call):
            try:
                barrier.wait(timeout=10)
                call()
                outcome = "ok"
            except RentalError as exc:
                outcome = exc.code
            finally:
                connection.close()
            with outcomes_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=runner, args=(call,)) for call in calls]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        return sorted(outcomes)

    def test_two_orders_race_for_last_promotion_slot(self):
        promotion = make_promotion(usage_limit=1)
        validator = PromotionValidator()

        outcomes = self._race(
            lambda: validator.consume(promotion.pk),
            lambda: validator.consume(promotion.pk),
        )

        self.assertEqual(outcomes, ["ok", "promotion_usage_exhausted"])
        promotion.refresh_from_db()
        self.assertEqual(promotion.used_count, 1)

    # Without row locks the loser fails on the table lock, not on the balance check.
    @skipUnlessDBFeature("has_select_for_update")
    def test_concurrent_payments_cannot_jointly_overpay(self):
        invoice = make_invoice(total="100.00")
        reconciler = PaymentReconciler()

        outcomes = self._race(
            lambda: reconciler.apply_payment(invoice.pk, Decimal("60"), "Cash"),
            lambda: reconciler.apply_payment(invoice.pk, Decimal("70"), "Cash"),
        )

        self.assertEqual(outcomes.count("ok"), 1)
        self.assertEqual(outcomes.count("overpayment"), 1)
        invoice.refresh_from_db()
        self.assertLessEqual(invoice.paid_amount, invoice.total_amount)
        self.assertEqual(invoice.payments.count(), 1)
        self.assertEqual(invoice.remaining_amount, invoice.total_amount - invoice.paid_amount)
