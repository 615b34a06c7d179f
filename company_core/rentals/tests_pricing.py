import datetime
from decimal import Decimal

from django.test import SimpleTestCase, TestCase

from .exceptions import (
    NotFound,
    PromotionBelowMinimum,
    PromotionError,
    PromotionNotFound,
    PromotionOutOfWindow,
    PromotionUsageExhausted,
    ValidationFailed,
)
from .models import Promotion
from .pricing import PricingCalculator, rental_days
from .promotions import PromotionValidator, compute_discount
from .testing import aware, make_promotion, make_vehicle, rental_window


class RentalDaysTests(SimpleTestCase):
    def test_whole_days(self):
        start, end = rental_window(days=3)
        self.assertEqual(rental_days(start, end), 3)

    def test_started_day_is_billed(self):
        start, end = rental_window(days=2, hours=1)
        self.assertEqual(rental_days(start, end), 3)

    def test_short_booking_bills_one_day(self):
        start, end = rental_window(days=0, hours=5)
        self.assertEqual(rental_days(start, end), 1)

    def test_end_must_follow_start(self):
        start, _end = rental_window()
        with self.assertRaises(ValidationFailed):
            rental_days(start, start)
        with self.assertRaises(ValidationFailed):
            rental_days(start, start - datetime.timedelta(minutes=1))


class PricingCalculatorTests(TestCase):
    def setUp(self):
        self.calculator = PricingCalculator()

    def test_subtotal_is_rate_times_days(self):
        cases = [
            ("500000", 3, 0, 3),
            ("450000.50", 1, 0, 1),
            ("120000", 6, 23, 7),
            ("0", 2, 0, 2),
        ]
        for rate, days, hours, expected_days in cases:
            with self.subTest(rate=rate, days=days, hours=hours):
                start, end = rental_window(days=days, hours=hours)
                quote = self.calculator.calculate(Decimal(rate), start, end)
                self.assertEqual(quote.total_days, expected_days)
                self.assertEqual(quote.sub_total, Decimal(rate) * expected_days)
                self.assertEqual(quote.total_amount, quote.sub_total)
                self.assertEqual(quote.discount_amount, Decimal("0.00"))

    def test_negative_rate_is_rejected(self):
        start, end = rental_window()
        with self.assertRaises(ValidationFailed):
            self.calculator.calculate(Decimal("-1"), start, end)

    def test_capped_percentage_promotion(self):
        make_promotion(max_discount="100000")
        start, end = rental_window(days=3)

        quote = self.calculator.calculate(Decimal("500000"), start, end, "SPRING10")

        self.assertEqual(quote.sub_total, Decimal("1500000.00"))
        self.assertEqual(quote.discount_amount, Decimal("100000.00"))
        self.assertEqual(quote.total_amount, Decimal("1400000.00"))
        self.assertTrue(quote.promotion_valid)
        self.assertEqual(quote.promotion.code, "SPRING10")

    def test_invalid_promotion_surfaces_message_instead_of_failing(self):
        start, end = rental_window(days=2)

        quote = self.calculator.calculate(Decimal("500000"), start, end, "TYPO")

        self.assertFalse(quote.promotion_valid)
        self.assertEqual(quote.discount_amount, Decimal("0.00"))
        self.assertEqual(quote.total_amount, Decimal("1000000.00"))
        self.assertEqual(quote.promotion_message, PromotionNotFound.default_message)
        self.assertIsNone(quote.promotion)

    def test_calculation_does_not_consume_promotion(self):
        promotion = make_promotion(usage_limit=1)
        start, end = rental_window()

        for _ in range(3):
            self.calculator.calculate(Decimal("500000"), start, end, promotion.code)

        promotion.refresh_from_db()
        self.assertEqual(promotion.used_count, 0)

    def test_quote_for_vehicle_uses_its_daily_rate(self):
        vehicle = make_vehicle(daily_rental_price="650000")
        start, end = rental_window(days=2)

        quote = self.calculator.quote_for_vehicle(vehicle.pk, start, end)

        self.assertEqual(quote.daily_rate, Decimal("650000.00"))
        self.assertEqual(quote.sub_total, Decimal("1300000.00"))

    def test_quote_for_unknown_vehicle(self):
        start, end = rental_window()
        with self.assertRaises(NotFound):
            self.calculator.quote_for_vehicle(424242, start, end)


class PromotionValidatorTests(TestCase):
    def setUp(self):
        self.validator = PromotionValidator()
        self.start = aware(2026, 3, 1)

    def test_percentage_discount_is_capped_by_max_discount(self):
        cases = [
            ("10", "100000", "1500000", "100000.00"),
            ("10", "200000", "1500000", "150000.00"),
            ("25", None, "80000", "20000.00"),
            ("100", "50000", "40000", "40000.00"),
        ]
        for value, cap, sub_total, expected in cases:
            with self.subTest(value=value, cap=cap, sub_total=sub_total):
                promotion = Promotion(
                    promotion_type=Promotion.TYPE_PERCENTAGE,
                    value=Decimal(value),
                    max_discount=Decimal(cap) if cap else None,
                )
                self.assertEqual(compute_discount(promotion, Decimal(sub_total)), Decimal(expected))

    def test_fixed_amount_never_exceeds_subtotal(self):
        make_promotion(code="FLAT", promotion_type=Promotion.TYPE_FIXED_AMOUNT, value="300000")

        result = self.validator.validate("FLAT", Decimal("200000"), rental_start=self.start)

        self.assertTrue(result.is_valid)
        self.assertEqual(result.discount_amount, Decimal("200000.00"))

    def test_fixed_amount_respects_max_discount(self):
        make_promotion(
            code="FLAT",
            promotion_type=Promotion.TYPE_FIXED_AMOUNT,
            value="300000",
            max_discount="250000",
        )

        result = self.validator.validate("FLAT", Decimal("1000000"), rental_start=self.start)

        self.assertEqual(result.discount_amount, Decimal("250000.00"))

    def test_lookup_is_case_insensitive(self):
        promotion = make_promotion()

        result = self.validator.validate("  spring10 ", Decimal("100000"), rental_start=self.start)

        self.assertTrue(result.is_valid)
        self.assertEqual(result.promotion, promotion)
        self.assertIs(result.require(), result)

    def test_inactive_or_deleted_promotions_are_not_found(self):
        make_promotion(code="OFF", status=Promotion.STATUS_INACTIVE)
        make_promotion(code="GONE", is_deleted=True)

        for code in ("OFF", "GONE", "MISSING", ""):
            with self.subTest(code=code):
                result = self.validator.validate(code, Decimal("100000"), rental_start=self.start)
                self.assertFalse(result.is_valid)
                self.assertIs(result.reason, PromotionNotFound)
                self.assertEqual(result.reason_code, "promotion_not_found")

    def test_out_of_window(self):
        make_promotion(start_date=datetime.date(2026, 4, 1), end_date=datetime.date(2026, 4, 30))

        result = self.validator.validate("SPRING10", Decimal("100000"), rental_start=self.start)

        self.assertFalse(result.is_valid)
        self.assertIs(result.reason, PromotionOutOfWindow)
        with self.assertRaises(PromotionOutOfWindow):
            result.require()

    def test_as_of_overrides_rental_start(self):
        make_promotion(start_date=datetime.date(2026, 4, 1), end_date=datetime.date(2026, 4, 30))

        result = self.validator.validate(
            "SPRING10",
            Decimal("100000"),
            rental_start=self.start,
            as_of=datetime.date(2026, 4, 15),
        )

        self.assertTrue(result.is_valid)

    def test_window_bounds_are_inclusive(self):
        make_promotion(start_date=datetime.date(2026, 3, 1), end_date=datetime.date(2026, 3, 1))

        result = self.validator.validate("SPRING10", Decimal("100000"), rental_start=aware(2026, 3, 1, 23, 30))

        self.assertTrue(result.is_valid)

    def test_usage_exhausted(self):
        make_promotion(usage_limit=3, used_count=3)

        result = self.validator.validate("SPRING10", Decimal("100000"), rental_start=self.start)

        self.assertIs(result.reason, PromotionUsageExhausted)
        held = self.validator.validate("SPRING10", Decimal("100000"), rental_start=self.start, slot_held=True)
        self.assertTrue(held.is_valid)

    def test_below_minimum(self):
        make_promotion(min_amount="1000000")

        result = self.validator.validate("SPRING10", Decimal("999999.99"), rental_start=self.start)

        self.assertIs(result.reason, PromotionBelowMinimum)
        self.assertTrue(
            self.validator.validate("SPRING10", Decimal("1000000"), rental_start=self.start).is_valid
        )

    def test_checks_run_in_documented_order(self):
        make_promotion(
            start_date=datetime.date(2026, 6, 1),
            end_date=datetime.date(2026, 6, 30),
            usage_limit=1,
            used_count=1,
            min_amount="5000000",
        )

        result = self.validator.validate("SPRING10", Decimal("1"), rental_start=self.start)

        self.assertIs(result.reason, PromotionOutOfWindow)

    def test_require_raises_promotion_error_family(self):
        result = self.validator.validate("MISSING", Decimal("1"))
        with self.assertRaises(PromotionError) as ctx:
            result.require()
        self.assertEqual(ctx.exception.code, "promotion_not_found")

    def test_validation_is_read_only(self):
        promotion = make_promotion(usage_limit=2)

        self.validator.validate("SPRING10", Decimal("100000"), rental_start=self.start)
        self.validator.validate("SPRING10", Decimal("100000"), rental_start=self.start)

        promotion.refresh_from_db()
        self.assertEqual(promotion.used_count, 0)
