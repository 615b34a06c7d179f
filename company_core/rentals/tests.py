import datetime
from decimal import Decimal

from django.contrib.auth.models import AnonymousUser, User
from django.db import IntegrityError, transaction
from django.test import TestCase
from django.test.utils import override_settings

from . import queries
from .activity import acting_as, current_actor, resolve_actor
from .events import vehicle_status_changed
from .exceptions import (
    InvalidTransition,
    NotFound,
    PromotionNotFound,
    PromotionUsageExhausted,
    ValidationFailed,
    VehicleUnavailable,
)
from .lifecycle import RentalLifecycle, can_transition
from .models import RentalOrder, RentalStatusHistory, Vehicle, VehicleHistory
from .testing import (
    FakeVehicleTracker,
    make_customer,
    make_promotion,
    make_vehicle,
    rental_window,
)


class RentalLifecycleTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="staff", password="p")
        self.customer = make_customer()
        self.vehicle = make_vehicle()
        self.tracker = FakeVehicleTracker()
        self.lifecycle = RentalLifecycle(vehicle_tracker=self.tracker)
        self.start, self.end = rental_window(days=3)

    def _create(self, **kwargs):
        kwargs.setdefault("customer_id", self.customer.pk)
        kwargs.setdefault("vehicle_id", self.vehicle.pk)
        kwargs.setdefault("start_date", self.start)
        kwargs.setdefault("end_date", self.end)
        return self.lifecycle.create_order(actor=self.user, **kwargs)

    def _statuses(self, order):
        return list(
            RentalStatusHistory.objects.filter(rental_order=order)
            .order_by("changed_at", "id")
            .values_list("new_status", flat=True)
        )

    def test_create_order_starts_in_draft_with_history(self):
        order = self._create()

        self.assertEqual(order.status, RentalOrder.STATUS_DRAFT)
        self.assertRegex(order.order_number, r"^RO\d{8}00001$")
        self.assertEqual(order.total_days, 3)
        self.assertEqual(order.sub_total, Decimal("1500000.00"))
        self.assertEqual(order.total_amount, Decimal("1500000.00"))
        entry = RentalStatusHistory.objects.get(rental_order=order)
        self.assertIsNone(entry.old_status)
        self.assertEqual(entry.new_status, RentalOrder.STATUS_DRAFT)
        self.assertEqual(entry.changed_by, self.user)

    def test_order_numbers_increase_within_a_day(self):
        first = self._create()
        second = self._create(vehicle_id=make_vehicle(code="51A-22222").pk)

        self.assertEqual(int(second.order_number[-5:]), int(first.order_number[-5:]) + 1)
        self.assertEqual(first.order_number[:10], second.order_number[:10])

    def test_capped_percentage_promotion_prices_order(self):
        promotion = make_promotion(max_discount="100000")

        order = self._create(promotion_code="spring10")

        self.assertEqual(order.sub_total, Decimal("1500000.00"))
        self.assertEqual(order.discount_amount, Decimal("100000.00"))
        self.assertEqual(order.total_amount, Decimal("1400000.00"))
        self.assertEqual(order.promotion, promotion)
        promotion.refresh_from_db()
        self.assertEqual(promotion.used_count, 0)
        self.assertFalse(order.promotion_consumed)

    def test_unknown_promotion_code_does_not_block_draft(self):
        order = self._create(promotion_code="NOPE")

        self.assertEqual(order.discount_amount, Decimal("0.00"))
        self.assertEqual(order.promotion_code, "NOPE")
        self.assertIsNone(order.promotion)
        self.assertEqual(order.promotion_message, PromotionNotFound.default_message)

    def test_end_before_start_is_rejected_without_writes(self):
        with self.assertRaises(ValidationFailed):
            self._create(end_date=self.start - datetime.timedelta(hours=1))

        self.assertEqual(RentalOrder.objects.count(), 0)

    def test_unknown_customer_is_not_found(self):
        with self.assertRaises(NotFound):
            self._create(customer_id=999999)

    def test_draft_to_in_progress_is_rejected_and_leaves_state_unchanged(self):
        order = self._create()

        with self.assertRaises(InvalidTransition):
            self.lifecycle.start(order.pk, actor=self.user)

        order.refresh_from_db()
        self.assertEqual(order.status, RentalOrder.STATUS_DRAFT)
        self.assertIsNone(order.actual_start_date)
        self.assertEqual(self._statuses(order), [RentalOrder.STATUS_DRAFT])
        self.assertEqual(self.tracker.calls, [])

    def test_transition_table(self):
        self.assertTrue(can_transition(RentalOrder.STATUS_DRAFT, RentalOrder.STATUS_CONFIRMED))
        self.assertTrue(can_transition(RentalOrder.STATUS_COMPLETED, RentalOrder.STATUS_INVOICED))
        self.assertFalse(can_transition(RentalOrder.STATUS_DRAFT, RentalOrder.STATUS_IN_PROGRESS))
        self.assertFalse(can_transition(RentalOrder.STATUS_COMPLETED, RentalOrder.STATUS_CANCELLED))
        self.assertFalse(can_transition(RentalOrder.STATUS_CANCELLED, RentalOrder.STATUS_DRAFT))
        self.assertFalse(can_transition(RentalOrder.STATUS_INVOICED, RentalOrder.STATUS_CANCELLED))

    def test_full_lifecycle_records_history_and_vehicle_effects(self):
        order = self._create()

        self.lifecycle.confirm(order.pk, actor=self.user)
        self.lifecycle.start(order.pk, actor=self.user)
        order = self.lifecycle.complete(order.pk, actor=self.user, return_location="District 1")

        self.assertEqual(order.status, RentalOrder.STATUS_COMPLETED)
        self.assertIsNotNone(order.actual_start_date)
        self.assertIsNotNone(order.actual_end_date)
        self.assertEqual(order.return_location, "District 1")
        self.assertEqual(
            self._statuses(order),
            [
                RentalOrder.STATUS_DRAFT,
                RentalOrder.STATUS_CONFIRMED,
                RentalOrder.STATUS_IN_PROGRESS,
                RentalOrder.STATUS_COMPLETED,
            ],
        )
        self.assertEqual(
            self.tracker.calls,
            [("rented", self.vehicle.pk, order.pk), ("returned", self.vehicle.pk, order.pk)],
        )

    def test_confirm_consumes_promotion_once(self):
        promotion = make_promotion(usage_limit=5)
        order = self._create(promotion_code=promotion.code)

        self.lifecycle.confirm(order.pk, actor=self.user)
        with self.assertRaises(InvalidTransition):
            self.lifecycle.confirm(order.pk, actor=self.user)

        promotion.refresh_from_db()
        order.refresh_from_db()
        self.assertEqual(promotion.used_count, 1)
        self.assertTrue(order.promotion_consumed)

    def test_confirm_with_exhausted_promotion_fails(self):
        promotion = make_promotion(usage_limit=1, used_count=1)
        order = self._create(promotion_code=promotion.code)

        with self.assertRaises(PromotionUsageExhausted):
            self.lifecycle.confirm(order.pk, actor=self.user)

        order.refresh_from_db()
        self.assertEqual(order.status, RentalOrder.STATUS_DRAFT)
        self.assertEqual(self._statuses(order), [RentalOrder.STATUS_DRAFT])

    def test_cancel_confirmed_order_releases_promotion(self):
        promotion = make_promotion(usage_limit=5)
        order = self._create(promotion_code=promotion.code)
        self.lifecycle.confirm(order.pk, actor=self.user)

        order = self.lifecycle.cancel(order.pk, reason="Customer changed plans", actor=self.user)

        promotion.refresh_from_db()
        self.assertEqual(promotion.used_count, 0)
        self.assertFalse(order.promotion_consumed)
        last = RentalStatusHistory.objects.filter(rental_order=order).last()
        self.assertEqual(last.new_status, RentalOrder.STATUS_CANCELLED)
        self.assertEqual(last.notes, "Customer changed plans")

    @override_settings(RENTALS={"RELEASE_PROMOTION_ON_CANCEL": False})
    def test_cancel_keeps_promotion_slot_when_release_disabled(self):
        promotion = make_promotion(usage_limit=5)
        order = self._create(promotion_code=promotion.code)
        self.lifecycle.confirm(order.pk, actor=self.user)

        self.lifecycle.cancel(order.pk, actor=self.user)

        promotion.refresh_from_db()
        self.assertEqual(promotion.used_count, 1)

    def test_cancel_draft_does_not_touch_promotion(self):
        promotion = make_promotion(usage_limit=5, used_count=2)
        order = self._create(promotion_code=promotion.code)

        self.lifecycle.cancel(order.pk, actor=self.user)

        promotion.refresh_from_db()
        self.assertEqual(promotion.used_count, 2)
        self.assertEqual(self.tracker.calls, [])

    def test_cancel_in_progress_returns_vehicle(self):
        order = self._create()
        self.lifecycle.confirm(order.pk, actor=self.user)
        self.lifecycle.start(order.pk, actor=self.user)

        self.lifecycle.cancel(order.pk, actor=self.user)

        self.assertEqual(self.tracker.calls[-1], ("cancelled", self.vehicle.pk, order.pk))

    def test_completed_order_cannot_be_cancelled(self):
        order = self._create()
        self.lifecycle.confirm(order.pk)
        self.lifecycle.start(order.pk)
        self.lifecycle.complete(order.pk)

        with self.assertRaises(InvalidTransition):
            self.lifecycle.cancel(order.pk)

    def test_confirm_requires_available_vehicle(self):
        order = self._create()
        Vehicle.objects.filter(pk=self.vehicle.pk).update(status=Vehicle.STATUS_MAINTENANCE)

        with self.assertRaises(VehicleUnavailable):
            self.lifecycle.confirm(order.pk, actor=self.user)

        order.refresh_from_db()
        self.assertEqual(order.status, RentalOrder.STATUS_DRAFT)

    def test_vehicle_cannot_be_attached_to_two_active_orders(self):
        first = self._create()

        with self.assertRaises(VehicleUnavailable):
            self._create()

        self.lifecycle.cancel(first.pk, actor=self.user)
        second = self._create()
        self.lifecycle.confirm(second.pk, actor=self.user)
        second.refresh_from_db()
        self.assertEqual(second.status, RentalOrder.STATUS_CONFIRMED)
        self.assertEqual(RentalOrder.objects.filter(vehicle=self.vehicle).count(), 2)

    def test_completed_order_keeps_vehicle_until_invoiced(self):
        order = self._create()
        self.lifecycle.confirm(order.pk)
        self.lifecycle.start(order.pk)
        self.lifecycle.complete(order.pk)

        with self.assertRaises(VehicleUnavailable):
            self._create()

        RentalOrder.objects.filter(pk=order.pk).update(status=RentalOrder.STATUS_INVOICED)
        self.assertEqual(self._create().status, RentalOrder.STATUS_DRAFT)

    def test_deleted_draft_releases_vehicle(self):
        order = self._create()
        self.lifecycle.delete_order(order.pk)

        self.assertEqual(self._create().status, RentalOrder.STATUS_DRAFT)

    def test_database_rejects_second_active_order(self):
        order = self._create()
        clone = RentalOrder.objects.get(pk=order.pk)
        clone.pk = None
        clone.order_number = "RO-CLONE"

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                clone.save()

    def test_update_draft_recomputes_amounts(self):
        order = self._create()

        order = self.lifecycle.update_order(
            order.pk,
            actor=self.user,
            end_date=self.start + datetime.timedelta(days=4, hours=2),
            notes="Extended",
        )

        self.assertEqual(order.total_days, 5)
        self.assertEqual(order.sub_total, Decimal("2500000.00"))
        self.assertEqual(order.total_amount, Decimal("2500000.00"))
        self.assertEqual(order.notes, "Extended")
        self.assertEqual(order.modified_by, self.user)

    def test_update_draft_cannot_move_onto_a_taken_vehicle(self):
        other = make_vehicle(code="51A-99999")
        self._create(vehicle_id=other.pk)
        order = self._create()

        with self.assertRaises(VehicleUnavailable):
            self.lifecycle.update_order(order.pk, vehicle_id=other.pk)

        order.refresh_from_db()
        self.assertEqual(order.vehicle, self.vehicle)

    def test_update_draft_vehicle_takes_new_rate(self):
        other = make_vehicle(code="51A-99999", daily_rental_price="800000")
        order = self._create()

        order = self.lifecycle.update_order(order.pk, vehicle_id=other.pk)

        self.assertEqual(order.vehicle, other)
        self.assertEqual(order.daily_rental_price, Decimal("800000.00"))
        self.assertEqual(order.sub_total, Decimal("2400000.00"))

    def test_update_rejects_unknown_fields(self):
        order = self._create()

        with self.assertRaises(ValidationFailed):
            self.lifecycle.update_order(order.pk, status=RentalOrder.STATUS_COMPLETED)

    def test_update_in_progress_order_is_rejected(self):
        order = self._create()
        self.lifecycle.confirm(order.pk)
        self.lifecycle.start(order.pk)

        with self.assertRaises(InvalidTransition):
            self.lifecycle.update_order(order.pk, daily_rental_price=Decimal("1"))

        order.refresh_from_db()
        self.assertEqual(order.daily_rental_price, Decimal("500000.00"))

    def test_update_confirmed_order_swaps_promotion_usage(self):
        old_promotion = make_promotion(code="OLD10", usage_limit=5)
        new_promotion = make_promotion(
            code="FLAT50K",
            promotion_type="FixedAmount",
            value="50000",
            usage_limit=5,
        )
        order = self._create(promotion_code=old_promotion.code)
        self.lifecycle.confirm(order.pk)

        order = self.lifecycle.update_order(order.pk, promotion_code=new_promotion.code)

        old_promotion.refresh_from_db()
        new_promotion.refresh_from_db()
        self.assertEqual(old_promotion.used_count, 0)
        self.assertEqual(new_promotion.used_count, 1)
        self.assertTrue(order.promotion_consumed)
        self.assertEqual(order.discount_amount, Decimal("50000.00"))

    def test_update_confirmed_order_keeps_its_slot_on_the_last_use(self):
        promotion = make_promotion(usage_limit=1, max_discount="100000")
        order = self._create(promotion_code=promotion.code)
        self.lifecycle.confirm(order.pk)

        order = self.lifecycle.update_order(order.pk, end_date=self.start + datetime.timedelta(days=1))

        promotion.refresh_from_db()
        self.assertEqual(promotion.used_count, 1)
        self.assertEqual(order.sub_total, Decimal("500000.00"))
        self.assertEqual(order.discount_amount, Decimal("50000.00"))

    def test_update_confirmed_order_with_bad_code_rolls_back(self):
        promotion = make_promotion(usage_limit=5)
        order = self._create(promotion_code=promotion.code)
        self.lifecycle.confirm(order.pk)

        with self.assertRaises(PromotionNotFound):
            self.lifecycle.update_order(order.pk, promotion_code="TYPO")

        order.refresh_from_db()
        promotion.refresh_from_db()
        self.assertEqual(order.promotion_code, promotion.code)
        self.assertEqual(promotion.used_count, 1)

    def test_delete_only_draft_or_cancelled_orders(self):
        order = self._create()
        self.lifecycle.confirm(order.pk)

        with self.assertRaises(InvalidTransition):
            self.lifecycle.delete_order(order.pk)

        self.lifecycle.cancel(order.pk)
        self.lifecycle.delete_order(order.pk, actor=self.user)

        order.refresh_from_db()
        self.assertTrue(order.is_deleted)
        self.assertIsNotNone(order.deleted_at)
        self.assertEqual(RentalStatusHistory.objects.filter(rental_order=order).count(), 3)
        with self.assertRaises(NotFound):
            queries.get_rental_order(order.pk)

    def test_history_lists_transitions_in_order(self):
        order = self._create()
        self.lifecycle.confirm(order.pk, notes="Deposit received")

        history = self.lifecycle.history(order.pk)

        self.assertEqual([entry.new_status for entry in history], ["Draft", "Confirmed"])
        self.assertEqual(history[1].old_status, "Draft")
        self.assertEqual(history[1].notes, "Deposit received")


class VehicleStateTrackingTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="staff", password="p")
        self.customer = make_customer()
        self.vehicle = make_vehicle()
        self.lifecycle = RentalLifecycle()
        start, end = rental_window(days=2)
        self.order = self.lifecycle.create_order(
            customer_id=self.customer.pk,
            vehicle_id=self.vehicle.pk,
            start_date=start,
            end_date=end,
            actor=self.user,
        )
        self.lifecycle.confirm(self.order.pk, actor=self.user)

    def test_new_vehicle_gets_created_history_entry(self):
        entry = VehicleHistory.objects.get(vehicle=self.vehicle, action_type=VehicleHistory.ACTION_CREATED)
        self.assertEqual(entry.new_status, Vehicle.STATUS_AVAILABLE)

    def test_pickup_and_return_move_vehicle_and_write_history(self):
        self.lifecycle.start(self.order.pk, actor=self.user)
        self.vehicle.refresh_from_db()
        self.assertEqual(self.vehicle.status, Vehicle.STATUS_RENTED)
        rented = VehicleHistory.objects.get(vehicle=self.vehicle, action_type=VehicleHistory.ACTION_RENTED)
        self.assertEqual(rented.old_status, Vehicle.STATUS_AVAILABLE)
        self.assertEqual(rented.reference_id, self.order.pk)
        self.assertEqual(rented.reference_type, "RentalOrder")
        self.assertEqual(rented.actor, self.user)

        self.lifecycle.complete(self.order.pk, actor=self.user, return_location="Tan Binh depot")
        self.vehicle.refresh_from_db()
        self.assertEqual(self.vehicle.status, Vehicle.STATUS_AVAILABLE)
        self.assertEqual(self.vehicle.current_location, "Tan Binh depot")
        returned = VehicleHistory.objects.get(vehicle=self.vehicle, action_type=VehicleHistory.ACTION_RETURNED)
        self.assertEqual(returned.old_status, Vehicle.STATUS_RENTED)
        self.assertEqual(returned.new_status, Vehicle.STATUS_AVAILABLE)

    def test_vehicle_in_repair_cannot_be_booked(self):
        other = make_vehicle(code="51A-77777")
        start, end = rental_window(days=1)
        second = self.lifecycle.create_order(
            customer_id=self.customer.pk, vehicle_id=other.pk, start_date=start, end_date=end,
        )
        Vehicle.objects.filter(pk=other.pk).update(status=Vehicle.STATUS_REPAIR)

        with self.assertRaises(VehicleUnavailable):
            self.lifecycle.confirm(second.pk)

    def test_status_change_event_is_sent_after_commit(self):
        received = []

        def receiver(sender, **kwargs):
            received.append(kwargs)

        vehicle_status_changed.connect(receiver, weak=False)
        self.addCleanup(vehicle_status_changed.disconnect, receiver)

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            self.lifecycle.start(self.order.pk, actor=self.user)
            self.assertEqual(received, [])

        self.assertEqual(len(callbacks), 1)
        self.assertEqual(len(received), 1)
        event = received[0]
        self.assertEqual(event["vehicle_id"], self.vehicle.pk)
        self.assertEqual(event["group"], f"vehicle_{self.vehicle.pk}")
        self.assertEqual(event["old_status"], Vehicle.STATUS_AVAILABLE)
        self.assertEqual(event["new_status"], Vehicle.STATUS_RENTED)
        self.assertEqual(event["reference_id"], self.order.pk)

    def test_failed_transition_sends_no_event(self):
        received = []

        def receiver(sender, **kwargs):
            received.append(kwargs)

        vehicle_status_changed.connect(receiver, weak=False)
        self.addCleanup(vehicle_status_changed.disconnect, receiver)

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            with self.assertRaises(InvalidTransition):
                self.lifecycle.complete(self.order.pk)

        self.assertEqual(callbacks, [])
        self.assertEqual(received, [])


class ActingStaffTests(TestCase):
    def setUp(self):
        self.clerk = User.objects.create_user(username="clerk", password="p")
        self.manager = User.objects.create_user(username="manager", password="p")

    def test_explicit_actor_wins_over_bound_one(self):
        with acting_as(self.clerk):
            self.assertEqual(resolve_actor(self.manager), self.manager)
            self.assertEqual(resolve_actor(), self.clerk)

    def test_anonymous_user_is_never_bound_or_resolved(self):
        anonymous = AnonymousUser()

        with acting_as(anonymous) as bound:
            self.assertIsNone(bound)
            self.assertIsNone(resolve_actor(anonymous))

        with acting_as(self.clerk):
            self.assertEqual(resolve_actor(anonymous), self.clerk)

    def test_nested_blocks_restore_previous_actor(self):
        with acting_as(self.clerk):
            with acting_as(self.manager):
                self.assertEqual(current_actor(), self.manager)
            self.assertEqual(current_actor(), self.clerk)
        self.assertIsNone(current_actor())

    def test_bound_actor_is_recorded_on_new_orders(self):
        start, end = rental_window(days=2)

        with acting_as(self.clerk):
            order = RentalLifecycle(vehicle_tracker=FakeVehicleTracker()).create_order(
                customer_id=make_customer().pk,
                vehicle_id=make_vehicle().pk,
                start_date=start,
                end_date=end,
            )

        self.assertEqual(order.created_by, self.clerk)
