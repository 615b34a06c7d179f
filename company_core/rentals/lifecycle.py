"""Rental order state machine.

Every status change goes through :meth:`RentalLifecycle.transition`, which
saves the order and appends the matching RentalStatusHistory row in one
transaction. Vehicle side effects are delegated to a
:class:`~rentals.vehicle_tracking.VehicleStateTracker` so the state machine
can be exercised with a fake tracker.
"""
from __future__ import annotations

import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from .activity import resolve_actor
from .conf import get_setting
from .exceptions import InvalidTransition, NotFound, ValidationFailed, VehicleUnavailable
from .models import (
    Customer,
    DocumentSequence,
    Employee,
    RentalOrder,
    RentalStatusHistory,
    Vehicle,
    ZERO,
    ensure_decimal,
    quantize_money,
)
from .pricing import PricingCalculator
from .promotions import PromotionValidator
from .vehicle_tracking import VehicleStateTracker


logger = logging.getLogger(__name__)

ORDER_NUMBER_PREFIX = "RO"

TRANSITIONS = {
    RentalOrder.STATUS_DRAFT: (RentalOrder.STATUS_CONFIRMED, RentalOrder.STATUS_CANCELLED),
    RentalOrder.STATUS_CONFIRMED: (RentalOrder.STATUS_IN_PROGRESS, RentalOrder.STATUS_CANCELLED),
    RentalOrder.STATUS_IN_PROGRESS: (RentalOrder.STATUS_COMPLETED, RentalOrder.STATUS_CANCELLED),
    RentalOrder.STATUS_COMPLETED: (RentalOrder.STATUS_INVOICED,),
}

DELETABLE_STATUSES = (RentalOrder.STATUS_DRAFT, RentalOrder.STATUS_CANCELLED)

# Fields update_order accepts, and the subset that forces a price recompute.
EDITABLE_FIELDS = (
    'customer_id',
    'employee_id',
    'vehicle_id',
    'start_date',
    'end_date',
    'daily_rental_price',
    'promotion_code',
    'pickup_location',
    'return_location',
    'deposit_amount',
    'notes',
)
PRICING_FIELDS = ('start_date', 'end_date', 'daily_rental_price', 'promotion_code')


def can_transition(from_status, to_status):
    return to_status in TRANSITIONS.get(from_status, ())


def _normalize_code(code):
    code = (code or '').strip()
    return code or None


class RentalLifecycle:

    def __init__(self, pricing=None, promotions=None, vehicle_tracker=None):
        self.promotions = promotions or PromotionValidator()
        self.pricing = pricing or PricingCalculator(self.promotions)
        self.vehicle_tracker = vehicle_tracker or VehicleStateTracker()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def _get_order(self, order_id, lock=False):
        queryset = RentalOrder.objects.not_deleted()
        if lock:
            queryset = queryset.select_for_update()
        order = queryset.filter(pk=order_id).first()
        if order is None:
            raise NotFound(f"Rental order {order_id} does not exist.", rental_order_id=order_id)
        return order

    def _get_vehicle(self, vehicle_id, lock=False):
        queryset = Vehicle.objects.filter(is_deleted=False)
        if lock:
            queryset = queryset.select_for_update()
        vehicle = queryset.filter(pk=vehicle_id).first()
        if vehicle is None:
            raise NotFound(f"Vehicle {vehicle_id} does not exist.", vehicle_id=vehicle_id)
        return vehicle

    def _get_customer(self, customer_id):
        customer = Customer.objects.filter(pk=customer_id, is_deleted=False).first()
        if customer is None:
            raise NotFound(f"Customer {customer_id} does not exist.", customer_id=customer_id)
        return customer

    def _get_employee(self, employee_id):
        if employee_id in (None, ''):
            return None
        employee = Employee.objects.filter(pk=employee_id, is_deleted=False).first()
        if employee is None:
            raise NotFound(f"Employee {employee_id} does not exist.", employee_id=employee_id)
        return employee

    # ------------------------------------------------------------------
    # Guarded status change
    # ------------------------------------------------------------------
    def check_transition(self, order, to_status):
        if not can_transition(order.status, to_status):
            logger.warning(
                f"Rejected transition of rental order {order.order_number} from {order.status} to {to_status}."
            )
            raise InvalidTransition(
                f"Cannot change rental order {order.order_number} from {order.status} to {to_status}.",
                from_status=order.status,
                to_status=to_status,
            )

    def transition(self, order, to_status, actor=None, notes=None):
        """Move ``order`` to ``to_status`` and append its history row.

        The caller should hold the order's row lock. Other pending changes on
        ``order`` (dates, amounts) are saved together with the new status.
        """
        self.check_transition(order, to_status)
        actor = resolve_actor(actor)
        now = timezone.now()
        old_status = order.status

        order.status = to_status
        order.modified_at = now
        order.modified_by = actor
        try:
            with transaction.atomic():
                order.save()
                RentalStatusHistory.objects.create(
                    rental_order=order,
                    old_status=old_status,
                    new_status=to_status,
                    changed_at=now,
                    changed_by=actor,
                    notes=notes,
                )
        except IntegrityError as exc:
            order.status = old_status
            if to_status in RentalOrder.ACTIVE_STATUSES:
                raise VehicleUnavailable(
                    "The vehicle is already attached to another active rental order.",
                    vehicle_id=order.vehicle_id,
                ) from exc
            raise

        logger.info(f"Rental order {order.order_number} moved from {old_status} to {to_status}.")
        return order

    # ------------------------------------------------------------------
    # Pricing helpers
    # ------------------------------------------------------------------
    def _apply_quote(self, order, quote):
        order.daily_rental_price = quote.daily_rate
        order.total_days = quote.total_days
        order.sub_total = quote.sub_total
        order.discount_amount = quote.discount_amount
        order.total_amount = quote.total_amount
        order.promotion_code = quote.promotion_code
        order.promotion = quote.promotion
        # Transient: lets callers show why a code was not applied.
        order.promotion_message = quote.promotion_message

    def _ensure_vehicle_free(self, vehicle, order=None):
        if vehicle.status != Vehicle.STATUS_AVAILABLE:
            logger.warning(f"Vehicle {vehicle.code} is {vehicle.status}; rental rejected.")
            raise VehicleUnavailable(
                f"Vehicle {vehicle.code} is currently {vehicle.get_status_display()}.",
                vehicle_id=vehicle.pk,
                vehicle_status=vehicle.status,
            )
        self._ensure_no_other_active_order(vehicle, order)

    def _ensure_no_other_active_order(self, vehicle, order=None):
        holders = RentalOrder.objects.not_deleted().filter(
            vehicle=vehicle,
            status__in=RentalOrder.ACTIVE_STATUSES,
        )
        if order is not None:
            holders = holders.exclude(pk=order.pk)
        holder = holders.first()
        if holder is not None:
            logger.warning(f"Vehicle {vehicle.code} is held by rental order {holder.order_number}.")
            raise VehicleUnavailable(
                f"Vehicle {vehicle.code} is already attached to rental order {holder.order_number}.",
                vehicle_id=vehicle.pk,
                rental_order_id=holder.pk,
            )

    def _save_attached(self, order):
        """Save an order that may have just been attached to its vehicle."""
        try:
            with transaction.atomic():
                order.save()
        except IntegrityError as exc:
            logger.warning(f"Vehicle {order.vehicle_id} was attached to another order concurrently.")
            raise VehicleUnavailable(
                "The vehicle is already attached to another active rental order.",
                vehicle_id=order.vehicle_id,
            ) from exc

    @staticmethod
    def _clean_deposit(value):
        deposit = quantize_money(ensure_decimal(value))
        if deposit < 0:
            raise ValidationFailed("Deposit amount cannot be negative.", deposit_amount=str(deposit))
        return deposit

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def create_order(self, *, customer_id, vehicle_id, start_date, end_date, employee_id=None,
                     daily_rental_price=None, promotion_code=None, pickup_location='',
                     return_location='', deposit_amount=ZERO, notes=None, actor=None):
        actor = resolve_actor(actor)
        customer = self._get_customer(customer_id)
        employee = self._get_employee(employee_id)
        vehicle = self._get_vehicle(vehicle_id)
        rate = vehicle.daily_rental_price if daily_rental_price is None else daily_rental_price

        quote = self.pricing.calculate(rate, start_date, end_date, promotion_code)
        deposit = self._clean_deposit(deposit_amount)
        if quote.promotion_code and not quote.promotion_valid:
            logger.warning(f"Promotion {quote.promotion_code} not applied to new order: {quote.promotion_message}")

        now = timezone.now()
        with transaction.atomic():
            vehicle = self._get_vehicle(vehicle.pk, lock=True)
            self._ensure_no_other_active_order(vehicle)
            order = RentalOrder(
                order_number=DocumentSequence.next_number(ORDER_NUMBER_PREFIX),
                customer=customer,
                vehicle=vehicle,
                employee=employee,
                start_date=start_date,
                end_date=end_date,
                pickup_location=pickup_location or '',
                return_location=return_location or '',
                deposit_amount=deposit,
                notes=notes,
                status=RentalOrder.STATUS_DRAFT,
                created_at=now,
                created_by=actor,
            )
            self._apply_quote(order, quote)
            self._save_attached(order)
            RentalStatusHistory.objects.create(
                rental_order=order,
                old_status=None,
                new_status=RentalOrder.STATUS_DRAFT,
                changed_at=now,
                changed_by=actor,
                notes="Order created",
            )

        logger.info(
            f"Created rental order {order.order_number} for vehicle {vehicle.code}: "
            f"{order.total_days} day(s), total {order.total_amount}."
        )
        return order

    def update_order(self, order_id, *, actor=None, **changes):
        """Edit a Draft or Confirmed order and recompute its amounts.

        In Confirmed the vehicle cannot change, and a new promotion code must
        be valid; the old code's usage slot is released and the new one is
        consumed in the same transaction.
        """
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationFailed(f"Unknown fields: {', '.join(sorted(unknown))}.")
        actor = resolve_actor(actor)

        with transaction.atomic():
            order = self._get_order(order_id, lock=True)
            if order.status not in RentalOrder.PRICING_EDITABLE_STATUSES:
                logger.warning(f"Rejected edit of rental order {order.order_number} in status {order.status}.")
                raise InvalidTransition(
                    f"Rental order {order.order_number} can no longer be edited ({order.status}).",
                    status=order.status,
                )
            confirmed = order.status == RentalOrder.STATUS_CONFIRMED

            if 'customer_id' in changes:
                order.customer = self._get_customer(changes['customer_id'])
            if 'employee_id' in changes:
                order.employee = self._get_employee(changes['employee_id'])
            if 'vehicle_id' in changes and changes['vehicle_id'] != order.vehicle_id:
                if confirmed:
                    raise InvalidTransition(
                        "The vehicle of a confirmed order cannot be changed; cancel and re-book instead.",
                        status=order.status,
                    )
                vehicle = self._get_vehicle(changes['vehicle_id'], lock=True)
                self._ensure_no_other_active_order(vehicle, order)
                order.vehicle = vehicle
                if 'daily_rental_price' not in changes:
                    changes['daily_rental_price'] = vehicle.daily_rental_price
            for name in ('pickup_location', 'return_location'):
                if name in changes:
                    setattr(order, name, changes[name] or '')
            if 'notes' in changes:
                order.notes = changes['notes']
            if 'deposit_amount' in changes:
                order.deposit_amount = self._clean_deposit(changes['deposit_amount'])

            if any(name in changes for name in PRICING_FIELDS):
                self._reprice(order, changes, confirmed)

            order.modified_at = timezone.now()
            order.modified_by = actor
            self._save_attached(order)

        logger.info(f"Updated rental order {order.order_number}; total {order.total_amount}.")
        return order

    def _reprice(self, order, changes, confirmed):
        start = changes.get('start_date', order.start_date)
        end = changes.get('end_date', order.end_date)
        rate = changes.get('daily_rental_price', order.daily_rental_price)
        old_code = _normalize_code(order.promotion_code)
        new_code = _normalize_code(changes['promotion_code']) if 'promotion_code' in changes else old_code
        code_changed = (new_code or '').upper() != (old_code or '').upper()

        slot_held = confirmed and order.promotion_consumed and not code_changed
        quote = self.pricing.calculate(rate, start, end, new_code, slot_held=slot_held)
        if confirmed and quote.promotion_code:
            quote.promotion_validation.require()

        previous_promotion_id = order.promotion_id
        order.start_date = start
        order.end_date = end
        self._apply_quote(order, quote)

        if confirmed and code_changed:
            if order.promotion_consumed and previous_promotion_id:
                self.promotions.release(previous_promotion_id)
                order.promotion_consumed = False
            if order.promotion_id:
                self.promotions.consume(order.promotion_id)
                order.promotion_consumed = True

    def confirm(self, order_id, actor=None, notes=None):
        with transaction.atomic():
            order = self._get_order(order_id, lock=True)
            self.check_transition(order, RentalOrder.STATUS_CONFIRMED)
            vehicle = self._get_vehicle(order.vehicle_id, lock=True)
            self._ensure_vehicle_free(vehicle, order)

            quote = self.pricing.calculate(
                order.daily_rental_price,
                order.start_date,
                order.end_date,
                order.promotion_code,
                slot_held=order.promotion_consumed,
            )
            if quote.promotion_code:
                quote.promotion_validation.require()
            self._apply_quote(order, quote)

            if order.promotion_id and not order.promotion_consumed:
                self.promotions.consume(order.promotion_id)
                order.promotion_consumed = True

            self.transition(order, RentalOrder.STATUS_CONFIRMED, actor=actor, notes=notes)
        return order

    def start(self, order_id, actor=None, notes=None, actual_start=None):
        actor = resolve_actor(actor)
        with transaction.atomic():
            order = self._get_order(order_id, lock=True)
            self.check_transition(order, RentalOrder.STATUS_IN_PROGRESS)
            vehicle = self._get_vehicle(order.vehicle_id, lock=True)
            if vehicle.status != Vehicle.STATUS_AVAILABLE:
                logger.warning(f"Vehicle {vehicle.code} is {vehicle.status}; pickup rejected.")
                raise VehicleUnavailable(
                    f"Vehicle {vehicle.code} is currently {vehicle.get_status_display()}.",
                    vehicle_id=vehicle.pk,
                    vehicle_status=vehicle.status,
                )

            order.actual_start_date = actual_start or timezone.now()
            self.transition(order, RentalOrder.STATUS_IN_PROGRESS, actor=actor, notes=notes)
            self.vehicle_tracker.mark_rented(vehicle, order, actor=actor)
        return order

    def complete(self, order_id, actor=None, notes=None, actual_end=None, return_location=None):
        actor = resolve_actor(actor)
        with transaction.atomic():
            order = self._get_order(order_id, lock=True)
            self.check_transition(order, RentalOrder.STATUS_COMPLETED)
            vehicle = self._get_vehicle(order.vehicle_id, lock=True)

            actual_end = actual_end or timezone.now()
            if order.actual_start_date and actual_end < order.actual_start_date:
                raise ValidationFailed("Return time cannot be before pickup time.")
            order.actual_end_date = actual_end
            if return_location:
                order.return_location = return_location

            self.transition(order, RentalOrder.STATUS_COMPLETED, actor=actor, notes=notes)
            self.vehicle_tracker.mark_returned(vehicle, order, actor=actor, location=return_location)
        return order

    def cancel(self, order_id, reason=None, actor=None):
        actor = resolve_actor(actor)
        with transaction.atomic():
            order = self._get_order(order_id, lock=True)
            self.check_transition(order, RentalOrder.STATUS_CANCELLED)
            previous_status = order.status

            vehicle = None
            if previous_status == RentalOrder.STATUS_IN_PROGRESS:
                vehicle = self._get_vehicle(order.vehicle_id, lock=True)

            if (
                order.promotion_consumed
                and order.promotion_id
                and previous_status in RentalOrder.PROMOTION_HOLDING_STATUSES
                and get_setting('RELEASE_PROMOTION_ON_CANCEL')
            ):
                self.promotions.release(order.promotion_id)
                order.promotion_consumed = False

            self.transition(order, RentalOrder.STATUS_CANCELLED, actor=actor, notes=reason)
            if vehicle is not None:
                self.vehicle_tracker.mark_returned(vehicle, order, actor=actor, cancelled=True)
        return order

    def delete_order(self, order_id, actor=None):
        """Soft-delete a Draft or Cancelled order; history is kept."""
        actor = resolve_actor(actor)
        with transaction.atomic():
            order = self._get_order(order_id, lock=True)
            if order.status not in DELETABLE_STATUSES:
                logger.warning(f"Rejected delete of rental order {order.order_number} in status {order.status}.")
                raise InvalidTransition(
                    f"Only draft or cancelled orders can be deleted; {order.order_number} is {order.status}.",
                    status=order.status,
                )
            now = timezone.now()
            order.is_deleted = True
            order.deleted_at = now
            order.modified_at = now
            order.modified_by = actor
            order.save(update_fields=['is_deleted', 'deleted_at', 'modified_at', 'modified_by'])
        logger.info(f"Deleted rental order {order.order_number}.")
        return order

    def history(self, order_id):
        order = self._get_order(order_id)
        return list(order.status_history.select_related('changed_by').order_by('changed_at', 'id'))
