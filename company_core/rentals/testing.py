"""Fixture builders shared by the rental test modules."""
import datetime
from decimal import Decimal

from django.utils import timezone

from .models import Customer, Invoice, Promotion, RentalOrder, Vehicle


RENTAL_DAY = datetime.date(2026, 3, 1)


def aware(year, month, day, hour=9, minute=0):
    return timezone.make_aware(datetime.datetime(year, month, day, hour, minute))


def rental_window(days=3, hours=0):
    start = aware(RENTAL_DAY.year, RENTAL_DAY.month, RENTAL_DAY.day)
    return start, start + datetime.timedelta(days=days, hours=hours)


def make_customer(code="KH001", **kwargs):
    kwargs.setdefault("full_name", "Nguyen Van A")
    kwargs.setdefault("phone", "0900000001")
    return Customer.objects.create(code=code, **kwargs)


def make_vehicle(code="51A-12345", daily_rental_price="500000", **kwargs):
    kwargs.setdefault("model", "Toyota Vios")
    return Vehicle.objects.create(code=code, daily_rental_price=Decimal(daily_rental_price), **kwargs)


def make_promotion(code="SPRING10", promotion_type=Promotion.TYPE_PERCENTAGE, value="10", **kwargs):
    kwargs.setdefault("start_date", datetime.date(2026, 1, 1))
    kwargs.setdefault("end_date", datetime.date(2026, 12, 31))
    for money in ("min_amount", "max_discount"):
        if kwargs.get(money) is not None:
            kwargs[money] = Decimal(kwargs[money])
    return Promotion.objects.create(
        code=code,
        promotion_type=promotion_type,
        value=Decimal(value),
        **kwargs,
    )


def make_invoice(total="100.00", number="INV20260301001", due_date=None, status=Invoice.STATUS_UNPAID,
                 paid="0.00", customer=None, vehicle=None):
    """An invoice for an already invoiced order, without going through the generator."""
    customer = customer or make_customer(code=f"C-{number}")
    vehicle = vehicle or make_vehicle(code=f"V-{number}", daily_rental_price=total)
    start, end = rental_window(days=1)
    total = Decimal(total)
    paid = Decimal(paid)
    order = RentalOrder.objects.create(
        order_number=f"RO-{number}",
        customer=customer,
        vehicle=vehicle,
        start_date=start,
        end_date=end,
        daily_rental_price=total,
        total_days=1,
        sub_total=total,
        total_amount=total,
        status=RentalOrder.STATUS_INVOICED,
    )
    return Invoice.objects.create(
        invoice_number=number,
        rental_order=order,
        customer=customer,
        invoice_date=RENTAL_DAY,
        due_date=due_date or timezone.localdate() + datetime.timedelta(days=30),
        sub_total=total,
        total_amount=total,
        paid_amount=paid,
        remaining_amount=total - paid,
        status=status,
    )


class FakeVehicleTracker:
    """Records vehicle side effects instead of writing them."""

    def __init__(self):
        self.calls = []

    def set_status(self, vehicle, new_status, action_type, **kwargs):
        self.calls.append(("status", vehicle.pk, new_status, action_type))
        return vehicle

    def mark_rented(self, vehicle, order, actor=None):
        self.calls.append(("rented", vehicle.pk, order.pk))
        return vehicle

    def mark_returned(self, vehicle, order, actor=None, location=None, cancelled=False):
        self.calls.append(("cancelled" if cancelled else "returned", vehicle.pk, order.pk))
        return vehicle
