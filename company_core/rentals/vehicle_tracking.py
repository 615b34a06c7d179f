import logging

from django.utils import timezone

from .events import emit_vehicle_status_changed
from .models import Vehicle, VehicleHistory


logger = logging.getLogger(__name__)

RENTAL_REFERENCE = "RentalOrder"


class VehicleStateTracker:
    """Moves vehicles between statuses and records why.

    Callers are expected to hold the vehicle row lock (or be inside the
    transaction that took it); every change writes a VehicleHistory entry and
    queues a ``vehicle_status_changed`` event for after commit.
    """

    def set_status(self, vehicle, new_status, action_type, *, reference_type=None,
                   reference_id=None, description=None, actor=None, location=None):
        old_status = vehicle.status
        vehicle.status = new_status
        update_fields = ['status', 'updated_at']
        if location:
            vehicle.current_location = location
            update_fields.append('current_location')
        vehicle.save(update_fields=update_fields)

        VehicleHistory.objects.create(
            vehicle=vehicle,
            action_type=action_type,
            old_status=old_status,
            new_status=new_status,
            reference_id=reference_id,
            reference_type=reference_type,
            description=description,
            actor=actor,
            created_at=timezone.now(),
        )
        logger.info(f"Vehicle {vehicle.code} status {old_status} -> {new_status} ({action_type}).")

        emit_vehicle_status_changed(
            vehicle,
            old_status,
            new_status,
            reference_type=reference_type,
            reference_id=reference_id,
        )
        return vehicle

    def mark_rented(self, vehicle, order, actor=None):
        return self.set_status(
            vehicle,
            Vehicle.STATUS_RENTED,
            VehicleHistory.ACTION_RENTED,
            reference_type=RENTAL_REFERENCE,
            reference_id=order.pk,
            description=f"Picked up under rental order {order.order_number}",
            actor=actor,
        )

    def mark_returned(self, vehicle, order, actor=None, location=None, cancelled=False):
        if cancelled:
            description = f"Returned after rental order {order.order_number} was cancelled"
        else:
            description = f"Returned from rental order {order.order_number}"
        return self.set_status(
            vehicle,
            Vehicle.STATUS_AVAILABLE,
            VehicleHistory.ACTION_RETURNED,
            reference_type=RENTAL_REFERENCE,
            reference_id=order.pk,
            description=description,
            actor=actor,
            location=location,
        )
