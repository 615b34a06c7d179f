"""Domain events published by the rental core.

Delivery to subscribers (websocket groups, push, e-mail) is the job of
whoever connects a receiver; the core only announces what changed.
"""
import logging

from django.db import transaction
from django.dispatch import Signal


logger = logging.getLogger(__name__)

# Sent with: vehicle_id, group, old_status, new_status, reference_type, reference_id
vehicle_status_changed = Signal()


def vehicle_group_name(vehicle_id):
    return f"vehicle_{vehicle_id}"


def emit_vehicle_status_changed(vehicle, old_status, new_status, reference_type=None, reference_id=None):
    """Announce a vehicle status change once the surrounding transaction commits."""
    vehicle_id = vehicle.pk

    def _send():
        responses = vehicle_status_changed.send_robust(
            sender=vehicle.__class__,
            vehicle_id=vehicle_id,
            group=vehicle_group_name(vehicle_id),
            old_status=old_status,
            new_status=new_status,
            reference_type=reference_type,
            reference_id=reference_id,
        )
        for receiver, response in responses:
            if isinstance(response, Exception):
                logger.error(
                    f"Receiver {receiver!r} failed for vehicle {vehicle_id} status change: {response}"
                )

    transaction.on_commit(_send)
