import logging

from django.db.models.signals import post_save
from django.dispatch import receiver

from .activity import current_actor
from .events import vehicle_status_changed
from .models import Vehicle, VehicleHistory


logger = logging.getLogger(__name__)


@receiver(post_save, sender=Vehicle)
def record_vehicle_created(sender, instance: Vehicle, created, raw=False, **kwargs):
    """Open every vehicle's history with a Created entry."""
    if not created or raw:
        return
    VehicleHistory.objects.create(
        vehicle=instance,
        action_type=VehicleHistory.ACTION_CREATED,
        old_status=None,
        new_status=instance.status,
        reference_id=instance.pk,
        reference_type="Vehicle",
        description=f"Vehicle {instance.code} registered",
        actor=current_actor(),
    )


@receiver(vehicle_status_changed)
def log_vehicle_status_changed(sender, vehicle_id, group, old_status, new_status, **kwargs):
    logger.info(f"[{group}] vehicle {vehicle_id} status {old_status} -> {new_status}")
