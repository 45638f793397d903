from typing import Optional

from django.utils import timezone

from drivers.models import DriverProfile, Vehicle


def get_current_vehicle(driver) -> Optional[Vehicle]:
    """Vehicle lookup used at accept time and for plan matching."""
    return (
        Vehicle.objects.filter(driver=driver, is_current=True)
        .order_by("-id")
        .first()
    )


def update_driver_location(profile: DriverProfile, lat, lon):
    """Record the driver's latest GPS fix (heartbeats and the location endpoint)."""
    profile.current_latitude = lat
    profile.current_longitude = lon
    profile.last_location_update = timezone.now()
    profile.save(update_fields=["current_latitude", "current_longitude", "last_location_update"])
    return profile


def set_in_trip(driver, in_trip: bool):
    DriverProfile.objects.filter(user=driver).update(is_in_trip=in_trip)


def set_vehicle_available(vehicle: Optional[Vehicle], available: bool):
    if vehicle is None:
        return
    Vehicle.objects.filter(pk=vehicle.pk).update(is_available=available)
    vehicle.is_available = available
