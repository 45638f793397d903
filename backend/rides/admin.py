"""Tells what to show in the Django admin interface for rides app"""

from django.contrib import admin
from .models import Ride, RideWaypoint, DriverCancellationStrike, DriverValidReasonCancel


@admin.register(Ride)
class RideAdmin(admin.ModelAdmin):
    list_display = ['id', 'rider', 'driver', 'status', 'payment_status', 'accepted_at', 'start_time', 'end_time']
    list_filter = ['status', 'payment_status', 'driver_strike_type']
    search_fields = ['rider__username', 'driver__username', 'pickup_address', 'drop_address']
    readonly_fields = [
        'ride_otp', 'requested_at', 'accepted_at', 'driver_arrived_at_pickup_at', 'start_time',
        'end_time', 'cancelled_at', 'waiting_time', 'waiting_charges', 'cancellation_fee',
        'driver_compensation_amount', 'driver_strike_type',
    ]
    date_hierarchy = 'requested_at'


@admin.register(RideWaypoint)
class RideWaypointAdmin(admin.ModelAdmin):
    list_display = ("ride", "latitude", "longitude", "recorded_at")
    search_fields = ("ride__id",)


@admin.register(DriverCancellationStrike)
class DriverCancellationStrikeAdmin(admin.ModelAdmin):
    list_display = ("driver", "ride", "strike_type", "cancelled_at")
    list_filter = ("strike_type",)
    search_fields = ("driver__username", "ride__id")


@admin.register(DriverValidReasonCancel)
class DriverValidReasonCancelAdmin(admin.ModelAdmin):
    list_display = ("driver", "ride", "reason_type", "cancelled_at")
    list_filter = ("reason_type",)
    search_fields = ("driver__username", "ride__id")
