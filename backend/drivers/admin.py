from django.contrib import admin
from drivers.models import (
    DriverPresenceStatus,
    DriverProfile,
    DriverSubscription,
    ReferralCredit,
    SubscriptionPayment,
    Vehicle,
)


@admin.register(DriverProfile)
class DriverProfileAdmin(admin.ModelAdmin):
    """Admin panel for managing Driver Profiles"""

    list_display = ["user", "is_verified", "is_in_trip", "referral_code", "last_location_update"]
    list_filter = ["is_verified", "is_in_trip"]
    search_fields = ["user__username", "referral_code"]
    readonly_fields = ["last_location_update"]
    ordering = ("user__username",)


@admin.register(Vehicle)
class VehicleAdmin(admin.ModelAdmin):
    list_display = ["registration_number", "driver", "vehicle_type", "is_current", "is_available"]
    list_filter = ["vehicle_type", "is_current", "is_available"]
    search_fields = ["registration_number", "driver__username"]


@admin.register(DriverPresenceStatus)
class DriverPresenceStatusAdmin(admin.ModelAdmin):
    list_display = ["driver", "status", "last_ping_at", "total_online_hours"]
    list_filter = ["status"]
    search_fields = ["driver__username"]
    # Written only by heartbeat metering
    readonly_fields = ["status", "last_ping_at", "total_online_hours", "last_heartbeat_sequence"]


@admin.register(DriverSubscription)
class DriverSubscriptionAdmin(admin.ModelAdmin):
    list_display = ["driver", "plan_id", "status", "start_time", "expire", "remaining_minutes"]
    list_filter = ["status", "vehicle_category"]
    search_fields = ["driver__username", "plan_id"]


@admin.register(SubscriptionPayment)
class SubscriptionPaymentAdmin(admin.ModelAdmin):
    list_display = ["driver", "plan_id", "amount", "wallet_amount_used", "wallet_recovery_amount", "payment_mode", "created_at"]
    list_filter = ["payment_mode"]
    search_fields = ["driver__username", "order_id", "payment_id"]


@admin.register(ReferralCredit)
class ReferralCreditAdmin(admin.ModelAdmin):
    list_display = ["referrer", "referee", "referrer_amount", "referee_amount", "created_at"]
    search_fields = ["referrer__username", "referee__username"]
