from rest_framework import serializers
from drivers.models import DriverProfile, DriverSubscription, Vehicle
from wallets.models import WalletTransaction


class VehicleSerializer(serializers.ModelSerializer):
    class Meta:
        model = Vehicle
        fields = ["id", "registration_number", "vehicle_type", "is_current", "is_available"]


class DriverProfileSerializer(serializers.ModelSerializer):
    """
    Full driver profile serializer
    """
    username = serializers.CharField(source="user.username", read_only=True)
    phone_number = serializers.CharField(source="user.phone_number", read_only=True)
    vehicles = VehicleSerializer(source="user.vehicles", many=True, read_only=True)

    class Meta:
        model = DriverProfile
        fields = [
            "id",
            "username",
            "phone_number",
            "is_verified",
            "is_in_trip",
            "current_latitude",
            "current_longitude",
            "last_location_update",
            "referral_code",
            "vehicles",
        ]
        read_only_fields = fields


class HeartbeatSerializer(serializers.Serializer):
    latitude = serializers.DecimalField(max_digits=9, decimal_places=6, required=False)
    longitude = serializers.DecimalField(max_digits=9, decimal_places=6, required=False)
    sequence = serializers.IntegerField(min_value=0, required=False)


class AvailabilitySerializer(serializers.Serializer):
    online = serializers.BooleanField()


class SubscriptionSerializer(serializers.ModelSerializer):
    class Meta:
        model = DriverSubscription
        fields = [
            "id",
            "plan_id",
            "vehicle_category",
            "status",
            "start_time",
            "expire",
            "amount_paid",
            "included_minutes",
            "remaining_minutes",
            "daily_allowance_minutes",
            "daily_minutes_used",
        ]
        read_only_fields = fields


class ActivateSubscriptionSerializer(serializers.Serializer):
    """Either plan_id, or custom amount / duration_days / included_minutes."""
    plan_id = serializers.CharField(required=False, allow_blank=True)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    duration_days = serializers.IntegerField(min_value=1, max_value=365, required=False, default=30)
    included_minutes = serializers.IntegerField(min_value=1, required=False, allow_null=True, default=None)
    payment_mode = serializers.ChoiceField(choices=["razorpay", "wallet"], default="razorpay")
    order_id = serializers.CharField(required=False, allow_blank=True, default="")
    payment_id = serializers.CharField(required=False, allow_blank=True, default="")
    signature = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, attrs):
        if not attrs.get("plan_id") and attrs.get("amount") is None:
            raise serializers.ValidationError("Provide a plan_id or a custom amount")
        return attrs


class WalletTransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = WalletTransaction
        fields = [
            "id",
            "type",
            "amount",
            "balance_before",
            "balance_after",
            "description",
            "reference_type",
            "reference_id",
            "created_at",
        ]
