from rest_framework import serializers
from .models import Ride, RideWaypoint


class RideSerializer(serializers.ModelSerializer):
    """Ride projection returned by every driver action"""
    rider_username = serializers.CharField(source='rider.username', read_only=True)
    vehicle_number = serializers.CharField(source='vehicle.registration_number', read_only=True, default=None)

    class Meta:
        model = Ride
        fields = [
            'id', 'rider', 'rider_username', 'driver', 'vehicle', 'vehicle_number', 'status',
            'pickup_latitude', 'pickup_longitude', 'pickup_address',
            'drop_latitude', 'drop_longitude', 'drop_address',
            'requested_at', 'accepted_at', 'driver_arrived_at_pickup_at', 'rider_call_attempted_at',
            'start_time', 'end_time', 'cancelled_at',
            'estimated_fare', 'actual_fare', 'base_fare', 'surge_multiplier',
            'actual_distance', 'actual_duration', 'waiting_time', 'waiting_charges',
            'payment_method', 'payment_status',
            'cancelled_by', 'cancellation_reason', 'cancellation_fee',
            'driver_strike_type', 'driver_compensation_amount', 'driver_cancellation_reason_type',
            'rider_rating', 'rider_rating_comment',
        ]
        read_only_fields = fields


class RideStartSerializer(serializers.Serializer):
    otp = serializers.CharField(max_length=4)


class LocationSerializer(serializers.Serializer):
    latitude = serializers.DecimalField(max_digits=9, decimal_places=6)
    longitude = serializers.DecimalField(max_digits=9, decimal_places=6)


class RideCompleteSerializer(LocationSerializer):
    actual_fare = serializers.DecimalField(max_digits=10, decimal_places=2, required=False)
    actual_distance = serializers.DecimalField(max_digits=8, decimal_places=2, required=False)
    actual_duration = serializers.IntegerField(min_value=0, required=False)
    payment_method = serializers.ChoiceField(choices=Ride.PAYMENT_METHOD_CHOICES, required=False)


class RideCancelSerializer(serializers.Serializer):
    """Serializer for driver cancellation"""
    reason = serializers.CharField(required=False, allow_blank=True, default='')
    reason_type = serializers.CharField(required=False, allow_null=True, default=None)
    rider_call_attempted = serializers.BooleanField(required=False, default=False)
    latitude = serializers.DecimalField(max_digits=9, decimal_places=6, required=False, allow_null=True, default=None)
    longitude = serializers.DecimalField(max_digits=9, decimal_places=6, required=False, allow_null=True, default=None)


class RiderRatingSerializer(serializers.Serializer):
    rating = serializers.IntegerField(min_value=1, max_value=5)
    comment = serializers.CharField(required=False, allow_blank=True, default='')


class RideWaypointSerializer(serializers.ModelSerializer):
    class Meta:
        model = RideWaypoint
        fields = ['id', 'latitude', 'longitude', 'recorded_at']
