from django.db import models
from django.conf import settings
from django.utils import timezone


class Ride(models.Model):
    """One ride between a rider and a driver, from acceptance to settlement."""

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('accepted', 'Accepted'),
        ('in_progress', 'In Progress'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    ]

    PAYMENT_METHOD_CHOICES = [
        ('cash', 'Cash'),
        ('upi', 'UPI'),
        ('card', 'Card'),
        ('wallet', 'Wallet'),
    ]

    PAYMENT_STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('paid', 'Paid'),
    ]

    CANCELLED_BY_CHOICES = [
        ('rider', 'Rider'),
        ('driver', 'Driver'),
        ('system', 'System'),
    ]

    STRIKE_TYPE_CHOICES = [
        ('full', 'Full'),
        ('light', 'Light'),
    ]

    rider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='rides_as_rider'
    )

    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='rides_as_driver'
    )

    vehicle = models.ForeignKey(
        'drivers.Vehicle',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='rides'
    )

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')

    # Pickup / drop
    pickup_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_address = models.TextField(blank=True, default='')
    drop_latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    drop_longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    drop_address = models.TextField(blank=True, default='')

    # Present only between accept and start
    ride_otp = models.CharField(max_length=4, null=True, blank=True)

    # Timestamps
    requested_at = models.DateTimeField(auto_now_add=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    driver_arrived_at_pickup_at = models.DateTimeField(null=True, blank=True)
    rider_call_attempted_at = models.DateTimeField(null=True, blank=True)
    start_time = models.DateTimeField(null=True, blank=True)
    end_time = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    # Driver position captured at accept
    driver_lat_at_accept = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    driver_lng_at_accept = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)

    # Fare
    estimated_fare = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    actual_fare = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    base_fare = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    surge_multiplier = models.DecimalField(max_digits=4, decimal_places=2, default=1)
    actual_distance = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    actual_duration = models.PositiveIntegerField(null=True, blank=True)

    # Waiting (minutes / rupees)
    waiting_time = models.PositiveIntegerField(null=True, blank=True)
    waiting_charges = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)

    payment_method = models.CharField(max_length=10, choices=PAYMENT_METHOD_CHOICES, default='cash')
    payment_status = models.CharField(max_length=10, choices=PAYMENT_STATUS_CHOICES, default='pending')

    # Cancellation
    cancelled_by = models.CharField(max_length=10, choices=CANCELLED_BY_CHOICES, null=True, blank=True)
    cancellation_reason = models.TextField(null=True, blank=True)
    cancellation_fee = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    driver_strike_type = models.CharField(max_length=10, choices=STRIKE_TYPE_CHOICES, null=True, blank=True)
    driver_compensation_amount = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    driver_cancellation_reason_type = models.CharField(max_length=32, null=True, blank=True)

    # Driver's rating of the rider
    rider_rating = models.PositiveSmallIntegerField(null=True, blank=True)
    rider_rating_comment = models.TextField(blank=True, default='')

    class Meta:
        db_table = 'rides'
        ordering = ['-requested_at']

    def __str__(self):
        return f"Ride #{self.id} - {self.rider} - {self.status}"


class RideWaypoint(models.Model):
    """Route trail point recorded while the ride is in progress."""

    ride = models.ForeignKey(Ride, on_delete=models.CASCADE, related_name='waypoints')
    latitude = models.DecimalField(max_digits=9, decimal_places=6)
    longitude = models.DecimalField(max_digits=9, decimal_places=6)
    recorded_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'ride_waypoints'
        ordering = ['recorded_at', 'id']


class DriverCancellationStrike(models.Model):
    driver = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='cancellation_strikes')
    ride = models.OneToOneField(Ride, on_delete=models.CASCADE, related_name='strike')
    strike_type = models.CharField(max_length=10, choices=Ride.STRIKE_TYPE_CHOICES)
    cancelled_at = models.DateTimeField()

    class Meta:
        db_table = 'driver_cancellation_strikes'


class DriverValidReasonCancel(models.Model):
    """Audit row counted for the rolling valid-reason cap."""

    driver = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='valid_reason_cancels')
    ride = models.OneToOneField(Ride, on_delete=models.CASCADE, related_name='valid_reason_cancel')
    reason_type = models.CharField(max_length=32)
    cancelled_at = models.DateTimeField()

    class Meta:
        db_table = 'driver_valid_reason_cancels'
        indexes = [models.Index(fields=['driver', 'cancelled_at'])]
