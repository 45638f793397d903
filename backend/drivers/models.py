from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.conf import settings

User = settings.AUTH_USER_MODEL


class DriverProfile(models.Model):
    """Driver-specific details, trip flag and last known position"""

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='driver_profile')

    # Set by the external approval workflow
    is_verified = models.BooleanField(default=False)
    is_in_trip = models.BooleanField(default=False)

    current_latitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    current_longitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    last_location_update = models.DateTimeField(default=timezone.now)

    referral_code = models.CharField(max_length=16, unique=True, null=True, blank=True)
    referred_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='referred_drivers',
    )

    class Meta:
        db_table = 'driver_profiles'

    def __str__(self):
        return f"{self.user.username} (verified={self.is_verified})"


class Vehicle(models.Model):
    VEHICLE_TYPE_CHOICES = [
        ('bike', 'Bike'),
        ('auto', 'Auto Rickshaw'),
        ('mini', 'Mini'),
        ('sedan', 'Sedan'),
        ('xl', 'XL / SUV'),
    ]

    driver = models.ForeignKey(User, on_delete=models.CASCADE, related_name='vehicles')
    registration_number = models.CharField(max_length=20, unique=True)
    vehicle_type = models.CharField(max_length=10, choices=VEHICLE_TYPE_CHOICES)
    is_current = models.BooleanField(default=True)
    is_available = models.BooleanField(default=True)

    class Meta:
        db_table = 'vehicles'

    @property
    def plan_category(self):
        """Subscription plans are sold per BIKE / AUTO / CAR."""
        if self.vehicle_type == 'bike':
            return 'BIKE'
        if self.vehicle_type == 'auto':
            return 'AUTO'
        return 'CAR'

    def __str__(self):
        return f"{self.registration_number} ({self.vehicle_type})"


class DriverPresenceStatus(models.Model):
    """Durable online/offline row, written only by the metering service."""
    STATUS_CHOICES = [
        ('ONLINE', 'Online'),
        ('OFFLINE', 'Offline'),
    ]

    driver = models.OneToOneField(User, on_delete=models.CASCADE, related_name='presence')
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='OFFLINE')
    last_ping_at = models.DateTimeField(null=True, blank=True)
    total_online_hours = models.FloatField(default=0)
    last_heartbeat_sequence = models.BigIntegerField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'driver_presence_status'

    def __str__(self):
        return f"{self.driver_id} - {self.status}"


class SubscriptionPayment(models.Model):
    MODE_CHOICES = [
        ('razorpay', 'Razorpay'),
        ('wallet', 'Wallet'),
    ]

    driver = models.ForeignKey(User, on_delete=models.CASCADE, related_name='subscription_payments')
    plan_id = models.CharField(max_length=32, blank=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    wallet_amount_used = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    wallet_recovery_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    payment_mode = models.CharField(max_length=10, choices=MODE_CHOICES)
    order_id = models.CharField(max_length=64, blank=True)
    payment_id = models.CharField(max_length=64, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'subscription_payments'
        ordering = ['-created_at']


class DriverSubscription(models.Model):
    """A prepaid allowance window. remaining_minutes=None means unlimited."""
    STATUS_CHOICES = [
        ('ACTIVE', 'Active'),
        ('EXPIRED', 'Expired'),
        ('CANCELLED', 'Cancelled'),
    ]

    driver = models.ForeignKey(User, on_delete=models.CASCADE, related_name='subscriptions')
    payment = models.ForeignKey(
        SubscriptionPayment,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='subscriptions',
    )
    plan_id = models.CharField(max_length=32, blank=True)
    vehicle_category = models.CharField(max_length=10, blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='ACTIVE')

    start_time = models.DateTimeField()
    expire = models.DateTimeField()
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    included_minutes = models.PositiveIntegerField(null=True, blank=True)
    remaining_minutes = models.PositiveIntegerField(null=True, blank=True)
    daily_allowance_minutes = models.PositiveIntegerField(null=True, blank=True)
    daily_minutes_used = models.PositiveIntegerField(default=0)
    daily_usage_date = models.DateField(null=True, blank=True)

    last_overtime_billing_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'driver_subscriptions'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['driver'],
                condition=Q(status='ACTIVE'),
                name='one_active_subscription_per_driver',
            )
        ]

    @property
    def is_unlimited(self):
        return self.remaining_minutes is None

    def __str__(self):
        return f"Subscription #{self.id} - driver {self.driver_id} - {self.status}"


class ReferralCredit(models.Model):
    """One bonus payout per referred driver, written on their first subscription."""

    referrer = models.ForeignKey(User, on_delete=models.CASCADE, related_name='referral_credits_given')
    referee = models.OneToOneField(User, on_delete=models.CASCADE, related_name='referral_credit')
    subscription = models.ForeignKey(DriverSubscription, on_delete=models.SET_NULL, null=True, blank=True)
    referrer_amount = models.DecimalField(max_digits=12, decimal_places=2)
    referee_amount = models.DecimalField(max_digits=12, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'referral_credits'
