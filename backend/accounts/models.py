from django.db import models
from django.contrib.auth.models import AbstractUser


class User(AbstractUser):
    """Extended user model with role selection"""
    ROLE_CHOICES = [
        ('rider', 'Rider'),
        ('driver', 'Driver'),
    ]

    role = models.CharField(max_length=10, choices=ROLE_CHOICES)
    phone_number = models.CharField(max_length=15)
    completed_rides = models.IntegerField(default=0)

    class Meta:
        db_table = 'users'

    @property
    def is_driver(self):
        return self.role == 'driver'

    def __str__(self):
        return f"{self.username} ({self.get_role_display()})"
