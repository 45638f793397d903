from django.urls import path
from .views import (
    AvailabilityView,
    DriverCurrentRideView,
    DriverProfileView,
    HeartbeatView,
    SubscriptionPlansView,
    SubscriptionView,
    WalletBalanceView,
    WalletTransactionsView,
)

urlpatterns = [
    path("profile/", DriverProfileView.as_view(), name="driver-profile"),
    path("heartbeat/", HeartbeatView.as_view(), name="driver-heartbeat"),
    path("availability/", AvailabilityView.as_view(), name="driver-availability"),
    path("subscription/", SubscriptionView.as_view(), name="driver-subscription"),
    path("subscription/plans/", SubscriptionPlansView.as_view(), name="driver-subscription-plans"),
    path("wallet/", WalletBalanceView.as_view(), name="driver-wallet"),
    path("wallet/transactions/", WalletTransactionsView.as_view(), name="driver-wallet-transactions"),
    path("current-ride/", DriverCurrentRideView.as_view(), name="driver-current-ride"),
]
