from django.urls import path
from . import views

app_name = 'rides'

urlpatterns = [
    path('<int:ride_id>/', views.ride_detail, name='ride-detail'),
    path('<int:ride_id>/accept/', views.accept_ride, name='accept-ride'),
    path('<int:ride_id>/arrived/', views.arrived_at_pickup, name='arrived-at-pickup'),
    path('<int:ride_id>/call-attempt/', views.rider_call_attempt, name='rider-call-attempt'),
    path('<int:ride_id>/start/', views.start_ride, name='start-ride'),
    path('<int:ride_id>/waypoints/', views.record_waypoint, name='record-waypoint'),
    path('<int:ride_id>/complete/', views.complete_ride, name='complete-ride'),
    path('<int:ride_id>/cancel/', views.cancel_ride, name='cancel-ride'),
    path('<int:ride_id>/confirm-cash/', views.confirm_cash_payment, name='confirm-cash-payment'),
    path('<int:ride_id>/rate-rider/', views.rate_rider, name='rate-rider'),
]
