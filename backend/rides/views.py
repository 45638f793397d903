from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from drivers.views import require_driver, error_response
from services.exceptions import RideCoreError
from services import ride_management
from .serializers import (
    LocationSerializer,
    RideCancelSerializer,
    RideCompleteSerializer,
    RideSerializer,
    RideStartSerializer,
    RideWaypointSerializer,
    RiderRatingSerializer,
)


def _ride_response(result):
    return Response({
        'success': True,
        'ride': RideSerializer(result.ride).data,
        'message': result.message,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def accept_ride(request, ride_id):
    ok, profile = require_driver(request.user)
    if ok is False:
        return profile
    try:
        result = ride_management.accept_ride(request.user, ride_id)
    except RideCoreError as exc:
        return error_response(exc)
    return _ride_response(result)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def arrived_at_pickup(request, ride_id):
    ok, profile = require_driver(request.user)
    if ok is False:
        return profile
    try:
        result = ride_management.arrived_at_pickup(request.user, ride_id)
    except RideCoreError as exc:
        return error_response(exc)
    return _ride_response(result)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def rider_call_attempt(request, ride_id):
    """Driver tried calling the rider; needed later to claim a no-show."""
    ok, profile = require_driver(request.user)
    if ok is False:
        return profile
    try:
        result = ride_management.record_rider_call_attempt(request.user, ride_id)
    except RideCoreError as exc:
        return error_response(exc)
    return _ride_response(result)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def start_ride(request, ride_id):
    ok, profile = require_driver(request.user)
    if ok is False:
        return profile

    serializer = RideStartSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    try:
        result = ride_management.start_ride(request.user, ride_id, serializer.validated_data['otp'])
    except RideCoreError as exc:
        return error_response(exc)
    return _ride_response(result)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def record_waypoint(request, ride_id):
    ok, profile = require_driver(request.user)
    if ok is False:
        return profile

    serializer = LocationSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    try:
        waypoint = ride_management.record_waypoint(
            request.user,
            ride_id,
            serializer.validated_data['latitude'],
            serializer.validated_data['longitude'],
        )
    except RideCoreError as exc:
        return error_response(exc)
    return Response(RideWaypointSerializer(waypoint).data, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def complete_ride(request, ride_id):
    """Complete a ride; rejected when farther than 3 km from the drop point."""
    ok, profile = require_driver(request.user)
    if ok is False:
        return profile

    serializer = RideCompleteSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    try:
        result = ride_management.complete_ride(
            request.user,
            ride_id,
            data['latitude'],
            data['longitude'],
            actual_fare=data.get('actual_fare'),
            actual_distance=data.get('actual_distance'),
            actual_duration=data.get('actual_duration'),
            payment_method=data.get('payment_method'),
        )
    except RideCoreError as exc:
        return error_response(exc)
    return _ride_response(result)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cancel_ride(request, ride_id):
    ok, profile = require_driver(request.user)
    if ok is False:
        return profile

    serializer = RideCancelSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    try:
        result = ride_management.cancel_ride(
            request.user,
            ride_id,
            reason=data['reason'],
            reason_type=data['reason_type'],
            rider_call_attempted=data['rider_call_attempted'],
            latitude=data['latitude'],
            longitude=data['longitude'],
        )
    except RideCoreError as exc:
        return error_response(exc)

    outcome = result.extra['outcome']
    return Response({
        'success': True,
        'ride': RideSerializer(result.ride).data,
        'message': result.message,
        'outcome': {
            'category': outcome.category,
            'rider_charged_amount': str(outcome.rider_charged_amount),
            'driver_compensation_amount': str(outcome.driver_compensation_amount),
            'driver_strike_type': outcome.driver_strike_type,
            'driver_cancellation_reason_type': outcome.driver_cancellation_reason_type,
        },
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def confirm_cash_payment(request, ride_id):
    ok, profile = require_driver(request.user)
    if ok is False:
        return profile
    try:
        result = ride_management.confirm_cash_payment(request.user, ride_id)
    except RideCoreError as exc:
        return error_response(exc)
    return _ride_response(result)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def rate_rider(request, ride_id):
    ok, profile = require_driver(request.user)
    if ok is False:
        return profile

    serializer = RiderRatingSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    try:
        result = ride_management.rate_rider(
            request.user,
            ride_id,
            serializer.validated_data['rating'],
            serializer.validated_data['comment'],
        )
    except RideCoreError as exc:
        return error_response(exc)
    return _ride_response(result)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ride_detail(request, ride_id):
    ok, profile = require_driver(request.user)
    if ok is False:
        return profile
    try:
        ride = ride_management.get_ride_for_driver(request.user, ride_id)
    except RideCoreError as exc:
        return error_response(exc)
    return Response(RideSerializer(ride).data)
