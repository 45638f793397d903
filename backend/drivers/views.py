from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from drivers.models import DriverProfile
from drivers.serializers import (
    ActivateSubscriptionSerializer,
    AvailabilitySerializer,
    DriverProfileSerializer,
    HeartbeatSerializer,
    SubscriptionSerializer,
    WalletTransactionSerializer,
)
from rides.serializers import RideSerializer
from services import ledger, presence
from services.exceptions import RideCoreError
from services.ride_management import get_current_driver_ride


# Utility: Ensure request.user is a driver
def require_driver(user):
    if user.role != "driver":
        return False, Response({"error": "Only drivers allowed"}, status=403)
    try:
        profile = user.driver_profile
        return True, profile
    except DriverProfile.DoesNotExist:
        return False, Response({"error": "Driver profile not found"}, status=404)


def error_response(exc: RideCoreError):
    return Response(
        {"success": False, "error": exc.code, "message": exc.message},
        status=exc.status_code,
    )


def _subscription_payload(snapshot):
    sub = snapshot.subscription
    return {
        "subscription": SubscriptionSerializer(sub).data if sub is not None else None,
        "in_grace_period": snapshot.in_grace_period,
        "grace_hours_remaining": snapshot.grace_hours_remaining,
    }


class DriverProfileView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile  # Response object

        serializer = DriverProfileSerializer(profile, context={"request": request})
        return Response(serializer.data)


class HeartbeatView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        serializer = HeartbeatSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            snapshot = presence.heartbeat(
                request.user,
                latitude=data.get("latitude"),
                longitude=data.get("longitude"),
                sequence=data.get("sequence"),
            )
        except RideCoreError as exc:
            return error_response(exc)
        return Response(snapshot.to_dict())


class AvailabilityView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile
        return Response(presence.get_presence(request.user).to_dict())

    def put(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        serializer = AvailabilitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            snapshot = presence.toggle_availability(request.user, serializer.validated_data["online"])
        except RideCoreError as exc:
            return error_response(exc)
        return Response(snapshot.to_dict())


class SubscriptionView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile
        return Response(_subscription_payload(presence.get_current_subscription(request.user)))

    def post(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        serializer = ActivateSubscriptionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        proof = presence.PaymentProof(
            mode=data["payment_mode"],
            order_id=data["order_id"],
            payment_id=data["payment_id"],
            signature=data["signature"],
        )
        try:
            result = presence.activate_subscription(
                request.user,
                plan_id=data.get("plan_id") or None,
                amount=data.get("amount"),
                duration_days=data["duration_days"],
                included_minutes=data["included_minutes"],
                payment=proof,
            )
        except RideCoreError as exc:
            return error_response(exc)

        return Response({
            "success": True,
            "subscription": SubscriptionSerializer(result.subscription).data,
            "wallet_recovery_amount": str(result.wallet_recovery_amount),
            "wallet_amount_used": str(result.wallet_amount_used),
            "overtime_charged": str(result.overtime_charged),
            "referral_credited": result.referral_credited,
        }, status=201)


class SubscriptionPlansView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        category = request.query_params.get("vehicle_category")
        plans = presence.SUBSCRIPTION_PLANS.values()
        if category:
            plans = presence.plans_for_category(category.upper())
        return Response([
            {
                "plan_id": p.plan_id,
                "vehicle_category": p.vehicle_category,
                "label": p.label,
                "price": str(p.price),
                "duration_days": p.duration_days,
                "included_minutes": p.included_minutes,
            }
            for p in plans
        ])


class WalletBalanceView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile
        balance = ledger.get_wallet_balance(request.user, "driver")
        balance["balance"] = str(balance["balance"])
        return Response(balance)


class WalletTransactionsView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile
        try:
            limit = int(request.query_params.get("limit", ledger.ledger.DEFAULT_PAGE_SIZE))
            offset = int(request.query_params.get("offset", 0))
        except ValueError:
            return Response({"error": "limit and offset must be integers"}, status=400)

        page = ledger.get_wallet_transactions(request.user, "driver", limit=limit, offset=offset)
        page["transactions"] = WalletTransactionSerializer(page["transactions"], many=True).data
        return Response(page)


class DriverCurrentRideView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        ride = get_current_driver_ride(request.user)
        if ride is None:
            return Response({"has_active_ride": False})
        return Response({"has_active_ride": True, "ride": RideSerializer(ride).data})
