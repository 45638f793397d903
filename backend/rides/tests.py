from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch
from zoneinfo import ZoneInfo

from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from accounts.models import User
from drivers.models import DriverProfile, Vehicle
from services.exceptions import (
	ConflictError,
	GeofenceViolationError,
	InvalidOtpError,
	InvalidStateError,
	NotFoundError,
	PreconditionFailedError,
	UnauthorizedError,
)
from services.ride_management import (
	accept_ride,
	arrived_at_pickup,
	cancel_ride,
	complete_ride,
	confirm_cash_payment,
	get_current_driver_ride,
	rate_rider,
	record_rider_call_attempt,
	start_ride,
)
from wallets.models import Wallet, WalletTransaction
from . import views
from .models import DriverCancellationStrike, DriverValidReasonCancel, Ride, RideWaypoint

PICKUP = (Decimal('28.613900'), Decimal('77.209000'))
DROP = (Decimal('28.650000'), Decimal('77.230000'))


class RideTestBase(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()
		self.rider = User.objects.create_user(
			username='rider',
			password='pass1234',
			role='rider',
			phone_number='9000000000'
		)
		self.driver = User.objects.create_user(
			username='driver_one',
			password='driver1234',
			role='driver',
			phone_number='9000000001'
		)
		self.other_driver = User.objects.create_user(
			username='driver_two',
			password='driver1234',
			role='driver',
			phone_number='9000000002'
		)

		# ~2 km north of pickup
		self.profile = DriverProfile.objects.create(
			user=self.driver,
			is_verified=True,
			current_latitude=Decimal('28.631900'),
			current_longitude=Decimal('77.209000')
		)
		DriverProfile.objects.create(user=self.other_driver, is_verified=True)
		self.vehicle = Vehicle.objects.create(
			driver=self.driver,
			registration_number='DL-01-1001',
			vehicle_type='sedan'
		)

		self.ride = Ride.objects.create(
			rider=self.rider,
			pickup_latitude=PICKUP[0],
			pickup_longitude=PICKUP[1],
			pickup_address='Connaught Place',
			drop_latitude=DROP[0],
			drop_longitude=DROP[1],
			drop_address='Civil Lines',
			estimated_fare=Decimal('120.00')
		)

	def make_accepted(self, seconds_ago=120):
		self.ride.driver = self.driver
		self.ride.vehicle = self.vehicle
		self.ride.status = 'accepted'
		self.ride.ride_otp = '1234'
		self.ride.accepted_at = timezone.now() - timedelta(seconds=seconds_ago)
		self.ride.driver_lat_at_accept = self.profile.current_latitude
		self.ride.driver_lng_at_accept = self.profile.current_longitude
		self.ride.save()
		return self.ride

	def make_in_progress(self):
		self.make_accepted()
		self.ride.status = 'in_progress'
		self.ride.ride_otp = None
		self.ride.start_time = timezone.now() - timedelta(minutes=20)
		self.ride.save()
		return self.ride


class AcceptRideTests(RideTestBase):
	def test_accept_issues_otp_and_captures_driver_position(self):
		accept_ride(self.driver, self.ride.id)

		self.ride.refresh_from_db()
		self.assertEqual(self.ride.status, 'accepted')
		self.assertEqual(self.ride.driver, self.driver)
		self.assertEqual(self.ride.vehicle, self.vehicle)
		self.assertEqual(len(self.ride.ride_otp), 4)
		self.assertTrue(1000 <= int(self.ride.ride_otp) <= 9999)
		self.assertIsNotNone(self.ride.accepted_at)
		self.assertEqual(self.ride.driver_lat_at_accept, Decimal('28.631900'))

	def test_second_driver_gets_conflict(self):
		accept_ride(self.driver, self.ride.id)

		with self.assertRaises(ConflictError):
			accept_ride(self.other_driver, self.ride.id)

		self.ride.refresh_from_db()
		self.assertEqual(self.ride.driver, self.driver)

	def test_accepting_a_non_pending_ride_is_invalid(self):
		self.ride.status = 'cancelled'
		self.ride.save()

		with self.assertRaises(InvalidStateError):
			accept_ride(self.driver, self.ride.id)

	def test_unknown_ride(self):
		with self.assertRaises(NotFoundError):
			accept_ride(self.driver, 99999)

	def test_accept_view(self):
		request = self.factory.post('/api/rides/%d/accept/' % self.ride.id)
		force_authenticate(request, user=self.driver)
		response = views.accept_ride(request, ride_id=self.ride.id)

		self.assertEqual(response.status_code, 200)
		self.assertTrue(response.data['success'])
		self.assertEqual(response.data['ride']['status'], 'accepted')

	def test_riders_cannot_drive(self):
		request = self.factory.post('/api/rides/%d/accept/' % self.ride.id)
		force_authenticate(request, user=self.rider)
		response = views.accept_ride(request, ride_id=self.ride.id)

		self.assertEqual(response.status_code, 403)


class ArrivalTests(RideTestBase):
	def test_arrival_is_idempotent(self):
		self.make_accepted()

		first = arrived_at_pickup(self.driver, self.ride.id).extra['arrived_at']
		second = arrived_at_pickup(self.driver, self.ride.id).extra['arrived_at']

		self.assertEqual(first, second)
		self.ride.refresh_from_db()
		self.assertEqual(self.ride.driver_arrived_at_pickup_at, first)

	def test_other_driver_cannot_mark_arrival(self):
		self.make_accepted()

		with self.assertRaises(UnauthorizedError):
			arrived_at_pickup(self.other_driver, self.ride.id)


class StartRideTests(RideTestBase):
	def test_wrong_otp_changes_nothing(self):
		self.make_accepted()

		with self.assertRaises(InvalidOtpError):
			start_ride(self.driver, self.ride.id, '9999')

		self.ride.refresh_from_db()
		self.assertEqual(self.ride.status, 'accepted')
		self.assertEqual(self.ride.ride_otp, '1234')
		self.assertIsNone(self.ride.start_time)

	def test_start_clears_otp_and_marks_trip(self):
		self.make_accepted()

		start_ride(self.driver, self.ride.id, '1234')

		self.ride.refresh_from_db()
		self.profile.refresh_from_db()
		self.vehicle.refresh_from_db()
		self.assertEqual(self.ride.status, 'in_progress')
		self.assertIsNone(self.ride.ride_otp)
		self.assertIsNotNone(self.ride.start_time)
		self.assertTrue(self.profile.is_in_trip)
		self.assertFalse(self.vehicle.is_available)
		self.assertIsNone(self.ride.waiting_time)
		self.assertIsNone(self.ride.waiting_charges)

	def test_otp_is_single_use(self):
		self.make_accepted()
		start_ride(self.driver, self.ride.id, '1234')

		with self.assertRaises(InvalidStateError):
			start_ride(self.driver, self.ride.id, '1234')

	def test_missing_otp_is_a_hard_failure(self):
		self.ride.driver = self.driver
		self.ride.save()

		with self.assertRaises(PreconditionFailedError):
			start_ride(self.driver, self.ride.id, '1234')

	def test_other_driver_cannot_start(self):
		self.make_accepted()

		with self.assertRaises(UnauthorizedError):
			start_ride(self.other_driver, self.ride.id, '1234')

	def test_waiting_charge_is_recorded_from_arrival(self):
		started = datetime(2026, 3, 10, 12, 0, tzinfo=ZoneInfo('Asia/Kolkata'))
		self.make_accepted()
		self.ride.driver_arrived_at_pickup_at = started - timedelta(minutes=10)
		self.ride.save()

		with patch('django.utils.timezone.now', return_value=started):
			start_ride(self.driver, self.ride.id, '1234')

		self.ride.refresh_from_db()
		self.assertEqual(self.ride.start_time, started)
		self.assertEqual(self.ride.waiting_time, 10)
		self.assertEqual(self.ride.waiting_charges, Decimal('7.00'))


class CompleteRideTests(RideTestBase):
	def test_completion_inside_geofence(self):
		self.make_in_progress()

		# ~2.9 km south of drop
		complete_ride(self.driver, self.ride.id, Decimal('28.624000'), DROP[1])

		self.ride.refresh_from_db()
		self.profile.refresh_from_db()
		self.vehicle.refresh_from_db()
		self.rider.refresh_from_db()
		self.assertEqual(self.ride.status, 'completed')
		self.assertIsNotNone(self.ride.end_time)
		self.assertIn(self.ride.actual_duration, (20, 21))
		self.assertEqual(self.ride.actual_fare, Decimal('120.00'))
		self.assertEqual(self.ride.payment_status, 'pending')
		self.assertFalse(self.profile.is_in_trip)
		self.assertTrue(self.vehicle.is_available)
		self.assertEqual(self.rider.completed_rides, 1)
		self.assertIsNone(get_current_driver_ride(self.driver))

	def test_completion_outside_geofence_is_rejected(self):
		self.make_in_progress()

		# ~3.1 km south of drop
		with self.assertRaises(GeofenceViolationError):
			complete_ride(self.driver, self.ride.id, Decimal('28.622000'), DROP[1])

		self.ride.refresh_from_db()
		self.assertEqual(self.ride.status, 'in_progress')
		self.assertIsNone(self.ride.end_time)

	def test_falls_back_to_latest_waypoint_without_drop(self):
		self.make_in_progress()
		self.ride.drop_latitude = None
		self.ride.drop_longitude = None
		self.ride.save()
		now = timezone.now()
		RideWaypoint.objects.create(ride=self.ride, latitude=Decimal('28.700000'), longitude=DROP[1], recorded_at=now - timedelta(minutes=10))
		RideWaypoint.objects.create(ride=self.ride, latitude=DROP[0], longitude=DROP[1], recorded_at=now - timedelta(minutes=1))

		complete_ride(self.driver, self.ride.id, Decimal('28.651000'), DROP[1])

		self.ride.refresh_from_db()
		self.assertEqual(self.ride.status, 'completed')

	def test_no_drop_and_no_route_cannot_complete(self):
		self.make_in_progress()
		self.ride.drop_latitude = None
		self.ride.drop_longitude = None
		self.ride.save()

		with self.assertRaises(PreconditionFailedError):
			complete_ride(self.driver, self.ride.id, DROP[0], DROP[1])

	def test_electronic_payment_is_paid_on_completion(self):
		self.make_in_progress()

		complete_ride(self.driver, self.ride.id, DROP[0], DROP[1], actual_fare=Decimal('150.00'), payment_method='upi')

		self.ride.refresh_from_db()
		self.assertEqual(self.ride.payment_status, 'paid')
		self.assertEqual(self.ride.actual_fare, Decimal('150.00'))

	def test_cash_payment_confirmed_after_completion(self):
		self.make_in_progress()
		complete_ride(self.driver, self.ride.id, DROP[0], DROP[1])

		confirm_cash_payment(self.driver, self.ride.id)
		confirm_cash_payment(self.driver, self.ride.id)

		self.ride.refresh_from_db()
		self.assertEqual(self.ride.payment_status, 'paid')

	def test_cannot_complete_before_start(self):
		self.make_accepted()

		with self.assertRaises(InvalidStateError):
			complete_ride(self.driver, self.ride.id, DROP[0], DROP[1])

	def test_geofence_view_maps_error(self):
		self.make_in_progress()

		request = self.factory.post(
			'/api/rides/%d/complete/' % self.ride.id,
			{'latitude': '28.622000', 'longitude': '77.230000'},
			format='json'
		)
		force_authenticate(request, user=self.driver)
		response = views.complete_ride(request, ride_id=self.ride.id)

		self.assertEqual(response.status_code, 400)
		self.assertEqual(response.data['error'], 'geofence_violation')


class CancelRideTests(RideTestBase):
	# ~330 m from pickup
	NEAR_PICKUP = (Decimal('28.616900'), Decimal('77.209000'))

	def _cancel(self, **kwargs):
		return cancel_ride(
			self.driver,
			self.ride.id,
			latitude=self.NEAR_PICKUP[0],
			longitude=self.NEAR_PICKUP[1],
			**kwargs
		)

	def test_cancel_at_44_seconds_is_free(self):
		self.make_accepted(seconds_ago=44)

		result = self._cancel(reason='Changed plans')

		self.ride.refresh_from_db()
		self.assertEqual(result.extra['outcome'].category, 'free_window')
		self.assertEqual(self.ride.status, 'cancelled')
		self.assertIsNone(self.ride.ride_otp)
		self.assertEqual(self.ride.cancelled_by, 'driver')
		self.assertEqual(self.ride.cancellation_fee, Decimal('0.00'))
		self.assertIsNone(self.ride.driver_strike_type)
		self.assertFalse(WalletTransaction.objects.exists())
		self.assertFalse(DriverCancellationStrike.objects.exists())

	def test_cancel_at_46_seconds_charges_rider_and_compensates_driver(self):
		self.make_accepted(seconds_ago=46)

		self._cancel()

		self.ride.refresh_from_db()
		rider_wallet = Wallet.objects.get(owner=self.rider, kind='rider')
		driver_wallet = Wallet.objects.get(owner=self.driver, kind='driver')
		self.assertEqual(self.ride.cancellation_fee, Decimal('50.00'))
		self.assertEqual(self.ride.driver_compensation_amount, Decimal('25.00'))
		self.assertEqual(self.ride.driver_strike_type, 'full')
		self.assertEqual(rider_wallet.balance, Decimal('-50.00'))
		self.assertEqual(driver_wallet.balance, Decimal('25.00'))
		self.assertEqual(DriverCancellationStrike.objects.get(ride=self.ride).strike_type, 'full')
		self.assertEqual(
			rider_wallet.transactions.get().reference_id,
			str(self.ride.id)
		)

	def test_notification_failure_does_not_roll_back_cancel(self):
		self.make_accepted()

		with patch(
			'services.ride_management.ride_lifecycle.notify_ride_event',
			side_effect=RuntimeError('channel layer down')
		) as notify:
			with self.captureOnCommitCallbacks(execute=True):
				self._cancel()

		notify.assert_called_once()
		self.ride.refresh_from_db()
		self.assertEqual(self.ride.status, 'cancelled')
		self.assertEqual(WalletTransaction.objects.count(), 2)

	def test_valid_reason_waives_fee(self):
		self.make_accepted()

		result = self._cancel(reason_type='vehicle_breakdown')

		self.ride.refresh_from_db()
		self.assertEqual(result.extra['outcome'].category, 'valid_reason')
		self.assertEqual(self.ride.cancellation_fee, Decimal('0.00'))
		self.assertEqual(self.ride.driver_cancellation_reason_type, 'vehicle_breakdown')
		self.assertFalse(Wallet.objects.filter(owner=self.rider).exists())
		self.assertEqual(Wallet.objects.get(owner=self.driver).balance, Decimal('25.00'))
		self.assertTrue(DriverValidReasonCancel.objects.filter(ride=self.ride).exists())

	def test_valid_reasons_beyond_weekly_cap_are_penalised(self):
		for i in range(3):
			past = Ride.objects.create(
				rider=self.rider,
				driver=self.driver,
				status='cancelled',
				pickup_latitude=PICKUP[0],
				pickup_longitude=PICKUP[1]
			)
			DriverValidReasonCancel.objects.create(
				driver=self.driver,
				ride=past,
				reason_type='road_blockage',
				cancelled_at=timezone.now() - timedelta(days=i + 1)
			)
		self.make_accepted()

		result = self._cancel(reason_type='vehicle_breakdown')

		self.assertEqual(result.extra['outcome'].category, 'penalty')
		self.ride.refresh_from_db()
		self.assertGreater(self.ride.cancellation_fee, 0)

	def test_old_valid_reasons_do_not_count(self):
		for i in range(3):
			past = Ride.objects.create(
				rider=self.rider,
				driver=self.driver,
				status='cancelled',
				pickup_latitude=PICKUP[0],
				pickup_longitude=PICKUP[1]
			)
			DriverValidReasonCancel.objects.create(
				driver=self.driver,
				ride=past,
				reason_type='road_blockage',
				cancelled_at=timezone.now() - timedelta(days=8 + i)
			)
		self.make_accepted()

		result = self._cancel(reason_type='vehicle_breakdown')

		self.assertEqual(result.extra['outcome'].category, 'valid_reason')

	def test_no_show_with_recorded_call_and_wait(self):
		self.make_accepted(seconds_ago=600)
		self.ride.driver_arrived_at_pickup_at = timezone.now() - timedelta(minutes=6)
		self.ride.save()
		record_rider_call_attempt(self.driver, self.ride.id)

		result = self._cancel(reason_type='rider_no_show')

		self.assertEqual(result.extra['outcome'].category, 'valid_reason')

	def test_call_claimed_only_at_cancel_is_not_evidence(self):
		self.make_accepted(seconds_ago=600)
		self.ride.driver_arrived_at_pickup_at = timezone.now() - timedelta(minutes=6)
		self.ride.save()

		result = self._cancel(reason_type='rider_no_show', rider_call_attempted=True)

		self.assertEqual(result.extra['outcome'].category, 'penalty')
		self.ride.refresh_from_db()
		self.assertIsNotNone(self.ride.rider_call_attempted_at)

	def test_in_progress_ride_can_be_cancelled(self):
		self.make_in_progress()
		self.profile.is_in_trip = True
		self.profile.save()

		self._cancel()

		self.ride.refresh_from_db()
		self.profile.refresh_from_db()
		self.assertEqual(self.ride.status, 'cancelled')
		self.assertFalse(self.profile.is_in_trip)

	def test_terminal_rides_cannot_be_cancelled(self):
		self.make_accepted()
		self._cancel()

		with self.assertRaises(InvalidStateError):
			self._cancel()
		self.assertEqual(WalletTransaction.objects.count(), 2)

	def test_other_driver_cannot_cancel(self):
		self.make_accepted()

		with self.assertRaises(UnauthorizedError):
			cancel_ride(self.other_driver, self.ride.id)

		self.ride.refresh_from_db()
		self.assertEqual(self.ride.status, 'accepted')


class RateRiderTests(RideTestBase):
	def test_rating_is_stored_once(self):
		self.make_in_progress()
		complete_ride(self.driver, self.ride.id, DROP[0], DROP[1])

		rate_rider(self.driver, self.ride.id, 5, 'Polite')

		self.ride.refresh_from_db()
		self.assertEqual(self.ride.rider_rating, 5)
		self.assertEqual(self.ride.rider_rating_comment, 'Polite')
		with self.assertRaises(InvalidStateError):
			rate_rider(self.driver, self.ride.id, 4)

	def test_rating_out_of_range(self):
		self.make_in_progress()
		complete_ride(self.driver, self.ride.id, DROP[0], DROP[1])

		with self.assertRaises(PreconditionFailedError):
			rate_rider(self.driver, self.ride.id, 6)

	def test_only_completed_rides_can_be_rated(self):
		self.make_accepted()

		with self.assertRaises(InvalidStateError):
			rate_rider(self.driver, self.ride.id, 5)
