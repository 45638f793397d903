from datetime import datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

from django.test import SimpleTestCase, override_settings

from services.cancellation import (
	CancellationFacts,
	CancellationPolicy,
	evaluate_cancellation,
	normalize_vehicle_type,
)

PICKUP = (28.6139, 77.2090)
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=ZoneInfo('Asia/Kolkata'))


def facts(**overrides):
	values = dict(
		cancelled_at=NOW,
		accepted_at=NOW - timedelta(minutes=3),
		vehicle_type='sedan',
		pickup_lat=PICKUP[0],
		pickup_lng=PICKUP[1],
		# ~2.0 km north of pickup at accept
		driver_lat_at_accept=PICKUP[0] + 0.018,
		driver_lng_at_accept=PICKUP[1],
		# ~330 m from pickup now
		driver_lat=PICKUP[0] + 0.003,
		driver_lng=PICKUP[1],
	)
	values.update(overrides)
	return CancellationFacts(**values)


class FreeWindowTests(SimpleTestCase):
	def setUp(self):
		self.policy = CancellationPolicy()

	def test_44_seconds_is_free(self):
		outcome = evaluate_cancellation(facts(accepted_at=NOW - timedelta(seconds=44)), self.policy)
		self.assertEqual(outcome.category, 'free_window')
		self.assertEqual(outcome.rider_charged_amount, Decimal('0.00'))
		self.assertEqual(outcome.driver_compensation_amount, Decimal('0.00'))
		self.assertIsNone(outcome.driver_strike_type)

	def test_46_seconds_is_charged(self):
		outcome = evaluate_cancellation(facts(accepted_at=NOW - timedelta(seconds=46)), self.policy)
		self.assertEqual(outcome.category, 'penalty')
		self.assertGreater(outcome.rider_charged_amount, 0)

	def test_45_seconds_is_still_free(self):
		outcome = evaluate_cancellation(facts(accepted_at=NOW - timedelta(seconds=45)), self.policy)
		self.assertEqual(outcome.category, 'free_window')


class PenaltyTests(SimpleTestCase):
	def setUp(self):
		self.policy = CancellationPolicy()

	def test_driver_who_drove_most_of_the_way_pays_full_fee_and_full_strike(self):
		outcome = evaluate_cancellation(facts(), self.policy)
		self.assertEqual(outcome.rider_charged_amount, Decimal('50.00'))
		self.assertEqual(outcome.driver_compensation_amount, Decimal('25.00'))
		self.assertEqual(outcome.driver_strike_type, 'full')
		self.assertIsNone(outcome.driver_cancellation_reason_type)

	def test_little_movement_far_from_pickup_is_partial_and_light(self):
		# ~1.1 km away now, moved ~0.9 km
		outcome = evaluate_cancellation(facts(driver_lat=PICKUP[0] + 0.010), self.policy)
		self.assertEqual(outcome.rider_charged_amount, Decimal('30.00'))
		self.assertEqual(outcome.driver_compensation_amount, Decimal('15.00'))
		self.assertEqual(outcome.driver_strike_type, 'light')

	def test_moving_away_counts_as_no_movement(self):
		outcome = evaluate_cancellation(facts(driver_lat=PICKUP[0] + 0.030), self.policy)
		self.assertEqual(outcome.rider_charged_amount, Decimal('30.00'))
		self.assertEqual(outcome.driver_strike_type, 'light')

	def test_fee_depends_on_vehicle_type(self):
		bike = evaluate_cancellation(facts(vehicle_type='bike'), self.policy)
		auto = evaluate_cancellation(facts(vehicle_type='auto'), self.policy)
		xl = evaluate_cancellation(facts(vehicle_type='xl'), self.policy)
		self.assertEqual(bike.rider_charged_amount, Decimal('25.00'))
		self.assertEqual(auto.rider_charged_amount, Decimal('30.00'))
		self.assertEqual(xl.rider_charged_amount, Decimal('70.00'))

	def test_missing_coordinates_fall_back_to_conservative_penalty(self):
		outcome = evaluate_cancellation(facts(driver_lat=None, driver_lng=None), self.policy)
		self.assertEqual(outcome.category, 'penalty')
		self.assertEqual(outcome.rider_charged_amount, Decimal('30.00'))
		self.assertEqual(outcome.driver_strike_type, 'light')

	def test_missing_accept_time_never_raises(self):
		outcome = evaluate_cancellation(facts(accepted_at=None, vehicle_type=None), self.policy)
		self.assertEqual(outcome.category, 'penalty')
		self.assertEqual(outcome.rider_charged_amount, Decimal('30.00'))

	def test_unknown_reason_is_a_penalty(self):
		outcome = evaluate_cancellation(facts(reason_type='changed_mind'), self.policy)
		self.assertEqual(outcome.category, 'penalty')


class ValidReasonTests(SimpleTestCase):
	def setUp(self):
		self.policy = CancellationPolicy()

	def test_valid_reason_waives_charge_and_compensates(self):
		outcome = evaluate_cancellation(
			facts(reason_type='vehicle_breakdown', recent_valid_reason_count=2), self.policy
		)
		self.assertEqual(outcome.category, 'valid_reason')
		self.assertEqual(outcome.rider_charged_amount, Decimal('0.00'))
		self.assertEqual(outcome.driver_compensation_amount, Decimal('25.00'))
		self.assertIsNone(outcome.driver_strike_type)
		self.assertEqual(outcome.driver_cancellation_reason_type, 'vehicle_breakdown')

	def test_waiver_is_rate_limited(self):
		outcome = evaluate_cancellation(
			facts(reason_type='vehicle_breakdown', recent_valid_reason_count=3), self.policy
		)
		self.assertEqual(outcome.category, 'penalty')
		self.assertGreater(outcome.rider_charged_amount, 0)
		self.assertIsNone(outcome.driver_cancellation_reason_type)

	def test_no_show_without_call_attempt_is_a_penalty(self):
		outcome = evaluate_cancellation(
			facts(reason_type='rider_no_show', arrived_at_pickup_at=NOW - timedelta(minutes=10)),
			self.policy,
		)
		self.assertEqual(outcome.category, 'penalty')

	def test_no_show_with_call_and_wait_is_valid(self):
		outcome = evaluate_cancellation(
			facts(
				reason_type='rider_no_show',
				arrived_at_pickup_at=NOW - timedelta(minutes=6),
				rider_call_attempted_at=NOW - timedelta(minutes=2),
			),
			self.policy,
		)
		self.assertEqual(outcome.category, 'valid_reason')
		self.assertEqual(outcome.driver_cancellation_reason_type, 'rider_no_show')

	def test_no_show_before_minimum_wait_is_a_penalty(self):
		outcome = evaluate_cancellation(
			facts(
				reason_type='rider_no_show',
				arrived_at_pickup_at=NOW - timedelta(minutes=2),
				rider_call_attempted_at=NOW - timedelta(minutes=1),
			),
			self.policy,
		)
		self.assertEqual(outcome.category, 'penalty')

	def test_bike_no_show_wait_is_shorter(self):
		outcome = evaluate_cancellation(
			facts(
				vehicle_type='bike',
				reason_type='rider_no_show',
				arrived_at_pickup_at=NOW - timedelta(minutes=3),
				rider_call_attempted_at=NOW - timedelta(minutes=1),
			),
			self.policy,
		)
		self.assertEqual(outcome.category, 'valid_reason')


class PolicyConfigTests(SimpleTestCase):
	def test_vehicle_types_collapse_to_fee_classes(self):
		self.assertEqual(normalize_vehicle_type('Bike'), 'bike')
		self.assertEqual(normalize_vehicle_type('e-rickshaw'), 'auto')
		self.assertEqual(normalize_vehicle_type('SUV'), 'xl')
		self.assertEqual(normalize_vehicle_type('mini'), 'car')
		self.assertEqual(normalize_vehicle_type(None), 'car')

	@override_settings(CANCELLATION_POLICY={'free_window_seconds': 60, 'full_fees': {'bike': 10, 'auto': 10, 'car': 10, 'xl': 10}})
	def test_overrides_from_settings(self):
		policy = CancellationPolicy.from_settings()
		self.assertEqual(policy.free_window_seconds, 60)
		self.assertEqual(policy.full_fee('sedan'), Decimal('10'))
		self.assertEqual(policy.partial_fee('sedan'), Decimal('30'))

		outcome = evaluate_cancellation(facts(accepted_at=NOW - timedelta(seconds=50)), policy)
		self.assertEqual(outcome.category, 'free_window')
