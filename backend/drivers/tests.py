import hashlib
import hmac
from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

import redis
from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from accounts.models import User
from services.exceptions import (
	InsufficientAllowanceError,
	NotFoundError,
	PreconditionFailedError,
	UnauthorizedError,
)
from services.ledger import credit, debit, get_or_create_wallet
from services.presence import (
	PaymentProof,
	activate_subscription,
	get_current_subscription,
	heartbeat,
	sweep_stale_presence,
	toggle_availability,
	verify_payment_signature,
)
from services.presence.liveness import liveness_key
from wallets.models import Wallet
from . import tasks
from .models import DriverPresenceStatus, DriverProfile, DriverSubscription, ReferralCredit, Vehicle
from .views import AvailabilityView, HeartbeatView

SECRET = 'test-secret'


def sign(order_id, payment_id, secret=SECRET):
	return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


def razorpay(order_id='order_1', payment_id='pay_1'):
	return PaymentProof(mode='razorpay', order_id=order_id, payment_id=payment_id, signature=sign(order_id, payment_id))


class DriverTestBase(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()
		self.driver = User.objects.create_user(
			username='driver_one',
			password='driver1234',
			role='driver',
			phone_number='9000000001'
		)
		self.profile = DriverProfile.objects.create(user=self.driver, is_verified=True)
		self.vehicle = Vehicle.objects.create(
			driver=self.driver,
			registration_number='DL-3S-1234',
			vehicle_type='bike'
		)

		redis_patcher = patch('services.presence.liveness.get_redis')
		self.redis = redis_patcher.start().return_value
		self.addCleanup(redis_patcher.stop)

	def make_subscription(self, remaining=240, daily=None, expire_in=timedelta(days=1), status='ACTIVE', **kwargs):
		now = timezone.now()
		return DriverSubscription.objects.create(
			driver=self.driver,
			plan_id='bike_daily_4h',
			vehicle_category='BIKE',
			status=status,
			start_time=now - timedelta(hours=1),
			expire=now + expire_in,
			amount_paid=Decimal('20.00'),
			included_minutes=remaining,
			remaining_minutes=remaining,
			daily_allowance_minutes=daily,
			daily_usage_date=timezone.localdate(now),
			**kwargs
		)

	def make_online(self, last_ping_ago):
		return DriverPresenceStatus.objects.create(
			driver=self.driver,
			status='ONLINE',
			last_ping_at=timezone.now() - last_ping_ago
		)


class HeartbeatTests(DriverTestBase):
	def test_offline_driver_only_records_ping(self):
		snapshot = heartbeat(self.driver, latitude=Decimal('28.613900'), longitude=Decimal('77.209000'))

		presence = DriverPresenceStatus.objects.get(driver=self.driver)
		self.profile.refresh_from_db()
		self.assertEqual(snapshot.status, 'OFFLINE')
		self.assertEqual(presence.status, 'OFFLINE')
		self.assertIsNotNone(presence.last_ping_at)
		self.assertEqual(snapshot.minutes_billed, 0)
		self.assertEqual(self.profile.current_latitude, Decimal('28.613900'))
		self.redis.delete.assert_called_once_with(liveness_key(self.driver.id))

	def test_bills_whole_elapsed_minutes(self):
		sub = self.make_subscription(remaining=240, daily=240)
		self.make_online(timedelta(minutes=5, seconds=10))

		snapshot = heartbeat(self.driver)

		sub.refresh_from_db()
		presence = DriverPresenceStatus.objects.get(driver=self.driver)
		self.assertEqual(snapshot.minutes_billed, 5)
		self.assertEqual(sub.remaining_minutes, 235)
		self.assertEqual(sub.daily_minutes_used, 5)
		self.assertEqual(presence.status, 'ONLINE')
		self.assertAlmostEqual(presence.total_online_hours, 5 / 60)
		self.redis.set.assert_called_once_with(liveness_key(self.driver.id), '1', ex=60)

	def test_sub_minute_ping_refreshes_without_billing(self):
		sub = self.make_subscription(remaining=240)
		before = self.make_online(timedelta(seconds=30)).last_ping_at

		snapshot = heartbeat(self.driver)

		sub.refresh_from_db()
		presence = DriverPresenceStatus.objects.get(driver=self.driver)
		self.assertEqual(snapshot.minutes_billed, 0)
		self.assertEqual(sub.remaining_minutes, 240)
		self.assertGreater(presence.last_ping_at, before)
		self.assertEqual(presence.total_online_hours, 0)

	def test_exhausted_allowance_forces_offline(self):
		sub = self.make_subscription(remaining=3)
		self.make_online(timedelta(minutes=5, seconds=5))
		self.profile.is_in_trip = True
		self.profile.save()

		snapshot = heartbeat(self.driver)

		sub.refresh_from_db()
		self.profile.refresh_from_db()
		self.assertTrue(snapshot.forced_offline)
		self.assertEqual(snapshot.reason, 'allowance_exhausted')
		self.assertEqual(snapshot.status, 'OFFLINE')
		self.assertEqual(sub.remaining_minutes, 0)
		self.assertEqual(sub.status, 'EXPIRED')
		self.assertFalse(self.profile.is_in_trip)
		self.redis.delete.assert_called_once_with(liveness_key(self.driver.id))

	def test_unlimited_plan_is_never_exhausted(self):
		sub = self.make_subscription(remaining=None)
		self.make_online(timedelta(minutes=90, seconds=5))

		snapshot = heartbeat(self.driver)

		sub.refresh_from_db()
		self.assertEqual(snapshot.minutes_billed, 90)
		self.assertEqual(snapshot.status, 'ONLINE')
		self.assertIsNone(sub.remaining_minutes)
		self.assertEqual(sub.status, 'ACTIVE')

	def test_replayed_sequence_bills_nothing(self):
		sub = self.make_subscription(remaining=240)
		self.make_online(timedelta(minutes=2, seconds=5))

		first = heartbeat(self.driver, sequence=7)
		replay = heartbeat(self.driver, sequence=7)
		older = heartbeat(self.driver, sequence=3)

		sub.refresh_from_db()
		self.assertFalse(first.duplicate)
		self.assertTrue(replay.duplicate)
		self.assertTrue(older.duplicate)
		self.assertEqual(sub.remaining_minutes, 238)

	def test_daily_allowance_reached(self):
		sub = self.make_subscription(remaining=600, daily=60, daily_minutes_used=58)
		self.make_online(timedelta(minutes=5, seconds=5))

		snapshot = heartbeat(self.driver)

		sub.refresh_from_db()
		self.assertTrue(snapshot.forced_offline)
		self.assertEqual(snapshot.reason, 'daily_allowance_reached')
		self.assertEqual(sub.daily_minutes_used, 63)
		self.assertEqual(sub.status, 'ACTIVE')

	def test_expired_subscription_within_grace_stays_online(self):
		sub = self.make_subscription(remaining=100, expire_in=-timedelta(hours=1))
		self.make_online(timedelta(minutes=2, seconds=5))

		snapshot = heartbeat(self.driver)

		sub.refresh_from_db()
		self.assertEqual(sub.status, 'EXPIRED')
		self.assertEqual(sub.remaining_minutes, 100)
		self.assertEqual(snapshot.status, 'ONLINE')
		self.assertTrue(snapshot.in_grace_period)
		self.assertAlmostEqual(snapshot.grace_hours_remaining, 3.0, places=1)

	def test_expired_subscription_past_grace_forces_offline(self):
		self.make_subscription(remaining=100, expire_in=-timedelta(hours=5))
		self.make_online(timedelta(minutes=2, seconds=5))

		snapshot = heartbeat(self.driver)

		self.assertTrue(snapshot.forced_offline)
		self.assertEqual(snapshot.reason, 'subscription_expired')
		self.assertEqual(DriverPresenceStatus.objects.get(driver=self.driver).status, 'OFFLINE')

	def test_heartbeat_view(self):
		self.make_subscription(remaining=240)
		self.make_online(timedelta(minutes=1, seconds=5))

		request = self.factory.post('/api/driver/heartbeat/', {'sequence': 1}, format='json')
		force_authenticate(request, user=self.driver)
		response = HeartbeatView.as_view()(request)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['minutes_billed'], 1)
		self.assertEqual(response.data['subscription']['remaining_minutes'], 239)


class ToggleAvailabilityTests(DriverTestBase):
	def test_online_needs_a_subscription(self):
		with self.assertRaises(InsufficientAllowanceError):
			toggle_availability(self.driver, True)

	def test_online_refused_after_expire(self):
		self.make_subscription(expire_in=-timedelta(minutes=1))

		with self.assertRaises(InsufficientAllowanceError):
			toggle_availability(self.driver, True)

	def test_online_refused_when_today_is_used_up(self):
		self.make_subscription(remaining=600, daily=60, daily_minutes_used=60)

		with self.assertRaises(InsufficientAllowanceError):
			toggle_availability(self.driver, True)

	def test_online_and_back_offline(self):
		self.make_subscription()

		online = toggle_availability(self.driver, True)
		offline = toggle_availability(self.driver, False)

		self.assertEqual(online.status, 'ONLINE')
		self.assertEqual(offline.status, 'OFFLINE')
		self.redis.set.assert_called_once_with(liveness_key(self.driver.id), '1', ex=60)
		self.redis.delete.assert_called_once_with(liveness_key(self.driver.id))

	def test_availability_view_maps_refusal(self):
		request = self.factory.put('/api/driver/availability/', {'online': True}, format='json')
		force_authenticate(request, user=self.driver)
		response = AvailabilityView.as_view()(request)

		self.assertEqual(response.status_code, 402)
		self.assertEqual(response.data['error'], 'insufficient_allowance')


class SweepTests(DriverTestBase):
	def setUp(self):
		super().setUp()
		self.other = User.objects.create_user(username='driver_two', password='driver1234', role='driver')
		DriverProfile.objects.create(user=self.other, is_verified=True)
		self.make_online(timedelta(seconds=30))
		DriverPresenceStatus.objects.create(driver=self.other, status='ONLINE', last_ping_at=timezone.now())

	def test_expired_liveness_goes_offline(self):
		alive = liveness_key(self.other.id)
		self.redis.exists.side_effect = lambda key: 1 if key == alive else 0

		swept = sweep_stale_presence()

		self.assertEqual(swept, 1)
		self.assertEqual(DriverPresenceStatus.objects.get(driver=self.driver).status, 'OFFLINE')
		self.assertEqual(DriverPresenceStatus.objects.get(driver=self.other).status, 'ONLINE')

	def test_cache_down_leaves_drivers_alone(self):
		self.redis.exists.side_effect = redis.RedisError('connection refused')

		self.assertEqual(sweep_stale_presence(), 0)
		self.assertEqual(DriverPresenceStatus.objects.filter(status='ONLINE').count(), 2)

	def test_task_and_command(self):
		self.redis.exists.return_value = 0

		self.assertEqual(tasks.sweep_stale_presence.apply().get(), 2)

		out = StringIO()
		call_command('sweep_driver_presence', stdout=out)
		self.assertIn('Marked 0 stale drivers offline.', out.getvalue())


@override_settings(RAZORPAY_KEY_SECRET=SECRET)
class ActivateSubscriptionTests(DriverTestBase):
	def wallet(self, user=None):
		return get_or_create_wallet(user or self.driver, 'driver')

	def test_plan_terms(self):
		result = activate_subscription(self.driver, plan_id='bike_daily_4h', payment=razorpay())

		sub = result.subscription
		self.assertEqual(sub.status, 'ACTIVE')
		self.assertEqual(sub.vehicle_category, 'BIKE')
		self.assertEqual(sub.amount_paid, Decimal('20'))
		self.assertEqual(sub.remaining_minutes, 240)
		self.assertEqual(sub.daily_allowance_minutes, 240)
		self.assertEqual(sub.expire - sub.start_time, timedelta(days=1))
		self.assertEqual(result.payment.order_id, 'order_1')

	def test_weekly_plan_splits_daily_allowance(self):
		sub = activate_subscription(self.driver, plan_id='bike_weekly_7d', payment=razorpay()).subscription

		self.assertEqual(sub.remaining_minutes, 7 * 12 * 60)
		self.assertEqual(sub.daily_allowance_minutes, 720)

	def test_custom_terms(self):
		sub = activate_subscription(
			self.driver,
			amount='500',
			duration_days=10,
			included_minutes=600,
			payment=razorpay()
		).subscription

		self.assertEqual(sub.plan_id, '')
		self.assertEqual(sub.amount_paid, Decimal('500.00'))
		self.assertEqual(sub.daily_allowance_minutes, 60)

	def test_bad_signature_is_rejected(self):
		proof = PaymentProof(mode='razorpay', order_id='order_1', payment_id='pay_1', signature=sign('order_1', 'pay_1', 'wrong'))

		with self.assertRaises(PreconditionFailedError):
			activate_subscription(self.driver, plan_id='bike_daily_4h', payment=proof)
		self.assertFalse(DriverSubscription.objects.exists())

	def test_signature_check(self):
		self.assertTrue(verify_payment_signature('order_9', 'pay_9', sign('order_9', 'pay_9')))
		self.assertFalse(verify_payment_signature('order_9', 'pay_8', sign('order_9', 'pay_9')))
		self.assertFalse(verify_payment_signature('order_9', 'pay_9', ''))

	def test_unverified_driver(self):
		self.profile.is_verified = False
		self.profile.save()

		with self.assertRaises(UnauthorizedError):
			activate_subscription(self.driver, plan_id='bike_daily_4h', payment=razorpay())

	def test_plan_must_match_vehicle(self):
		with self.assertRaises(PreconditionFailedError):
			activate_subscription(self.driver, plan_id='car_daily_4h', payment=razorpay())

	def test_unknown_plan(self):
		with self.assertRaises(NotFoundError):
			activate_subscription(self.driver, plan_id='bike_yearly', payment=razorpay())

	def test_negative_balance_is_recovered(self):
		debit(self.wallet(), Decimal('40.00'), 'ride_cancellation', 11)

		result = activate_subscription(self.driver, plan_id='bike_daily_4h', payment=razorpay())

		self.assertEqual(result.wallet_recovery_amount, Decimal('40.00'))
		self.assertEqual(result.wallet_amount_used, Decimal('0.00'))
		self.assertEqual(result.payment.wallet_recovery_amount, Decimal('40.00'))
		self.assertEqual(Wallet.objects.get(owner=self.driver).balance, Decimal('0.00'))

	def test_positive_balance_is_applied(self):
		credit(self.wallet(), Decimal('15.00'), 'cancellation_compensation', 12)

		result = activate_subscription(self.driver, plan_id='bike_daily_4h', payment=razorpay())

		self.assertEqual(result.wallet_amount_used, Decimal('15.00'))
		self.assertEqual(Wallet.objects.get(owner=self.driver).balance, Decimal('0.00'))

	def test_wallet_payment(self):
		credit(self.wallet(), Decimal('100.00'), 'cancellation_compensation', 12)

		result = activate_subscription(self.driver, plan_id='bike_daily_4h', payment=PaymentProof(mode='wallet'))

		self.assertEqual(result.wallet_amount_used, Decimal('20.00'))
		self.assertEqual(Wallet.objects.get(owner=self.driver).balance, Decimal('80.00'))

	def test_wallet_payment_needs_enough_balance(self):
		credit(self.wallet(), Decimal('5.00'), 'cancellation_compensation', 12)

		with self.assertRaises(PreconditionFailedError):
			activate_subscription(self.driver, plan_id='bike_daily_4h', payment=PaymentProof(mode='wallet'))

		self.assertEqual(Wallet.objects.get(owner=self.driver).balance, Decimal('5.00'))
		self.assertFalse(DriverSubscription.objects.exists())

	def test_new_subscription_replaces_active_one(self):
		first = activate_subscription(self.driver, plan_id='bike_daily_4h', payment=razorpay()).subscription
		second = activate_subscription(self.driver, plan_id='bike_daily_12h', payment=razorpay('order_2', 'pay_2')).subscription

		first.refresh_from_db()
		self.assertEqual(first.status, 'CANCELLED')
		self.assertEqual(second.status, 'ACTIVE')
		self.assertEqual(DriverSubscription.objects.filter(driver=self.driver, status='ACTIVE').count(), 1)

	def test_referral_is_credited_once(self):
		referrer = User.objects.create_user(username='referrer', password='driver1234', role='driver')
		DriverProfile.objects.create(user=referrer, is_verified=True)
		self.profile.referred_by = referrer
		self.profile.save()

		first = activate_subscription(self.driver, plan_id='bike_daily_4h', payment=razorpay())
		second = activate_subscription(self.driver, plan_id='bike_daily_4h', payment=razorpay('order_2', 'pay_2'))

		self.assertTrue(first.referral_credited)
		self.assertFalse(second.referral_credited)
		self.assertEqual(ReferralCredit.objects.count(), 1)
		self.assertEqual(Wallet.objects.get(owner=referrer).balance, Decimal('50.00'))

	def test_overtime_is_billed_then_recovered(self):
		sub = self.make_subscription(remaining=100, expire_in=-timedelta(hours=3, minutes=30))

		result = activate_subscription(self.driver, plan_id='bike_daily_4h', payment=razorpay())

		sub.refresh_from_db()
		wallet = Wallet.objects.get(owner=self.driver)
		self.assertEqual(sub.status, 'EXPIRED')
		self.assertEqual(sub.last_overtime_billing_at, sub.expire + timedelta(hours=3))
		self.assertEqual(result.overtime_charged, Decimal('30.00'))
		self.assertEqual(result.wallet_recovery_amount, Decimal('30.00'))
		self.assertEqual(wallet.balance, Decimal('0.00'))
		self.assertEqual(
			list(wallet.transactions.values_list('reference_type', flat=True)),
			['overtime', 'wallet_recovery']
		)

	def test_no_overtime_when_minutes_ran_out(self):
		sub = self.make_subscription(remaining=0, status='EXPIRED', expire_in=-timedelta(hours=3, minutes=30))
		self.assertFalse(get_current_subscription(self.driver).in_grace_period)

		result = activate_subscription(self.driver, plan_id='bike_daily_4h', payment=razorpay())

		sub.refresh_from_db()
		self.assertEqual(result.overtime_charged, Decimal('0.00'))
		self.assertIsNone(sub.last_overtime_billing_at)
		self.assertFalse(Wallet.objects.get(owner=self.driver).transactions.filter(reference_type='overtime').exists())

	def test_custom_terms_need_at_least_one_minute(self):
		with self.assertRaises(PreconditionFailedError):
			activate_subscription(
				self.driver,
				amount='500',
				duration_days=10,
				included_minutes=0,
				payment=razorpay()
			)

		self.assertFalse(DriverSubscription.objects.exists())


class CurrentSubscriptionTests(DriverTestBase):
	def test_active_subscription(self):
		sub = self.make_subscription()

		snapshot = get_current_subscription(self.driver)

		self.assertEqual(snapshot.subscription, sub)
		self.assertFalse(snapshot.in_grace_period)

	def test_lazily_expires_and_reports_grace(self):
		sub = self.make_subscription(expire_in=-timedelta(hours=1))

		snapshot = get_current_subscription(self.driver)

		sub.refresh_from_db()
		self.assertEqual(sub.status, 'EXPIRED')
		self.assertTrue(snapshot.in_grace_period)
		self.assertAlmostEqual(snapshot.grace_hours_remaining, 3.0, places=1)

	def test_no_grace_after_window(self):
		self.make_subscription(expire_in=-timedelta(hours=5))

		self.assertFalse(get_current_subscription(self.driver).in_grace_period)

	def test_no_grace_when_minutes_ran_out(self):
		self.make_subscription(remaining=0, status='EXPIRED', expire_in=timedelta(hours=5))

		snapshot = get_current_subscription(self.driver)

		self.assertFalse(snapshot.in_grace_period)
		self.assertEqual(snapshot.grace_hours_remaining, 0.0)
