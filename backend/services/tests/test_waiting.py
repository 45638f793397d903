from datetime import datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

from django.test import SimpleTestCase, override_settings

from services.pricing import WaitingTariff, calculate_waiting

IST = ZoneInfo('Asia/Kolkata')


def at(hour, minute, second=0):
	return datetime(2026, 3, 10, hour, minute, second, tzinfo=IST)


class WaitingChargeTests(SimpleTestCase):
	def setUp(self):
		self.tariff = WaitingTariff()

	def test_no_arrival_means_no_waiting(self):
		self.assertIsNone(calculate_waiting(None, at(12, 0), self.tariff))

	def test_first_three_minutes_are_free(self):
		result = calculate_waiting(at(12, 0), at(12, 3), self.tariff)
		self.assertEqual(result.minutes, 3)
		self.assertEqual(result.charge, Decimal('0.00'))

	def test_partial_minute_rounds_up(self):
		result = calculate_waiting(at(12, 0), at(12, 2, 30), self.tariff)
		self.assertEqual(result.minutes, 3)
		self.assertEqual(result.charge, Decimal('0.00'))

		result = calculate_waiting(at(12, 0), at(12, 3, 1), self.tariff)
		self.assertEqual(result.minutes, 4)
		self.assertEqual(result.charge, Decimal('1.00'))

	def test_daytime_wait_uses_day_rate(self):
		result = calculate_waiting(at(10, 0), at(10, 10), self.tariff)
		self.assertEqual(result.minutes, 10)
		self.assertEqual(result.charge, Decimal('7.00'))

	def test_wait_crossing_ten_pm_prices_each_minute_by_its_clock(self):
		# minutes 4..8 fall at 21:58, 21:59, 22:00, 22:01, 22:02
		result = calculate_waiting(at(21, 55), at(22, 3), self.tariff)
		self.assertEqual(result.minutes, 8)
		self.assertEqual(result.charge, Decimal('6.50'))

	def test_wait_starting_just_before_ten_pm(self):
		result = calculate_waiting(at(21, 58), at(22, 5), self.tariff)
		self.assertEqual(result.minutes, 7)
		self.assertEqual(result.charge, Decimal('6.00'))

	def test_wait_crossing_six_am(self):
		# minutes 4..8 fall at 05:58, 05:59, 06:00, 06:01, 06:02
		result = calculate_waiting(at(5, 55), at(6, 3), self.tariff)
		self.assertEqual(result.minutes, 8)
		self.assertEqual(result.charge, Decimal('6.00'))

	def test_rate_follows_local_time_not_utc(self):
		utc_arrival = at(23, 0).astimezone(ZoneInfo('UTC'))
		result = calculate_waiting(utc_arrival, utc_arrival + timedelta(minutes=4), self.tariff)
		self.assertEqual(result.charge, Decimal('1.50'))

	def test_start_before_arrival_is_never_negative(self):
		result = calculate_waiting(at(12, 5), at(12, 0), self.tariff)
		self.assertEqual(result.minutes, 0)
		self.assertEqual(result.charge, Decimal('0.00'))

	def test_charge_grows_with_every_extra_minute(self):
		previous = Decimal('0.00')
		for minutes in range(0, 30):
			result = calculate_waiting(at(21, 45), at(21, 45) + timedelta(minutes=minutes), self.tariff)
			self.assertGreaterEqual(result.charge, previous)
			previous = result.charge

	@override_settings(WAITING_TARIFF={'free_minutes': 5, 'day_rate': '2.00'})
	def test_tariff_overrides_from_settings(self):
		tariff = WaitingTariff.from_settings()
		self.assertEqual(tariff.free_minutes, 5)
		self.assertEqual(tariff.day_rate, Decimal('2.00'))
		self.assertEqual(tariff.night_rate, Decimal('1.50'))

		result = calculate_waiting(at(12, 0), at(12, 7), tariff)
		self.assertEqual(result.charge, Decimal('4.00'))
