from unittest.mock import patch

import redis
from django.test import TestCase
from rest_framework.test import APIRequestFactory

from .views import health_check


class HealthCheckTests(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()

	@patch('ride_backend.views.get_redis')
	def test_healthy(self, get_redis):
		response = health_check(self.factory.get('/health/'))

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['services']['database'], 'healthy')
		get_redis.return_value.ping.assert_called_once()

	@patch('ride_backend.views.get_redis')
	def test_cache_down_is_unhealthy(self, get_redis):
		get_redis.return_value.ping.side_effect = redis.ConnectionError('refused')

		response = health_check(self.factory.get('/health/'))

		self.assertEqual(response.status_code, 503)
		self.assertEqual(response.data['status'], 'unhealthy')
		self.assertTrue(response.data['services']['redis'].startswith('unhealthy'))
