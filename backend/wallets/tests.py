from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.test import TestCase

from accounts.models import User
from services.ledger import (
	credit,
	debit,
	get_or_create_wallet,
	get_wallet_balance,
	get_wallet_transactions,
	replay_wallet,
)
from .models import Wallet, WalletTransaction


class LedgerTests(TestCase):
	def setUp(self):
		self.driver = User.objects.create_user(
			username='driver_one',
			password='driver1234',
			role='driver',
			phone_number='9000000001'
		)
		self.wallet = get_or_create_wallet(self.driver, 'driver')

	def test_credit_records_balance_before_and_after(self):
		entry = credit(self.wallet, Decimal('100.00'), 'topup', 'T1')

		self.wallet.refresh_from_db()
		self.assertEqual(self.wallet.balance, Decimal('100.00'))
		self.assertEqual(entry.type, 'credit')
		self.assertEqual(entry.balance_before, Decimal('0.00'))
		self.assertEqual(entry.balance_after, Decimal('100.00'))
		self.assertEqual(entry.reference_type, 'topup')
		self.assertEqual(entry.reference_id, 'T1')

	def test_debit_may_go_negative(self):
		credit(self.wallet, 20, 'topup')
		entry = debit(self.wallet, 50, 'ride_cancellation', 7)

		self.wallet.refresh_from_db()
		self.assertEqual(self.wallet.balance, Decimal('-30.00'))
		self.assertEqual(entry.balance_before, Decimal('20.00'))
		self.assertEqual(entry.balance_after, Decimal('-30.00'))
		self.assertEqual(entry.reference_id, '7')

	def test_zero_and_negative_amounts_are_noops(self):
		self.assertIsNone(credit(self.wallet, 0, 'topup'))
		self.assertIsNone(debit(self.wallet, Decimal('-5'), 'topup'))
		self.assertFalse(WalletTransaction.objects.exists())

		self.wallet.refresh_from_db()
		self.assertEqual(self.wallet.balance, Decimal('0.00'))

	def test_chain_links_and_replay_match_balance(self):
		credit(self.wallet, '100', 'topup')
		debit(self.wallet, '35.50', 'subscription')
		debit(self.wallet, '80', 'overtime')
		credit(self.wallet, '15.50', 'wallet_recovery')

		entries = list(self.wallet.transactions.order_by('id'))
		for prev, nxt in zip(entries, entries[1:]):
			self.assertEqual(prev.balance_after, nxt.balance_before)

		self.wallet.refresh_from_db()
		self.assertEqual(entries[-1].balance_after, self.wallet.balance)
		self.assertEqual(sum(e.signed_amount for e in entries), self.wallet.balance)

		audit = replay_wallet(self.wallet)
		self.assertTrue(audit.ok)
		self.assertEqual(audit.replayed_balance, Decimal('0.00'))

	def test_transactions_are_append_only(self):
		entry = credit(self.wallet, 10, 'topup')

		entry.amount = Decimal('99')
		with self.assertRaises(ValueError):
			entry.save()
		with self.assertRaises(ValueError):
			entry.delete()

	def test_wallets_are_separate_per_kind(self):
		rider_wallet = get_or_create_wallet(self.driver, 'rider')
		credit(rider_wallet, 10, 'topup')

		self.assertNotEqual(rider_wallet.pk, self.wallet.pk)
		self.assertEqual(get_wallet_balance(self.driver, 'driver')['balance'], Decimal('0.00'))
		self.assertEqual(get_wallet_balance(self.driver, 'rider')['balance'], Decimal('10.00'))
		self.assertEqual(get_or_create_wallet(self.driver, 'driver').pk, self.wallet.pk)

	def test_transactions_page_is_newest_first_and_clamped(self):
		for i in range(5):
			credit(self.wallet, i + 1, 'topup', i)

		page = get_wallet_transactions(self.driver, 'driver', limit=2, offset=1)
		self.assertEqual(page['total'], 5)
		self.assertEqual([t.reference_id for t in page['transactions']], ['3', '2'])

		page = get_wallet_transactions(self.driver, 'driver', limit=500, offset=-3)
		self.assertEqual(page['limit'], 100)
		self.assertEqual(page['offset'], 0)
		self.assertEqual(len(page['transactions']), 5)


class AuditWalletsCommandTests(TestCase):
	def setUp(self):
		self.driver = User.objects.create_user(
			username='driver_one',
			password='driver1234',
			role='driver',
			phone_number='9000000001'
		)
		self.wallet = get_or_create_wallet(self.driver, 'driver')
		credit(self.wallet, 40, 'topup')
		debit(self.wallet, 15, 'subscription')

	def test_clean_ledger_passes(self):
		out = StringIO()
		call_command('audit_wallets', stdout=out)
		self.assertIn('All 1 wallets balance.', out.getvalue())

	def test_balance_written_outside_the_ledger_is_reported(self):
		Wallet.objects.filter(pk=self.wallet.pk).update(balance=Decimal('999.00'))

		self.assertFalse(replay_wallet(Wallet.objects.get(pk=self.wallet.pk)).ok)

		out = StringIO()
		call_command('audit_wallets', stdout=out)
		self.assertIn('1 of 1 wallets failed the audit.', out.getvalue())
