from django.core.management.base import BaseCommand
from wallets.models import Wallet
from services.ledger import replay_wallet
import logging

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Replay every wallet's transaction log and report broken balance chains."

    def add_arguments(self, parser):
        parser.add_argument(
            "--kind",
            choices=["rider", "driver"],
            help="Only audit wallets of this kind.",
        )

    def handle(self, *args, **options):
        wallets = Wallet.objects.all().order_by("id")
        if options["kind"]:
            wallets = wallets.filter(kind=options["kind"])

        checked = 0
        broken = 0
        for wallet in wallets.iterator():
            audit = replay_wallet(wallet)
            checked += 1
            if audit.ok:
                continue
            broken += 1
            logger.error(
                "Wallet %s failed audit: balance=%s replayed=%s broken_links=%s",
                wallet.id, audit.balance, audit.replayed_balance, audit.broken_links,
            )
            self.stdout.write(
                self.style.ERROR(
                    f"Wallet {wallet.id}: balance {audit.balance} != replayed {audit.replayed_balance} "
                    f"or broken links at {audit.broken_links}"
                )
            )

        if broken:
            self.stdout.write(self.style.WARNING(f"{broken} of {checked} wallets failed the audit."))
        else:
            self.stdout.write(self.style.SUCCESS(f"All {checked} wallets balance."))
