from django.core.management.base import BaseCommand

from services.presence import sweep_stale_presence


class Command(BaseCommand):
    help = "Mark ONLINE drivers whose liveness key has expired as OFFLINE."

    def handle(self, *args, **options):
        swept = sweep_stale_presence()
        self.stdout.write(self.style.SUCCESS(f"Marked {swept} stale drivers offline."))
