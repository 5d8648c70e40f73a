from django.core.management.base import BaseCommand

from portal.services import stats


class Command(BaseCommand):
    help = "Recompute system statistics and warm the stats cache."

    def handle(self, *args, **options):
        data = stats.refresh()
        self.stdout.write(self.style.SUCCESS(
            f"Refreshed {stats.CACHE_KEY}: {data['totalUsers']} users, "
            f"{data['totalDonations']} donations, {data['totalRequests']} requests at {data['lastUpdated']}"
        ))
