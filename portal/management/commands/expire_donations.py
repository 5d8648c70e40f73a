from datetime import date

from django.core.management.base import BaseCommand, CommandError

from portal.services.workflow import expire_stale_donations


class Command(BaseCommand):
    help = "Mark pending medicine donations past their expiry date as expired."

    def add_arguments(self, parser):
        parser.add_argument('--date', help='Reference date (YYYY-MM-DD); defaults to today.')

    def handle(self, *args, **options):
        today = None
        if options.get('date'):
            try:
                today = date.fromisoformat(options['date'])
            except ValueError:
                raise CommandError(f"Invalid --date {options['date']!r}, expected YYYY-MM-DD")
        expired = expire_stale_donations(today)
        self.stdout.write(self.style.SUCCESS(f"Expired {len(expired)} donations"))
