# portal/management/commands/ensure_main_admin.py
import secrets

from django.conf import settings
from django.core.management.base import BaseCommand

from portal.models import Role, User
from portal.services import stats


class Command(BaseCommand):
    help = "Ensure the main admin account (MAIN_ADMIN_EMAIL) exists and is active (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument('--password', help='Password to set; defaults to MAIN_ADMIN_PASSWORD.')
        parser.add_argument('--reset-password', action='store_true',
                            help='Also reset the password of an existing main admin.')

    def handle(self, *args, **opts):
        email = settings.MAIN_ADMIN_EMAIL
        password = opts.get('password') or settings.MAIN_ADMIN_PASSWORD
        generated = False
        if not password:
            password = secrets.token_urlsafe(12)
            generated = True

        user, created = User.objects.get_or_create(
            email=email,
            defaults={'username': email, 'role': Role.ADMIN, 'name': 'Main Admin', 'phone': '0000000000'},
        )
        if created or opts.get('reset_password'):
            user.set_password(password)
        # reassert admin state on every run
        user.role = Role.ADMIN
        user.status = User.STATUS_ACTIVE
        user.is_active = True
        user.is_staff = True
        user.is_superuser = True
        user.login_attempts = 0
        user.lock_until = None
        user.save()
        stats.invalidate()

        self.stdout.write(self.style.SUCCESS(f"{'created' if created else 'ok'}: {email} (admin)"))
        if generated and (created or opts.get('reset_password')):
            self.stdout.write(self.style.WARNING(f"generated password: {password}"))
