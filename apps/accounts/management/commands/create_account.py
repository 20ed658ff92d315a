"""
Management command to register an account from the command line.

Usage:
    python manage.py create_account alice@example.com secret1
    python manage.py create_account alice@example.com --no-password

An existing account with the same email is left untouched and the
command fails.
"""

from django.core.management.base import BaseCommand, CommandError

from apps.accounts.services import (
    DuplicateEmailError,
    StoreUnavailableError,
    ValidationFailedError,
    signup,
)
from apps.accounts.services.credential_store import insert_account
from apps.accounts.services.passwords import unusable_password
from apps.accounts.validation import normalize_email, require_valid, validate_email_address


class Command(BaseCommand):
    help = 'Register a new account'

    def add_arguments(self, parser):
        parser.add_argument('email')
        parser.add_argument('password', nargs='?')
        parser.add_argument(
            '--no-password',
            action='store_true',
            help='Create the account without a usable password (OAuth-only)',
        )

    def handle(self, *args, **options):
        email = options['email']
        password = options['password']

        if not password and not options['no_password']:
            raise CommandError('Provide a password or pass --no-password')

        try:
            if options['no_password']:
                account = self.create_passwordless(email)
            else:
                account = signup(email=email, password=password)
        except ValidationFailedError as e:
            raise CommandError(f'Invalid input: {e}')
        except DuplicateEmailError:
            raise CommandError(f'Account with email {normalize_email(email)} already exists')
        except StoreUnavailableError as e:
            raise CommandError(str(e))

        self.stdout.write(self.style.SUCCESS(f'Created account {account.email} ({account.pk})'))

    def create_passwordless(self, email):
        """Create an account that can only sign in through a provider."""
        email = normalize_email(email)
        require_valid(validate_email_address(email))
        return insert_account(email=email, password_hash=unusable_password())
