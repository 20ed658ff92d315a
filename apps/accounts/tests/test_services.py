"""
Service layer tests for accounts app.

Tests all service functions for:
- Credential store (lookups, atomic writes, store failures)
- Account lifecycle (signup, deletion)
- Session authentication (login, logout, principal, revocation)
- Password reset (issue, validate, consume)
- Profile management (profile, password, provider links)
- Concurrency protection (signups, reset consumption, updates)
"""

import hashlib
import logging
import pytest
import threading
from datetime import timedelta
from importlib import import_module
from smtplib import SMTPException
from uuid import uuid4
from django.conf import settings
from django.db import OperationalError, connection
from django.test import TransactionTestCase
from django.utils import timezone

from apps.accounts.models import AccountSession, ProviderLink, User
from apps.accounts.services import (
    ProfileUpdate,
    change_password,
    consume_reset,
    current_principal,
    delete_account,
    link_provider,
    login,
    logout,
    request_reset,
    signup,
    unlink_provider,
    update_profile,
    validate_reset_token,
)
from apps.accounts.services import credential_store
from apps.accounts.services.exceptions import (
    AccountNotFoundError,
    DuplicateEmailError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    StoreUnavailableError,
    ValidationFailedError,
)
from apps.accounts.services.passwords import hash_password
from apps.accounts.services.reset_tokens import digest_reset_token


# ============================================================================
# CREDENTIAL STORE TESTS
# ============================================================================

@pytest.mark.django_db
class TestCredentialStore:
    """Test lookups and writes of the credential store."""

    def test_find_by_email_normalizes(self, account):
        """Lookup ignores case and surrounding whitespace."""
        assert credential_store.find_by_email('  TestUser@Example.COM ') == account

    def test_find_by_email_missing(self, db):
        assert credential_store.find_by_email('nobody@example.com') is None

    def test_find_by_id(self, account):
        assert credential_store.find_by_id(account.pk) == account
        assert credential_store.find_by_id(uuid4()) is None

    def test_find_by_valid_reset_token(self, account_with_reset_token):
        """Valid token matches, unknown and expired tokens look the same."""
        now = timezone.now()

        assert credential_store.find_by_valid_reset_token(
            'valid-reset-token-12345', now
        ) == account_with_reset_token
        assert credential_store.find_by_valid_reset_token('unknown-token', now) is None
        assert credential_store.find_by_valid_reset_token(
            'valid-reset-token-12345', now + timedelta(hours=2)
        ) is None
        assert credential_store.find_by_valid_reset_token('', now) is None

    def test_reset_token_expires_at_stored_instant(self, account_with_reset_token):
        """Store lookup fails exactly at the stored expiry."""
        expires_at = account_with_reset_token.password_reset_expires

        assert credential_store.find_by_valid_reset_token(
            'valid-reset-token-12345', expires_at - timedelta(microseconds=1)
        ) == account_with_reset_token
        assert credential_store.find_by_valid_reset_token(
            'valid-reset-token-12345', expires_at
        ) is None

    def test_insert_duplicate_email_rejected(self, account):
        """Database constraint rejects a second account with the same email."""
        with pytest.raises(DuplicateEmailError):
            credential_store.insert_account(
                email='TESTUSER@example.com',
                password_hash=hash_password('whatever'),
            )

        assert User.objects.count() == 1

    def test_update_missing_account(self, db):
        with pytest.raises(AccountNotFoundError):
            credential_store.update_account(
                account_id=uuid4(),
                mutate=lambda user: None,
            )

    def test_update_email_collision(self, account, other_account):
        def take_email(user):
            user.email = account.email

        with pytest.raises(DuplicateEmailError):
            credential_store.update_account(account_id=other_account.pk, mutate=take_email)

        other_account.refresh_from_db()
        assert other_account.email == 'otheruser@example.com'

    def test_remove_missing_account(self, db):
        with pytest.raises(AccountNotFoundError):
            credential_store.remove_account(account_id=uuid4())

    def test_store_failure_surfaces(self, monkeypatch, account):
        """Infrastructure errors are reported, never swallowed."""
        def broken(*args, **kwargs):
            raise OperationalError('database is unreachable')

        monkeypatch.setattr(User.objects, 'filter', broken)

        with pytest.raises(StoreUnavailableError):
            credential_store.find_by_email(account.email)


# ============================================================================
# ACCOUNT LIFECYCLE TESTS
# ============================================================================

@pytest.mark.django_db
class TestSignup:
    """Test account creation."""

    def test_signup_success(self, db):
        account = signup(email='  A@X.com ', password='secret1')

        assert account.pk is not None
        assert account.email == 'a@x.com'
        assert account.check_password('secret1')
        assert account.password != 'secret1'

    def test_signup_duplicate_keeps_existing_account(self, db):
        """Duplicate signup is rejected and the first account survives."""
        original = signup(email='a@x.com', password='secret1')

        with pytest.raises(DuplicateEmailError) as exc:
            signup(email='A@x.com', password='other2')

        assert 'already exists' in str(exc.value)
        assert User.objects.count() == 1
        stored = User.objects.get()
        assert stored.pk == original.pk
        assert stored.check_password('secret1')

    def test_signup_validation_failed(self, db):
        """Bad email and short password are both reported, nothing stored."""
        with pytest.raises(ValidationFailedError) as exc:
            signup(email='not-an-email', password='abc')

        fields = {error.field for error in exc.value.errors}
        assert fields == {'email', 'password'}
        assert User.objects.count() == 0


@pytest.mark.django_db
class TestDeleteAccount:
    """Test account deletion."""

    def test_delete_account(self, account):
        link_provider(account_id=account.pk, provider='github', token='gh-token')

        delete_account(account_id=account.pk)

        assert not User.objects.filter(pk=account.pk).exists()
        assert not ProviderLink.objects.filter(account_id=account.pk).exists()

    def test_delete_missing_account(self, db):
        with pytest.raises(AccountNotFoundError):
            delete_account(account_id=uuid4())

    def test_delete_revokes_all_sessions(self, account, session_factory):
        """Every session of the deleted account becomes anonymous."""
        first, second = session_factory(), session_factory()
        login(session=first, email=account.email, password='TestPass123!')
        login(session=second, email=account.email, password='TestPass123!')
        keys = [first.session_key, second.session_key]

        delete_account(account_id=account.pk)

        reloaded = session_factory()
        for key in keys:
            assert not reloaded.exists(key)
        assert not AccountSession.objects.filter(account_id=account.pk).exists()
        assert current_principal(session=first) is None


# ============================================================================
# SESSION AUTHENTICATION TESTS
# ============================================================================

@pytest.mark.django_db
class TestLogin:
    """Test login, logout and the current principal."""

    def test_login_success(self, account, session):
        result = login(session=session, email='TestUser@example.com', password='TestPass123!')

        assert result == account
        assert current_principal(session=session) == account
        assert AccountSession.objects.filter(
            session_key=session.session_key, account_id=account.pk
        ).exists()
        account.refresh_from_db()
        assert account.last_login is not None

    def test_login_failure_is_constant_shape(self, account, session):
        """Wrong password and unknown email raise the same error."""
        with pytest.raises(InvalidCredentialsError) as wrong_password:
            login(session=session, email=account.email, password='WrongPass123!')
        with pytest.raises(InvalidCredentialsError) as unknown_email:
            login(session=session, email='nobody@example.com', password='TestPass123!')

        assert type(wrong_password.value) is type(unknown_email.value)
        assert str(wrong_password.value) == str(unknown_email.value)
        assert current_principal(session=session) is None

    def test_login_malformed_email(self, account, session):
        """Malformed email fails validation before the lookup."""
        with pytest.raises(ValidationFailedError) as exc:
            login(session=session, email='not-an-email', password='TestPass123!')

        assert [error.field for error in exc.value.errors] == ['email']
        assert current_principal(session=session) is None

    def test_login_inactive_account(self, inactive_account, session):
        with pytest.raises(InvalidCredentialsError):
            login(session=session, email=inactive_account.email, password='TestPass123!')

    def test_login_rotates_session_key(self, account, session):
        session['cart'] = 'kept'
        session.save()
        anonymous_key = session.session_key

        login(session=session, email=account.email, password='TestPass123!')

        assert session.session_key != anonymous_key
        assert session['cart'] == 'kept'

    def test_login_as_other_account_drops_previous_data(self, account, other_account, session):
        login(session=session, email=account.email, password='TestPass123!')
        session['draft'] = 'private'

        login(session=session, email=other_account.email, password='OtherPass123!')

        assert 'draft' not in session
        assert current_principal(session=session) == other_account

    def test_logout(self, account, session):
        login(session=session, email=account.email, password='TestPass123!')
        key = session.session_key

        logout(session=session)

        assert current_principal(session=session) is None
        assert not AccountSession.objects.filter(session_key=key).exists()

    def test_logout_is_idempotent(self, session):
        """Logging out an anonymous session is a no-op."""
        logout(session=session)
        logout(session=session)

        assert current_principal(session=session) is None


# ============================================================================
# PASSWORD RESET TESTS
# ============================================================================

@pytest.mark.django_db
class TestPasswordReset:
    """Test issuing, validating and consuming reset tokens."""

    def test_request_reset_stores_digest_and_sends_email(self, account, mailoutbox):
        token = request_reset(email=account.email)

        account.refresh_from_db()
        assert account.password_reset_token == hashlib.sha256(token.encode()).hexdigest()
        assert account.password_reset_expires > timezone.now()
        assert len(mailoutbox) == 1
        assert mailoutbox[0].to == [account.email]
        assert token in mailoutbox[0].body

    def test_request_reset_unknown_email(self, db, mailoutbox):
        with pytest.raises(AccountNotFoundError):
            request_reset(email='nobody@example.com')

        assert mailoutbox == []

    def test_request_reset_unknown_email_concealed(self, db, settings, mailoutbox):
        settings.ACCOUNTS_CONCEAL_ACCOUNT_EXISTENCE = True

        assert request_reset(email='nobody@example.com') is None
        assert mailoutbox == []

    def test_request_reset_malformed_email(self, db, settings, mailoutbox):
        """Malformed email is rejected even when unknown emails are concealed."""
        settings.ACCOUNTS_CONCEAL_ACCOUNT_EXISTENCE = True

        with pytest.raises(ValidationFailedError) as exc:
            request_reset(email='not-an-email')

        assert [error.field for error in exc.value.errors] == ['email']
        assert mailoutbox == []

    def test_validate_reset_token_window(self, account):
        """Valid on [T, T + TTL), invalid from T + TTL on."""
        issued_at = timezone.now()
        ttl = timedelta(seconds=settings.PASSWORD_RESET_TIMEOUT)
        token = request_reset(email=account.email, now=issued_at)

        assert validate_reset_token(token=token, now=issued_at) == account
        assert validate_reset_token(
            token=token, now=issued_at + ttl - timedelta(microseconds=1)
        ) == account
        with pytest.raises(InvalidOrExpiredTokenError):
            validate_reset_token(token=token, now=issued_at + ttl)

    def test_validate_unknown_token(self, db):
        with pytest.raises(InvalidOrExpiredTokenError):
            validate_reset_token(token='not-a-token')

    def test_consume_reset(self, account_with_reset_token, session, mailoutbox):
        """New password is stored, token cleared and the account logged in."""
        account = consume_reset(
            session=session,
            token='valid-reset-token-12345',
            new_password='NewPass123!',
        )

        account.refresh_from_db()
        assert account.check_password('NewPass123!')
        assert account.password_reset_token is None
        assert account.password_reset_expires is None
        assert current_principal(session=session) == account
        assert mailoutbox[-1].subject == 'Your password has been changed'

    def test_consume_reset_is_single_use(self, account_with_reset_token, session_factory):
        consume_reset(
            session=session_factory(),
            token='valid-reset-token-12345',
            new_password='NewPass123!',
        )

        with pytest.raises(InvalidOrExpiredTokenError):
            consume_reset(
                session=session_factory(),
                token='valid-reset-token-12345',
                new_password='Another123!',
            )

        account_with_reset_token.refresh_from_db()
        assert account_with_reset_token.check_password('NewPass123!')

    def test_consume_expired_token(self, account_with_reset_token, session):
        with pytest.raises(InvalidOrExpiredTokenError):
            consume_reset(
                session=session,
                token='valid-reset-token-12345',
                new_password='NewPass123!',
                now=timezone.now() + timedelta(hours=2),
            )

        account_with_reset_token.refresh_from_db()
        assert account_with_reset_token.check_password('OldPass123!')

    def test_consume_reset_rejects_short_password(self, account_with_reset_token, session):
        """Validation runs before the token is spent."""
        with pytest.raises(ValidationFailedError):
            consume_reset(session=session, token='valid-reset-token-12345', new_password='abc')

        account_with_reset_token.refresh_from_db()
        assert account_with_reset_token.password_reset_token is not None

    def test_mail_failure_keeps_password_change(
        self, account_with_reset_token, session, monkeypatch, caplog
    ):
        """Failed confirmation email is logged, the reset still stands."""
        def broken_send_mail(*args, **kwargs):
            raise SMTPException('relay down')

        monkeypatch.setattr('apps.accounts.mail.send_mail', broken_send_mail)
        monkeypatch.setattr(logging.getLogger('apps'), 'propagate', True)

        with caplog.at_level(logging.ERROR, logger='apps.accounts.notifications'):
            account = consume_reset(
                session=session,
                token='valid-reset-token-12345',
                new_password='NewPass123!',
            )

        account.refresh_from_db()
        assert account.check_password('NewPass123!')
        assert current_principal(session=session) == account
        assert 'password_changed' in caplog.text


# ============================================================================
# PROFILE MANAGEMENT TESTS
# ============================================================================

@pytest.mark.django_db
class TestProfileManagement:
    """Test profile, password and provider link changes."""

    def test_update_profile(self, account):
        updated = update_profile(
            account_id=account.pk,
            fields=ProfileUpdate(
                email='New@Example.com',
                name='New Name',
                gender='female',
                location='Brno',
                website='https://new.example.com',
            ),
        )

        assert updated.email == 'new@example.com'
        assert updated.name == 'New Name'
        assert updated.gender == 'female'
        assert updated.location == 'Brno'
        assert updated.website == 'https://new.example.com'

    def test_update_profile_absent_fields_clear(self, account):
        """Omitted fields become empty instead of keeping their value."""
        update_profile(
            account_id=account.pk,
            fields=ProfileUpdate(email=account.email, name='Only Name'),
        )

        account.refresh_from_db()
        assert account.name == 'Only Name'
        assert account.website == ''
        assert account.location == ''

    def test_update_profile_duplicate_email(self, account, other_account):
        with pytest.raises(DuplicateEmailError):
            update_profile(
                account_id=account.pk,
                fields=ProfileUpdate(email=other_account.email),
            )

        account.refresh_from_db()
        assert account.email == 'testuser@example.com'
        assert account.name == 'Test User'

    def test_update_profile_invalid_email(self, account):
        with pytest.raises(ValidationFailedError):
            update_profile(account_id=account.pk, fields=ProfileUpdate(email=''))

    def test_update_profile_missing_account(self, db):
        with pytest.raises(AccountNotFoundError):
            update_profile(account_id=uuid4(), fields=ProfileUpdate(email='x@example.com'))

    def test_change_password(self, account):
        change_password(account_id=account.pk, new_password='Changed123!')

        account.refresh_from_db()
        assert account.check_password('Changed123!')
        assert not account.check_password('TestPass123!')

    def test_change_password_missing_account(self, db):
        with pytest.raises(AccountNotFoundError):
            change_password(account_id=uuid4(), new_password='Changed123!')

    def test_change_password_ends_other_sessions(self, account, session_factory):
        """The changing session stays, all other sessions are logged out."""
        current, elsewhere = session_factory(), session_factory()
        login(session=current, email=account.email, password='TestPass123!')
        login(session=elsewhere, email=account.email, password='TestPass123!')

        change_password(account_id=account.pk, new_password='Changed123!', session=current)

        assert current_principal(session=current) == account
        assert current_principal(session=elsewhere) is None

    def test_link_provider_replaces_existing_link(self, account):
        link_provider(account_id=account.pk, provider='github', token='first')
        link_provider(account_id=account.pk, provider='github', token='second')

        links = ProviderLink.objects.filter(account=account)
        assert links.count() == 1
        assert links.get().token == 'second'

    def test_unlink_provider(self, account):
        link_provider(account_id=account.pk, provider='github', token='gh-token')
        link_provider(account_id=account.pk, provider='google', token='g-token')

        unlink_provider(account_id=account.pk, provider='github')

        providers = set(account.provider_links.values_list('provider', flat=True))
        assert providers == {'google'}

    def test_unlink_unlinked_provider_is_noop(self, account):
        link_provider(account_id=account.pk, provider='github', token='gh-token')

        unlink_provider(account_id=account.pk, provider='twitter')

        providers = list(account.provider_links.values_list('provider', 'token'))
        assert providers == [('github', 'gh-token')]

    def test_unlink_missing_account(self, db):
        with pytest.raises(AccountNotFoundError):
            unlink_provider(account_id=uuid4(), provider='github')


# ============================================================================
# END-TO-END SCENARIO
# ============================================================================

@pytest.mark.django_db
def test_signup_login_reset_scenario(session_factory, mailoutbox):
    """Signup, duplicate signup, login, reset, login with the new password."""
    account = signup(email='a@x.com', password='secret1')

    with pytest.raises(DuplicateEmailError):
        signup(email='a@x.com', password='other2')
    assert User.objects.count() == 1

    session = session_factory()
    assert login(session=session, email='a@x.com', password='secret1') == account
    assert current_principal(session=session) == account

    token = request_reset(email='a@x.com')
    consume_reset(session=session_factory(), token=token, new_password='secret2')

    with pytest.raises(InvalidCredentialsError):
        login(session=session_factory(), email='a@x.com', password='secret1')
    assert login(session=session_factory(), email='a@x.com', password='secret2') == account


# ============================================================================
# CONCURRENCY TESTS
# ============================================================================

class TestConcurrency(TransactionTestCase):
    """Test concurrency protection with real database transactions."""

    def test_concurrent_signups_create_one_account(self):
        """Simultaneous signups for one email: one wins, the rest are duplicates."""
        results = []
        errors = []
        start = threading.Barrier(5)

        def signup_in_thread(index):
            try:
                start.wait()
                results.append(signup(email='race@example.com', password=f'secret{index}'))
            except DuplicateEmailError as e:
                errors.append(e)
            finally:
                connection.close()

        threads = [
            threading.Thread(target=signup_in_thread, args=(index,))
            for index in range(5)
        ]

        for thread in threads:
            thread.start()

        for thread in threads:
            thread.join()

        # Verify: exactly one account created, four duplicates rejected
        assert len(results) == 1
        assert len(errors) == 4

        stored = User.objects.get(email='race@example.com')
        assert stored.pk == results[0].pk

    def test_concurrent_reset_consumption_spends_token_once(self):
        """Simultaneous resets with one token: one succeeds, the rest are rejected."""
        account = User.objects.create_user(email='reset-race@example.com', password='OldPass123!')
        account.password_reset_token = digest_reset_token('shared-reset-token')
        account.password_reset_expires = timezone.now() + timedelta(hours=1)
        account.save()

        store = import_module(settings.SESSION_ENGINE).SessionStore
        results = []
        errors = []
        start = threading.Barrier(5)

        def reset_in_thread(index):
            try:
                start.wait()
                results.append(consume_reset(
                    session=store(),
                    token='shared-reset-token',
                    new_password=f'NewPass{index}!',
                ))
            except InvalidOrExpiredTokenError as e:
                errors.append(e)
            finally:
                connection.close()

        threads = [
            threading.Thread(target=reset_in_thread, args=(index,))
            for index in range(5)
        ]

        for thread in threads:
            thread.start()

        for thread in threads:
            thread.join()

        # Verify: token spent exactly once
        assert len(results) == 1
        assert len(errors) == 4

        account.refresh_from_db()
        assert account.password_reset_token is None
        winners = [f'NewPass{index}!' for index in range(5) if account.check_password(f'NewPass{index}!')]
        assert len(winners) == 1

    def test_concurrent_updates_no_lost_updates(self):
        """Read-modify-write updates on one account serialize on the row lock."""
        account = User.objects.create_user(email='update-race@example.com', password='TestPass123!')
        completed = []
        start = threading.Barrier(5)

        def append_mark(user):
            user.name = user.name + 'x'

        def update_in_thread():
            try:
                start.wait()
                credential_store.update_account(account_id=account.pk, mutate=append_mark)
                completed.append(True)
            finally:
                connection.close()

        threads = [threading.Thread(target=update_in_thread) for _ in range(5)]

        for thread in threads:
            thread.start()

        for thread in threads:
            thread.join()

        # Every update applied on top of the previous one
        assert len(completed) == 5
        account.refresh_from_db()
        assert account.name == 'xxxxx'
