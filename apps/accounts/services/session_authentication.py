"""
Session authentication service.

Every operation takes the caller's session explicitly. A session is
Anonymous until ``start_session`` attaches a principal and goes back to
Anonymous on logout, on deletion of its account, or when the account's
password changes (its stored auth hash stops matching).

Password reset lives here as well since a successful reset logs the
account in.
"""

from datetime import datetime
from importlib import import_module
from typing import Optional
import logging

from django.conf import settings
from django.contrib.sessions.backends.base import SessionBase
from django.dispatch import receiver
from django.utils import timezone
from django.utils.crypto import constant_time_compare

from apps.accounts.models import AccountSession, User
from apps.accounts.notifications import (
    PASSWORD_CHANGED,
    PASSWORD_RESET_REQUESTED,
    Notification,
    build_reset_url,
    notify,
)
from apps.accounts.signals import account_deleted
from apps.accounts.validation import (
    normalize_email,
    require_valid,
    validate_email_address,
    validate_new_password,
)

from . import credential_store
from .exceptions import (
    AccountNotFoundError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
)
from .passwords import hash_password, verify_password
from .reset_tokens import digest_reset_token, generate_reset_token, reset_token_expiry

logger = logging.getLogger(__name__)

ACCOUNT_SESSION_KEY = '_account_id'
HASH_SESSION_KEY = '_account_auth_hash'

INVALID_CREDENTIALS_MESSAGE = 'Invalid email or password.'


# =============================================================================
# Session state
# =============================================================================

def start_session(*, session: SessionBase, account: User) -> None:
    """
    Attach ``account`` as the session principal.

    The session key is always rotated; data from a different principal is
    dropped first.
    """
    previous_key = session.session_key
    if session.get(ACCOUNT_SESSION_KEY) not in (None, str(account.pk)):
        session.flush()
    session.cycle_key()
    if previous_key:
        AccountSession.objects.filter(session_key=previous_key).delete()

    session[ACCOUNT_SESSION_KEY] = str(account.pk)
    session[HASH_SESSION_KEY] = account.get_session_auth_hash()
    session.save()
    AccountSession.objects.update_or_create(
        session_key=session.session_key,
        defaults={'account_id': account.pk},
    )

    now = timezone.now()
    credential_store.touch_last_login(account_id=account.pk, when=now)
    account.last_login = now


def current_principal(*, session: SessionBase) -> Optional[User]:
    """Return the authenticated account, or None for an anonymous session."""
    account_id = session.get(ACCOUNT_SESSION_KEY)
    if account_id is None:
        return None

    account = credential_store.find_by_id(account_id)
    if (
        account is None
        or not account.is_active
        or not constant_time_compare(
            session.get(HASH_SESSION_KEY, ''),
            account.get_session_auth_hash(),
        )
    ):
        logger.info("Dropping stale session for account %s", account_id)
        _end_session(session)
        return None
    return account


def refresh_session_hash(*, session: SessionBase, account: User) -> None:
    """Keep ``session`` valid after ``account`` changed its own password."""
    if session.get(ACCOUNT_SESSION_KEY) == str(account.pk):
        session[HASH_SESSION_KEY] = account.get_session_auth_hash()
        session.save()


def _end_session(session: SessionBase) -> None:
    if session.session_key:
        AccountSession.objects.filter(session_key=session.session_key).delete()
    session.flush()


@receiver(account_deleted)
def revoke_account_sessions(sender, account_id, **kwargs):
    """Delete every stored session that references a deleted account."""
    store = import_module(settings.SESSION_ENGINE).SessionStore
    session_keys = list(
        AccountSession.objects
        .filter(account_id=account_id)
        .values_list('session_key', flat=True)
    )
    for session_key in session_keys:
        store().delete(session_key)
    AccountSession.objects.filter(account_id=account_id).delete()
    logger.info("Revoked %d session(s) of account %s", len(session_keys), account_id)


# =============================================================================
# Login / logout
# =============================================================================

def login(*, session: SessionBase, email: str, password: str) -> User:
    """
    Authenticate with email and password and start a session.

    Unknown emails and wrong passwords fail identically.

    Raises:
        ValidationFailedError: If the email is malformed
        InvalidCredentialsError: If credentials are invalid
    """
    email = normalize_email(email)
    require_valid(validate_email_address(email))

    account = credential_store.find_by_email(email)

    if account is None:
        # Unknown emails cost one hash, same as a wrong password
        hash_password(password)
        raise InvalidCredentialsError(INVALID_CREDENTIALS_MESSAGE)

    if not verify_password(password, account.password) or not account.is_active:
        raise InvalidCredentialsError(INVALID_CREDENTIALS_MESSAGE)

    start_session(session=session, account=account)
    logger.info("Account %s logged in", account.pk)
    return account


def logout(*, session: SessionBase) -> None:
    """End the session; a no-op for anonymous sessions."""
    account_id = session.get(ACCOUNT_SESSION_KEY)
    _end_session(session)
    if account_id is not None:
        logger.info("Account %s logged out", account_id)


# =============================================================================
# Password reset
# =============================================================================

def request_reset(*, email: str, now: Optional[datetime] = None) -> Optional[str]:
    """
    Issue a password reset token and request the reset email.

    Returns:
        The raw token, or None when the account is unknown and
        ACCOUNTS_CONCEAL_ACCOUNT_EXISTENCE is enabled

    Raises:
        ValidationFailedError: If the email is malformed
        AccountNotFoundError: If no active account has this email
    """
    email = normalize_email(email)
    require_valid(validate_email_address(email))

    now = now or timezone.now()
    account = credential_store.find_by_email(email)
    if account is None or not account.is_active:
        if settings.ACCOUNTS_CONCEAL_ACCOUNT_EXISTENCE:
            logger.info("Password reset requested for unknown email")
            return None
        raise AccountNotFoundError(f"No account with that email address: {email}")

    token = generate_reset_token()
    expires_at = reset_token_expiry(now)

    def set_reset_token(user):
        user.password_reset_token = digest_reset_token(token)
        user.password_reset_expires = expires_at

    account = credential_store.update_account(account_id=account.pk, mutate=set_reset_token)
    logger.info("Password reset token issued for account %s", account.pk)

    notify(Notification(
        to=account.email,
        template_key=PASSWORD_RESET_REQUESTED,
        params={
            'email': account.email,
            'token': token,
            'expires_at': expires_at.isoformat(),
            'reset_url': build_reset_url(token),
        },
    ))
    return token


def validate_reset_token(*, token: str, now: Optional[datetime] = None) -> User:
    """
    Raises:
        InvalidOrExpiredTokenError: If the token is unknown, spent or expired
    """
    account = credential_store.find_by_valid_reset_token(token, now or timezone.now())
    if account is None:
        raise InvalidOrExpiredTokenError('Password reset token is invalid or has expired.')
    return account


def consume_reset(
    *,
    session: SessionBase,
    token: str,
    new_password: str,
    now: Optional[datetime] = None
) -> User:
    """
    Set a new password with a reset token and log the account in.

    Steps run in order, each committed before the next:
    validate the password, spend the token and store the new hash,
    start the session, send the confirmation email. A failed email is
    logged and leaves the password change in place.

    Raises:
        ValidationFailedError: If the new password fails validation
        InvalidOrExpiredTokenError: If the token is unknown, spent or expired
    """
    require_valid(validate_new_password(new_password))
    password_hash = hash_password(new_password)

    def set_password(user):
        user.password = password_hash

    account = credential_store.consume_reset_token(
        token=token,
        now=now or timezone.now(),
        mutate=set_password,
    )
    logger.info("Password reset completed for account %s", account.pk)

    start_session(session=session, account=account)

    notify(Notification(
        to=account.email,
        template_key=PASSWORD_CHANGED,
        params={'email': account.email},
    ))
    return account
