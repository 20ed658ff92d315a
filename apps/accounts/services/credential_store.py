"""
Credential store.

The only writer of account rows. Email uniqueness is decided by the
database constraint and every read-modify-write runs under a row lock,
so the guarantees hold for any number of processes sharing the database.
"""

from datetime import datetime
from typing import Callable, Optional
from uuid import UUID
import functools
import logging

from django.db import DatabaseError, IntegrityError, transaction

from apps.accounts.models import ProviderLink, User

from .exceptions import (
    AccountNotFoundError,
    DuplicateEmailError,
    InvalidOrExpiredTokenError,
    StoreUnavailableError,
)
from .reset_tokens import digest_reset_token, is_reset_token_active

logger = logging.getLogger(__name__)

Mutation = Callable[[User], None]

DUPLICATE_EMAIL_MESSAGE = 'Account with that email address already exists.'


def is_unique_violation(error: IntegrityError) -> bool:
    """Return True when the IntegrityError indicates a unique-constraint conflict."""
    original = error.__cause__
    sqlstate = getattr(original, 'sqlstate', None) or getattr(original, 'pgcode', None)
    if sqlstate == '23505':
        return True
    message = str(original or error).lower()
    return 'duplicate' in message or 'unique constraint' in message


def _store_operation(func):
    """Report infrastructure faults as StoreUnavailableError."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except IntegrityError:
            raise
        except DatabaseError as exc:
            logger.error("Credential store failure in %s: %s", func.__name__, exc)
            raise StoreUnavailableError(f"Credential store unavailable: {exc}") from exc

    return wrapper


def _lock_account(account_id: UUID) -> User:
    try:
        return (
            User.objects
            .select_for_update()
            .get(id=account_id)
        )
    except User.DoesNotExist:
        raise AccountNotFoundError(f"Account with ID {account_id} not found")


# =============================================================================
# Lookups
# =============================================================================

@_store_operation
def find_by_email(email: str) -> Optional[User]:
    return User.objects.filter(email=User.objects.normalize_email(email)).first()


@_store_operation
def find_by_id(account_id: UUID) -> Optional[User]:
    return User.objects.filter(id=account_id).first()


@_store_operation
def find_by_valid_reset_token(token: str, now: datetime) -> Optional[User]:
    """
    Return the account holding ``token`` if it is still valid at ``now``.

    Unknown and expired tokens are indistinguishable to the caller.
    """
    return _reset_token_holder(User.objects.all(), token, now)


def _reset_token_holder(queryset, token: str, now: datetime) -> Optional[User]:
    if not token:
        return None
    user = (
        queryset
        .filter(password_reset_token=digest_reset_token(token), is_active=True)
        .first()
    )
    if user is None or not is_reset_token_active(user.password_reset_expires, now):
        return None
    return user


# =============================================================================
# Mutations
# =============================================================================

@_store_operation
def insert_account(*, email: str, password_hash: str, **profile) -> User:
    """
    Insert a new account.

    The unique index on ``email`` settles concurrent signups: exactly one
    INSERT wins, the others surface as DuplicateEmailError.

    Raises:
        DuplicateEmailError: If an account with this email already exists
    """
    try:
        with transaction.atomic():
            return User.objects.create(
                email=User.objects.normalize_email(email),
                password=password_hash,
                **profile
            )
    except IntegrityError as exc:
        if is_unique_violation(exc):
            raise DuplicateEmailError(DUPLICATE_EMAIL_MESSAGE) from exc
        raise


@_store_operation
def update_account(*, account_id: UUID, mutate: Mutation) -> User:
    """
    Apply ``mutate`` to the account under a row lock and persist it.

    Raises:
        AccountNotFoundError: If the account no longer exists
        DuplicateEmailError: If the change collides with another account's email
    """
    try:
        with transaction.atomic():
            user = _lock_account(account_id)
            mutate(user)
            user.save()
            return user
    except IntegrityError as exc:
        if is_unique_violation(exc):
            raise DuplicateEmailError(
                'The email address you have entered is already associated with an account.'
            ) from exc
        raise


@_store_operation
@transaction.atomic
def consume_reset_token(*, token: str, now: datetime, mutate: Mutation) -> User:
    """
    Check and spend a reset token in one locked transaction.

    A concurrent consumer blocks on the row lock and then no longer matches
    the cleared token, so a token is spent at most once.

    Raises:
        InvalidOrExpiredTokenError: If the token is unknown, spent or expired
    """
    user = _reset_token_holder(User.objects.select_for_update(), token, now)
    if user is None:
        raise InvalidOrExpiredTokenError('Password reset token is invalid or has expired.')

    mutate(user)
    user.clear_password_reset()
    user.save()
    return user


@_store_operation
@transaction.atomic
def remove_account(*, account_id: UUID) -> None:
    """
    Delete the account and its provider links.

    Raises:
        AccountNotFoundError: If the account does not exist
    """
    _lock_account(account_id)
    User.objects.filter(id=account_id).delete()


@_store_operation
@transaction.atomic
def touch_last_login(*, account_id: UUID, when: datetime) -> None:
    User.objects.filter(id=account_id).update(last_login=when)


# =============================================================================
# Provider links
# =============================================================================

@_store_operation
@transaction.atomic
def upsert_provider_link(*, account_id: UUID, provider: str, token: str) -> ProviderLink:
    """Create or replace the account's single link for ``provider``."""
    user = _lock_account(account_id)
    link, _ = ProviderLink.objects.update_or_create(
        account=user,
        provider=provider,
        defaults={'token': token},
    )
    return link


@_store_operation
@transaction.atomic
def remove_provider_link(*, account_id: UUID, provider: str) -> int:
    """Remove the link for ``provider``; returns how many rows went away."""
    user = _lock_account(account_id)
    deleted, _ = ProviderLink.objects.filter(account=user, provider=provider).delete()
    return deleted
