"""
Profile management service.

Mutations on an already authenticated principal, addressed by its id.
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID
import logging

from django.contrib.sessions.backends.base import SessionBase

from apps.accounts.models import ProviderLink, User
from apps.accounts.validation import (
    normalize_email,
    require_valid,
    validate_email_address,
    validate_new_password,
)

from . import credential_store
from .passwords import hash_password
from .session_authentication import refresh_session_hash

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ('name', 'gender', 'location', 'website')


@dataclass(frozen=True)
class ProfileUpdate:
    """
    Submitted profile form.

    ``email`` is required. Any profile field left as None is cleared to an
    empty string, not kept.
    """

    email: str
    name: Optional[str] = None
    gender: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None


def update_profile(*, account_id: UUID, fields: ProfileUpdate) -> User:
    """
    Overwrite email and profile fields.

    Raises:
        ValidationFailedError: If the email is not valid
        AccountNotFoundError: If the account no longer exists
        DuplicateEmailError: If the email belongs to another account
    """
    email = normalize_email(fields.email)
    require_valid(validate_email_address(email))

    def apply(user):
        user.email = email
        for name in PROFILE_FIELDS:
            setattr(user, name, getattr(fields, name) or '')

    account = credential_store.update_account(account_id=account_id, mutate=apply)
    logger.info("Profile of account %s updated", account_id)
    return account


def change_password(
    *,
    account_id: UUID,
    new_password: str,
    session: Optional[SessionBase] = None
) -> None:
    """
    Replace the account's password.

    Other sessions of the account stop authenticating; ``session``, when
    given, stays logged in.

    Raises:
        ValidationFailedError: If the password fails validation
        AccountNotFoundError: If the account no longer exists
    """
    require_valid(validate_new_password(new_password))
    password_hash = hash_password(new_password)

    def set_password(user):
        user.password = password_hash

    account = credential_store.update_account(account_id=account_id, mutate=set_password)
    logger.info("Password of account %s changed", account_id)

    if session is not None:
        refresh_session_hash(session=session, account=account)


def link_provider(*, account_id: UUID, provider: str, token: str) -> ProviderLink:
    """Link (or relink) a third-party provider to the account."""
    link = credential_store.upsert_provider_link(
        account_id=account_id,
        provider=provider,
        token=token,
    )
    logger.info("Account %s linked %s", account_id, provider)
    return link


def unlink_provider(*, account_id: UUID, provider: str) -> None:
    """
    Remove the account's link for ``provider``; unlinked providers are a no-op.

    Raises:
        AccountNotFoundError: If the account no longer exists
    """
    removed = credential_store.remove_provider_link(account_id=account_id, provider=provider)
    if removed:
        logger.info("Account %s unlinked %s", account_id, provider)
