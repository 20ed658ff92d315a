"""Account creation and deletion service."""

from uuid import UUID
import logging

from apps.accounts.models import User
from apps.accounts.signals import account_deleted
from apps.accounts.validation import (
    normalize_email,
    require_valid,
    validate_email_address,
    validate_new_password,
)

from . import credential_store
from .exceptions import DuplicateEmailError
from .passwords import hash_password

logger = logging.getLogger(__name__)


def signup(*, email: str, password: str) -> User:
    """
    Create a local account.

    An existing account with the same email is never touched: the new
    registration is rejected instead.

    Args:
        email: Raw email address (normalized here)
        password: Raw password (hashed here)

    Returns:
        Created User instance

    Raises:
        ValidationFailedError: If email or password fail validation
        DuplicateEmailError: If the email is already registered
    """
    email = normalize_email(email)
    require_valid(
        validate_email_address(email),
        validate_new_password(password),
    )

    logger.debug("Registering %s", email)
    try:
        account = credential_store.insert_account(
            email=email,
            password_hash=hash_password(password),
        )
    except DuplicateEmailError:
        logger.info("Account already exists: %s", email)
        raise

    logger.info("Account with email %s successfully registered", email)
    return account


def delete_account(*, account_id: UUID) -> None:
    """
    Delete an account and revoke its sessions.

    Session revocation is done by ``account_deleted`` receivers.

    Raises:
        AccountNotFoundError: If the account does not exist
    """
    credential_store.remove_account(account_id=account_id)
    logger.info("Account %s deleted", account_id)
    account_deleted.send(sender=User, account_id=account_id)
