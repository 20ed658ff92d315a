"""Services for accounts business logic."""

from .exceptions import (
    AccountsServiceError,
    FieldError,
    ValidationFailedError,
    DuplicateEmailError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    AccountNotFoundError,
    StoreUnavailableError,
)
from .account_lifecycle import signup, delete_account
from .session_authentication import (
    login,
    logout,
    start_session,
    current_principal,
    request_reset,
    validate_reset_token,
    consume_reset,
)
from .profile_management import (
    ProfileUpdate,
    update_profile,
    change_password,
    link_provider,
    unlink_provider,
)

__all__ = [
    # Exceptions
    'AccountsServiceError',
    'FieldError',
    'ValidationFailedError',
    'DuplicateEmailError',
    'InvalidCredentialsError',
    'InvalidOrExpiredTokenError',
    'AccountNotFoundError',
    'StoreUnavailableError',
    # Account lifecycle
    'signup',
    'delete_account',
    # Sessions and password reset
    'login',
    'logout',
    'start_session',
    'current_principal',
    'request_reset',
    'validate_reset_token',
    'consume_reset',
    # Profile
    'ProfileUpdate',
    'update_profile',
    'change_password',
    'link_provider',
    'unlink_provider',
]
