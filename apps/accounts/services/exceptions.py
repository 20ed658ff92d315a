"""Domain-specific exceptions for accounts services."""

from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class FieldError:
    """Single validation failure reported by the input validator."""

    field: str
    message: str

    def as_dict(self):
        return {'field': self.field, 'message': self.message}


class AccountsServiceError(Exception):
    """Base exception for accounts services."""
    pass


class ValidationFailedError(AccountsServiceError):
    """Raised when input fails validation before any mutation."""

    def __init__(self, errors: List[FieldError]):
        self.errors = list(errors)
        super().__init__(
            '; '.join(f"{error.field}: {error.message}" for error in self.errors)
        )


class DuplicateEmailError(AccountsServiceError):
    """Raised when an email is already used by another account."""
    pass


class InvalidCredentialsError(AccountsServiceError):
    """Raised when authentication credentials are invalid."""
    pass


class InvalidOrExpiredTokenError(AccountsServiceError):
    """Raised when a password reset token is unknown, consumed or expired."""
    pass


class AccountNotFoundError(AccountsServiceError):
    """Raised when the account does not exist (or vanished mid-operation)."""
    pass


class StoreUnavailableError(AccountsServiceError):
    """Raised when the credential store cannot be reached."""
    pass
