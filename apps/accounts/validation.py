"""
Input validation gate for account mutations.

Validators return lists of FieldError; services pass them to
``require_valid`` before touching the credential store.
"""

from typing import Iterable, List

from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError
from django.core.validators import validate_email

from apps.accounts.models import User
from apps.accounts.services.exceptions import FieldError, ValidationFailedError


def normalize_email(value: str) -> str:
    return User.objects.normalize_email(value)


def validate_email_address(email: str, *, field: str = 'email') -> List[FieldError]:
    if not email:
        return [FieldError(field, 'Email is not valid')]
    try:
        validate_email(email)
    except ValidationError:
        return [FieldError(field, 'Email is not valid')]
    return []


def validate_new_password(password: str, *, user=None, field: str = 'password') -> List[FieldError]:
    if not password:
        return [FieldError(field, 'Password cannot be blank')]
    try:
        validate_password(password, user=user)
    except ValidationError as exc:
        return [FieldError(field, message) for message in exc.messages]
    return []


def require_valid(*results: Iterable[FieldError]) -> None:
    """Raise ValidationFailedError when any validator reported a failure."""
    errors = [error for result in results for error in result]
    if errors:
        raise ValidationFailedError(errors)
