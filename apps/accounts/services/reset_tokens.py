"""Password reset token issuing and validity rules."""

from datetime import datetime, timedelta
import hashlib
import secrets

from django.conf import settings


def generate_reset_token() -> str:
    """Return a new URL-safe reset token from the OS CSPRNG."""
    return secrets.token_urlsafe(32)


def digest_reset_token(token: str) -> str:
    """Return the value persisted for ``token``."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def reset_token_ttl() -> timedelta:
    return timedelta(seconds=settings.PASSWORD_RESET_TIMEOUT)


def reset_token_expiry(issued_at: datetime) -> datetime:
    return issued_at + reset_token_ttl()


def is_reset_token_active(expires_at: datetime, now: datetime) -> bool:
    """A token is usable strictly before its expiry instant."""
    return expires_at is not None and now < expires_at
