"""Password hashing contract over Django's configured hashers."""

from django.contrib.auth.hashers import check_password, make_password


def hash_password(raw_password: str) -> str:
    """Return a salted, one-way encoding of ``raw_password``."""
    return make_password(raw_password)


def verify_password(raw_password: str, encoded: str) -> bool:
    """Check ``raw_password`` against a stored encoding.

    Unusable or missing encodings never verify.
    """
    if not encoded:
        return False
    return check_password(raw_password, encoded)


def unusable_password() -> str:
    return make_password(None)
