from django.contrib.auth.base_user import AbstractBaseUser, BaseUserManager
from django.db import models
import uuid


class UserManager(BaseUserManager):
    """Manager for email-based accounts."""

    @classmethod
    def normalize_email(cls, email):
        """Trim and lower-case the whole address (dots are kept)."""
        return (email or '').strip().lower()

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError('Email is required')

        user = self.model(email=self.normalize_email(email), **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user


class User(AbstractBaseUser):
    """Account with local credentials, profile and provider links."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(unique=True, max_length=255)

    # Profile
    name = models.CharField(max_length=100, blank=True)
    gender = models.CharField(max_length=30, blank=True)
    location = models.CharField(max_length=100, blank=True)
    website = models.CharField(max_length=255, blank=True)

    # Outstanding password reset (digest only, never the raw token)
    password_reset_token = models.CharField(max_length=64, blank=True, null=True, db_index=True)
    password_reset_expires = models.DateTimeField(null=True, blank=True)

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = UserManager()

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    class Meta:
        db_table = 'users'
        indexes = [
            models.Index(fields=['created_at'], name='users_created_at_idx'),
        ]

    def __str__(self):
        return self.email

    def clear_password_reset(self):
        self.password_reset_token = None
        self.password_reset_expires = None


class ProviderLink(models.Model):
    """Third-party identity provider linked to an account."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    account = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='provider_links',
    )
    provider = models.CharField(max_length=50)
    token = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'provider_links'
        constraints = [
            models.UniqueConstraint(
                fields=['account', 'provider'],
                name='unique_provider_per_account',
            ),
        ]

    def __str__(self):
        return f"{self.provider} → {self.account_id}"


class AccountSession(models.Model):
    """
    Session-store key currently authenticated as an account.

    ``account_id`` is a plain UUID so rows outlive the account row until
    its sessions have been revoked.
    """

    session_key = models.CharField(max_length=40, unique=True)
    account_id = models.UUIDField(db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'account_sessions'

    def __str__(self):
        return f"{self.session_key} → {self.account_id}"
