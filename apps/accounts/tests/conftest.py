import pytest
from datetime import timedelta
from importlib import import_module
from django.conf import settings
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient
from apps.accounts.models import User
from apps.accounts.services.reset_tokens import digest_reset_token


@pytest.fixture
def api_client():
    """Return an unauthenticated API client."""
    return APIClient()


@pytest.fixture
def session_factory(db):
    """Return a callable producing fresh, empty sessions."""
    store = import_module(settings.SESSION_ENGINE).SessionStore
    return lambda: store()


@pytest.fixture
def session(session_factory):
    """Return a fresh anonymous session."""
    return session_factory()


@pytest.fixture
def account(db):
    """Create and return a test account."""
    return User.objects.create_user(
        email='testuser@example.com',
        password='TestPass123!',
        name='Test User',
        location='Prague',
        website='https://example.com',
    )


@pytest.fixture
def other_account(db):
    """Create and return another test account."""
    return User.objects.create_user(
        email='otheruser@example.com',
        password='OtherPass123!',
        name='Other User',
    )


@pytest.fixture
def inactive_account(db):
    """Create and return an inactive account."""
    return User.objects.create_user(
        email='inactive@example.com',
        password='TestPass123!',
        is_active=False,
    )


@pytest.fixture
def account_with_reset_token(db):
    """Create an account with an outstanding reset token ('valid-reset-token-12345')."""
    account = User.objects.create_user(
        email='resetuser@example.com',
        password='OldPass123!',
    )
    account.password_reset_token = digest_reset_token('valid-reset-token-12345')
    account.password_reset_expires = timezone.now() + timedelta(hours=1)
    account.save()
    return account


@pytest.fixture
def authenticated_client(api_client, account):
    """Return an API client logged in as ``account`` through the login endpoint."""
    response = api_client.post(
        reverse('accounts:login'),
        {'email': account.email, 'password': 'TestPass123!'},
    )
    assert response.status_code == 200
    return api_client
