"""
Accounts App - Credentials and Sessions

Signup, email/password login and logout, time-boxed password reset,
profile and password changes, provider unlinking and account deletion.

Architecture:
- Models: User, ProviderLink, AccountSession
- Services: credential store, account lifecycle, session authentication,
  profile management (apps.accounts.services)
- Signals: notification_requested (email delivery), account_deleted
  (session revocation)
- Views: thin DRF function views under /api/auth/
"""
