"""
Account lifecycle signals.

notification_requested
    kwargs: ``notification`` (apps.accounts.notifications.Notification)
account_deleted
    kwargs: ``account_id`` (UUID)
"""

from django.dispatch import Signal

notification_requested = Signal()
account_deleted = Signal()
