"""Outbound account notifications (delivery is done by signal receivers)."""

from dataclasses import dataclass, field
from typing import Any, Dict
import logging

from django.conf import settings

from .signals import notification_requested

logger = logging.getLogger(__name__)

PASSWORD_RESET_REQUESTED = 'password_reset_requested'
PASSWORD_CHANGED = 'password_changed'


@dataclass(frozen=True)
class Notification:
    to: str
    template_key: str
    params: Dict[str, Any] = field(default_factory=dict)


def build_reset_url(token: str) -> str:
    return settings.ACCOUNTS_RESET_URL.format(token=token)


def notify(notification: Notification) -> bool:
    """
    Hand ``notification`` to every delivery receiver.

    Receiver failures are logged and never raised: the state change that
    triggered the notification has already been committed.

    Returns:
        True if every receiver succeeded
    """
    delivered = True
    responses = notification_requested.send_robust(
        sender=Notification,
        notification=notification,
    )
    for receiver, response in responses:
        if isinstance(response, Exception):
            delivered = False
            logger.error(
                "Delivery of '%s' notification to %s failed in %s: %s",
                notification.template_key,
                notification.to,
                getattr(receiver, '__qualname__', receiver),
                response,
                exc_info=response,
            )
    return delivered
