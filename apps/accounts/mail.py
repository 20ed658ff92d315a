"""Email delivery of account notifications."""

import logging

from django.conf import settings
from django.core.mail import send_mail
from django.dispatch import receiver

from .notifications import PASSWORD_CHANGED, PASSWORD_RESET_REQUESTED
from .signals import notification_requested

logger = logging.getLogger(__name__)

SUBJECTS = {
    PASSWORD_RESET_REQUESTED: 'Reset your password',
    PASSWORD_CHANGED: 'Your password has been changed',
}

BODIES = {
    PASSWORD_RESET_REQUESTED: (
        'You are receiving this email because you (or someone else) have '
        'requested the reset of the password for your account {email}.\n\n'
        'Please open the following link to complete the process:\n\n'
        '{reset_url}\n\n'
        'The link is valid until {expires_at}. If you did not request this, '
        'please ignore this email and your password will remain unchanged.\n'
    ),
    PASSWORD_CHANGED: (
        'This is a confirmation that the password for your account {email} '
        'has just been changed.\n'
    ),
}


@receiver(notification_requested)
def deliver_notification(sender, notification, **kwargs):
    """Send ``notification`` by email; errors propagate to the dispatcher."""
    subject = SUBJECTS[notification.template_key]
    body = BODIES[notification.template_key].format(**notification.params)
    send_mail(
        subject,
        body,
        settings.DEFAULT_FROM_EMAIL,
        [notification.to],
        fail_silently=False,
    )
    logger.info("Sent '%s' email to %s", notification.template_key, notification.to)
