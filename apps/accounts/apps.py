from django.apps import AppConfig


class AccountsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.accounts'
    label = 'accounts'

    def ready(self):
        # Connect signal receivers
        from . import mail  # noqa: F401
        from .services import session_authentication  # noqa: F401
