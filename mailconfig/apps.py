from django.apps import AppConfig


class MailConfigConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "mailconfig"
    verbose_name = "Mail Configuration"

    def ready(self):
        # Registers the cache invalidation receivers.
        from . import signals

        signals.connect_flush_signals(self)
