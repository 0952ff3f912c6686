import logging

from django.db.models.signals import post_delete, post_migrate, post_save
from django.core.signals import setting_changed
from django.dispatch import receiver

from .models import ROOT_SITE_ID, SiteMailSettings
from .resolver import get_resolver, reset_resolver

logger = logging.getLogger(__name__)


def on_mail_settings_written(site_id):
    """Drop cached configurations affected by a write to ``site_id``.

    Other sites may fall back to the main site's settings, so a write to the
    main site clears every entry. Any other write only drops its own entry.
    """
    cache = get_resolver().cache
    if site_id == ROOT_SITE_ID:
        return cache.invalidate_all()
    return cache.invalidate(cache.key_for(site_id))


def on_application_flush():
    # Settings may have changed as well, so rebuild the fallback snapshot.
    reset_resolver()
    return get_resolver().cache.invalidate_all()


@receiver(post_save, sender=SiteMailSettings)
@receiver(post_delete, sender=SiteMailSettings)
def invalidate_mail_config_cache(sender, instance, **kwargs):
    logger.info(
        "Mail settings changed, invalidating cache",
        extra={"site_id": instance.site_id},
    )
    on_mail_settings_written(instance.site_id)


@receiver(setting_changed)
def reset_resolver_on_setting_change(setting, **kwargs):
    if setting.startswith("MAILCONFIG_") or setting == "CACHES":
        reset_resolver()


def flush_after_migrate(sender, **kwargs):
    on_application_flush()


def connect_flush_signals(app_config):
    post_migrate.connect(
        flush_after_migrate,
        sender=app_config,
        dispatch_uid="mailconfig.flush_after_migrate",
    )
