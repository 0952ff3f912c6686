"""Effective mail configuration resolution.

Precedence: the current site's settings when complete, else the main site's
settings when complete, else the static fallback from ``MAILCONFIG_FALLBACK``,
field by field. A half-filled result raises ``IncompleteConfigurationError``
unless the fallback provides a custom DSN; a wholly empty result means
"unconfigured" and is returned as is.
"""

import logging

from django.conf import settings

from .cache import CacheStatus, MailConfigCache
from .exceptions import IncompleteConfigurationError
from .models import ROOT_SITE_ID
from .sources import StaticFallback, current_site_id, root_site_record, site_record
from .types import SMTP_FIELDS, Completeness, MailConfiguration

logger = logging.getLogger(__name__)

# Any of these set without a complete configuration is a misconfiguration.
PARTIAL_MARKERS = ("smtp_server", "smtp_user", "smtp_password", "smtp_port")

RESOLVED_FIELDS = (
    "smtp_server",
    "smtp_port",
    "smtp_user",
    "smtp_password",
    "admin_email",
    "admin_name",
)


def check_completeness(candidate):
    if candidate is None:
        return Completeness.ABSENT
    if candidate.custom_dsn:
        return Completeness.COMPLETE
    if all(getattr(candidate, name) for name in SMTP_FIELDS):
        return Completeness.COMPLETE
    return Completeness.INCOMPLETE


def is_complete(candidate):
    return check_completeness(candidate) is Completeness.COMPLETE


def has_any_smtp_setting(candidate):
    if candidate is None:
        return False
    return any(getattr(candidate, name) for name in PARTIAL_MARKERS)


class MailConfigResolver:
    """Resolves and caches the mail configuration of a site.

    ``record_source`` maps a site id to its candidate (or None).
    ``root_record_source`` returns the main site's candidate; leave it None
    for single-site deployments. ``site_id_source`` names the current site
    when no site id is passed in.
    """

    def __init__(
        self,
        fallback,
        record_source=site_record,
        root_record_source=None,
        cache=None,
        site_id_source=current_site_id,
    ):
        self.fallback = fallback
        self.record_source = record_source
        self.root_record_source = root_record_source
        self.cache = cache if cache is not None else MailConfigCache()
        self.site_id_source = site_id_source

    @property
    def multisite(self):
        return self.root_record_source is not None

    def scope_for(self, site_id=None):
        """Site id whose settings apply: always the main site without multi-site."""
        if not self.multisite:
            return ROOT_SITE_ID
        if site_id is None:
            return self.site_id_source()
        return site_id

    def get_effective_mail_config(self, site_id=None):
        site_id = self.scope_for(site_id)

        key = self.cache.key_for(site_id)
        lookup = self.cache.lookup(key)
        if lookup.hit:
            return lookup.config

        config = self.resolve(site_id)

        if lookup.status is CacheStatus.ERROR:
            logger.info(
                "Skipping mail config cache store after a failed read",
                extra={"site_id": site_id},
            )
        else:
            self.cache.store(key, config)

        return config

    def select_candidate(self, site_id, candidate):
        if is_complete(candidate):
            return candidate

        if self.multisite and site_id != ROOT_SITE_ID:
            root_candidate = self.root_record_source()
            if is_complete(root_candidate):
                return root_candidate

        return None

    def resolve(self, site_id):
        """Resolve without touching the cache."""
        candidate = self.record_source(site_id)
        selected = self.select_candidate(site_id, candidate)
        if selected is not None:
            source, custom_dsn = selected, selected.custom_dsn or None
        else:
            # The fallback DSN is only adopted below, when the result is incomplete.
            source, custom_dsn = self.fallback.as_candidate(), None

        config = MailConfiguration(
            custom_dsn=custom_dsn,
            **{name: getattr(source, name) or None for name in RESOLVED_FIELDS},
        )

        if not is_complete(config):
            if self.fallback.custom_dsn:
                config = config.with_dsn(self.fallback.custom_dsn)
            elif has_any_smtp_setting(config):
                raise IncompleteConfigurationError(
                    f"SMTP configuration for site {site_id} is incomplete."
                )
            elif has_any_smtp_setting(candidate):
                # Half-filled site settings with nothing complete to fall back on.
                raise IncompleteConfigurationError(
                    f"SMTP settings of site {site_id} are incomplete."
                )

        logger.debug(
            "Resolved mail configuration",
            extra={
                "site_id": site_id,
                "source": "fallback" if source.is_global else source.scope,
            },
        )
        return config


_resolver = None


def build_resolver():
    root_record_source = None
    if getattr(settings, "MAILCONFIG_MULTISITE", False):
        root_record_source = root_site_record

    return MailConfigResolver(
        fallback=StaticFallback.from_settings(),
        root_record_source=root_record_source,
    )


def get_resolver():
    global _resolver
    if _resolver is None:
        _resolver = build_resolver()
    return _resolver


def reset_resolver():
    global _resolver
    _resolver = None


def get_effective_mail_config(site_id=None):
    return get_resolver().get_effective_mail_config(site_id)
