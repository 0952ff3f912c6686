import logging
from dataclasses import dataclass, field

from django.conf import settings
from django.utils.module_loading import import_string

from .models import ROOT_SITE_ID, SiteMailSettings
from .types import GLOBAL_SCOPE, ConfigCandidate

logger = logging.getLogger(__name__)


def _to_port(value):
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric fallback SMTP port: {value!r}")
        return None


@dataclass(frozen=True)
class StaticFallback:
    """Process-wide mail defaults, read once from ``MAILCONFIG_FALLBACK``.

    Recognised keys: ``SMTP_SERVER``, ``SMTP_PORT``, ``SMTP_USER``,
    ``SMTP_PASSWORD``, ``ADMIN_EMAIL``, ``ADMIN_NAME`` and ``CUSTOM_DSN``.
    """

    smtp_server: str | None = None
    smtp_port: int | None = None
    smtp_user: str | None = None
    smtp_password: str | None = field(default=None, repr=False)
    admin_email: str | None = None
    admin_name: str | None = None
    custom_dsn: str | None = None

    @classmethod
    def from_settings(cls):
        data = getattr(settings, "MAILCONFIG_FALLBACK", None) or {}
        return cls(
            smtp_server=data.get("SMTP_SERVER") or None,
            smtp_port=_to_port(data.get("SMTP_PORT")),
            smtp_user=data.get("SMTP_USER") or None,
            smtp_password=data.get("SMTP_PASSWORD") or None,
            admin_email=data.get("ADMIN_EMAIL") or None,
            admin_name=data.get("ADMIN_NAME") or None,
            custom_dsn=data.get("CUSTOM_DSN") or None,
        )

    def as_candidate(self):
        return ConfigCandidate(
            scope=GLOBAL_SCOPE,
            smtp_server=self.smtp_server,
            smtp_port=self.smtp_port,
            smtp_user=self.smtp_user,
            smtp_password=self.smtp_password,
            admin_email=self.admin_email,
            admin_name=self.admin_name,
            custom_dsn=self.custom_dsn,
        )


def site_record(site_id):
    """Return the stored settings of ``site_id`` as a candidate, or None."""
    record = SiteMailSettings.objects.filter(site_id=site_id).first()
    if record is None:
        return None
    return ConfigCandidate.from_record(record)


def root_site_record():
    return site_record(ROOT_SITE_ID)


def default_site_id():
    return getattr(settings, "MAILCONFIG_DEFAULT_SITE_ID", ROOT_SITE_ID)


def current_site_id():
    """Site id of the current request, as told by ``MAILCONFIG_SITE_RESOLVER``.

    Single-site deployments always get the main site.
    """
    if not getattr(settings, "MAILCONFIG_MULTISITE", False):
        return ROOT_SITE_ID

    path = getattr(settings, "MAILCONFIG_SITE_RESOLVER", None)
    resolver = import_string(path) if path else default_site_id
    site_id = resolver()
    return ROOT_SITE_ID if site_id is None else int(site_id)
