"""Best-effort cache of resolved mail configurations.

Entries live in a Django cache alias (``MAILCONFIG_CACHE_ALIAS``,
``"mailconfig"`` by default, ``default`` when that alias is missing). The
alias may share its store with other caches or a Celery broker, so the cache
is never cleared. ``invalidate_all`` bumps a generation counter instead;
entries are read and written with the current generation as cache
``version``, and entries of older generations expire with their TTL.

Backend failures never leave this module: they are logged and reported as
``CacheStatus.ERROR`` lookups or ``False`` results.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum

from django.conf import settings
from django.core.cache import DEFAULT_CACHE_ALIAS, caches

from .exceptions import CacheBackendError
from .types import MailConfiguration

logger = logging.getLogger(__name__)

MAIL_CONFIG_CACHE_TTL = 60 * 60 * 24
DEFAULT_CACHE_KEY_PREFIX = "mail_config_site_"
FIRST_GENERATION = 1


class CacheStatus(Enum):
    HIT = "hit"
    MISS = "miss"
    ERROR = "error"


@dataclass(frozen=True)
class CacheLookup:
    status: CacheStatus
    config: MailConfiguration | None = None
    error: CacheBackendError | None = None

    @property
    def hit(self):
        return self.status is CacheStatus.HIT


class MailConfigCache:
    def __init__(self, backend=None, alias=None, key_prefix=None, clock=time.time):
        self._backend = backend
        self.alias = alias or getattr(settings, "MAILCONFIG_CACHE_ALIAS", "mailconfig")
        self.key_prefix = key_prefix or getattr(
            settings, "MAILCONFIG_CACHE_KEY_PREFIX", DEFAULT_CACHE_KEY_PREFIX
        )
        self.clock = clock

    @property
    def backend(self):
        if self._backend is None:
            alias = self.alias if self.alias in settings.CACHES else DEFAULT_CACHE_ALIAS
            self._backend = caches[alias]
        return self._backend

    def key_for(self, site_id):
        return f"{self.key_prefix}{site_id}"

    @property
    def generation_key(self):
        return f"{self.key_prefix}generation"

    def _call(self, operation, *args, **kwargs):
        try:
            return getattr(self.backend, operation)(*args, **kwargs)
        except Exception as e:
            raise CacheBackendError(f"Mail config cache {operation} failed: {e}") from e

    def generation(self):
        """Current generation; raises ``CacheBackendError``."""
        generation = self._call("get", self.generation_key)
        if isinstance(generation, int) and generation >= FIRST_GENERATION:
            return generation
        return FIRST_GENERATION

    def lookup(self, key):
        try:
            entry = self._call("get", key, version=self.generation())
        except CacheBackendError as e:
            logger.warning(str(e), extra={"cache_key": key})
            return CacheLookup(CacheStatus.ERROR, error=e)

        if not isinstance(entry, dict) or not entry.get("config"):
            return CacheLookup(CacheStatus.MISS)

        if entry.get("expires_at", 0) <= self.clock():
            logger.debug("Mail config cache entry expired", extra={"cache_key": key})
            self.invalidate(key)
            return CacheLookup(CacheStatus.MISS)

        try:
            config = MailConfiguration.from_dict(entry["config"])
        except TypeError:
            logger.warning(
                "Discarding malformed mail config cache entry",
                extra={"cache_key": key},
            )
            return CacheLookup(CacheStatus.MISS)

        return CacheLookup(CacheStatus.HIT, config=config)

    def get(self, key):
        return self.lookup(key).config

    def store(self, key, config):
        entry = {
            "config": config.to_dict(),
            "expires_at": self.clock() + MAIL_CONFIG_CACHE_TTL,
        }
        try:
            self._call(
                "set", key, entry, MAIL_CONFIG_CACHE_TTL, version=self.generation()
            )
        except CacheBackendError as e:
            logger.warning(str(e), extra={"cache_key": key})
            return False
        return True

    def invalidate(self, key):
        try:
            self._call("delete", key, version=self.generation())
        except CacheBackendError as e:
            logger.warning(str(e), extra={"cache_key": key})
            return False
        return True

    def invalidate_all(self):
        """Drop every entry by moving to the next generation."""
        try:
            generation = self.generation() + 1
            # Never expires; older entries must stay unreachable.
            self._call("set", self.generation_key, generation, None)
        except CacheBackendError as e:
            logger.warning(str(e))
            return False
        logger.info(f"Mail config cache moved to generation {generation}")
        return True
