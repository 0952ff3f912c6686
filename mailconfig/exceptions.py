class MailConfigError(Exception):
    """Base class for mail configuration errors."""


class IncompleteConfigurationError(MailConfigError):
    """Some SMTP settings are filled in but not all of them, and no DSN applies."""


class CacheBackendError(MailConfigError):
    """The cache backend failed. Never propagated out of the cache wrapper."""


class TransportConfigurationError(MailConfigError):
    """A transport descriptor cannot be built or parsed from the given input."""


class InvalidRecipientError(MailConfigError):
    """The test email address is not a valid address."""
