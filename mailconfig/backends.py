import logging
import ssl

from django.conf import settings
from django.core.mail.backends.smtp import EmailBackend as DjangoEmailBackend
from django.utils.functional import cached_property

from .exceptions import MailConfigError
from .resolver import get_effective_mail_config
from .transport import NULL_TRANSPORT, build_transport_descriptor, parse_transport_dsn

logger = logging.getLogger(__name__)


class EmailBackend(DjangoEmailBackend):
    """
    SMTP backend configured from the effective mail settings of a site.

    Set ``EMAIL_BACKEND = "mailconfig.backends.EmailBackend"``. The settings are
    resolved when the backend is created; keyword arguments passed to
    ``get_connection`` still win. Without any mail settings the backend uses
    the null transport and silently discards messages.

    TLS certificate verification can be disabled globally with
    ``EMAIL_SSL_VERIFY = False`` or per DSN with ``?verify_peer=0``, for SMTP
    servers presenting a self-signed certificate.

    Unusable mail settings raise ``MailConfigError`` on creation. With
    ``fail_silently=True`` the error is logged instead and no message is sent.
    """

    def __init__(self, site_id=None, fail_silently=False, **kwargs):
        self.config_error = None
        try:
            config = get_effective_mail_config(site_id)
            self.descriptor = build_transport_descriptor(config)
            self.transport = parse_transport_dsn(self.descriptor.dsn)
        except MailConfigError as e:
            if not fail_silently:
                raise
            logger.error(f"Mail settings unusable, messages will not be sent: {e}")
            self.config_error = e
            self.descriptor = NULL_TRANSPORT
            self.transport = parse_transport_dsn(NULL_TRANSPORT.dsn)

        params = {}
        if not self.transport.is_null:
            params = {
                "host": self.transport.host,
                "port": self.transport.port,
                "username": self.transport.username or "",
                "password": self.transport.password or "",
                "use_tls": self.transport.use_tls,
                "use_ssl": self.transport.use_ssl,
            }
        params.update(kwargs)
        super().__init__(fail_silently=fail_silently, **params)

    @property
    def is_null(self):
        return self.transport.is_null

    @cached_property
    def ssl_context(self):
        verify = getattr(settings, "EMAIL_SSL_VERIFY", True) and self.transport.verify_peer
        if verify:
            return super().ssl_context

        ctx = ssl._create_unverified_context()  # nosec - explicitly configured
        if self.ssl_certfile or self.ssl_keyfile:
            ctx.load_cert_chain(self.ssl_certfile, self.ssl_keyfile)
        return ctx

    def open(self):
        if self.is_null:
            return False
        logger.debug(f"Opening SMTP connection to {self.host}:{self.port}")
        return super().open()

    def close(self):
        if self.is_null:
            return
        super().close()

    def send_messages(self, email_messages):
        if self.config_error is not None:
            return 0
        if self.is_null:
            count = len(email_messages)
            logger.info(f"Discarding {count} message(s): no mail transport configured")
            return count
        return super().send_messages(email_messages)
