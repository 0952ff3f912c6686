import logging
import smtplib
from email.utils import formataddr

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.mail import EmailMessage
from django.core.validators import validate_email

from .backends import EmailBackend
from .exceptions import InvalidRecipientError, MailConfigError
from .resolver import get_effective_mail_config

logger = logging.getLogger(__name__)


def format_sender(config):
    if not config.admin_email:
        return None
    if config.admin_name:
        return formataddr((config.admin_name, config.admin_email))
    return config.admin_email


def default_from_email(site_id=None):
    """Sender address from the mail settings, else ``DEFAULT_FROM_EMAIL``."""
    try:
        config = get_effective_mail_config(site_id)
    except MailConfigError as e:
        logger.warning(f"Using DEFAULT_FROM_EMAIL, mail settings unusable: {e}")
        return settings.DEFAULT_FROM_EMAIL

    return format_sender(config) or settings.DEFAULT_FROM_EMAIL


class MailConfigEmailMessage(EmailMessage):
    """EmailMessage whose sender defaults to the configured admin address."""

    def __init__(self, subject="", body="", from_email=None, to=None, **kwargs):
        if not from_email:
            from_email = default_from_email(kwargs.pop("site_id", None))
        else:
            kwargs.pop("site_id", None)
        super().__init__(subject=subject, body=body, from_email=from_email, to=to, **kwargs)


def validate_recipient(address):
    try:
        validate_email(address)
    except ValidationError:
        raise InvalidRecipientError("Invalid email address.")


def send_test_email(record):
    """Send a test email to ``record.test_email``.

    Returns ``(ok, message)``; the message is meant for the admin user.
    """
    test_email = (record.test_email or "").strip()
    if not test_email:
        return False, "Please enter a test email address."

    try:
        validate_recipient(test_email)
    except InvalidRecipientError as e:
        return False, str(e)

    try:
        config = get_effective_mail_config(record.site_id)
        sender = format_sender(config)
        if not sender:
            return False, "Error: no sender email address configured."

        connection = EmailBackend(site_id=record.site_id)
        if connection.is_null:
            return False, "No mail transport configured, the test email was discarded."

        message = EmailMessage(
            subject=f"Mail test - {record}",
            body="The mail test was successful.",
            from_email=sender,
            to=[test_email],
            connection=connection,
        )
        sent = message.send()
    except MailConfigError as e:
        logger.warning(f"Test email not sent, configuration error: {e}")
        return False, f"Configuration error: {e}"
    except (smtplib.SMTPException, OSError) as e:
        logger.exception("Error sending test email")
        return False, f"Error while sending: {e}"

    if not sent:
        return False, "Email could not be sent. Please check the SMTP settings."

    logger.info("Test email sent", extra={"site_id": record.site_id})
    return True, f"Test email was sent to {test_email}."
