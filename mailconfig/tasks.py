from celery import shared_task
from celery.utils.log import get_task_logger

from .backends import EmailBackend
from .models import SiteMailSettings
from .utils import MailConfigEmailMessage, send_test_email

logger = get_task_logger(__name__)


@shared_task
def send_mail_notification(email, subject, message, site_id=None):
    # Sender and transport come from the site's mail settings
    MailConfigEmailMessage(
        subject,
        message,
        to=[email],
        site_id=site_id,
        connection=EmailBackend(site_id=site_id),
    ).send()


@shared_task
def send_test_email_task(settings_id):
    record = SiteMailSettings.objects.filter(pk=settings_id).first()
    if record is None:
        logger.error(f"Mail settings {settings_id} not found, test email not sent")
        return {"ok": False, "message": "Mail settings not found."}

    ok, message = send_test_email(record)
    if ok:
        logger.info(f"Test email for site {record.site_id}: {message}")
    else:
        logger.warning(f"Test email for site {record.site_id} failed: {message}")
    return {"ok": ok, "message": message}
