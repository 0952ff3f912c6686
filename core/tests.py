from django.test import TestCase, override_settings

from mailconfig.models import SiteMailSettings
from mailconfig.signals import on_application_flush


@override_settings(REDIS_URL="")
class HealthCheckTest(TestCase):
    def setUp(self):
        on_application_flush()

    def test_unconfigured_mail_is_degraded(self):
        response = self.client.get("/health/")

        data = response.json()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data["status"], "degraded")
        self.assertEqual(data["checks"]["database"]["status"], "healthy")
        self.assertEqual(data["checks"]["mail"]["status"], "warning")

    def test_configured_mail_is_healthy(self):
        SiteMailSettings.objects.create(
            site_id=0,
            smtp_server="smtp.example.com",
            smtp_port=587,
            smtp_user="mailer",
            smtp_password="secret",
            admin_email="admin@example.com",
        )

        data = self.client.get("/health/").json()

        self.assertEqual(data["status"], "healthy")
        self.assertEqual(data["checks"]["mail"]["message"], "Transport smtp")

    def test_partial_mail_settings_are_unhealthy(self):
        SiteMailSettings.objects.create(site_id=0, smtp_user="mailer")

        data = self.client.get("/health/").json()

        self.assertEqual(data["status"], "unhealthy")
        self.assertEqual(data["checks"]["mail"]["status"], "unhealthy")
