from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.mail.backends.smtp import EmailBackend as DjangoEmailBackend
from django.test import TestCase
from rest_framework.test import APIClient

from mailconfig.models import SiteMailSettings
from mailconfig.resolver import get_effective_mail_config
from mailconfig.signals import on_application_flush

from .serializers import SiteMailSettingsSerializer


class MailSettingsFixtureMixin:
    def create_mail_fixtures(self):
        on_application_flush()

        self.valid_settings_data = {
            "site_id": 0,
            "smtp_server": "smtp.example.com",
            "smtp_port": 587,
            "smtp_user": "mailer@example.com",
            "smtp_password": "s3cret:pw",
            "admin_email": "admin@example.com",
            "admin_name": "Example Admin",
        }

        self.admin_user = get_user_model().objects.create_superuser(
            username="admin", email="admin@example.com", password="password"
        )
        self.client = APIClient()
        self.client.force_authenticate(user=self.admin_user)


class SiteMailSettingsSerializerTest(MailSettingsFixtureMixin, TestCase):
    def setUp(self):
        self.create_mail_fixtures()

    def test_create_success(self):
        serializer = SiteMailSettingsSerializer(data=self.valid_settings_data)
        self.assertTrue(serializer.is_valid(), serializer.errors)
        record = serializer.save()

        self.assertEqual(record.smtp_password, "s3cret:pw")
        self.assertNotIn("smtp_password", serializer.data)
        self.assertTrue(serializer.data["has_password"])

    def test_partial_settings_are_rejected(self):
        data = {"site_id": 1, "smtp_server": "smtp.example.com"}

        serializer = SiteMailSettingsSerializer(data=data)
        with self.assertLogs("api.serializers", level="INFO") as logs:
            self.assertFalse(serializer.is_valid())
        self.assertIn("smtp_user", str(serializer.errors))
        self.assertEqual(logs.records[0].site_id, 1)

    def test_custom_dsn_alone_is_valid(self):
        data = {"site_id": 1, "custom_dsn": "smtp://u:p@relay.example.com:25"}

        serializer = SiteMailSettingsSerializer(data=data)
        self.assertTrue(serializer.is_valid(), serializer.errors)

    def test_site_cannot_change(self):
        record = SiteMailSettings.objects.create(**self.valid_settings_data)

        serializer = SiteMailSettingsSerializer(
            instance=record, data={"site_id": 5}, partial=True
        )
        self.assertFalse(serializer.is_valid())
        self.assertIn("site_id", serializer.errors)

    def test_duplicate_site_is_rejected(self):
        SiteMailSettings.objects.create(**self.valid_settings_data)

        serializer = SiteMailSettingsSerializer(data=self.valid_settings_data)
        self.assertFalse(serializer.is_valid())
        self.assertIn("site_id", serializer.errors)


class SiteMailSettingsApiTest(MailSettingsFixtureMixin, TestCase):
    def setUp(self):
        self.create_mail_fixtures()

    def test_create_and_list(self):
        response = self.client.post(
            "/api/mail-settings/", self.valid_settings_data, format="json"
        )
        self.assertEqual(response.status_code, 201, response.data)
        self.assertNotIn("smtp_password", response.data)

        response = self.client.get("/api/mail-settings/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["smtp_server"], "smtp.example.com")

    def test_patch_with_empty_password_keeps_password(self):
        record = SiteMailSettings.objects.create(**self.valid_settings_data)
        get_effective_mail_config()

        response = self.client.patch(
            f"/api/mail-settings/{record.pk}/",
            {"smtp_password": "", "smtp_port": 2525},
            format="json",
        )

        self.assertEqual(response.status_code, 200, response.data)
        record.refresh_from_db()
        self.assertEqual(record.smtp_password, "s3cret:pw")
        self.assertEqual(get_effective_mail_config().smtp_port, 2525)

    def test_patch_that_breaks_settings_is_rejected(self):
        record = SiteMailSettings.objects.create(**self.valid_settings_data)

        response = self.client.patch(
            f"/api/mail-settings/{record.pk}/", {"smtp_server": ""}, format="json"
        )

        self.assertEqual(response.status_code, 400)
        record.refresh_from_db()
        self.assertEqual(record.smtp_server, "smtp.example.com")

    def test_effective_masks_secrets(self):
        SiteMailSettings.objects.create(**self.valid_settings_data)

        response = self.client.get("/api/mail-settings/effective/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["site_id"], 0)
        self.assertEqual(response.data["smtp_password"], "********")
        self.assertEqual(response.data["transport"], "smtp")
        self.assertNotIn("s3cret", str(response.data))

    def test_effective_without_settings(self):
        response = self.client.get("/api/mail-settings/effective/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["transport"], "null")
        self.assertIsNone(response.data["smtp_server"])

    def test_effective_with_partial_settings(self):
        SiteMailSettings.objects.create(site_id=0, smtp_server="smtp.example.com")

        response = self.client.get("/api/mail-settings/effective/")

        self.assertEqual(response.status_code, 409)
        self.assertIn("incomplete", response.data["message"])

    def test_effective_with_invalid_site(self):
        response = self.client.get("/api/mail-settings/effective/?site_id=abc")
        self.assertEqual(response.status_code, 400)

    @patch.object(DjangoEmailBackend, "send_messages", return_value=1)
    def test_send_test(self, smtp_send):
        record = SiteMailSettings.objects.create(**self.valid_settings_data)

        response = self.client.post(
            f"/api/mail-settings/{record.pk}/send-test/",
            {"test_email": "t@example.com"},
            format="json",
        )

        self.assertEqual(response.status_code, 200, response.data)
        self.assertEqual(response.data["ok"], True)
        smtp_send.assert_called_once()

    def test_send_test_without_address(self):
        record = SiteMailSettings.objects.create(**self.valid_settings_data)

        response = self.client.post(f"/api/mail-settings/{record.pk}/send-test/")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["message"], "Please enter a test email address.")

    def test_flush(self):
        SiteMailSettings.objects.create(**self.valid_settings_data)
        get_effective_mail_config()
        SiteMailSettings.objects.update(admin_email="bulk@example.com")

        response = self.client.post("/api/mail-settings/flush/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, {"flushed": True})
        self.assertEqual(get_effective_mail_config().admin_email, "bulk@example.com")

    def test_requires_admin_user(self):
        user = get_user_model().objects.create_user(username="user", password="password")
        client = APIClient()
        client.force_authenticate(user=user)

        self.assertEqual(client.get("/api/mail-settings/").status_code, 403)
        self.assertEqual(client.get("/api/mail-settings/effective/").status_code, 403)

    def test_requires_authentication(self):
        response = APIClient().get("/api/mail-settings/")
        self.assertIn(response.status_code, (401, 403))
