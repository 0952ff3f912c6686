import os
from io import StringIO
from unittest import skipUnless
from unittest.mock import patch

import redis
from django.contrib.auth import get_user_model
from django.core.cache import caches
from django.core.exceptions import ValidationError
from django.core.mail.backends.smtp import EmailBackend as DjangoEmailBackend
from django.core.management import call_command
from django.test import TestCase, override_settings
from django.urls import reverse

from .exceptions import IncompleteConfigurationError
from .forms import SiteMailSettingsForm
from .models import SiteMailSettings
from .resolver import get_effective_mail_config, get_resolver
from .signals import on_application_flush, on_mail_settings_written
from .tasks import send_mail_notification, send_test_email_task
from .utils import MailConfigEmailMessage, default_from_email, send_test_email

SMTP_SETTINGS = {
    "smtp_server": "smtp.example.com",
    "smtp_port": 587,
    "smtp_user": "mailer@example.com",
    "smtp_password": "s3cret:pw",
    "admin_email": "admin@example.com",
    "admin_name": "Example Admin",
}


class MailSettingsFixtureMixin:
    def create_settings(self, site_id=0, **overrides):
        values = dict(SMTP_SETTINGS)
        values.update(overrides)
        return SiteMailSettings.objects.create(site_id=site_id, **values)


class SiteMailSettingsModelTest(MailSettingsFixtureMixin, TestCase):
    def setUp(self):
        on_application_flush()

    def test_empty_password_keeps_stored_password(self):
        record = self.create_settings()

        record.smtp_password = ""
        record.save()
        record.refresh_from_db()

        self.assertEqual(record.smtp_password, "s3cret:pw")

    def test_repeated_empty_saves_keep_password(self):
        record = self.create_settings()

        for _ in range(3):
            record.smtp_password = ""
            record.smtp_server = "smtp2.example.com"
            record.save()

        record.refresh_from_db()
        self.assertEqual(record.smtp_password, "s3cret:pw")
        self.assertEqual(record.smtp_server, "smtp2.example.com")

    def test_new_password_replaces_stored_password(self):
        record = self.create_settings()

        record.smtp_password = "changed"
        record.save()
        record.refresh_from_db()

        self.assertEqual(record.smtp_password, "changed")

    def test_new_record_without_password(self):
        record = SiteMailSettings.objects.create(site_id=4)
        self.assertEqual(record.smtp_password, "")

    def test_partial_settings_fail_validation(self):
        record = SiteMailSettings(site_id=1, smtp_server="smtp.example.com")

        with self.assertRaises(ValidationError) as ctx:
            record.full_clean()

        message = " ".join(ctx.exception.messages)
        self.assertIn("smtp_user", message)
        self.assertIn("smtp_port", message)
        self.assertIn("admin_email", message)

    def test_custom_dsn_skips_smtp_validation(self):
        record = SiteMailSettings(
            site_id=1, smtp_server="smtp.example.com", custom_dsn="smtp://u:p@h:25"
        )
        record.full_clean()

    def test_empty_settings_are_valid(self):
        SiteMailSettings(site_id=1).full_clean()

    def test_str(self):
        self.assertEqual(str(SiteMailSettings(site_id=0)), "Main site mail settings")
        self.assertEqual(str(SiteMailSettings(site_id=3)), "Site 3 mail settings")


class SiteMailSettingsFormTest(MailSettingsFixtureMixin, TestCase):
    def setUp(self):
        on_application_flush()

    def form_data(self, **overrides):
        data = {
            "site_id": 0,
            "smtp_server": "smtp.example.com",
            "smtp_port": "587",
            "smtp_user": "mailer@example.com",
            "smtp_password": "",
            "custom_dsn": "",
            "admin_email": "admin@example.com",
            "admin_name": "",
            "test_email": "",
        }
        data.update(overrides)
        return data

    def test_password_is_not_rendered(self):
        record = self.create_settings()
        form = SiteMailSettingsForm(instance=record)
        self.assertNotIn("s3cret", str(form["smtp_password"]))

    def test_empty_password_submission_keeps_password(self):
        record = self.create_settings()

        form = SiteMailSettingsForm(self.form_data(admin_name="New Name"), instance=record)
        self.assertTrue(form.is_valid(), form.errors)
        form.save()
        record.refresh_from_db()

        self.assertEqual(record.smtp_password, "s3cret:pw")
        self.assertEqual(record.admin_name, "New Name")

    def test_partial_submission_is_rejected(self):
        form = SiteMailSettingsForm(self.form_data(smtp_user="", site_id=2))

        self.assertFalse(form.is_valid())
        self.assertIn("smtp_user", str(form.non_field_errors()))


class EffectiveMailConfigTest(MailSettingsFixtureMixin, TestCase):
    def setUp(self):
        on_application_flush()

    def test_uses_stored_settings(self):
        self.create_settings()

        config = get_effective_mail_config()

        self.assertEqual(config.smtp_server, "smtp.example.com")
        self.assertEqual(config.smtp_password, "s3cret:pw")
        self.assertEqual(config.admin_name, "Example Admin")

    def test_second_call_does_not_query(self):
        self.create_settings()
        first = get_effective_mail_config()

        with self.assertNumQueries(0):
            second = get_effective_mail_config()

        self.assertEqual(first, second)

    def test_save_invalidates_cache(self):
        record = self.create_settings()
        get_effective_mail_config()

        record.smtp_server = "smtp-new.example.com"
        record.smtp_password = ""
        record.save()

        with self.assertNumQueries(1):
            config = get_effective_mail_config()
        self.assertEqual(config.smtp_server, "smtp-new.example.com")
        self.assertEqual(config.smtp_password, "s3cret:pw")

    def test_delete_invalidates_cache(self):
        record = self.create_settings()
        get_effective_mail_config()

        record.delete()

        self.assertIsNone(get_effective_mail_config().smtp_server)

    def test_queryset_update_needs_explicit_invalidation(self):
        self.create_settings()
        get_effective_mail_config()

        SiteMailSettings.objects.update(smtp_server="smtp-bulk.example.com")
        self.assertEqual(get_effective_mail_config().smtp_server, "smtp.example.com")

        on_mail_settings_written(0)
        self.assertEqual(get_effective_mail_config().smtp_server, "smtp-bulk.example.com")

    @override_settings(
        MAILCONFIG_FALLBACK={
            "SMTP_SERVER": "static.example.com",
            "SMTP_PORT": 25,
            "SMTP_USER": "static",
            "SMTP_PASSWORD": "static-pw",
            "ADMIN_EMAIL": "static@example.com",
        }
    )
    def test_static_fallback_without_records(self):
        on_application_flush()
        config = get_effective_mail_config()

        self.assertEqual(config.smtp_server, "static.example.com")
        self.assertEqual(config.admin_email, "static@example.com")

    def test_partial_record_raises(self):
        SiteMailSettings.objects.create(site_id=0, smtp_server="smtp.example.com")

        with self.assertRaises(IncompleteConfigurationError):
            get_effective_mail_config()

    def test_empty_record_is_unconfigured(self):
        SiteMailSettings.objects.create(site_id=0)

        config = get_effective_mail_config()

        self.assertTrue(config.is_empty())


@override_settings(MAILCONFIG_MULTISITE=True, MAILCONFIG_DEFAULT_SITE_ID=2)
class MultiSiteResolutionTest(MailSettingsFixtureMixin, TestCase):
    def setUp(self):
        on_application_flush()

    def test_site_settings_win_over_main_site(self):
        self.create_settings(site_id=0)
        self.create_settings(site_id=2, smtp_server="smtp.site2.example.com")

        self.assertEqual(get_effective_mail_config().smtp_server, "smtp.site2.example.com")
        self.assertEqual(get_effective_mail_config(0).smtp_server, "smtp.example.com")

    def test_site_without_settings_uses_main_site(self):
        self.create_settings(site_id=0)

        self.assertEqual(get_effective_mail_config(5).smtp_server, "smtp.example.com")

    def test_site_write_only_drops_its_own_entry(self):
        self.create_settings(site_id=0)
        self.create_settings(site_id=3, smtp_server="smtp.site3.example.com")
        get_effective_mail_config(3)
        get_effective_mail_config(5)

        self.create_settings(site_id=4, smtp_server="smtp.site4.example.com")

        with self.assertNumQueries(0):
            get_effective_mail_config(3)
            get_effective_mail_config(5)

    def test_site_write_rereads_that_site(self):
        self.create_settings(site_id=0)
        site = self.create_settings(site_id=3, smtp_server="smtp.site3.example.com")
        get_effective_mail_config(3)

        site.smtp_server = "smtp-new.site3.example.com"
        site.smtp_password = ""
        site.save()

        with self.assertNumQueries(1):
            config = get_effective_mail_config(3)
        self.assertEqual(config.smtp_server, "smtp-new.site3.example.com")
        self.assertEqual(config.smtp_password, "s3cret:pw")

    def test_site_hook_after_bulk_update(self):
        self.create_settings(site_id=0)
        self.create_settings(site_id=3, smtp_server="smtp.site3.example.com")
        get_effective_mail_config(3)
        get_effective_mail_config(5)

        SiteMailSettings.objects.filter(site_id=3).update(admin_name="Bulk Name")
        self.assertEqual(get_effective_mail_config(3).admin_name, "Example Admin")

        self.assertTrue(on_mail_settings_written(3))

        with self.assertNumQueries(1):
            self.assertEqual(get_effective_mail_config(3).admin_name, "Bulk Name")
        with self.assertNumQueries(0):
            get_effective_mail_config(5)

    def test_main_site_write_drops_all_entries(self):
        main = self.create_settings(site_id=0)
        get_effective_mail_config(5)

        main.smtp_server = "smtp-main.example.com"
        main.save()

        self.assertEqual(get_effective_mail_config(5).smtp_server, "smtp-main.example.com")

    @override_settings(MAILCONFIG_SITE_RESOLVER="mailconfig.tests.site_nine")
    def test_site_resolver_setting(self):
        self.create_settings(site_id=9, smtp_server="smtp.site9.example.com")

        self.assertEqual(get_effective_mail_config().smtp_server, "smtp.site9.example.com")


def site_nine():
    return 9


class DefaultSenderTest(MailSettingsFixtureMixin, TestCase):
    def setUp(self):
        on_application_flush()

    @override_settings(DEFAULT_FROM_EMAIL="fallback@example.com")
    def test_without_settings_uses_django_default(self):
        self.assertEqual(default_from_email(), "fallback@example.com")

    def test_name_and_address(self):
        self.create_settings()
        self.assertEqual(default_from_email(), "Example Admin <admin@example.com>")

    def test_address_only(self):
        self.create_settings(admin_name="")
        self.assertEqual(default_from_email(), "admin@example.com")

    @override_settings(DEFAULT_FROM_EMAIL="fallback@example.com")
    def test_broken_settings_use_django_default(self):
        SiteMailSettings.objects.create(site_id=0, smtp_user="someone")
        self.assertEqual(default_from_email(), "fallback@example.com")

    def test_message_defaults_sender(self):
        self.create_settings()
        message = MailConfigEmailMessage("Subject", "Body", to=["to@example.com"])
        self.assertEqual(message.from_email, "Example Admin <admin@example.com>")

    def test_message_keeps_explicit_sender(self):
        self.create_settings()
        message = MailConfigEmailMessage("Subject", "Body", "me@example.com", ["to@example.com"])
        self.assertEqual(message.from_email, "me@example.com")


class SendTestEmailTest(MailSettingsFixtureMixin, TestCase):
    def setUp(self):
        on_application_flush()

    def test_requires_address(self):
        record = self.create_settings()
        ok, message = send_test_email(record)
        self.assertFalse(ok)
        self.assertEqual(message, "Please enter a test email address.")

    def test_rejects_invalid_address(self):
        record = self.create_settings()
        record.test_email = "not-an-address"
        ok, message = send_test_email(record)
        self.assertFalse(ok)
        self.assertEqual(message, "Invalid email address.")

    def test_requires_sender(self):
        record = SiteMailSettings.objects.create(
            site_id=0, custom_dsn="smtp://u:p@relay.example.com:25", test_email="t@example.com"
        )
        ok, message = send_test_email(record)
        self.assertFalse(ok)
        self.assertIn("no sender", message)

    def test_reports_configuration_error(self):
        record = SiteMailSettings.objects.create(
            site_id=0, smtp_server="smtp.example.com", test_email="t@example.com"
        )
        ok, message = send_test_email(record)
        self.assertFalse(ok)
        self.assertIn("Configuration error", message)

    @patch.object(DjangoEmailBackend, "send_messages", return_value=1)
    def test_sends_through_configured_transport(self, smtp_send):
        record = self.create_settings(test_email="t@example.com")

        ok, message = send_test_email(record)

        self.assertTrue(ok, message)
        self.assertEqual(message, "Test email was sent to t@example.com.")
        (sent_messages,), _ = smtp_send.call_args
        self.assertEqual(sent_messages[0].to, ["t@example.com"])
        self.assertEqual(sent_messages[0].from_email, "Example Admin <admin@example.com>")

    @patch.object(DjangoEmailBackend, "send_messages", side_effect=OSError("refused"))
    def test_reports_transport_failure(self, smtp_send):
        record = self.create_settings(test_email="t@example.com")

        ok, message = send_test_email(record)

        self.assertFalse(ok)
        self.assertEqual(message, "Error while sending: refused")

    @patch.object(DjangoEmailBackend, "send_messages", return_value=0)
    def test_reports_unsent_message(self, smtp_send):
        record = self.create_settings(test_email="t@example.com")
        ok, message = send_test_email(record)
        self.assertFalse(ok)
        self.assertIn("could not be sent", message)

    @override_settings(MAILCONFIG_FALLBACK={"ADMIN_EMAIL": "static@example.com"})
    def test_null_transport_is_reported(self):
        on_application_flush()
        record = SiteMailSettings.objects.create(site_id=0, test_email="t@example.com")
        ok, message = send_test_email(record)
        self.assertFalse(ok)
        self.assertIn("discarded", message)


class TasksTest(MailSettingsFixtureMixin, TestCase):
    def setUp(self):
        on_application_flush()

    @patch.object(DjangoEmailBackend, "send_messages", return_value=1)
    def test_send_test_email_task(self, smtp_send):
        record = self.create_settings(test_email="t@example.com")

        result = send_test_email_task(record.pk)

        self.assertEqual(result["ok"], True)
        smtp_send.assert_called_once()

    def test_send_test_email_task_missing_record(self):
        result = send_test_email_task(12345)
        self.assertEqual(result, {"ok": False, "message": "Mail settings not found."})

    @patch.object(DjangoEmailBackend, "send_messages", return_value=1)
    def test_send_mail_notification_uses_configured_sender(self, smtp_send):
        self.create_settings()

        send_mail_notification("user@example.com", "Subject", "Body")

        (sent_messages,), _ = smtp_send.call_args
        self.assertEqual(sent_messages[0].from_email, "Example Admin <admin@example.com>")
        self.assertEqual(sent_messages[0].to, ["user@example.com"])


class FlushCommandTest(MailSettingsFixtureMixin, TestCase):
    def setUp(self):
        on_application_flush()

    def test_flush_all(self):
        self.create_settings()
        get_effective_mail_config()
        SiteMailSettings.objects.update(admin_email="bulk@example.com")

        out = StringIO()
        call_command("flush_mail_config", stdout=out)

        self.assertIn("flushed for all sites", out.getvalue())
        self.assertEqual(get_effective_mail_config().admin_email, "bulk@example.com")

    def test_flush_one_site(self):
        out = StringIO()
        call_command("flush_mail_config", "--site", "3", stdout=out)
        self.assertIn("flushed for site 3", out.getvalue())

    def test_cache_failure_is_reported(self):
        out, err = StringIO(), StringIO()
        with patch.object(type(get_resolver().cache), "invalidate_all", return_value=False):
            call_command("flush_mail_config", stdout=out, stderr=err)
        self.assertIn("could not be flushed", err.getvalue())


SHARED_LOCMEM_CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "shared",
    },
    "mailconfig": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "shared",
        "KEY_PREFIX": "mailconfig",
    },
}


@override_settings(CACHES=SHARED_LOCMEM_CACHES)
class SharedCacheStoreTest(MailSettingsFixtureMixin, TestCase):
    """The mail config alias shares one store with the default cache."""

    def setUp(self):
        on_application_flush()
        caches["default"].set("keep-me", "kept", None)

    def test_main_site_write_keeps_other_keys(self):
        record = self.create_settings()
        get_effective_mail_config()

        record.smtp_server = "smtp-new.example.com"
        record.save()

        self.assertEqual(caches["default"].get("keep-me"), "kept")
        self.assertEqual(get_effective_mail_config().smtp_server, "smtp-new.example.com")

    def test_flush_keeps_other_keys(self):
        self.create_settings()
        get_effective_mail_config()
        SiteMailSettings.objects.update(admin_email="bulk@example.com")

        call_command("flush_mail_config", stdout=StringIO())

        self.assertEqual(caches["default"].get("keep-me"), "kept")
        self.assertEqual(get_effective_mail_config().admin_email, "bulk@example.com")


REDIS_URL = os.environ.get("REDIS_URL", "")


@skipUnless(REDIS_URL, "REDIS_URL is not set")
class RedisSharedStoreTest(MailSettingsFixtureMixin, TestCase):
    def setUp(self):
        self.redis = redis.StrictRedis.from_url(REDIS_URL)
        self.queue = "mailconfig-test-queue"
        self.redis.lpush(self.queue, "queued-task")
        self.addCleanup(self.redis.delete, self.queue)

        redis_caches = {
            alias: {
                "BACKEND": "django.core.cache.backends.redis.RedisCache",
                "LOCATION": REDIS_URL,
                "KEY_PREFIX": alias,
            }
            for alias in ("default", "mailconfig")
        }
        override = override_settings(CACHES=redis_caches)
        override.enable()
        self.addCleanup(override.disable)

        on_application_flush()
        caches["default"].set("keep-me", "kept", 60)
        self.addCleanup(caches["default"].delete, "keep-me")

    def test_flush_keeps_broker_queue_and_cache_keys(self):
        self.create_settings()
        get_effective_mail_config()

        on_application_flush()

        self.assertEqual(caches["default"].get("keep-me"), "kept")
        self.assertEqual(self.redis.llen(self.queue), 1)
        self.assertEqual(get_effective_mail_config().smtp_server, "smtp.example.com")


class SiteMailSettingsAdminTest(MailSettingsFixtureMixin, TestCase):
    def setUp(self):
        on_application_flush()
        self.admin_user = get_user_model().objects.create_superuser(
            username="admin", email="admin@example.com", password="password"
        )
        self.client.force_login(self.admin_user)

    def test_change_form_keeps_password(self):
        record = self.create_settings()
        url = reverse("admin:mailconfig_sitemailsettings_change", args=[record.pk])

        response = self.client.get(url)
        self.assertEqual(response.status_code, 200)
        self.assertNotContains(response, "s3cret")

        response = self.client.post(
            url,
            {
                "smtp_server": "smtp.example.com",
                "smtp_port": "2525",
                "smtp_user": "mailer@example.com",
                "smtp_password": "",
                "custom_dsn": "",
                "admin_email": "admin@example.com",
                "admin_name": "Example Admin",
                "test_email": "",
                "_save": "Save",
            },
        )

        self.assertEqual(response.status_code, 302)
        record.refresh_from_db()
        self.assertEqual(record.smtp_port, 2525)
        self.assertEqual(record.smtp_password, "s3cret:pw")
        self.assertEqual(get_effective_mail_config().smtp_port, 2525)

    @patch.object(DjangoEmailBackend, "send_messages", return_value=1)
    def test_send_test_email_action(self, smtp_send):
        record = self.create_settings(test_email="t@example.com")

        response = self.client.post(
            reverse("admin:mailconfig_sitemailsettings_changelist"),
            {"action": "send_test_email_action", "_selected_action": [record.pk]},
            follow=True,
        )

        self.assertContains(response, "Test email was sent to t@example.com.")

    def test_flush_cache_action(self):
        record = self.create_settings()

        response = self.client.post(
            reverse("admin:mailconfig_sitemailsettings_changelist"),
            {"action": "flush_cache_action", "_selected_action": [record.pk]},
            follow=True,
        )

        self.assertContains(response, "Mail configuration cache flushed.")
