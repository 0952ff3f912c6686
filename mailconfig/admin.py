from django.contrib import admin, messages

from .exceptions import MailConfigError
from .forms import SiteMailSettingsForm
from .models import SiteMailSettings
from .resolver import get_effective_mail_config
from .signals import on_application_flush
from .transport import build_transport_descriptor
from .utils import send_test_email


@admin.register(SiteMailSettings)
class SiteMailSettingsAdmin(admin.ModelAdmin):
    form = SiteMailSettingsForm
    list_display = (
        "__str__",
        "site_id",
        "smtp_server",
        "smtp_port",
        "admin_email",
        "uses_custom_dsn",
        "updated_at",
    )
    search_fields = ("smtp_server", "smtp_user", "admin_email")
    readonly_fields = ("effective_transport", "created_at", "updated_at")
    actions = ("send_test_email_action", "flush_cache_action")
    fieldsets = (
        (None, {"fields": ("site_id",)}),
        (
            "SMTP",
            {"fields": ("smtp_server", "smtp_port", "smtp_user", "smtp_password")},
        ),
        ("Custom DSN", {"fields": ("custom_dsn",)}),
        ("Sender", {"fields": ("admin_email", "admin_name")}),
        ("Test", {"fields": ("test_email",)}),
        (
            "Status",
            {"fields": ("effective_transport", "created_at", "updated_at")},
        ),
    )

    def get_readonly_fields(self, request, obj=None):
        # Cache entries are keyed by site, so the site of a record is fixed.
        if obj is not None:
            return ("site_id",) + self.readonly_fields
        return self.readonly_fields

    @admin.display(boolean=True, description="Custom DSN")
    def uses_custom_dsn(self, obj):
        return bool(obj.custom_dsn)

    @admin.display(description="Effective transport")
    def effective_transport(self, obj):
        if obj is None or obj.pk is None:
            return "-"
        try:
            descriptor = build_transport_descriptor(
                get_effective_mail_config(obj.site_id)
            )
        except MailConfigError as e:
            return f"Error: {e}"
        if descriptor.is_null:
            return "None (messages are discarded)"
        return descriptor.scheme.upper()

    @admin.action(description="Send test email")
    def send_test_email_action(self, request, queryset):
        for record in queryset:
            ok, message = send_test_email(record)
            self.message_user(
                request,
                f"{record}: {message}",
                level=messages.SUCCESS if ok else messages.ERROR,
            )

    @admin.action(description="Flush mail configuration cache")
    def flush_cache_action(self, request, queryset):
        if on_application_flush():
            self.message_user(request, "Mail configuration cache flushed.")
        else:
            self.message_user(
                request, "Mail configuration cache could not be flushed.", messages.WARNING
            )
