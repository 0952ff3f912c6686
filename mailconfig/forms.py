from django import forms

from .models import SiteMailSettings


class SiteMailSettingsForm(forms.ModelForm):
    # Never rendered back; an empty submission keeps the stored password.
    smtp_password = forms.CharField(
        label="SMTP Password",
        required=False,
        strip=False,
        widget=forms.PasswordInput(
            render_value=False, attrs={"placeholder": "********"}
        ),
        help_text="Stored unencrypted. Leave empty to keep the current password.",
    )

    class Meta:
        model = SiteMailSettings
        fields = [
            "site_id",
            "smtp_server",
            "smtp_port",
            "smtp_user",
            "smtp_password",
            "custom_dsn",
            "admin_email",
            "admin_name",
            "test_email",
        ]

