import logging

from rest_framework import serializers

from mailconfig.models import SiteMailSettings

logger = logging.getLogger(__name__)


class SiteMailSettingsSerializer(serializers.ModelSerializer):
    # Write-only: an empty or omitted password keeps the stored one.
    smtp_password = serializers.CharField(
        write_only=True, required=False, allow_blank=True, trim_whitespace=False
    )
    has_password = serializers.SerializerMethodField()

    class Meta:
        model = SiteMailSettings
        fields = [
            "id",
            "site_id",
            "smtp_server",
            "smtp_port",
            "smtp_user",
            "smtp_password",
            "has_password",
            "custom_dsn",
            "admin_email",
            "admin_name",
            "test_email",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["created_at", "updated_at"]

    def get_has_password(self, obj):
        return bool(obj.smtp_password)

    def validate_site_id(self, value):
        if self.instance is not None and value != self.instance.site_id:
            raise serializers.ValidationError("The site of mail settings cannot be changed")
        return value

    def validate(self, attrs):
        names = SiteMailSettings.REQUIRED_TOGETHER + ("custom_dsn",)
        merged = {
            name: attrs.get(name, getattr(self.instance, name, None)) for name in names
        }
        missing = SiteMailSettings(**merged).missing_required_fields()
        if missing:
            site_id = attrs.get("site_id", getattr(self.instance, "site_id", None))
            logger.info(
                f"Rejected incomplete mail settings, missing: {', '.join(missing)}",
                extra={"site_id": site_id},
            )
            raise serializers.ValidationError(
                "When one SMTP setting is set the following fields are required "
                f"as well: {', '.join(missing)}"
            )
        return attrs


class EffectiveMailConfigSerializer(serializers.Serializer):
    site_id = serializers.IntegerField()
    smtp_server = serializers.CharField(allow_null=True)
    smtp_port = serializers.IntegerField(allow_null=True)
    smtp_user = serializers.CharField(allow_null=True)
    smtp_password = serializers.CharField(allow_null=True)
    admin_email = serializers.CharField(allow_null=True)
    admin_name = serializers.CharField(allow_null=True)
    custom_dsn = serializers.CharField(allow_null=True)
    transport = serializers.CharField()
