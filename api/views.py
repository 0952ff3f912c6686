import logging

from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response

from mailconfig.exceptions import IncompleteConfigurationError, MailConfigError
from mailconfig.models import SiteMailSettings
from mailconfig.resolver import get_resolver
from mailconfig.signals import on_application_flush
from mailconfig.transport import build_transport_descriptor
from mailconfig.utils import send_test_email

from .serializers import EffectiveMailConfigSerializer, SiteMailSettingsSerializer

logger = logging.getLogger(__name__)


class SiteMailSettingsViewSet(viewsets.ModelViewSet):
    permission_classes = [IsAdminUser]
    serializer_class = SiteMailSettingsSerializer
    queryset = SiteMailSettings.objects.all()

    @action(detail=False, methods=["get"])
    def effective(self, request):
        site_id = request.query_params.get("site_id")
        if site_id is not None:
            try:
                site_id = int(site_id)
            except ValueError:
                return Response(
                    {"message": "Invalid site_id"},
                    status=status.HTTP_400_BAD_REQUEST,
                )

        try:
            resolver = get_resolver()
            site_id = resolver.scope_for(site_id)
            config = resolver.get_effective_mail_config(site_id)
            descriptor = build_transport_descriptor(config)
        except IncompleteConfigurationError as e:
            return Response({"message": str(e)}, status=status.HTTP_409_CONFLICT)
        except MailConfigError as e:
            logger.warning(f"Mail configuration unusable: {e}")
            return Response({"message": str(e)}, status=status.HTTP_409_CONFLICT)

        data = {
            "site_id": site_id,
            "transport": descriptor.scheme,
            **config.masked(),
        }
        return Response(
            EffectiveMailConfigSerializer(data).data, status=status.HTTP_200_OK
        )

    @action(detail=True, methods=["post"], url_path="send-test")
    def send_test(self, request, pk=None):
        record = self.get_object()

        # Allow a one-off address without saving it first.
        test_email = (request.data or {}).get("test_email")
        if test_email:
            record.test_email = test_email

        ok, message = send_test_email(record)
        return Response(
            {"ok": ok, "message": message},
            status=status.HTTP_200_OK if ok else status.HTTP_400_BAD_REQUEST,
        )

    @action(detail=False, methods=["post"])
    def flush(self, request):
        flushed = on_application_flush()
        logger.info("Mail config cache flush requested", extra={"flushed": flushed})
        return Response({"flushed": flushed}, status=status.HTTP_200_OK)
