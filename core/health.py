import redis
from django.conf import settings
from django.db import connection
from django.http import JsonResponse

from mailconfig.exceptions import MailConfigError
from mailconfig.resolver import get_effective_mail_config, get_resolver
from mailconfig.transport import build_transport_descriptor


def health_check(request):
    """System health check endpoint."""
    checks = {}

    # Redis health check
    if getattr(settings, "REDIS_URL", ""):
        try:
            r = redis.StrictRedis.from_url(settings.REDIS_URL, socket_timeout=2)
            r.ping()
            checks["redis"] = {"status": "healthy", "message": "Connected"}
        except redis.exceptions.BusyLoadingError:
            checks["redis"] = {"status": "loading", "message": "Redis loading dataset"}
        except redis.RedisError as e:
            # Mail config caching degrades to a miss without Redis
            checks["redis"] = {"status": "warning", "message": str(e)}

    # Mail config cache health check
    try:
        cache = get_resolver().cache
        cache.backend.get("health-check")
        checks["cache"] = {"status": "healthy", "message": f"Alias '{cache.alias}' reachable"}
    except Exception as e:
        # The cache is optional for mail delivery
        checks["cache"] = {"status": "warning", "message": str(e)}

    # Database health check
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
        checks["database"] = {"status": "healthy", "message": "Connected"}
    except Exception as e:
        checks["database"] = {"status": "unhealthy", "message": str(e)}

    # Mail configuration health check
    if checks["database"]["status"] == "healthy":
        try:
            descriptor = build_transport_descriptor(get_effective_mail_config())
            if descriptor.is_null:
                checks["mail"] = {"status": "warning", "message": "No mail transport configured"}
            else:
                checks["mail"] = {"status": "healthy", "message": f"Transport {descriptor.scheme}"}
        except MailConfigError as e:
            checks["mail"] = {"status": "unhealthy", "message": str(e)}

    # Overall status
    overall_status = "healthy"
    if any(check.get("status") == "unhealthy" for check in checks.values()):
        overall_status = "unhealthy"
    elif any(check.get("status") in ["loading", "warning"] for check in checks.values()):
        overall_status = "degraded"

    return JsonResponse({"status": overall_status, "checks": checks})
