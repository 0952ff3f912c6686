from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import SiteMailSettingsViewSet

router = DefaultRouter()
router.register("mail-settings", SiteMailSettingsViewSet, basename="mail-settings")

app_name = "api"

urlpatterns = [
    path("", include(router.urls)),
]
