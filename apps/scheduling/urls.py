"""URL routing for the scheduling domain."""

from __future__ import annotations

from django.urls import include, path  # type: ignore
from rest_framework.routers import DefaultRouter  # type: ignore

from .views import AppointmentViewSet, ResourceViewSet, ServiceViewSet

router = DefaultRouter()
router.register(r"resources", ResourceViewSet, basename="resource")
router.register(r"services", ServiceViewSet, basename="service")
router.register(r"appointments", AppointmentViewSet, basename="appointment")

urlpatterns = [
    path("", include(router.urls)),
]
