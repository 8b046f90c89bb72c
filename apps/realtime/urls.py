"""URL routing for realtime streams."""

from __future__ import annotations

from django.urls import path  # type: ignore

from .views import EventStreamView

urlpatterns = [
    path("stream/", EventStreamView.as_view(), name="realtime-stream"),
]
