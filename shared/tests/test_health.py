"""Tests for the health check endpoint."""

from __future__ import annotations

import pytest
from django.urls import reverse


@pytest.mark.django_db
def test_healthz_reports_database(client) -> None:
    response = client.get(reverse("healthz"))

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] == "connected"
    assert isinstance(body["sessions"], int)


def test_healthz_is_get_only(client) -> None:
    assert client.post(reverse("healthz")).status_code == 405
