"""Admin registration for verification codes."""

from __future__ import annotations

from django.contrib import admin

from .models import OTPChallenge


@admin.register(OTPChallenge)
class OTPChallengeAdmin(admin.ModelAdmin):
    list_display = ("subject_email", "issued_at", "expires_at", "attempts_left", "consumed")
    list_filter = ("consumed",)
    search_fields = ("subject_email",)
    exclude = ("code",)
    readonly_fields = ("subject_email", "issued_at", "expires_at", "attempts_left", "consumed", "consumed_at")
