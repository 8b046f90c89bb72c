"""URL routing for one-time codes."""

from __future__ import annotations

from django.urls import path  # type: ignore

from .views import IssueCodeView, VerifyCodeView

urlpatterns = [
    path("issue/", IssueCodeView.as_view(), name="otp-issue"),
    path("verify/", VerifyCodeView.as_view(), name="otp-verify"),
]
