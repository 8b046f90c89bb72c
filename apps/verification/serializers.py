"""Serializers for one-time code endpoints."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore


class IssueCodeSerializer(serializers.Serializer):
    email = serializers.EmailField(required=False)


class VerifyCodeSerializer(serializers.Serializer):
    email = serializers.EmailField(required=False)
    code = serializers.RegexField(r"^\d{6}$", max_length=6)
