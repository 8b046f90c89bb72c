"""Permission classes for schedule management."""

from __future__ import annotations

from rest_framework import permissions  # type: ignore


def can_manage_schedule(user) -> bool:
    if getattr(user, "is_staff", False) or getattr(user, "is_superuser", False):
        return True
    return hasattr(user, "can_manage_schedule") and user.can_manage_schedule()


class IsOrganiser(permissions.BasePermission):
    """Only organisers and administrators."""

    def has_permission(self, request, view) -> bool:  # type: ignore
        user = request.user
        if not user.is_authenticated:
            return False
        return can_manage_schedule(user)


class IsOrganiserOrReadOnly(permissions.BasePermission):
    """
    Allow organisers and administrators to write, but anyone authenticated can read.
    """

    def has_permission(self, request, view) -> bool:  # type: ignore
        user = request.user
        if not user.is_authenticated:
            return False

        if request.method in permissions.SAFE_METHODS:
            return True

        return can_manage_schedule(user)
