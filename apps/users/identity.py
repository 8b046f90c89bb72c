"""Bridge from authenticated Django users to domain actors."""

from __future__ import annotations

from shared.domain.value_objects import Actor, Role


def identity_for(user) -> str:
    """Key under which appointments and realtime sessions know a user"""
    return str(user.pk)


def role_for(user) -> Role:
    if getattr(user, "is_superuser", False) or getattr(user, "is_staff", False):
        return Role.ADMIN
    try:
        return Role(getattr(user, "role", Role.CUSTOMER.value))
    except ValueError:
        return Role.CUSTOMER


def actor_for(user) -> Actor:
    return Actor(identity=identity_for(user), role=role_for(user))
