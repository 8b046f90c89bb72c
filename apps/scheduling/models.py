"""Persistence models for the scheduling domain."""

from __future__ import annotations

import uuid
from datetime import time, timedelta

from django.conf import settings  # type: ignore
from django.core.exceptions import ValidationError  # type: ignore
from django.core.validators import MinValueValidator  # type: ignore
from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class Resource(models.Model):
    """A bookable staff member or room with a finite capacity."""

    label = models.CharField(max_length=150)
    capacity = models.PositiveIntegerField(
        default=1,
        validators=[MinValueValidator(1)],
        help_text=_("How many appointments may overlap at the same instant."),
    )
    opens_at = models.TimeField(default=time(9, 0))
    closes_at = models.TimeField(default=time(18, 0))
    is_published = models.BooleanField(default=False)
    ledger_version = models.PositiveBigIntegerField(
        default=0,
        editable=False,
        help_text=_("Bumped by every admission, release and capacity change."),
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Resource")
        verbose_name_plural = _("Resources")
        ordering = ["label"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(capacity__gte=1),
                name="resource_capacity_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(closes_at__gt=models.F("opens_at")),
                name="resource_valid_opening_hours",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.label} (capacity {self.capacity})"

    def clean(self) -> None:
        if self.opens_at >= self.closes_at:
            raise ValidationError(_("Closing time must be after opening time."))


class Service(models.Model):
    """Something a customer books; fixes the appointment length and confirmation policy."""

    name = models.CharField(max_length=150)
    description = models.TextField(blank=True)
    duration = models.DurationField(default=timedelta(minutes=30))
    requires_otp = models.BooleanField(
        default=True,
        help_text=_("Appointments must be confirmed with an e-mailed code."),
    )
    confirmation_window = models.DurationField(
        null=True,
        blank=True,
        help_text=_("Overrides the global confirmation window for this service."),
    )
    resources = models.ManyToManyField(
        Resource,
        blank=True,
        related_name="services",
        help_text=_("Resources assigned automatically when a booking names none."),
    )
    is_published = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Service")
        verbose_name_plural = _("Services")
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name

    def clean(self) -> None:
        if self.duration <= timedelta(0):
            raise ValidationError(_("Duration must be positive."))
        if self.confirmation_window is not None and self.confirmation_window <= timedelta(0):
            raise ValidationError(_("Confirmation window must be positive."))


class Appointment(models.Model):
    """Stored state of an appointment. Rows are never deleted."""

    class Status(models.TextChoices):
        PENDING = "pending", _("Pending confirmation")
        CONFIRMED = "confirmed", _("Confirmed")
        CANCELLED = "cancelled", _("Cancelled")
        COMPLETED = "completed", _("Completed")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    resource = models.ForeignKey(
        Resource,
        on_delete=models.PROTECT,
        related_name="appointments",
    )
    service = models.ForeignKey(
        Service,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="appointments",
    )
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="appointments",
    )
    customer_email = models.EmailField(blank=True)
    start_time = models.DateTimeField()
    end_time = models.DateTimeField()
    capacity_units = models.PositiveSmallIntegerField(default=1)
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.PENDING,
    )
    requires_otp = models.BooleanField(default=False)
    confirm_deadline = models.DateTimeField(null=True, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    reminded_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=255, blank=True)
    cancelled_by = models.CharField(max_length=64, blank=True)
    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        verbose_name = _("Appointment")
        verbose_name_plural = _("Appointments")
        ordering = ["-start_time"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(end_time__gt=models.F("start_time")),
                name="appointment_valid_window",
            ),
            models.CheckConstraint(
                condition=models.Q(capacity_units__gte=1),
                name="appointment_units_positive",
            ),
        ]
        indexes = [
            models.Index(fields=["resource", "start_time", "end_time"], name="appt_resource_window_idx"),
            models.Index(fields=["status", "confirm_deadline"], name="appt_status_deadline_idx"),
            models.Index(fields=["customer", "status"], name="appt_customer_status_idx"),
        ]

    def __str__(self) -> str:
        return f"Appointment {self.id} on {self.resource_id} ({self.status})"

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time
