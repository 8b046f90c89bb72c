"""
Scheduling Repositories

Translate between the Django models and the scheduling aggregates.
The ledger is never stored as such: it is derived on demand from the
non-cancelled appointments of a resource plus the resource row, whose
``ledger_version`` is the optimistic concurrency token of the ledger.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import List
from uuid import UUID
import logging

from django.db import transaction  # type: ignore
from django.db.models import F  # type: ignore
from django.db.utils import NotSupportedError  # type: ignore

from shared.domain.exceptions import ConcurrencyConflict, NotFound
from shared.domain.value_objects import TimeWindow
from apps.scheduling.domain.entities import (
    Appointment,
    AppointmentStatus,
    ResourceProfile,
    ServicePolicy,
)
from apps.scheduling.domain.ledger import Allocation, SlotLedger

from .models import Appointment as AppointmentModel
from .models import Resource as ResourceModel
from .models import Service as ServiceModel

logger = logging.getLogger(__name__)


def _lock_queryset_if_possible(queryset):
    """Apply select_for_update when inside transaction.atomic()."""

    if not transaction.get_connection().in_atomic_block:
        return queryset

    try:
        return queryset.select_for_update()
    except NotSupportedError:
        return queryset


# ===== Interfaces =====

class AbstractAppointmentRepository(ABC):

    @abstractmethod
    def get(self, appointment_id: UUID) -> Appointment:
        """Raise NotFound when the appointment does not exist"""

    @abstractmethod
    def add(self, appointment: Appointment):
        pass

    @abstractmethod
    def save(self, appointment: Appointment):
        """Persist a transition; raise ConcurrencyConflict on a stale version"""

    @abstractmethod
    def list_due_for_expiry(self, now: datetime) -> List[UUID]:
        pass

    @abstractmethod
    def list_due_for_completion(self, now: datetime) -> List[UUID]:
        pass

    @abstractmethod
    def list_due_for_reminder(self, now: datetime, lead: timedelta) -> List[UUID]:
        pass


class AbstractSlotLedgerRepository(ABC):

    @abstractmethod
    def get_for_window(self, resource_id: int, window: TimeWindow, lock: bool = False) -> SlotLedger:
        """Ledger holding the allocations that overlap ``window``"""

    @abstractmethod
    def get_for_resource(self, resource_id: int, since: datetime, lock: bool = False) -> SlotLedger:
        """Ledger holding every allocation that has not ended by ``since``"""

    @abstractmethod
    def save(self, ledger: SlotLedger):
        """Bump the ledger version; raise ConcurrencyConflict on a stale version"""


class AbstractCatalog(ABC):

    @abstractmethod
    def get_resource(self, resource_id: int) -> ResourceProfile:
        pass

    @abstractmethod
    def get_service(self, service_id: int) -> ServicePolicy:
        pass

    @abstractmethod
    def resources_for_service(self, service_id: int) -> List[ResourceProfile]:
        """Published resources that can deliver the service"""
        pass


# ===== Django implementations =====

STATUS_TO_MODEL = {
    AppointmentStatus.PENDING: AppointmentModel.Status.PENDING,
    AppointmentStatus.CONFIRMED: AppointmentModel.Status.CONFIRMED,
    AppointmentStatus.CANCELLED: AppointmentModel.Status.CANCELLED,
    AppointmentStatus.COMPLETED: AppointmentModel.Status.COMPLETED,
}

MUTABLE_FIELDS = (
    "status",
    "confirm_deadline",
    "confirmed_at",
    "cancelled_at",
    "completed_at",
    "reminded_at",
    "cancellation_reason",
    "cancelled_by",
    "updated_at",
)


def appointment_from_model(row: AppointmentModel) -> Appointment:
    return Appointment(
        id=row.id,
        created_at=row.created_at,
        updated_at=row.updated_at,
        resource_id=row.resource_id,
        service_id=row.service_id,
        service_name=row.service.name if row.service_id else '',
        customer_id=str(row.customer_id),
        customer_email=row.customer_email,
        window=TimeWindow.between(row.start_time, row.end_time),
        capacity_units=row.capacity_units,
        status=AppointmentStatus(row.status),
        requires_otp=row.requires_otp,
        confirm_deadline=row.confirm_deadline,
        version=row.version,
        confirmed_at=row.confirmed_at,
        cancelled_at=row.cancelled_at,
        completed_at=row.completed_at,
        reminded_at=row.reminded_at,
        cancellation_reason=row.cancellation_reason,
        cancelled_by=row.cancelled_by,
    )


def resource_profile(resource: ResourceModel) -> ResourceProfile:
    return ResourceProfile(
        resource_id=resource.pk,
        label=resource.label,
        capacity=resource.capacity,
        opens_at=resource.opens_at,
        closes_at=resource.closes_at,
        is_published=resource.is_published,
    )


class DjangoAppointmentRepository(AbstractAppointmentRepository):
    """Appointment rows keyed by UUID, versioned on every transition"""

    def get(self, appointment_id: UUID) -> Appointment:
        try:
            row = AppointmentModel.objects.select_related("service").get(pk=appointment_id)
        except (AppointmentModel.DoesNotExist, ValueError):
            raise NotFound(f"Appointment {appointment_id} not found")
        return appointment_from_model(row)

    def add(self, appointment: Appointment):
        AppointmentModel.objects.create(
            id=appointment.id,
            resource_id=appointment.resource_id,
            service_id=appointment.service_id,
            customer_id=int(appointment.customer_id),
            customer_email=appointment.customer_email,
            start_time=appointment.window.start,
            end_time=appointment.window.end,
            capacity_units=appointment.capacity_units,
            status=STATUS_TO_MODEL[appointment.status],
            requires_otp=appointment.requires_otp,
            confirm_deadline=appointment.confirm_deadline,
            version=appointment.version,
            created_at=appointment.created_at,
            updated_at=appointment.updated_at,
        )

    def save(self, appointment: Appointment):
        values = {name: getattr(appointment, name) for name in MUTABLE_FIELDS}
        values["status"] = STATUS_TO_MODEL[appointment.status]

        updated = AppointmentModel.objects.filter(
            pk=appointment.id,
            version=appointment.version,
        ).update(version=F("version") + 1, **values)

        if not updated:
            raise ConcurrencyConflict(
                f"Appointment {appointment.id} was changed concurrently "
                f"(expected version {appointment.version})"
            )
        appointment.version += 1

    def list_due_for_expiry(self, now: datetime) -> List[UUID]:
        return list(
            AppointmentModel.objects.filter(
                status=AppointmentModel.Status.PENDING,
                confirm_deadline__lte=now,
            ).order_by("confirm_deadline").values_list("id", flat=True)
        )

    def list_due_for_completion(self, now: datetime) -> List[UUID]:
        return list(
            AppointmentModel.objects.filter(
                status=AppointmentModel.Status.CONFIRMED,
                end_time__lte=now,
            ).order_by("end_time").values_list("id", flat=True)
        )

    def list_due_for_reminder(self, now: datetime, lead: timedelta) -> List[UUID]:
        return list(
            AppointmentModel.objects.filter(
                status=AppointmentModel.Status.CONFIRMED,
                reminded_at__isnull=True,
                start_time__gte=now,
                start_time__lte=now + lead,
            ).order_by("start_time").values_list("id", flat=True)
        )


class DjangoSlotLedgerRepository(AbstractSlotLedgerRepository):
    """
    Ledger rebuilt from appointment rows

    With ``lock=True`` the resource row is selected FOR UPDATE, which
    serialises admissions on one resource across processes where the
    backend supports it. The version check in save() covers the rest.
    """

    def _load_resource(self, resource_id: int, lock: bool) -> ResourceModel:
        queryset = ResourceModel.objects.filter(pk=resource_id)
        if lock:
            queryset = _lock_queryset_if_possible(queryset)
        resource = queryset.first()
        if resource is None:
            raise NotFound(f"Resource {resource_id} not found")
        return resource

    def _build(self, resource: ResourceModel, rows) -> SlotLedger:
        allocations = [
            Allocation(
                appointment_id=row.id,
                window=TimeWindow.between(row.start_time, row.end_time),
                units=row.capacity_units,
            )
            for row in rows
        ]
        return SlotLedger(
            resource_id=resource.pk,
            capacity=resource.capacity,
            allocations=allocations,
            version=resource.ledger_version,
        )

    def _blocking(self, resource_id: int):
        return AppointmentModel.objects.filter(resource_id=resource_id).exclude(
            status=AppointmentModel.Status.CANCELLED,
        )

    def get_for_window(self, resource_id: int, window: TimeWindow, lock: bool = False) -> SlotLedger:
        resource = self._load_resource(resource_id, lock)
        rows = self._blocking(resource_id).filter(
            start_time__lt=window.end,
            end_time__gt=window.start,
        ).only("id", "start_time", "end_time", "capacity_units")
        return self._build(resource, rows)

    def get_for_resource(self, resource_id: int, since: datetime, lock: bool = False) -> SlotLedger:
        resource = self._load_resource(resource_id, lock)
        rows = self._blocking(resource_id).filter(
            end_time__gt=since,
        ).only("id", "start_time", "end_time", "capacity_units")
        return self._build(resource, rows)

    def save(self, ledger: SlotLedger):
        updated = ResourceModel.objects.filter(
            pk=ledger.resource_id,
            ledger_version=ledger.version,
        ).update(
            ledger_version=F("ledger_version") + 1,
            capacity=ledger.capacity,
        )

        if not updated:
            logger.warning(
                f"Ledger of resource {ledger.resource_id} moved past version {ledger.version}"
            )
            raise ConcurrencyConflict(
                f"Ledger of resource {ledger.resource_id} was changed concurrently"
            )
        ledger.version += 1


class DjangoCatalog(AbstractCatalog):
    """Resources and services as the admission step needs them"""

    def get_resource(self, resource_id: int) -> ResourceProfile:
        try:
            resource = ResourceModel.objects.get(pk=resource_id)
        except (ResourceModel.DoesNotExist, ValueError):
            raise NotFound(f"Resource {resource_id} not found")
        return resource_profile(resource)

    def resources_for_service(self, service_id: int) -> List[ResourceProfile]:
        resources = ResourceModel.objects.filter(
            services__pk=service_id,
            is_published=True,
        ).order_by("pk")
        return [resource_profile(resource) for resource in resources]

    def get_service(self, service_id: int) -> ServicePolicy:
        try:
            service = ServiceModel.objects.get(pk=service_id)
        except (ServiceModel.DoesNotExist, ValueError):
            raise NotFound(f"Service {service_id} not found")

        return ServicePolicy(
            service_id=service.pk,
            name=service.name,
            duration=service.duration,
            requires_otp=service.requires_otp,
            confirmation_window=service.confirmation_window,
            is_published=service.is_published,
        )
