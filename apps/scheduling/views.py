"""API views for the scheduling domain."""

from __future__ import annotations

from django.utils import timezone  # type: ignore
from rest_framework import mixins, permissions, status, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.response import Response  # type: ignore

from shared.application.message_bus import message_bus
from shared.domain.value_objects import TimeWindow
from apps.users.identity import actor_for, identity_for
from apps.users.permissions import IsOrganiser, IsOrganiserOrReadOnly, can_manage_schedule

from .application.command_handlers import (
    CancelAppointmentCommand,
    ChangeResourceCapacityCommand,
    CompleteAppointmentCommand,
    ConfirmAppointmentCommand,
    ReserveSlotCommand,
)
from .domain.availability import availability, day_windows
from .domain.ledger import Rejected, RejectionReason
from .models import Appointment, Resource, Service
from .repositories import DjangoCatalog, DjangoSlotLedgerRepository
from .serializers import (
    AppointmentSerializer,
    AvailabilityQuerySerializer,
    CancelAppointmentSerializer,
    CapacitySerializer,
    ConfirmAppointmentSerializer,
    ReserveSlotSerializer,
    ResourceSerializer,
    ServiceSerializer,
)


class ResourceViewSet(viewsets.ModelViewSet):
    """Resources with their capacity; organisers manage, everyone reads the published ones."""

    queryset = Resource.objects.all()
    serializer_class = ResourceSerializer
    permission_classes = [IsOrganiserOrReadOnly]
    filterset_fields = ["is_published"]
    http_method_names = ["get", "post", "patch", "put", "head", "options"]

    def get_queryset(self):  # type: ignore
        qs = super().get_queryset()
        if can_manage_schedule(self.request.user):
            return qs
        return qs.filter(is_published=True)

    @action(detail=True, methods=["post"], permission_classes=[IsOrganiser])
    def capacity(self, request, pk=None):  # type: ignore
        resource: Resource = self.get_object()  # type: ignore
        serializer = CapacitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        ledger = message_bus.handle_command(ChangeResourceCapacityCommand(
            resource_id=resource.pk,
            capacity=serializer.validated_data["capacity"],
            actor=actor_for(request.user),
        ))
        resource.refresh_from_db()
        data = ResourceSerializer(resource, context=self.get_serializer_context()).data
        data["ledger_version"] = ledger.version
        return Response(data, status=status.HTTP_200_OK)

    @action(detail=True, methods=["get"])
    def availability(self, request, pk=None):  # type: ignore
        resource: Resource = self.get_object()  # type: ignore
        query = AvailabilityQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        policy = DjangoCatalog().get_service(query.validated_data["service"])
        tz = timezone.get_current_timezone()
        windows = day_windows(
            query.validated_data["date"],
            resource.opens_at,
            resource.closes_at,
            policy.duration,
            tz,
        )
        if not windows:
            return Response({"resource": resource.pk, "service": policy.service_id, "slots": []})

        span = TimeWindow.between(windows[0].start, windows[-1].end)
        ledger = DjangoSlotLedgerRepository().get_for_window(resource.pk, span)

        slots = [
            {
                "start_time": slot.window.start.isoformat(),
                "end_time": slot.window.end.isoformat(),
                "remaining": slot.remaining,
                "capacity": slot.capacity,
                "available": slot.available,
            }
            for slot in availability(ledger, windows, not_before=timezone.now())
        ]
        return Response({"resource": resource.pk, "service": policy.service_id, "slots": slots})


class ServiceViewSet(viewsets.ModelViewSet):
    """Bookable services; organisers manage, everyone reads the published ones."""

    queryset = Service.objects.all()
    serializer_class = ServiceSerializer
    permission_classes = [IsOrganiserOrReadOnly]
    filterset_fields = ["is_published", "requires_otp"]
    http_method_names = ["get", "post", "patch", "put", "head", "options"]

    def get_queryset(self):  # type: ignore
        qs = super().get_queryset()
        if can_manage_schedule(self.request.user):
            return qs
        return qs.filter(is_published=True)


class AppointmentViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """Reserve, confirm, cancel and complete appointments. Appointments are never deleted."""

    queryset = Appointment.objects.select_related("resource", "service", "customer").all()
    serializer_class = AppointmentSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["status", "resource", "service"]

    def get_queryset(self):  # type: ignore
        user = self.request.user
        qs = super().get_queryset()
        if not user.is_authenticated:
            return qs.none()
        if can_manage_schedule(user):
            return qs
        return qs.filter(customer=user)

    def _respond(self, appointment_id, http_status=status.HTTP_200_OK):
        instance = Appointment.objects.select_related(
            "resource", "service", "customer"
        ).get(pk=appointment_id)
        serializer = AppointmentSerializer(instance, context=self.get_serializer_context())
        return Response(serializer.data, status=http_status)

    def create(self, request, *args, **kwargs):  # type: ignore
        serializer = ReserveSlotSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = message_bus.handle_command(ReserveSlotCommand(
            resource_id=data.get("resource"),
            service_id=data["service"],
            customer_id=identity_for(request.user),
            customer_email=request.user.email,
            start_time=data["start_time"],
            duration=data.get("duration"),
            units=data["units"],
        ))

        if isinstance(result, Rejected):
            http_status = (
                status.HTTP_409_CONFLICT
                if result.reason == RejectionReason.CAPACITY_EXCEEDED
                else status.HTTP_400_BAD_REQUEST
            )
            response = Response({"code": result.code, "detail": result.detail}, status=http_status)
            if result.retryable:
                response["Retry-After"] = "1"
            return response

        return self._respond(result.id, status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def confirm(self, request, pk=None):  # type: ignore
        appointment = self.get_object()
        serializer = ConfirmAppointmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        message_bus.handle_command(ConfirmAppointmentCommand(
            appointment_id=appointment.pk,
            actor=actor_for(request.user),
            code=serializer.validated_data["code"],
        ))
        return self._respond(appointment.pk)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):  # type: ignore
        appointment = self.get_object()
        serializer = CancelAppointmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        message_bus.handle_command(CancelAppointmentCommand(
            appointment_id=appointment.pk,
            actor=actor_for(request.user),
            reason=serializer.validated_data["reason"],
        ))
        return self._respond(appointment.pk)

    @action(detail=True, methods=["post"], permission_classes=[IsOrganiser])
    def complete(self, request, pk=None):  # type: ignore
        appointment = self.get_object()
        message_bus.handle_command(CompleteAppointmentCommand(appointment_id=appointment.pk))
        return self._respond(appointment.pk)
