"""Serializers for the scheduling domain."""

from __future__ import annotations

from datetime import timedelta

from rest_framework import serializers  # type: ignore

from .models import Appointment, Resource, Service


class ResourceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Resource
        fields = [
            "id",
            "label",
            "capacity",
            "opens_at",
            "closes_at",
            "is_published",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate(self, attrs):  # type: ignore
        opens_at = attrs.get("opens_at", getattr(self.instance, "opens_at", None))
        closes_at = attrs.get("closes_at", getattr(self.instance, "closes_at", None))
        if opens_at and closes_at and opens_at >= closes_at:
            raise serializers.ValidationError("Closing time must be after opening time.")
        return attrs

    def update(self, instance, validated_data):  # type: ignore
        # Capacity only changes through the capacity action, which guards bookings
        if "capacity" in validated_data and validated_data["capacity"] != instance.capacity:
            raise serializers.ValidationError(
                {"capacity": "Use the capacity action to change the capacity of a resource."}
            )
        return super().update(instance, validated_data)


class ServiceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Service
        fields = [
            "id",
            "name",
            "description",
            "duration",
            "requires_otp",
            "confirmation_window",
            "resources",
            "is_published",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_duration(self, value):  # type: ignore
        if value <= timedelta(0):
            raise serializers.ValidationError("Duration must be positive.")
        return value

    def validate_confirmation_window(self, value):  # type: ignore
        if value is not None and value <= timedelta(0):
            raise serializers.ValidationError("Confirmation window must be positive.")
        return value


class AppointmentSerializer(serializers.ModelSerializer):
    service_name = serializers.CharField(source="service.name", read_only=True, default=None)
    resource_label = serializers.CharField(source="resource.label", read_only=True)

    class Meta:
        model = Appointment
        fields = [
            "id",
            "resource",
            "resource_label",
            "service",
            "service_name",
            "customer",
            "start_time",
            "end_time",
            "capacity_units",
            "status",
            "requires_otp",
            "confirm_deadline",
            "confirmed_at",
            "cancelled_at",
            "completed_at",
            "cancellation_reason",
            "created_at",
        ]
        read_only_fields = fields


class ReserveSlotSerializer(serializers.Serializer):
    resource = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    service = serializers.IntegerField(min_value=1)
    start_time = serializers.DateTimeField()
    duration = serializers.DurationField(required=False)
    units = serializers.IntegerField(min_value=1, default=1)


class ConfirmAppointmentSerializer(serializers.Serializer):
    code = serializers.CharField(required=False, allow_blank=True, max_length=6, default="")


class CancelAppointmentSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255, default="")


class CapacitySerializer(serializers.Serializer):
    capacity = serializers.IntegerField(min_value=1)


class AvailabilityQuerySerializer(serializers.Serializer):
    date = serializers.DateField()
    service = serializers.IntegerField(min_value=1)


class RejectionSerializer(serializers.Serializer):
    code = serializers.CharField()
    detail = serializers.CharField()
