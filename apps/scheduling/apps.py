from django.apps import AppConfig  # type: ignore
from django.conf import settings  # type: ignore


class SchedulingConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.scheduling"
    verbose_name = "Scheduling"

    def ready(self) -> None:
        from shared.application.locks import resource_locks
        from shared.application.message_bus import message_bus

        from .application import event_handlers
        from .application.bootstrap import register_command_handlers

        resource_locks.timeout = getattr(settings, "RESOURCE_LOCK_TIMEOUT_SECONDS", resource_locks.timeout)
        event_handlers.register(message_bus)
        register_command_handlers(message_bus)
