"""
Scheduling Event Handlers

React to committed scheduling events:
- AppointmentCreated: schedule the expiry task at the confirmation deadline
- AppointmentReminder: send the reminder e-mail

Handlers run after commit; failures are logged by the message bus and
never affect the transition that produced the event.
"""

import logging

from shared.application.message_bus import MessageBus
from apps.scheduling.domain.events import AppointmentCreated, AppointmentReminder

logger = logging.getLogger(__name__)


def schedule_expiry(event: AppointmentCreated):
    """Queue the per-appointment expiry trigger; the periodic sweep is the fallback"""
    if event.confirm_deadline is None:
        return

    from apps.scheduling.tasks import expire_pending_appointment

    try:
        expire_pending_appointment.apply_async(
            args=[str(event.appointment_id)],
            eta=event.confirm_deadline,
        )
    except Exception as e:
        # Broker down: the periodic sweep still expires the appointment
        logger.error(
            f"Could not schedule expiry of appointment {event.appointment_id}: {e}",
            exc_info=True,
        )
        return

    logger.debug(
        f"Expiry of appointment {event.appointment_id} scheduled for "
        f"{event.confirm_deadline.isoformat()}"
    )


def send_reminder_email(event: AppointmentReminder):
    from apps.notifications.services import send_appointment_reminder_email
    from apps.scheduling.models import Service

    service_name = ""
    if event.service_id is not None:
        service_name = Service.objects.filter(pk=event.service_id).values_list("name", flat=True).first() or ""

    send_appointment_reminder_email(event, service_name)


def register(bus: MessageBus):
    bus.register_event_handler(AppointmentCreated, schedule_expiry)
    bus.register_event_handler(AppointmentReminder, send_reminder_email)
