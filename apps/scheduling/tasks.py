"""Celery tasks for the scheduling domain."""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task  # type: ignore

from shared.domain.exceptions import DomainError, NotFound

from .application.command_handlers import (
    CompleteAppointmentCommand,
    ExpireAppointmentCommand,
    RemindAppointmentCommand,
)

logger = logging.getLogger(__name__)


def _handlers():
    from .application.bootstrap import build_handlers

    return build_handlers()


@shared_task(name="scheduling.expire_pending_appointment")
def expire_pending_appointment(appointment_id: str) -> bool:
    """Cancel one appointment if its confirmation window has elapsed."""

    try:
        return _handlers().expire.handle(ExpireAppointmentCommand(UUID(str(appointment_id))))
    except NotFound:
        logger.warning(f"Expiry fired for unknown appointment {appointment_id}")
        return False


# ============================================================================
# PERIODIC TASKS (run by Celery Beat)
# ============================================================================

@shared_task(name="scheduling.expire_pending_appointments")
def expire_pending_appointments() -> dict[str, int]:
    """
    Sweep for PENDING appointments past their confirmation deadline.

    Backs up the per-appointment trigger (lost broker messages, restarts).
    Runs every minute.

    Returns:
        dict: {"expired": number of appointments cancelled}
    """
    handlers = _handlers()
    expired_count = 0

    for appointment_id in handlers.expire.appointment_repo.list_due_for_expiry(handlers.expire.clock.now()):
        try:
            if handlers.expire.handle(ExpireAppointmentCommand(appointment_id)):
                expired_count += 1
        except DomainError as e:
            logger.error(f"Error expiring appointment {appointment_id}: {e}", exc_info=True)

    if expired_count > 0:
        logger.info(f"Expired {expired_count} pending appointments")

    return {"expired": expired_count}


@shared_task(name="scheduling.complete_finished_appointments")
def complete_finished_appointments() -> dict[str, int]:
    """
    Move CONFIRMED appointments whose window has ended to COMPLETED.

    Runs every 15 minutes.

    Returns:
        dict: {"completed": number of appointments completed}
    """
    handlers = _handlers()
    completed_count = 0

    for appointment_id in handlers.complete.appointment_repo.list_due_for_completion(handlers.complete.clock.now()):
        try:
            handlers.complete.handle(CompleteAppointmentCommand(appointment_id))
            completed_count += 1
        except DomainError as e:
            logger.error(f"Error completing appointment {appointment_id}: {e}", exc_info=True)

    if completed_count > 0:
        logger.info(f"Completed {completed_count} appointments")

    return {"completed": completed_count}


@shared_task(name="scheduling.send_appointment_reminders")
def send_appointment_reminders() -> dict[str, int]:
    """
    Remind customers of confirmed appointments starting within the lead time.

    Each appointment is reminded once. Runs every 5 minutes.

    Returns:
        dict: {"sent": number of reminders emitted}
    """
    handlers = _handlers()
    remind = handlers.remind
    sent_count = 0

    for appointment_id in remind.appointment_repo.list_due_for_reminder(remind.clock.now(), remind.lead):
        try:
            if remind.handle(RemindAppointmentCommand(appointment_id)):
                sent_count += 1
        except DomainError as e:
            logger.error(f"Error reminding appointment {appointment_id}: {e}", exc_info=True)

    if sent_count > 0:
        logger.info(f"Sent {sent_count} appointment reminders")

    return {"sent": sent_count}
