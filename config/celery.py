import os

from celery import Celery
from celery.schedules import crontab  # type: ignore

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.dev")

app = Celery("slotkeeper")

app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()


# ============================================================================
# CELERY BEAT SCHEDULE (Periodic Tasks)
# ============================================================================

app.conf.beat_schedule = {
    # Sweep for pending appointments whose expiry task was lost - every minute
    "expire-pending-appointments": {
        "task": "scheduling.expire_pending_appointments",
        "schedule": 60.0,
        "options": {"expires": 50},
    },
    # Complete appointments whose window has passed - every 15 minutes
    "complete-finished-appointments": {
        "task": "scheduling.complete_finished_appointments",
        "schedule": crontab(minute="*/15"),
    },
    # Reminders for confirmed appointments starting soon - every 5 minutes
    "send-appointment-reminders": {
        "task": "scheduling.send_appointment_reminders",
        "schedule": crontab(minute="*/5"),
    },
    # Drop one-time codes that can never be accepted again - hourly
    "purge-spent-otp-challenges": {
        "task": "verification.purge_spent_challenges",
        "schedule": crontab(minute=7),
    },
}

app.conf.timezone = os.environ.get("DJANGO_TIME_ZONE", "UTC")
