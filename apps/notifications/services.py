"""Notification services for sending emails."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings  # type: ignore
from django.core.mail import send_mail  # type: ignore
from django.template.loader import render_to_string  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.html import strip_tags  # type: ignore

if TYPE_CHECKING:  # pragma: no cover
    from apps.scheduling.domain.events import AppointmentReminder

logger = logging.getLogger(__name__)


# ============================================================================
# EMAIL NOTIFICATIONS
# ============================================================================

def send_email_notification(
    recipient_email: str,
    subject: str,
    template_name: str | None,
    context: dict,
    *,
    html_message: str | None = None,
) -> bool:
    """
    Send one e-mail.

    Args:
        recipient_email: Recipient address
        subject: Subject line
        template_name: Django template to render (optional)
        context: Template context; ``message`` is the plain-text fallback
        html_message: Ready HTML body (optional)

    Returns:
        bool: True when the mail was handed to the backend
    """
    try:
        if html_message:
            text_message = strip_tags(html_message)
        elif template_name:
            html_message = render_to_string(template_name, context)
            text_message = strip_tags(html_message)
        else:
            text_message = context.get("message", "")
            html_message = None

        send_mail(
            subject=subject,
            message=text_message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[recipient_email],
            html_message=html_message,
            fail_silently=False,
        )

        logger.info(f"Email sent successfully to {recipient_email}: {subject}")
        return True

    except Exception as e:
        logger.error(f"Failed to send email to {recipient_email}: {e}", exc_info=True)
        return False


def send_otp_email(recipient_email: str, code: str, ttl: timedelta) -> bool:
    """Deliver a one-time confirmation code."""
    minutes = max(int(ttl.total_seconds() // 60), 1)
    subject = "Your appointment confirmation code"

    html_message = f"""
    <html>
    <body>
        <h2>Confirm your appointment</h2>
        <p>Your confirmation code is <strong>{code}</strong>.</p>
        <p>This code expires in {minutes} minutes.</p>
        <p>If you did not request it, you can ignore this message.</p>
    </body>
    </html>
    """

    return send_email_notification(
        recipient_email=recipient_email,
        subject=subject,
        template_name=None,
        context={"code": code},
        html_message=html_message,
    )


def send_appointment_reminder_email(event: "AppointmentReminder", service_name: str = "") -> bool:
    """Remind a customer of a confirmed appointment that starts soon."""
    if not event.customer_email:
        logger.debug(f"No e-mail on appointment {event.appointment_id}, reminder skipped")
        return False

    starts = timezone.localtime(event.window.start)
    what = service_name or "appointment"
    subject = f"Reminder: your {what} starts at {starts:%H:%M}"

    html_message = f"""
    <html>
    <body>
        <h2>See you soon!</h2>
        <p>Your {what} is booked for <strong>{starts:%d.%m.%Y %H:%M}</strong>
        and lasts {int(event.window.duration.total_seconds() // 60)} minutes.</p>
        <p>If you can no longer make it, please cancel so someone else can take the slot.</p>
    </body>
    </html>
    """

    return send_email_notification(
        recipient_email=event.customer_email,
        subject=subject,
        template_name=None,
        context={"appointment_id": str(event.appointment_id)},
        html_message=html_message,
    )
