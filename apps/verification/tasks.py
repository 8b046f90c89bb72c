"""Celery tasks for one-time codes."""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task  # type: ignore
from django.conf import settings  # type: ignore

from .services import get_otp_issuer

logger = logging.getLogger(__name__)


@shared_task(name="verification.purge_spent_challenges")
def purge_spent_challenges() -> dict[str, int]:
    """
    Delete consumed, expired and exhausted OTP challenges.

    Runs hourly.

    Returns:
        dict: {"purged": number of challenges deleted}
    """
    retention = timedelta(seconds=getattr(settings, "OTP_RETENTION_SECONDS", 3600))
    purged = get_otp_issuer().purge(older_than=retention)
    logger.info(f"OTP purge finished: {purged} challenge(s) deleted")
    return {"purged": purged}
