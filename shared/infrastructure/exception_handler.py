"""
DRF exception handler

Renders domain errors as {"code": ..., "detail": ...} with the HTTP
status of their category; everything else goes to DRF's default.
"""

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from shared.domain.exceptions import (
    CapacityError,
    ConcurrencyConflict,
    DomainError,
    NotFound,
    PermissionDenied,
    StateError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Most specific first
STATUS_BY_ERROR = (
    (PermissionDenied, status.HTTP_403_FORBIDDEN),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (CapacityError, status.HTTP_409_CONFLICT),
    (ConcurrencyConflict, status.HTTP_409_CONFLICT),
    (StateError, status.HTTP_409_CONFLICT),
)


def status_for(error: DomainError) -> int:
    from apps.verification.services import OTPThrottled

    if isinstance(error, OTPThrottled):
        return status.HTTP_429_TOO_MANY_REQUESTS
    for error_type, http_status in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return http_status
    return status.HTTP_400_BAD_REQUEST


def domain_exception_handler(exc, context):
    if not isinstance(exc, DomainError):
        return drf_exception_handler(exc, context)

    http_status = status_for(exc)
    view = context.get("view")
    logger.info(
        f"{exc.__class__.__name__} ({exc.code}) in "
        f"{view.__class__.__name__ if view else 'unknown view'}: {exc.message}"
    )

    response = Response({"code": exc.code, "detail": exc.message}, status=http_status)
    retry_after = getattr(exc, "retry_after", None)
    if retry_after:
        response["Retry-After"] = str(retry_after)
    return response
