"""
Domain Error Taxonomy

- ValidationError: malformed input, rejected before shared state is touched
- NotFound: referenced aggregate does not exist
- CapacityError: capacity would be exceeded (capacity changes; admissions
  return a Rejected result instead of raising)
- StateError: caller-correctable state problems (invalid transition,
  permission, OTP failures)
- ConcurrencyConflict: optimistic version mismatch in the store
  (ResourceBusy: a resource lock timed out)
- DeliveryFailure: a notification could not be delivered (logged, never
  escalated)
"""


class DomainError(Exception):
    """Base class for all domain errors. ``code`` is machine readable."""

    code = 'DOMAIN_ERROR'

    def __init__(self, message: str = '', *, code: str | None = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if code:
            self.code = code


class ValidationError(DomainError):
    code = 'INVALID_INPUT'


class NotFound(DomainError):
    code = 'NOT_FOUND'


class CapacityError(DomainError):
    code = 'CAPACITY_EXCEEDED'


class StateError(DomainError):
    code = 'STATE_ERROR'


class InvalidTransition(StateError):
    code = 'INVALID_TRANSITION'


class PermissionDenied(StateError):
    code = 'FORBIDDEN'


class ConcurrencyConflict(DomainError):
    code = 'CONCURRENCY_CONFLICT'


class ResourceBusy(ConcurrencyConflict):
    """The lock of a resource could not be taken in time; capacity was never checked"""
    code = 'RESOURCE_BUSY'


class DeliveryFailure(DomainError):
    code = 'DELIVERY_FAILED'
