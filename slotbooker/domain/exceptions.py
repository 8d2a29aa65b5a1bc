"""
Domain-specific exception hierarchy for the booking engine.
"""


class BookingError(Exception):
    """Base class for all application-level errors."""


class ValidationError(BookingError):
    """Raised for malformed rules or a missing selection before an advance."""


class InvalidTransitionError(ValidationError):
    """Raised when a workflow step change is not allowed from the current step."""


class OperationInProgressError(ValidationError):
    """Raised when an action is triggered again while its previous call is outstanding."""


class CapacityError(BookingError):
    """Raised when a bounded collection would exceed its limit."""


class TooManyActiveTiersError(CapacityError):
    """Raised when activating a pricing tier would exceed the active tier limit."""


class ConfigurationGatedError(BookingError):
    """Raised when a feature is used while its platform gate is disabled."""


class ExternalOperationError(BookingError):
    """Raised when a collaborator (rule/pricing source, payment) fails."""
