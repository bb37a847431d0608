"""
Domain exceptions raised by the engine's services.

Each carries the HTTP status the API layer answers with; the scheduler
tick catches them per campaign and never lets one escape.
"""
from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base class for engine errors."""

    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFoundError(DomainError):
    status_code = 404

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(
            f"{resource} with id '{resource_id}' not found",
            details={"resource": resource, "resource_id": str(resource_id)},
        )


class ScheduleValidationError(DomainError):
    """Malformed schedule rejected at schedule-set time."""
    status_code = 422


class SegmentValidationError(DomainError):
    """Segment criteria reference unknown fields or are malformed."""
    status_code = 422


class InvalidTransitionError(DomainError):
    """Requested campaign status change is not allowed."""
    status_code = 409


class AllocationError(DomainError):
    """A/B variant operation refused (too many/too few variants, unknown id)."""
    status_code = 400


class FunnelError(DomainError):
    """Funnel operation refused (unknown step, partial reorder)."""
    status_code = 400


class AudienceResolutionError(DomainError):
    """Campaign audience points at something that does not exist."""
    status_code = 422


class CampaignDeliveryError(DomainError):
    """One or more recipients could not be sent to."""
    status_code = 502


class ConversionValidationError(DomainError):
    """Lead cannot be converted with the data given."""
    status_code = 422
