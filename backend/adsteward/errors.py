"""
Domain error hierarchy.

Services raise these; routers translate them into HTTP status codes and the
job dispatcher turns them into a generic chat failure notice.
"""

from typing import Optional


class DomainError(Exception):
    """Base class for all domain errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(DomainError):
    """A requested action, campaign, proposal or conversation does not exist."""

    def __init__(self, resource_type: str, identifier: str):
        self.resource_type = resource_type
        self.identifier = str(identifier)
        super().__init__(f"{resource_type} '{identifier}' not found")


class ActionExpiredError(DomainError):
    """A pending action outlived its approval window and was auto-rejected."""

    def __init__(self, action_id: str, age_hours: float):
        self.action_id = str(action_id)
        self.age_hours = age_hours
        super().__init__(f"Action {action_id} expired after {age_hours:.1f}h and was rejected")


class UpstreamError(DomainError):
    """The ad platform, LLM or chat transport call failed."""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service}: {message}")


class ValidationFailure(DomainError):
    """Malformed plan/params, unknown strategy text or an illegal state transition."""
