"""
SLA Engine Exceptions

Domain errors raised by the SLA engine. Each carries the HTTP status code the
API layer answers with when the error reaches a request boundary.
"""

from typing import Optional


class SlaEngineError(Exception):
    """Base exception for all SLA engine errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(SlaEngineError):
    """No SLA policy could be resolved for a ticket."""


class PersistenceError(SlaEngineError):
    """Persisting a ticket's SLA state failed."""

    status_code = 503


class InvalidPolicyError(SlaEngineError):
    """An SLA policy definition was rejected."""

    status_code = 422


class DuplicatePolicyError(SlaEngineError):
    """An SLA policy with the same name already exists."""

    status_code = 409


class ResourceNotFoundError(SlaEngineError):
    """A requested resource does not exist."""

    status_code = 404

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" not found: {resource_id}"
        else:
            message += " not found"
        super().__init__(message, details)


class TicketNotFoundError(ResourceNotFoundError):
    def __init__(self, ticket_id: str):
        super().__init__("Ticket", ticket_id)


class PolicyNotFoundError(ResourceNotFoundError):
    def __init__(self, policy_id: str):
        super().__init__("SLA policy", policy_id)


class SchedulerBusyError(SlaEngineError):
    """An SLA check was requested while another one is still running."""

    status_code = 409
