"""
Core Exceptions
================

Error types shared by every layer of the triage service.

Each exception carries a human-readable ``message``, a ``details`` dict that
is safe to return to API clients, and the HTTP status it maps to at the API
boundary. Inside a triage run nothing escapes the orchestrator: any of these
ends the run in FAILED with a ``TRIAGE_FAILED`` audit entry.
"""

from typing import Optional


class ApplicationException(Exception):
    """Root of all triage service errors."""

    http_status = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ========== Domain ==========

class DomainException(ApplicationException):
    """A business rule was violated."""

    http_status = 409


class WorkflowStateException(DomainException):
    """A triage run tried to skip a stage, go backwards or leave a terminal state."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Illegal workflow transition {current} -> {requested}",
            {"current": current, "requested": requested}
        )


class ValidationException(ApplicationException):
    """Request is well-formed but not acceptable in the ticket's current state."""

    http_status = 422


# ========== Lookup / Persistence ==========

class ResourceNotFoundException(ApplicationException):
    """A referenced ticket, suggestion or article does not exist."""

    http_status = 404

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type} not found" if resource_id is None else (
            f"{resource_type} with id '{resource_id}' not found"
        )
        super().__init__(message, details or {"resource_type": resource_type, "resource_id": resource_id})


class TicketNotFoundException(ResourceNotFoundException):
    """Triage or a reply was requested for an unknown ticket id."""

    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__("Ticket", ticket_id)


class RepositoryException(ApplicationException):
    """A database read or write failed; suggestion write failures abort the run."""


class ConfigurationException(ApplicationException):
    """Settings or the triage decision file are missing or invalid."""


# ========== Upstream Services ==========

class ExternalServiceException(ApplicationException):
    """A call to a service outside this process failed."""

    http_status = 502

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class LLMException(ExternalServiceException):
    """Chat completion request failed or timed out (retried by the provider)."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("LLM Service", message, details)


class NotificationException(ExternalServiceException):
    """The notification relay rejected or dropped an event."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Notification Service", message, details)
