"""
Core Module
============

Framework-agnostic building blocks shared by every layer: the exception
hierarchy and the HTTP status each error maps to.
"""

from helpdesk_triage.core.exceptions import (
    ApplicationException,
    DomainException,
    WorkflowStateException,
    ValidationException,
    ResourceNotFoundException,
    TicketNotFoundException,
    RepositoryException,
    ConfigurationException,
    ExternalServiceException,
    LLMException,
    NotificationException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "WorkflowStateException",
    "ValidationException",
    "ResourceNotFoundException",
    "TicketNotFoundException",
    "RepositoryException",
    "ConfigurationException",
    "ExternalServiceException",
    "LLMException",
    "NotificationException",
]
