"""
Triage Interfaces Layer
========================

Interface adapters (controllers) for ticket triage module.

Contains:
- Controllers: FastAPI route handlers
"""

from helpdesk_triage.triage.interfaces.controllers import (
    TriageServices,
    get_triage_services,
    tickets_router,
    triage_router,
)

__all__ = ["TriageServices", "get_triage_services", "tickets_router", "triage_router"]
