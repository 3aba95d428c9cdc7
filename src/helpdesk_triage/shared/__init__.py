"""
Shared Kernel Module
====================

This module contains shared infrastructure used across the application:
structured logging, retry/backoff and HTTP middleware.

Architecture Pattern: Modular Monolith
- The triage module is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add triage business logic to the shared kernel.
"""

__version__ = "1.0.0"
