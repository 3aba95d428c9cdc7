"""
helpdesk-triage
===============

Support ticket triage service.
"""

__version__ = "1.0.0"
