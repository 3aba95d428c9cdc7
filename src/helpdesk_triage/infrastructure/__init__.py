"""
Infrastructure Module
=====================

Adapters for databases, LLM providers and notification transports shared
by the bounded contexts.
"""
