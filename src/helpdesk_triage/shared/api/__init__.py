"""
Shared API
==========

Middleware and exception handlers common to all routers.
"""
