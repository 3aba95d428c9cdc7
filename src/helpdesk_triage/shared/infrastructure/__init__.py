"""
Infrastructure Layer
=====================

Low-level technical concerns shared by all modules:
- Logging setup
- Retry/backoff for unreliable calls
"""
