"""
Triage Module
=============

Bounded context for automated ticket triage: classification, knowledge
base retrieval, reply drafting and the auto-close / escalate decision.
"""
