"""
Posting Queue

Durable, idempotent outbound queue that delivers finance documents to
external accounting integrations.
"""
__version__ = "1.0.0"
