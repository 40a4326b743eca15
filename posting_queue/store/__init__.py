"""
Posting Queue Store

Durable lifecycle storage for posting requests with:
- Abstract store interface supporting multiple backends
- In-memory store for testing and single-process deployments
- MongoDB store for production
- Idempotent insert-or-fetch and atomic claim
- Linear retry backoff
"""

from posting_queue.store.base import PostingQueueStore
from posting_queue.store.memory import InMemoryPostingStore
from posting_queue.store.mongo import MongoPostingStore

__all__ = [
    "PostingQueueStore",
    "InMemoryPostingStore",
    "MongoPostingStore",
]
