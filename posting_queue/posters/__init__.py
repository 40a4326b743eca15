"""
Posters

Per-integration-type delivery implementations and the dispatcher that
routes a connection to them.
"""
from posting_queue.posters.base import Poster
from posting_queue.posters.dispatcher import PosterDispatcher
from posting_queue.posters.rest import HttpLedgerPoster
from posting_queue.posters.ledgers import SagePoster, XeroPoster, build_default_dispatcher

__all__ = [
    "Poster",
    "PosterDispatcher",
    "HttpLedgerPoster",
    "SagePoster",
    "XeroPoster",
    "build_default_dispatcher",
]
