"""
Poster Dispatcher

Routes a connection to the poster registered for its integration type.
"""

from typing import Any, Dict, Iterable, List, Optional

from posting_queue.models.connection import IntegrationConnection
from posting_queue.models.posting import PostResult
from posting_queue.posters.base import Poster
from posting_queue.utils.metrics import Timer, metrics
from posting_queue.utils.observability import logger


class PosterDispatcher:
    """
    Lookup table of posters keyed by integration type.

    A missing entry is an ordinary delivery failure, subject to the same
    retry policy as a rejected remote call.
    """

    def __init__(self, posters: Optional[Iterable[Poster]] = None):
        self._posters: Dict[str, Poster] = {}
        for poster in posters or []:
            self.register(poster)

    def register(self, poster: Poster) -> None:
        """Register (or replace) the poster for `poster.integration_type`."""
        self._posters[str(poster.integration_type)] = poster
        logger.debug(f"Registered poster for integration type {poster.integration_type}")

    def supported_types(self) -> List[str]:
        return sorted(self._posters)

    async def post(
        self,
        connection: IntegrationConnection,
        doc_type: str,
        payload: Dict[str, Any]
    ) -> PostResult:
        """
        Deliver a document through the poster for `connection.type`.

        Never raises: table misses and poster exceptions become failure results.
        """
        poster = self._posters.get(connection.type)
        if poster is None:
            return PostResult.failure(f"Unknown integration type: {connection.type}")

        try:
            with Timer(metrics.poster_duration, integration_type=connection.type):
                return await poster.post(connection, doc_type, payload)
        except Exception as e:
            logger.bind(
                integration_id=connection.id,
                integration_type=connection.type,
                doc_type=doc_type,
            ).opt(exception=e).error("Poster raised an unexpected error")
            return PostResult.failure(f"{connection.type} poster error: {e}")
