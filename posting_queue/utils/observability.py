"""
Structured Logging & Observability
Production-grade logging that's both human-readable and machine-parseable.
"""
import sys
from loguru import logger
from typing import Any, Optional
from posting_queue.config import get_settings


def configure_logging():
    """
    Configure loguru for production observability.

    In development: Human-readable colorized output
    In production: Structured JSON logs for ingestion (ELK, Datadog, etc.)
    """
    settings = get_settings()

    # Remove default handler
    logger.remove()

    # Development mode: console output
    if not settings.enable_structured_logging:
        logger.add(
            sys.stderr,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "{message}"
            ),
            level=settings.log_level,
            colorize=True,
        )
    # Production mode: JSON structured logs
    else:
        logger.add(
            sys.stderr,
            format="{message}",
            level=settings.log_level,
            serialize=True,  # Output as JSON
        )

    logger.info(f"Logging configured: level={settings.log_level}, structured={settings.enable_structured_logging}")


def log_posting_event(
    event_type: str,
    queue_item_id: str,
    tenant_id: Optional[str] = None,
    integration_id: Optional[str] = None,
    level: str = "INFO",
    **details: Any
):
    """
    Log a posting queue lifecycle event with structured context.

    Args:
        event_type: Type of event (e.g., "enqueued", "claimed", "failed")
        queue_item_id: The queue item involved
        tenant_id: Owning tenant
        integration_id: Target integration connection
        level: Log level name
        **details: Event-specific data (status, attempts, error, ...)

    Example:
        >>> log_posting_event(
        ...     "failed",
        ...     queue_item_id="65f0...",
        ...     tenant_id="T1",
        ...     integration_id="I1",
        ...     status="RETRYING",
        ...     attempts=1,
        ... )
    """
    log_data = {
        "event_type": event_type,
        "queue_item_id": queue_item_id,
        "tenant_id": tenant_id,
        "integration_id": integration_id,
        **details
    }

    logger.bind(**log_data).log(level, f"Posting {event_type}: {queue_item_id}")
