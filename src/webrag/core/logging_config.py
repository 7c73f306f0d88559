"""Structured logging configuration for webrag."""

import logging
from typing import Dict, Any, Optional

import structlog
from structlog.stdlib import LoggerFactory


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Configure structured logging with audit events for pipeline runs."""

    # Set log level
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level)

    # Configure structlog processors
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if json_logs:
        # JSON output for production/audit
        processors.append(structlog.processors.JSONRenderer())
    else:
        # Human-readable for development
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_audit_logger(component: str) -> structlog.BoundLogger:
    """Get a logger with audit context for a specific component."""
    logger = structlog.get_logger(component)
    return logger.bind(component=component, audit=True)


def log_backfill_event(
    logger: structlog.BoundLogger,
    requested: int,
    summary: Dict[str, int],
    execution_time_ms: float,
    claim_pages: bool = False,
) -> None:
    """Log a committed backfill run."""
    logger.info(
        "backfill_completed",
        requested=requested,
        claim_pages=claim_pages,
        execution_time_ms=execution_time_ms,
        event_type="backfill",
        **summary,
    )


def log_backfill_failure(
    logger: structlog.BoundLogger,
    requested: int,
    step: Optional[str],
    error: str,
    execution_time_ms: float,
) -> None:
    """Log a rolled-back backfill run."""
    logger.error(
        "backfill_rolled_back",
        requested=requested,
        step=step,
        error=error,
        execution_time_ms=execution_time_ms,
        event_type="backfill",
    )


def log_embedding_batch(
    logger: structlog.BoundLogger,
    batch_number: int,
    batch_size: int,
    dimensions: int,
    execution_time_ms: float,
) -> None:
    logger.info(
        "embedding_batch_written",
        batch_number=batch_number,
        batch_size=batch_size,
        dimensions=dimensions,
        execution_time_ms=execution_time_ms,
        event_type="embedding",
    )


def log_search_event(
    logger: structlog.BoundLogger,
    query: str,
    limit: int,
    company_id: Optional[int],
    hit_count: int,
    execution_time_ms: float,
) -> None:
    """Log a similarity search for the audit trail."""
    logger.info(
        "similarity_search_completed",
        query=query,
        limit=limit,
        company_id=company_id,
        hit_count=hit_count,
        execution_time_ms=execution_time_ms,
        event_type="similarity_search",
    )
