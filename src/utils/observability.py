"""
Structured Logging & Observability
Production-grade logging that's both human-readable and machine-parseable.
"""
import sys
from loguru import logger
from typing import Any, Dict
from src.config import get_settings


def configure_logging():
    """
    Configure loguru for production observability.

    In development: Human-readable colorized output
    In production: Structured JSON logs for ingestion (ELK, Datadog, etc.)
    """
    settings = get_settings()

    # Remove default handler
    logger.remove()

    # Development mode: Beautiful console output
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


def log_processor_event(
    processor_name: str,
    event: str,
    **context: Any
):
    """
    Structured logging for processor lifecycle events.

    Args:
        processor_name: Name of the processor (e.g., "ContactsProcessor")
        event: Lifecycle event ("start", "end", "error", "batch")
        **context: Counters, runtime, queue type, etc.

    Example:
        >>> log_processor_event(
        ...     processor_name="ContactsProcessor",
        ...     event="end",
        ...     processed=120,
        ...     errors=2,
        ...     runtime_s=49.8
        ... )
    """
    log_data = {
        "event_type": "processor",
        "processor": processor_name,
        "event": event,
        **context
    }

    level = "ERROR" if event == "error" else "INFO"
    logger.bind(**log_data).log(level, f"{processor_name} | {event}")


def log_webhook_event(
    webhook_id: str,
    webhook_type: str,
    outcome: str,
    duration_ms: float | None = None,
    error: str | None = None,
    **details: Dict[str, Any]
):
    """
    Log the outcome of a single webhook item.

    Enables per-type error-rate and latency analysis from the log stream.

    Args:
        webhook_id: Upstream webhook identifier
        webhook_type: Event type (e.g., "ContactCreate")
        outcome: "completed" or "failed"
        duration_ms: Handler latency in milliseconds
        error: Failure reason if the item failed
        **details: Queue type, attempt, location, etc.
    """
    log_data = {
        "event_type": "webhook",
        "webhook_id": webhook_id,
        "webhook_type": webhook_type,
        "outcome": outcome,
        **details
    }

    if duration_ms is not None:
        log_data["duration_ms"] = round(duration_ms, 2)

    if error:
        log_data["error"] = error

    if outcome == "failed":
        logger.bind(**log_data).error(f"Webhook {webhook_type} {webhook_id} failed: {error}")
    else:
        logger.bind(**log_data).info(f"Webhook {webhook_type} {webhook_id} {outcome}")
