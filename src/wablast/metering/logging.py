"""
Structured logging for the metering engine.

Charges, credits and purchase transitions log through structlog with stable event
names such as ``usage.charged`` or ``purchase.reconciled``. Balance
movements also go to the ``audit`` logger so they can be shipped separately.
"""

import logging

import structlog

from wablast.metering.settings import settings


def _renderer() -> structlog.types.Processor:
    if settings.observability.log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def setup_logging() -> None:
    """
    Route stdlib logging and structlog through one processor chain.

    Level, renderer and correlation-id merging come from ``settings.observability``.
    Call once at process start; the CLI does so before running a command.
    """
    logging.basicConfig(format="%(message)s", level=settings.observability.log_level.value)

    processors: list[structlog.types.Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if settings.observability.enable_correlation_ids:
        # tenant_id and reference_id bound via contextvars ride along on every event
        processors.insert(0, structlog.contextvars.merge_contextvars)
    processors.append(_renderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Return a metering logger, named after the calling module when ``name`` is omitted."""
    return structlog.get_logger(name)


def get_audit_logger() -> structlog.BoundLogger:
    """Get a logger for ledger and purchase audit events."""
    return structlog.get_logger("audit")


def log_audit_event(
    action: str,
    category: str,
    tenant_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    **kwargs,
) -> None:
    """
    Log an audit event as a structured log entry.

    Balance movements and purchase transitions are audited this way;
    the durable record lives in the usage and ledger credit tables.
    """
    audit_logger = get_audit_logger()

    audit_logger.info(
        action,
        audit_category=category,
        audit_tenant_id=tenant_id,
        audit_resource_type=resource_type,
        audit_resource_id=resource_id,
        **kwargs,
    )
