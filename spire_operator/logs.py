"""Logging setup with per-reconciliation correlation IDs."""
import contextvars
import logging

from spire_operator import settings

# Correlation ID of the reconciliation currently running in this context
correlation_id_context: contextvars.ContextVar[str] = contextvars.ContextVar(
    'correlation_id', default=None
)


class CorrelationIdFilter(logging.Filter):
    """Add correlation_id to log records if available."""
    def filter(self, record):
        if not hasattr(record, 'correlation_id'):
            record.correlation_id = correlation_id_context.get() or '-'
        return True


def configure_logging(level: str = None):
    """Configure root logging once for the operator process."""
    logging.basicConfig(
        level=level or settings.LOG_LEVEL,
        format='%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] - %(message)s'
    )
    root = logging.getLogger()
    for handler in root.handlers:
        if not any(isinstance(f, CorrelationIdFilter) for f in handler.filters):
            handler.addFilter(CorrelationIdFilter())
