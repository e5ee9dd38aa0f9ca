import logging

from opentelemetry import trace

from .config import StorefrontSettings

_UNSET = "-"
_LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | %(service)s | %(name)s | "
    "trace_id=%(trace_id)s span_id=%(span_id)s | %(message)s"
)
# Client libraries that log every request at INFO; cart sync would drown in them.
_QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "sqlalchemy.engine")


class TraceContextFilter(logging.Filter):
    """Stamp records with the service name and the active span's identifiers."""

    def __init__(self, service: str = _UNSET) -> None:
        super().__init__()
        self.service = service

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service
        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            record.trace_id = format(span_context.trace_id, "032x")
            record.span_id = format(span_context.span_id, "016x")
        else:
            record.trace_id = _UNSET
            record.span_id = _UNSET
        return True


def _context_filter(logger: logging.Logger) -> TraceContextFilter | None:
    return next((f for f in logger.filters if isinstance(f, TraceContextFilter)), None)


def configure_logging(settings: StorefrontSettings) -> None:
    """Set the root level and attach the trace context filter to every root handler."""

    logging.basicConfig(level=settings.log_level, format=_LOG_FORMAT)
    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)

    context_filter = _context_filter(root_logger)
    if context_filter is None:
        context_filter = TraceContextFilter(settings.app_name)
        root_logger.addFilter(context_filter)
    else:
        context_filter.service = settings.app_name
    for handler in root_logger.handlers:
        if not any(isinstance(f, TraceContextFilter) for f in handler.filters):
            handler.addFilter(context_filter)

    quiet_level = max(logging.WARNING, root_logger.level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
