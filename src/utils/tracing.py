# src/utils/tracing.py

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.trace import Status, StatusCode
import functools
import logging
import os
import sys
import time

from .logging import ColoredFormatter, SecretRedactingFilter, resolve_level

_INSTRUMENTED = False

# Span attribute namespace for portfolio-agent specific data
ATTRIBUTE_PREFIX = "neo."

logger = logging.getLogger(__name__)


class TracingFormatter(ColoredFormatter):
    """ColoredFormatter with the service name and the current trace/span ids in each line."""

    DARKER_GREEN = '\033[2;32m'
    BLUE = '\033[34m'

    def __init__(self, *args, service_name: str = "unknown", **kwargs):
        super().__init__(*args, **kwargs)
        self.service_name = service_name

    def format(self, record):
        span_context = trace.get_current_span().get_span_context()

        # Short ids are enough to follow one tool call through the services
        if span_context.is_valid:
            trace_id = f"{span_context.trace_id:032x}"[:8]
            span_id = f"{span_context.span_id:016x}"[:8]
            record.trace_id = f"[{trace_id}:{span_id}]"
        else:
            record.trace_id = ""

        record.service_name = f"{self.BLUE}{self.service_name}{self.RESET}"
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"

        return super(ColoredFormatter, self).format(record)

    def formatTime(self, record, datefmt=None):
        ct = self.converter(record.created)
        stamp = time.strftime(datefmt or self.default_time_format, ct)
        return f"{self.DARKER_GREEN}[{self.default_msec_format % (stamp, record.msecs)}]{self.RESET}"


def _console_export_requested() -> bool:
    return os.getenv("OTEL_CONSOLE_EXPORT", "").lower() in ("1", "true", "yes")


def setup_tracing(service_name: str, enable_console_export: bool = None):
    """
    Initialize OpenTelemetry tracing once per process.

    Every upstream call (account backend, price pages, news search) goes through
    httpx, so the httpx instrumentation gives one client span per request under
    the tool span opened by `traced`. Console span export is off unless asked
    for here or with OTEL_CONSOLE_EXPORT=1; spans then go to stderr.
    """
    global _INSTRUMENTED

    if _INSTRUMENTED or hasattr(trace.get_tracer_provider(), 'get_span_processor'):
        return

    provider = TracerProvider(resource=Resource(attributes={"service.name": service_name}))

    if enable_console_export is None:
        enable_console_export = _console_export_requested()
    if enable_console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter(out=sys.stderr)))

    try:
        trace.set_tracer_provider(provider)
    except ValueError:
        pass

    try:
        HTTPXClientInstrumentor().instrument()
        _INSTRUMENTED = True
        logger.info(f"✅ OTEL: httpx instrumentation complete for {service_name}")
    except Exception as e:
        if "already instrumented" not in str(e).lower():
            logger.warning(f"OTEL Instrumentation warning: {e}")


def annotate(**attributes):
    """
    Set `neo.*` attributes on the current span.

    None values are skipped; everything else is stored as a string, so
    Decimals and enums can be passed as they are.

    Example:
        annotate(action_kind="redeem", ledger_status=receipt.status)
    """
    span = trace.get_current_span()
    if not span.is_recording():
        return
    for key, value in attributes.items():
        if value is None:
            continue
        span.set_attribute(f"{ATTRIBUTE_PREFIX}{key}", value if isinstance(value, (bool, int)) else str(value))


def setup_logger_with_tracing(name: str, level: int = None, service_name: str = "unknown") -> logging.Logger:
    level = level if level is not None else resolve_level()
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.handlers:
        logger.handlers.clear()

    # stdout is reserved for the stdio MCP transport
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(SecretRedactingFilter())

    formatter = TracingFormatter(
        fmt='%(asctime)s [%(service_name)s] %(levelname)s:    %(trace_id)s %(filename)s:%(lineno)d - %(message)s',
        service_name=service_name
    )
    formatter.default_time_format = '%Y-%m-%d %H:%M:%S'
    formatter.default_msec_format = '%s.%03d'

    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def traced(span_name: str = None, **attributes):
    """
    Run an async callable inside a span named `span_name` (defaults to the function name).

    Keyword arguments become `neo.*` attributes on the span. An exception that
    escapes the callable is recorded on the span, which is marked as an error,
    and then re-raised.
    """
    def decorator(func):
        name = span_name or func.__name__

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            tracer = trace.get_tracer(func.__module__)

            with tracer.start_as_current_span(name, record_exception=False, set_status_on_exception=False) as span:
                annotate(**attributes)
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    span.record_exception(e)
                    span.set_status(Status(StatusCode.ERROR, str(e)))
                    raise

        return wrapper
    return decorator
