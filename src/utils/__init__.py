# src/utils/__init__.py

from .logging import (
    setup_global_logging,
    SecretRedactingFilter
)

from .tracing import (
    setup_tracing,
    setup_logger_with_tracing,
    annotate,
    traced
)

from .retry import RETRYABLE_HTTP_ERRORS, raise_for_status, retry_with_backoff

__all__ = [
    'setup_global_logging',
    'SecretRedactingFilter',
    'setup_tracing',
    'setup_logger_with_tracing',
    'annotate',
    'traced',
    'RETRYABLE_HTTP_ERRORS',
    'raise_for_status',
    'retry_with_backoff'
]
