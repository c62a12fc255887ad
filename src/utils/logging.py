# src/utils/logging.py

import logging
import os
import re
import sys


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for different log levels."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        # Add color to level name only
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"

        return super().format(record)


class SecretRedactingFilter(logging.Filter):
    """
    Masks credentials that pass through tool arguments before they hit a handler.

    Tool calls carry user passwords, DER private keys and bearer tokens, so any
    log line that interpolates a request body or a header gets scrubbed here.
    """

    MASK = "***"

    PATTERNS = [
        # "password": "..."  /  password=...
        re.compile(r'(?i)("?(?:password|privateKey|private_key)"?\s*[:=]\s*"?)([^",\s}]+)'),
        # Authorization: Bearer <token>
        re.compile(r'(?i)(bearer\s+)([A-Za-z0-9\-_\.=]+)'),
        # bare DER-encoded keys (302e.../3030... hex blobs)
        re.compile(r'()(30[0-9a-fA-F]{2}0201[0-9a-fA-F]{60,})'),
    ]

    def redact(self, text: str) -> str:
        for pattern in self.PATTERNS:
            text = pattern.sub(lambda m: f"{m.group(1)}{self.MASK}", text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.redact(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: self.redact(v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }
            else:
                record.args = tuple(
                    self.redact(a) if isinstance(a, str) else a for a in record.args
                )
        return True


def resolve_level(default: int = logging.INFO) -> int:
    """Read LOG_LEVEL from the environment, falling back to `default`."""
    name = os.getenv("LOG_LEVEL")
    if not name:
        return default
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else default


def setup_global_logging(level: int = logging.INFO):
    """
    Configure global logging for the entire application.
    Call this once at application startup.

    Args:
        level: Global logging level (default: INFO)
    """

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if root_logger.handlers:
        root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(SecretRedactingFilter())

    formatter = ColoredFormatter(
        fmt='%(levelname)s:    %(filename)s:%(lineno)d - %(message)s'
    )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
