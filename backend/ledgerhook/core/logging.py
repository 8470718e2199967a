"""The logging configuration module."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

# Dimensions promoted to top-level fields of a JSON log line, so billing outcomes can be
# filtered by event, tenant or alert without unpacking custom_dimensions.
INDEXED_DIMENSIONS = ("stripe_event_id", "event_type", "tenant_id", "alert")

DimensionValue = str | int | float | bool


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Every billing outcome is emitted as one JSON line carrying the custom dimensions
    (event id, event type, tenant) so that the audit trail can be queried in the log store.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON.

        Args:
        ----
            record (logging.LogRecord): The log record to format

        Returns:
        -------
            str: JSON-formatted log message

        """
        dimensions: dict[str, Any] = dict(getattr(record, "custom_dimensions", None) or {})

        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for key in INDEXED_DIMENSIONS:
            if key in dimensions:
                log_entry[key] = dimensions.pop(key)
        if dimensions:
            log_entry["custom_dimensions"] = dimensions

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class TextFormatter(logging.Formatter):
    """Human readable format for local development, with dimensions appended."""

    def __init__(self):
        """Initialize the formatter."""
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        """Format the record, followed by its dimensions as ``key=value`` pairs."""
        line = super().format(record)
        dimensions = getattr(record, "custom_dimensions", None)
        if dimensions:
            pairs = " ".join(f"{key}={value}" for key, value in dimensions.items())
            line = f"{line} [{pairs}]"
        return line


class ContextualLogger(logging.LoggerAdapter):
    """Logger adapter carrying a message prefix and custom dimensions.

    Both are immutable per instance: ``with_prefix`` and ``with_context`` return a new
    adapter, so a per-event logger never leaks its dimensions into the shared one.
    """

    def __init__(
        self,
        logger: logging.Logger,
        prefix: str = "",
        dimensions: Optional[dict[str, DimensionValue]] = None,
    ) -> None:
        """Initialize the contextual logger.

        Args:
        ----
            logger (logging.Logger): Base logger instance
            prefix (str): Optional prefix for log messages
            dimensions (Optional[dict]): Custom dimensions for structured logging

        """
        super().__init__(logger, {})
        self.prefix = prefix
        self.dimensions = dict(dimensions or {})

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        """Prefix the message and attach the dimensions to the record."""
        extra = kwargs.setdefault("extra", {})
        if self.dimensions:
            extra["custom_dimensions"] = {
                **self.dimensions,
                **extra.get("custom_dimensions", {}),
            }
        return f"{self.prefix}{msg}", kwargs

    def with_prefix(self, prefix: str) -> "ContextualLogger":
        """New logger whose messages start with ``prefix`` after any existing prefix."""
        return ContextualLogger(self.logger, f"{self.prefix}{prefix}", self.dimensions)

    def with_context(self, **dimensions: DimensionValue) -> "ContextualLogger":
        """New logger with additional dimensions; later values win."""
        return ContextualLogger(self.logger, self.prefix, {**self.dimensions, **dimensions})


class LoggerConfigurator:
    """Configures loggers with support for dimensions and prefixes.

    The webhook processor derives a logger per event with the event id, event type and,
    once resolved, the tenant id as dimensions:

    ```python
    log = logger.with_context(stripe_event_id=event.event_id, event_type=event.event_type)
    log.info("Processing webhook event")
    ```

    Configuration:
    -------------
    Uses settings from ledgerhook.core.config:
    - Text format when LOCAL_DEVELOPMENT=True, JSON format otherwise
    - LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    """

    @staticmethod
    def configure_logger(
        name: str,
        prefix: str = "",
        dimensions: Optional[dict[str, DimensionValue]] = None,
    ) -> ContextualLogger:
        """Configure and return a logger with the given name and initial context.

        Args:
        ----
            name (str): Logger name (typically __name__)
            prefix (str): Initial prefix for log messages
            dimensions (Optional[dict]): Initial custom dimensions

        Returns:
        -------
            ContextualLogger: Configured logger with context support

        """
        # Import settings here to avoid circular imports
        from ledgerhook.core.config import settings

        base = logging.getLogger(name)
        base.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
        base.propagate = False

        if not base.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(
                TextFormatter() if settings.LOCAL_DEVELOPMENT else JSONFormatter()
            )
            base.addHandler(handler)

        return ContextualLogger(base, prefix, dimensions)


# Default logger instance
logger = LoggerConfigurator.configure_logger("ledgerhook")
