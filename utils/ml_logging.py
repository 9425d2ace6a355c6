import json
import logging
import os
from typing import Optional

from colorama import Fore, Style
from colorama import init as colorama_init
from dotenv import load_dotenv

# Early .env load to check DISABLE_CLOUD_TELEMETRY before importing any OTel
if os.path.isfile(".env"):
    load_dotenv(override=False)

_telemetry_disabled = os.getenv("DISABLE_CLOUD_TELEMETRY", "false").lower() == "true"

if not _telemetry_disabled:
    from opentelemetry import trace
else:
    trace = None

colorama_init(autoreset=True)

# Define a new logging level named "KEYINFO" with a level of 25
KEYINFO_LEVEL_NUM = 25
logging.addLevelName(KEYINFO_LEVEL_NUM, "KEYINFO")


def keyinfo(self: logging.Logger, message, *args, **kws):
    if self.isEnabledFor(KEYINFO_LEVEL_NUM):
        self._log(KEYINFO_LEVEL_NUM, message, args, **kws)


logging.Logger.keyinfo = keyinfo

_CORRELATION_PREFIXES = ("session_", "restaurant_", "customer_", "tool_", "operation_")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "name": record.name,
            "process": record.processName,
            "level": record.levelname,
            "trace_id": getattr(record, "trace_id", "-"),
            "span_id": getattr(record, "span_id", "-"),
            "session_id": getattr(record, "session_id", "-"),
            "restaurant_id": getattr(record, "restaurant_id", "-"),
            "operation_name": getattr(record, "operation_name", "-"),
            "component": getattr(record, "component", "-"),
            "message": record.getMessage(),
            "file": record.filename,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Carry correlation fields passed through ``extra=``
        for attr_name, value in record.__dict__.items():
            if attr_name.startswith(_CORRELATION_PREFIXES) and attr_name not in log_record:
                log_record[attr_name] = value

        return json.dumps(log_record, default=str)


class PrettyFormatter(logging.Formatter):
    LEVEL_COLORS = {
        "DEBUG": Fore.CYAN,
        "INFO": Fore.GREEN,
        "WARNING": Fore.YELLOW,
        "ERROR": Fore.RED,
        "CRITICAL": Fore.MAGENTA,
        "KEYINFO": Fore.BLUE,
    }

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, self.datefmt)
        level = record.levelname
        name = record.name
        msg = record.getMessage()

        session_id = getattr(record, "session_id", "-")
        session_tag = f" [{session_id}]" if session_id and session_id != "-" else ""

        color = self.LEVEL_COLORS.get(level, "")
        return (
            f"{Fore.WHITE}[{timestamp}]{Style.RESET_ALL} {color}{level}{Style.RESET_ALL}"
            f" - {Fore.BLUE}{name}{Style.RESET_ALL}{session_tag}: {msg}"
        )


class TraceLogFilter(logging.Filter):
    """Stamp trace/span ids and span correlation attributes onto each record."""

    def filter(self, record):
        # Values passed explicitly via ``extra=`` win over span attributes
        for attr in ("session_id", "restaurant_id", "operation_name", "component"):
            if not hasattr(record, attr):
                setattr(record, attr, "-")

        if _telemetry_disabled or trace is None:
            record.trace_id = "-"
            record.span_id = "-"
            return True

        span = trace.get_current_span()
        context = span.get_span_context() if span else None
        record.trace_id = (
            f"{context.trace_id:032x}" if context and context.trace_id else "-"
        )
        record.span_id = (
            f"{context.span_id:016x}" if context and context.span_id else "-"
        )

        if span and span.is_recording():
            span_attributes = getattr(span, "_attributes", None) or {}
            if record.session_id == "-":
                record.session_id = span_attributes.get("session.id", "-")
            if record.restaurant_id == "-":
                record.restaurant_id = span_attributes.get("restaurant.id", "-")
            if record.operation_name == "-":
                record.operation_name = span_attributes.get(
                    "operation.name", getattr(span, "name", "-")
                )
            if record.component == "-":
                record.component = span_attributes.get("component", "-")

        return True


def set_span_correlation_attributes(
    session_id: Optional[str] = None,
    restaurant_id: Optional[str] = None,
    operation_name: Optional[str] = None,
    custom_attributes: Optional[dict] = None,
) -> None:
    """
    Set correlation attributes on the current span so that log records emitted
    inside it are stamped with the same identifiers.

    Args:
        session_id: Relay session identity
        restaurant_id: Restaurant the session belongs to
        operation_name: Name of the current operation
        custom_attributes: Additional scalar attributes to set
    """
    if _telemetry_disabled or trace is None:
        return

    span = trace.get_current_span()
    if not span or not span.is_recording():
        return

    if session_id:
        span.set_attribute("session.id", session_id)
    if restaurant_id:
        span.set_attribute("restaurant.id", restaurant_id)
    if operation_name:
        span.set_attribute("operation.name", operation_name)

    if custom_attributes:
        for key, value in custom_attributes.items():
            if isinstance(value, (str, int, float, bool)):
                span.set_attribute(key, value)


def get_logger(
    name: str = "waiter",
    level: Optional[int] = None,
    include_stream_handler: bool = True,
) -> logging.Logger:
    logger = logging.getLogger(name)

    if level is not None or logger.level == 0:
        env_level = os.getenv("LOG_LEVEL", "INFO").upper()
        logger.setLevel(level or logging.getLevelName(env_level))

    is_production = os.environ.get("ENV", "dev").lower() == "prod"

    # Add trace filter if not already present
    has_trace_filter = any(isinstance(f, TraceLogFilter) for f in logger.filters)
    if not has_trace_filter:
        logger.addFilter(TraceLogFilter())

    if include_stream_handler and not any(
        isinstance(h, logging.StreamHandler) for h in logger.handlers
    ):
        sh = logging.StreamHandler()
        sh.setFormatter(JsonFormatter() if is_production else PrettyFormatter())
        sh.addFilter(TraceLogFilter())
        logger.addHandler(sh)

    return logger
