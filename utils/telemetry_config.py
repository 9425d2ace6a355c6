import logging
import os

from dotenv import load_dotenv
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

# Ensure environment variables from .env are available BEFORE we check DISABLE_CLOUD_TELEMETRY.
if os.path.isfile(".env"):
    load_dotenv(override=False)

logger = logging.getLogger(__name__)
_tracing_configured = False


def is_tracing_configured() -> bool:
    """Return True when a TracerProvider was installed by ``setup_tracing``."""

    return _tracing_configured


def setup_tracing(service_name: str = "waiter-relay") -> None:
    """
    Install an OpenTelemetry SDK TracerProvider for the process.

    Spans are exported to the console only when ``ENABLE_TRACING=true``; otherwise
    the provider still assigns trace/span ids so log records stay correlated.
    Setting ``DISABLE_CLOUD_TELEMETRY=true`` skips setup entirely and leaves the
    no-op API provider in place.

    Args:
        service_name (str): Value for the ``service.name`` resource attribute.
    """
    global _tracing_configured

    if _tracing_configured:
        return

    if os.getenv("DISABLE_CLOUD_TELEMETRY", "false").lower() == "true":
        logger.info(
            "Telemetry disabled (DISABLE_CLOUD_TELEMETRY=true), skipping tracer setup"
        )
        return

    resource_attrs = {
        "service.name": service_name,
        "service.namespace": "restaurant-ai-waiter",
    }
    env_name = os.getenv("ENVIRONMENT")
    if env_name:
        resource_attrs["service.environment"] = env_name

    tracer_provider = TracerProvider(resource=Resource.create(resource_attrs))
    if os.getenv("ENABLE_TRACING", "false").lower() == "true":
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("Console span exporter enabled")

    trace.set_tracer_provider(tracer_provider)
    _tracing_configured = True
    logger.info(f"Tracing configured: {resource_attrs}")
