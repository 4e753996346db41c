from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from dispatchkit.settings import settings
from dispatchkit.utils.logging import get_logger

logger = get_logger("tracing")

_initialized = False


def init_tracer(service_name: str) -> bool:
    """
    Installs an SDK tracer provider exporting to the console.
    Does nothing unless OTEL_ENABLED is set; spans are then no-ops.
    """
    global _initialized
    if not settings.OTEL_ENABLED or _initialized:
        return _initialized

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    _initialized = True
    logger.info(f"Initialized tracer for {service_name}")
    return True


def get_tracer(name: str = "dispatchkit") -> trace.Tracer:
    return trace.get_tracer(name)
