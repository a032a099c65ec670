import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_logging_configured = False


def setup_logging(settings):
    global _logging_configured
    if _logging_configured:
        return
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)
    _logging_configured = True


def setup_otel(settings):
    if not settings.otlp_endpoint:
        return
    resource = Resource.create({"service.name": "idp-core"})
    provider = TracerProvider(resource=resource)
    processor = BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint))
    provider.add_span_processor(processor)
    trace.set_tracer_provider(provider)


def redact(value, keep: int = 8) -> str:
    """Prefix of a secret for log lines; never the whole value."""
    if not value:
        return "<none>"
    return f"{value[:keep]}..."
