"""OpenTelemetry tracing for the API and Instagram provider calls"""
import logging
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode

from app.core.config import Settings

logger = logging.getLogger(__name__)

TRACER_NAME = "gramlink.instagram"


def initialize_otel(settings: Settings) -> bool:
    """Install an OTLP-exporting tracer provider

    Returns False (and leaves the no-op provider in place) when
    OTEL_EXPORTER_OTLP_ENDPOINT is not set.
    """
    if not settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        return False

    try:
        provider = TracerProvider(resource=Resource.create({
            "service.name": settings.OTEL_SERVICE_NAME,
            "deployment.environment": settings.OTEL_ENVIRONMENT,
            "instagram.graph_api_version": settings.INSTAGRAM_GRAPH_API_VERSION,
        }))
        provider.add_span_processor(BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True)
        ))
        trace.set_tracer_provider(provider)
        return True
    except Exception as e:
        logger.warning(f"Failed to initialize OpenTelemetry: {e}")
        return False


@contextmanager
def provider_span(stage: str, **attributes):
    """Span around one Instagram API round trip, marked as error if it raises"""
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(f"instagram.{stage}") as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"instagram.{key}", value)
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


def instrument_fastapi(app):
    """Trace incoming requests"""
    FastAPIInstrumentor.instrument_app(app)


def instrument_httpx():
    """Trace outgoing httpx requests"""
    HTTPXClientInstrumentor().instrument()


def instrument_sqlalchemy(engine):
    """Trace database statements"""
    try:
        SQLAlchemyInstrumentor().instrument(engine=engine)
        logger.info("SQLAlchemy instrumentation enabled")
    except Exception as e:
        logger.warning(f"Failed to instrument SQLAlchemy: {e}")
