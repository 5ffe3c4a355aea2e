"""OpenTelemetry configuration for observability."""

import logging
from typing import TYPE_CHECKING

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

if TYPE_CHECKING:
    from fastapi import FastAPI

from kubejobs_api import __version__
from kubejobs_api.core.config import Settings

logger = logging.getLogger(__name__)


def build_resource(settings: Settings) -> Resource:
    """Describe this service and the cluster scope it manages.

    Besides the standard service attributes, the resource records which
    namespace layout the adapter runs with, so traces from deployments that
    split pools across namespaces can be told apart.
    """
    attributes = {
        "service.name": settings.otel_service_name,
        "service.version": __version__,
        "deployment.environment": settings.environment,
        "k8s.namespace.name": settings.namespace,
        "kubejobs.label_prefix": settings.label_prefix,
        "kubejobs.pool_namespaces": settings.pool_namespaces,
    }
    if settings.allowed_pools is not None:
        attributes["kubejobs.allowed_pools"] = sorted(settings.allowed_pools)
    return Resource.create(attributes)


def setup_telemetry(app: "FastAPI", settings: Settings) -> None:
    """Configure OpenTelemetry tracing for the application.

    Lifecycle calls against the cluster are wrapped in spans by the job
    service, so a trace shows which orchestrator step a request spent its
    time in.

    Args:
        app: FastAPI application instance
        settings: Application settings
    """
    if not settings.otel_enabled:
        logger.info("OpenTelemetry disabled")
        return

    provider = TracerProvider(resource=build_resource(settings))

    # Console output in debug development, OTLP everywhere else
    if settings.environment == "development":
        if settings.debug:
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    else:
        try:
            otlp_exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_endpoint)
            provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        except Exception as e:
            logger.warning(f"Failed to configure OTLP exporter: {e}")

    trace.set_tracer_provider(provider)

    # Request spans become parents of the kubejobs.* lifecycle spans
    FastAPIInstrumentor.instrument_app(app)

    logger.info(
        f"OpenTelemetry configured: service={settings.otel_service_name}, "
        f"environment={settings.environment}, namespace={settings.namespace}"
    )


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer for the given module name."""
    return trace.get_tracer(name)
