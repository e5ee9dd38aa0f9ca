"""OpenTelemetry wiring for the cart service and the cart engine clients."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import FastAPI

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (  # type: ignore[attr-defined]
    OTLPSpanExporter as OTLPGrpcExporter,
)
from opentelemetry.exporter.otlp.proto.http.trace_exporter import (  # type: ignore[attr-defined]
    OTLPSpanExporter as OTLPHttpExporter,
)
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Span, Tracer
from opentelemetry.trace import TracerProvider as APITracerProvider

from .config import StorefrontSettings

_LOGGER = logging.getLogger(__name__)
_TRACER_NAME = "storefront"
_CART_ATTRIBUTE_PREFIX = "cart."
_INSTRUMENTED_APPS: set[int] = set()
_HTTPX_INSTRUMENTED = False

SpanValue = str | int | float | bool


def _resource(settings: StorefrontSettings) -> Resource:
    return Resource.create(
        {
            "service.name": settings.app_name,
            "service.namespace": _TRACER_NAME,
            "deployment.environment": settings.environment,
        }
    )


def _span_exporter(settings: StorefrontSettings) -> SpanExporter | None:
    endpoint = settings.tracing_endpoint
    if endpoint is None:
        return None
    if settings.tracing_protocol == "grpc":
        return OTLPGrpcExporter(endpoint=endpoint, insecure=settings.tracing_insecure)
    return OTLPHttpExporter(endpoint=endpoint)


def ensure_tracer_provider(settings: StorefrontSettings) -> APITracerProvider:
    """Install the SDK tracer provider once per process and return the active one.

    Cart sync and checkout spans started inside a traced request follow the
    request's sampling decision; only root spans are sampled by ratio.
    """

    active = trace.get_tracer_provider()
    if isinstance(active, TracerProvider):
        return active

    provider = TracerProvider(
        resource=_resource(settings),
        sampler=ParentBased(TraceIdRatioBased(settings.tracing_sample_rate)),
    )
    exporter = _span_exporter(settings)
    if exporter is None:
        _LOGGER.warning("Tracing enabled for %s without an OTLP endpoint; spans stay in-process.", settings.app_name)
    else:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    try:
        trace.set_tracer_provider(provider)
    except RuntimeError:  # pragma: no cover - another provider won the race
        return trace.get_tracer_provider()
    return provider


def instrument_httpx(settings: StorefrontSettings) -> None:
    """Trace outgoing httpx calls made by the sync layer and catalog client."""

    global _HTTPX_INSTRUMENTED
    if not settings.enable_tracing or _HTTPX_INSTRUMENTED:
        return
    try:
        HTTPXClientInstrumentor().instrument(tracer_provider=ensure_tracer_provider(settings))
    except Exception as exc:  # pragma: no cover - instrumentation is best effort
        _LOGGER.warning("Failed to instrument httpx for tracing: %s", exc)
        return
    _HTTPX_INSTRUMENTED = True


def configure_tracing(app: FastAPI, settings: StorefrontSettings) -> None:
    """Trace the cart service's requests and its outgoing catalog calls."""

    if not settings.enable_tracing:
        return
    if id(app) not in _INSTRUMENTED_APPS:
        FastAPIInstrumentor().instrument_app(app, tracer_provider=ensure_tracer_provider(settings))
        _INSTRUMENTED_APPS.add(id(app))
    instrument_httpx(settings)


def get_tracer() -> Tracer:
    return trace.get_tracer(_TRACER_NAME)


@contextmanager
def cart_span(name: str, **attributes: SpanValue | None) -> Iterator[Span]:
    """Start a span carrying ``cart.<key>`` attributes; ``None`` values are skipped."""

    with get_tracer().start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"{_CART_ATTRIBUTE_PREFIX}{key}", value)
        yield span
