"""
Tracing — OpenTelemetry spans around each step of a run.

Every step of the runner opens a span recording its attributes and status.
Without ``--debug`` the provider has no processor and spans go nowhere;
with ``--debug`` they are batched to a console exporter on stderr so a run
can be inspected span by span.

## Usage

    from run_puppet.observability.tracing import get_tracer, new_tracer_provider

    provider = new_tracer_provider(debug=True)
    tracer = get_tracer(provider)
    with tracer.start_as_current_span("runner.clone", attributes={"gitBranch": "main"}):
        ...
    provider.shutdown()
"""

from __future__ import annotations

import sys
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)

from .. import __version__

TRACER_NAME = "run-puppet"


def new_tracer_provider(
    debug: bool = False,
    exporter: Optional[SpanExporter] = None,
    batch: bool = True,
) -> TracerProvider:
    """
    Build the run's tracer provider.

    Args:
        debug: export spans to stderr when no exporter is given
        exporter: explicit exporter (tests use an in-memory one)
        batch: batch spans (one second timeout) instead of exporting each
               span as it ends
    """
    provider = TracerProvider(
        resource=Resource.create({"service.name": TRACER_NAME, "service.version": __version__})
    )

    if exporter is None and debug:
        exporter = ConsoleSpanExporter(service_name=TRACER_NAME, out=sys.stderr)
    if exporter is None:
        return provider

    if batch:
        provider.add_span_processor(BatchSpanProcessor(exporter, schedule_delay_millis=1000))
    else:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
    return provider


def get_tracer(provider: Optional[TracerProvider] = None) -> trace.Tracer:
    """Tracer from provider, or from the global provider when none is given."""
    if provider is None:
        return trace.get_tracer(TRACER_NAME, __version__)
    return provider.get_tracer(TRACER_NAME, __version__)
