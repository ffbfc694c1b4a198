# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor

from .config import FacilitatorRuntimeConfig


def setup_tracing(cfg: FacilitatorRuntimeConfig) -> TracerProvider:
    """Install a global TracerProvider for the facilitator.

    Spans go to ``cfg.otel_endpoint`` over OTLP/HTTP when set, and to stdout
    when ``cfg.otel_console`` is on (OTEL_CONSOLE_EXPORTER=1).
    """
    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: cfg.otel_service_name}))
    if cfg.otel_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=cfg.otel_endpoint)))
    if cfg.otel_console:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    return provider
