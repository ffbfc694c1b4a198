# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""
Test the stock lifecycle hooks (logging and OpenTelemetry span events).
"""

import logging

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from stubs import StubScheme
from x402_facilitator import (
    ChainError,
    FacilitationPipeline,
    PaymentPayload,
    PaymentRequirements,
    SchemeRegistry,
)
from x402_facilitator.hooks import logging_hooks, tracing_hooks


@pytest.fixture
def payment(sample_payment_data):
    return (
        PaymentPayload.model_validate(sample_payment_data["paymentPayload"]),
        PaymentRequirements.model_validate(sample_payment_data["paymentRequirements"]),
    )


@pytest.mark.asyncio
class TestLoggingHooks:
    async def test_logs_each_transition(self, payment, caplog):
        scheme = StubScheme()
        pipeline = FacilitationPipeline(SchemeRegistry().register("eip155:84532", scheme), hooks=logging_hooks())

        with caplog.at_level(logging.INFO, logger="x402_facilitator.lifecycle"):
            await pipeline.verify(*payment)
            await pipeline.settle(*payment)

        messages = [r.getMessage() for r in caplog.records if r.name == "x402_facilitator.lifecycle"]
        assert [m.split(" {")[0] for m in messages] == [
            "Before verify",
            "After verify",
            "Before settle",
            "After settle",
        ]
        assert "'amount': '1000000'" in messages[0]

    async def test_failures_logged_as_warnings(self, payment, caplog):
        scheme = StubScheme(settle_error=ChainError("writeContract", "nonce too low"))
        pipeline = FacilitationPipeline(SchemeRegistry().register("eip155:84532", scheme), hooks=logging_hooks())

        with caplog.at_level(logging.INFO, logger="x402_facilitator.lifecycle"):
            with pytest.raises(ChainError):
                await pipeline.settle(*payment)

        failure = [r for r in caplog.records if r.getMessage().startswith("Settle failure")]
        assert len(failure) == 1
        assert failure[0].levelno == logging.WARNING
        assert "ChainError: writeContract failed: nonce too low" in failure[0].getMessage()


@pytest.mark.asyncio
class TestTracingHooks:
    async def test_span_events(self, payment):
        exporter = InMemorySpanExporter()
        provider = TracerProvider()
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        tracer = provider.get_tracer("test")
        pipeline = FacilitationPipeline(
            SchemeRegistry().register("eip155:84532", StubScheme()), hooks=tracing_hooks()
        )

        with tracer.start_as_current_span("x402.settle"):
            await pipeline.settle(*payment)

        (span,) = exporter.get_finished_spans()
        assert [e.name for e in span.events] == ["x402.before_settle", "x402.after_settle"]
        assert span.events[1].attributes["x402.network"] == "eip155:84532"
        assert span.events[1].attributes["x402.success"] == "True"
