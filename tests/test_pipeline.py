# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""
Test the facilitation pipeline: hook ordering, hook isolation, settlement
aborts and scheme lookup.
"""

import asyncio
from typing import List

import pytest

from stubs import FACILITATOR_ADDRESS, PAYER, StubScheme
from x402_facilitator import (
    ChainError,
    FacilitationPipeline,
    HookEvent,
    PaymentPayload,
    PaymentRequirements,
    SchemeNotFoundError,
    SchemeRegistry,
    SettlementAborted,
    VerifyResponse,
)
from x402_facilitator.models import SettleFailureContext, VerifyFailureContext, VerifyResultContext


@pytest.fixture
def payload(sample_payment_data: dict) -> PaymentPayload:
    return PaymentPayload.model_validate(sample_payment_data["paymentPayload"])


@pytest.fixture
def requirements(sample_payment_data: dict) -> PaymentRequirements:
    return PaymentRequirements.model_validate(sample_payment_data["paymentRequirements"])


@pytest.mark.asyncio
class TestVerify:
    async def test_valid_payment_runs_before_then_after(
        self, pipeline: FacilitationPipeline, hook_log: List[str], payload, requirements
    ):
        result = await pipeline.verify(payload, requirements)

        assert result.isValid is True
        assert result.payer == PAYER
        assert hook_log == ["before_verify", "after_verify"]

    async def test_invalid_verdict_is_a_result_not_a_failure(
        self, pipeline, stub_scheme: StubScheme, hook_log, payload, requirements
    ):
        stub_scheme.verify_result = VerifyResponse(isValid=False, invalidReason="insufficient_funds")

        result = await pipeline.verify(payload, requirements)

        assert result.isValid is False
        assert result.invalidReason == "insufficient_funds"
        assert hook_log == ["before_verify", "after_verify"]

    async def test_scheme_error_runs_failure_hooks_and_propagates(
        self, pipeline, stub_scheme, hook_log, payload, requirements
    ):
        stub_scheme.verify_error = ChainError("readContract", "connection refused")

        with pytest.raises(ChainError, match="readContract failed: connection refused"):
            await pipeline.verify(payload, requirements)

        assert hook_log == ["before_verify", "verify_failure"]

    async def test_failure_context_carries_error(self, pipeline, stub_scheme, payload, requirements):
        seen = []
        pipeline.on_verify_failure(seen.append)
        stub_scheme.verify_error = ChainError("getCode", "timeout")

        with pytest.raises(ChainError):
            await pipeline.verify(payload, requirements)

        assert len(seen) == 1
        assert isinstance(seen[0], VerifyFailureContext)
        assert seen[0].error is stub_scheme.verify_error
        assert seen[0].payment_payload is payload

    async def test_unknown_scheme_raises_scheme_not_found(self, pipeline, hook_log, payload, sample_payment_data):
        requirements = PaymentRequirements.model_validate(
            {**sample_payment_data["paymentRequirements"], "network": "eip155:1"}
        )

        with pytest.raises(SchemeNotFoundError, match="scheme: exact and network: eip155:1"):
            await pipeline.verify(payload, requirements)

        assert hook_log == ["before_verify", "verify_failure"]


@pytest.mark.asyncio
class TestSettle:
    async def test_successful_settle_runs_after_hooks(
        self, pipeline, stub_scheme, hook_log, payload, requirements
    ):
        result = await pipeline.settle(payload, requirements)

        assert result.success is True
        assert result.transactionHash == stub_scheme.settle_result.transactionHash
        assert hook_log == ["before_settle", "after_settle"]

    async def test_abort_becomes_unsuccessful_response(
        self, pipeline, stub_scheme, hook_log, payload, requirements
    ):
        stub_scheme.settle_error = SettlementAborted("Settlement aborted: authorization already used")

        result = await pipeline.settle(payload, requirements)

        assert result.success is False
        assert result.errorReason == "authorization already used"
        assert result.network == "eip155:84532"
        assert result.transactionHash is None
        assert hook_log == ["before_settle", "settle_failure"]

    async def test_abort_network_falls_back_to_requirements(self, pipeline, stub_scheme, requirements):
        stub_scheme.settle_error = SettlementAborted("undeployed_smart_wallet")
        payload = PaymentPayload(scheme="exact", payload={})

        result = await pipeline.settle(payload, requirements)

        assert result.errorReason == "undeployed_smart_wallet"
        assert result.network == "eip155:84532"

    async def test_infrastructure_error_propagates(self, pipeline, stub_scheme, hook_log, payload, requirements):
        stub_scheme.settle_error = ChainError("writeContract", "nonce too low")
        seen = []
        pipeline.on_settle_failure(seen.append)

        with pytest.raises(ChainError):
            await pipeline.settle(payload, requirements)

        assert hook_log == ["before_settle", "settle_failure"]
        assert isinstance(seen[0], SettleFailureContext)


@pytest.mark.asyncio
class TestHooks:
    async def test_hook_exception_does_not_change_result(self, stub_scheme, payload, requirements):
        calls = []

        def broken(context):
            raise ValueError("observer bug")

        pipeline = FacilitationPipeline(SchemeRegistry().register("eip155:84532", stub_scheme))
        pipeline.on_before_verify(broken).on_before_verify(lambda ctx: calls.append("second"))
        pipeline.on_after_verify(broken).on_after_verify(lambda ctx: calls.append("after"))

        result = await pipeline.verify(payload, requirements)

        assert result.isValid is True
        assert calls == ["second", "after"]

    async def test_broken_settle_failure_hook_keeps_abort_response(self, stub_scheme, payload, requirements):
        stub_scheme.settle_error = SettlementAborted("invalid_transaction_state")

        def broken(context):
            raise RuntimeError("observer bug")

        pipeline = FacilitationPipeline(SchemeRegistry().register("eip155:84532", stub_scheme))
        pipeline.on_settle_failure(broken)

        result = await pipeline.settle(payload, requirements)

        assert result.success is False
        assert result.errorReason == "invalid_transaction_state"
        assert result.network == "eip155:84532"

    async def test_broken_after_settle_hook_keeps_success(self, stub_scheme, payload, requirements):
        async def broken(context):
            raise RuntimeError("observer bug")

        pipeline = FacilitationPipeline(SchemeRegistry().register("eip155:84532", stub_scheme))
        pipeline.on_after_settle(broken)

        result = await pipeline.settle(payload, requirements)

        assert result == stub_scheme.settle_result

    async def test_async_hooks_awaited_in_registration_order(self, stub_scheme, payload, requirements):
        order = []

        async def slow(context):
            await asyncio.sleep(0.01)
            order.append("slow")

        def fast(context):
            order.append("fast")

        pipeline = FacilitationPipeline(
            SchemeRegistry().register("eip155:84532", stub_scheme),
            hooks={HookEvent.before_settle: [slow, fast]},
        )
        await pipeline.settle(payload, requirements)

        assert order == ["slow", "fast"]

    async def test_after_context_carries_result(self, pipeline, payload, requirements):
        seen = []
        pipeline.add_hook("after_verify", seen.append)

        result = await pipeline.verify(payload, requirements)

        assert isinstance(seen[0], VerifyResultContext)
        assert seen[0].result == result


class TestSupported:
    def test_lists_every_registration(self):
        registry = SchemeRegistry().register(["eip155:84532", "eip155:8453"], StubScheme())
        supported = FacilitationPipeline(registry).get_supported()

        assert [(k.scheme, k.network, k.x402Version) for k in supported.kinds] == [
            ("exact", "eip155:84532", 2),
            ("exact", "eip155:8453", 2),
        ]
        assert supported.signers == {"eip155:*": [FACILITATOR_ADDRESS]}

    def test_empty_registry(self):
        supported = FacilitationPipeline(SchemeRegistry()).get_supported()

        assert supported.kinds == []
        assert supported.signers == {}
