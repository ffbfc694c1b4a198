# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""Facilitation pipeline: verify/settle with lifecycle hooks.

Each call walks the same path::

    Received -> before hooks -> delegated to scheme -> after hooks | failure hooks -> done

Hooks are observers. They run in registration order, may be plain functions
or coroutines, and anything they raise is logged and dropped so that a broken
hook never changes the payment outcome. Exactly one of the after/failure hook
lists runs per call.
"""

from __future__ import annotations

import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

from .errors import SettlementAborted
from .models import (
    PaymentPayload,
    PaymentRequirements,
    SettleContext,
    SettleFailureContext,
    SettleResponse,
    SettleResultContext,
    SupportedResponse,
    VerifyContext,
    VerifyFailureContext,
    VerifyResponse,
    VerifyResultContext,
)
from .registry import SchemeRegistry

logger = logging.getLogger(__name__)

Hook = Callable[[Any], Union[None, Awaitable[None]]]


class HookEvent(str, Enum):
    before_verify = "before_verify"
    after_verify = "after_verify"
    verify_failure = "verify_failure"
    before_settle = "before_settle"
    after_settle = "after_settle"
    settle_failure = "settle_failure"


class FacilitationPipeline:
    def __init__(
        self,
        registry: SchemeRegistry,
        hooks: Optional[Mapping[HookEvent, Sequence[Hook]]] = None,
    ) -> None:
        self.registry = registry
        self._hooks: Dict[HookEvent, List[Hook]] = {event: [] for event in HookEvent}
        for event, fns in (hooks or {}).items():
            for fn in fns:
                self.add_hook(event, fn)

    # -------------------------------
    # Hook registration
    # -------------------------------

    def add_hook(self, event: Union[HookEvent, str], hook: Hook) -> "FacilitationPipeline":
        self._hooks[HookEvent(event)].append(hook)
        return self

    def add_hooks(self, hooks: Mapping[HookEvent, Sequence[Hook]]) -> "FacilitationPipeline":
        for event, fns in hooks.items():
            for fn in fns:
                self.add_hook(event, fn)
        return self

    def on_before_verify(self, hook: Hook) -> "FacilitationPipeline":
        return self.add_hook(HookEvent.before_verify, hook)

    def on_after_verify(self, hook: Hook) -> "FacilitationPipeline":
        return self.add_hook(HookEvent.after_verify, hook)

    def on_verify_failure(self, hook: Hook) -> "FacilitationPipeline":
        return self.add_hook(HookEvent.verify_failure, hook)

    def on_before_settle(self, hook: Hook) -> "FacilitationPipeline":
        return self.add_hook(HookEvent.before_settle, hook)

    def on_after_settle(self, hook: Hook) -> "FacilitationPipeline":
        return self.add_hook(HookEvent.after_settle, hook)

    def on_settle_failure(self, hook: Hook) -> "FacilitationPipeline":
        return self.add_hook(HookEvent.settle_failure, hook)

    async def _run_hooks(self, event: HookEvent, context: Any) -> None:
        for hook in self._hooks[event]:
            try:
                result = hook(context)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"[PIPELINE] {event.value} hook {getattr(hook, '__name__', hook)!r} failed")

    # -------------------------------
    # Operations
    # -------------------------------

    async def verify(self, payload: PaymentPayload, requirements: PaymentRequirements) -> VerifyResponse:
        context = VerifyContext(payment_payload=payload, requirements=requirements)
        await self._run_hooks(HookEvent.before_verify, context)
        try:
            facilitator = self.registry.require(requirements.scheme, requirements.network)
            result = await facilitator.verify(payload, requirements)
        except Exception as e:
            await self._run_hooks(
                HookEvent.verify_failure,
                VerifyFailureContext(payment_payload=payload, requirements=requirements, error=e),
            )
            raise
        await self._run_hooks(
            HookEvent.after_verify,
            VerifyResultContext(payment_payload=payload, requirements=requirements, result=result),
        )
        return result

    async def settle(self, payload: PaymentPayload, requirements: PaymentRequirements) -> SettleResponse:
        context = SettleContext(payment_payload=payload, requirements=requirements)
        await self._run_hooks(HookEvent.before_settle, context)
        try:
            facilitator = self.registry.require(requirements.scheme, requirements.network)
            result = await facilitator.settle(payload, requirements)
        except Exception as e:
            await self._run_hooks(
                HookEvent.settle_failure,
                SettleFailureContext(payment_payload=payload, requirements=requirements, error=e),
            )
            if isinstance(e, SettlementAborted):
                logger.info(f"[PIPELINE] Settlement aborted: {e.reason}")
                return SettleResponse(
                    success=False,
                    errorReason=e.reason,
                    network=payload.network or requirements.network or "unknown",
                )
            raise
        await self._run_hooks(
            HookEvent.after_settle,
            SettleResultContext(payment_payload=payload, requirements=requirements, result=result),
        )
        return result

    def get_supported(self) -> SupportedResponse:
        return self.registry.supported()
