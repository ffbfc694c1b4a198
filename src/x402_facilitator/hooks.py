# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""Stock lifecycle observers: structured logs and OpenTelemetry span events."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from .pipeline import Hook, HookEvent

logger = logging.getLogger("x402_facilitator.lifecycle")

_LABELS = {
    HookEvent.before_verify: "Before verify",
    HookEvent.after_verify: "After verify",
    HookEvent.verify_failure: "Verify failure",
    HookEvent.before_settle: "Before settle",
    HookEvent.after_settle: "After settle",
    HookEvent.settle_failure: "Settle failure",
}


def _summary(context: Any) -> Dict[str, Any]:
    requirements = context.requirements
    out: Dict[str, Any] = {
        "scheme": requirements.scheme,
        "network": context.payment_payload.network or requirements.network,
        "resource": requirements.resource,
        "amount": requirements.required_amount(),
    }
    result = getattr(context, "result", None)
    if result is not None:
        out.update(result.model_dump(exclude_none=True))
    error = getattr(context, "error", None)
    if error is not None:
        out["error"] = f"{error.__class__.__name__}: {error}"
    return out


def _log_hook(event: HookEvent) -> Hook:
    label = _LABELS[event]
    failure = event in (HookEvent.verify_failure, HookEvent.settle_failure)

    def hook(context: Any) -> None:
        if failure:
            logger.warning(f"{label} {_summary(context)}")
        else:
            logger.info(f"{label} {_summary(context)}")

    hook.__name__ = f"log_{event.value}"
    return hook


def logging_hooks() -> Dict[HookEvent, List[Hook]]:
    return {event: [_log_hook(event)] for event in HookEvent}


def _span_hook(event: HookEvent) -> Hook:
    from opentelemetry import trace

    def hook(context: Any) -> None:
        attributes = {
            f"x402.{k}": str(v) for k, v in _summary(context).items() if v is not None
        }
        trace.get_current_span().add_event(f"x402.{event.value}", attributes=attributes)

    hook.__name__ = f"span_{event.value}"
    return hook


def tracing_hooks() -> Dict[HookEvent, List[Hook]]:
    """Record every lifecycle transition as an event on the active span."""
    return {event: [_span_hook(event)] for event in HookEvent}
