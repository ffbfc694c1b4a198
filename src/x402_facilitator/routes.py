# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import json
import logging
import uuid
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from opentelemetry import trace
from pydantic import ValidationError

from .config import FacilitatorRuntimeConfig, get_facilitator_cfg
from .errors import InvalidRequestError
from .models import (
    FacilitatorRequest,
    PaymentPayload,
    PaymentRequirements,
    SettleResponse,
    SupportedResponse,
    VerifyResponse,
)
from .pipeline import FacilitationPipeline
from .reconcile import SettlementReconciler

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("x402_facilitator")

MISSING_BODY_FIELDS = "Missing paymentPayload or paymentRequirements"


def get_pipeline() -> FacilitationPipeline:
    raise RuntimeError("FacilitationPipeline not configured; build the app with create_app()")


def get_reconciler() -> Optional[SettlementReconciler]:
    return None


router = APIRouter(tags=["x402-facilitator"])


def _error_response(status_code: int, message: str, req_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": message},
        headers={"X-Request-ID": req_id},
    )


def _parse_body(body: FacilitatorRequest) -> Tuple[PaymentPayload, PaymentRequirements]:
    if body.paymentPayload is None or body.paymentRequirements is None:
        raise InvalidRequestError(MISSING_BODY_FIELDS)
    try:
        payload = PaymentPayload.model_validate(body.paymentPayload)
        requirements = PaymentRequirements.model_validate(body.paymentRequirements)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise InvalidRequestError(f"Invalid payment fields: {fields}") from e
    return payload, requirements


def _log_payloads(req_id: str, cfg: FacilitatorRuntimeConfig, body: FacilitatorRequest) -> None:
    if cfg.debug_payloads:
        logger.debug(f"[{req_id}] paymentPayload: {json.dumps(body.paymentPayload, indent=2, default=str)}")
        logger.debug(
            f"[{req_id}] paymentRequirements: {json.dumps(body.paymentRequirements, indent=2, default=str)}"
        )


@router.post("/verify", response_model=VerifyResponse, response_model_exclude_none=True)
async def verify(
    body: FacilitatorRequest,
    response: Response,
    pipeline: FacilitationPipeline = Depends(get_pipeline),
    cfg: FacilitatorRuntimeConfig = Depends(get_facilitator_cfg),
):
    req_id = uuid.uuid4().hex
    response.headers["X-Request-ID"] = req_id
    _log_payloads(req_id, cfg, body)
    try:
        payload, requirements = _parse_body(body)
    except InvalidRequestError as e:
        logger.info(f"[{req_id}] Rejected verify request: {e}")
        return _error_response(400, str(e), req_id)

    try:
        with tracer.start_as_current_span("x402.verify"):
            result = await pipeline.verify(payload, requirements)
    except Exception as e:
        logger.exception(f"[{req_id}] Verify error: {e}")
        return _error_response(500, str(e) or e.__class__.__name__, req_id)
    logger.info(f"[{req_id}] Verify result: isValid={result.isValid} reason={result.invalidReason}")
    return result


@router.post("/settle", response_model=SettleResponse, response_model_exclude_none=True)
async def settle(
    body: FacilitatorRequest,
    response: Response,
    pipeline: FacilitationPipeline = Depends(get_pipeline),
    reconciler: Optional[SettlementReconciler] = Depends(get_reconciler),
    cfg: FacilitatorRuntimeConfig = Depends(get_facilitator_cfg),
):
    req_id = uuid.uuid4().hex
    response.headers["X-Request-ID"] = req_id
    _log_payloads(req_id, cfg, body)
    try:
        payload, requirements = _parse_body(body)
    except InvalidRequestError as e:
        logger.info(f"[{req_id}] Rejected settle request: {e}")
        return _error_response(400, str(e), req_id)

    try:
        with tracer.start_as_current_span("x402.settle"):
            result = await pipeline.settle(payload, requirements)
    except Exception as e:
        logger.exception(f"[{req_id}] Settle error: {e}")
        return _error_response(500, str(e) or e.__class__.__name__, req_id)
    logger.info(
        f"[{req_id}] Settle result: success={result.success} tx={result.transactionHash} "
        f"reason={result.errorReason}"
    )

    # Ledger bookkeeping; its outcome never changes the response.
    if result.success and reconciler is not None:
        outcome = await reconciler.reconcile(payload, requirements, result, req_id=req_id)
        logger.info(f"[{req_id}] Reconciliation outcome: {outcome.value}")
    return result


@router.get("/supported", response_model=SupportedResponse)
async def supported(
    response: Response,
    pipeline: FacilitationPipeline = Depends(get_pipeline),
):
    req_id = uuid.uuid4().hex
    response.headers["X-Request-ID"] = req_id
    try:
        return pipeline.get_supported()
    except Exception as e:
        logger.exception(f"[{req_id}] Supported error: {e}")
        return _error_response(500, str(e) or e.__class__.__name__, req_id)
