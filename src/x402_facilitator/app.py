# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import FacilitatorRuntimeConfig, get_facilitator_cfg
from .hooks import logging_hooks, tracing_hooks
from .ledger import build_ledger_store
from .pipeline import FacilitationPipeline
from .reconcile import SettlementReconciler
from .registry import SchemeRegistry
from .routes import get_pipeline, get_reconciler, router
from .schemes import register_exact_evm_scheme
from .signer import Web3Signer

logger = logging.getLogger(__name__)


def build_pipeline(cfg: FacilitatorRuntimeConfig) -> FacilitationPipeline:
    """Bind the controlling account, register the exact EVM scheme and attach stock hooks."""
    signer = Web3Signer.from_config(cfg)
    logger.info(f"EVM Facilitator account: {signer.address}")
    registry = register_exact_evm_scheme(
        SchemeRegistry(),
        signer=signer,
        networks=cfg.networks,
        deploy_erc4337_with_eip6492=cfg.deploy_erc4337_with_eip6492,
        network_chain_map=cfg.network_chain_map,
    )
    pipeline = FacilitationPipeline(registry, hooks=logging_hooks())
    if cfg.otel_enabled:
        pipeline.add_hooks(tracing_hooks())
    return pipeline


def create_app(
    cfg: Optional[FacilitatorRuntimeConfig] = None,
    *,
    pipeline: Optional[FacilitationPipeline] = None,
    reconciler: Optional[SettlementReconciler] = None,
) -> FastAPI:
    cfg = cfg or FacilitatorRuntimeConfig()
    if pipeline is None:
        pipeline = build_pipeline(cfg)
    store = None
    if reconciler is None:
        store = build_ledger_store(cfg)
        reconciler = SettlementReconciler(store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if store is not None:
            await store.aclose()

    app = FastAPI(
        title="x402 Facilitator",
        description="Verifies and settles x402 payments onchain",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Process-wide state is handed to handlers through dependencies
    app.dependency_overrides[get_facilitator_cfg] = lambda: cfg
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_reconciler] = lambda: reconciler

    @app.middleware("http")
    async def request_id_header(request: Request, call_next):
        response = await call_next(request)
        if "X-Request-ID" not in response.headers:
            response.headers["X-Request-ID"] = uuid.uuid4().hex
        return response

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        req_id = uuid.uuid4().hex
        logger.info(f"[{req_id}] Rejected malformed request body on {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request body"},
            headers={"X-Request-ID": req_id},
        )

    @app.get("/health")
    async def health(cfg: FacilitatorRuntimeConfig = Depends(get_facilitator_cfg)) -> dict:
        supported = pipeline.get_supported()
        return {
            "status": "ok",
            "time": datetime.now(timezone.utc).isoformat(),
            "signers": supported.signers,
            "networks": sorted({kind.network for kind in supported.kinds}),
            "ledger": "supabase" if cfg.supabase_enabled else "memory",
        }

    app.include_router(router)

    logger.info("Facilitator app initialized")
    return app
