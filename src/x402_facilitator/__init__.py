# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""x402 Facilitator

Verifies and settles x402 payments onchain behind a FastAPI app, and records
successful settlements in the endpoints/transactions ledger.

Usage:
    from x402_facilitator import FacilitatorRuntimeConfig, create_app

    app = create_app(FacilitatorRuntimeConfig())
"""

from .app import build_pipeline, create_app
from .config import FacilitatorRuntimeConfig, get_facilitator_cfg
from .errors import (
    ChainError,
    ConfigError,
    FacilitatorError,
    InvalidRequestError,
    LedgerError,
    SchemeNotFoundError,
    SettlementAborted,
)
from .ledger import EndpointRecord, InMemoryLedgerStore, SupabaseLedgerStore, TransactionRecord
from .models import (
    PaymentPayload,
    PaymentRequirements,
    SettleResponse,
    SupportedKind,
    SupportedResponse,
    VerifyResponse,
)
from .pipeline import FacilitationPipeline, HookEvent
from .reconcile import ReconciliationOutcome, SettlementReconciler
from .registry import SchemeRegistry
from .routes import router
from .signer import FacilitatorSigner, Web3Signer

__version__ = "0.1.0"

__all__ = [
    "create_app",
    "build_pipeline",
    "router",
    "FacilitatorRuntimeConfig",
    "get_facilitator_cfg",
    "FacilitationPipeline",
    "HookEvent",
    "SchemeRegistry",
    "FacilitatorSigner",
    "Web3Signer",
    "SettlementReconciler",
    "ReconciliationOutcome",
    "EndpointRecord",
    "TransactionRecord",
    "InMemoryLedgerStore",
    "SupabaseLedgerStore",
    "PaymentPayload",
    "PaymentRequirements",
    "VerifyResponse",
    "SettleResponse",
    "SupportedKind",
    "SupportedResponse",
    "FacilitatorError",
    "ChainError",
    "ConfigError",
    "InvalidRequestError",
    "LedgerError",
    "SchemeNotFoundError",
    "SettlementAborted",
]
