# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
import os
import sys
from typing import Any, Callable, List

import pytest


def _add_test_dir_to_syspath() -> None:
    here = os.path.abspath(os.path.dirname(__file__))
    if here not in sys.path:
        sys.path.insert(0, here)


_add_test_dir_to_syspath()


# Import after adding to syspath
from fastapi import FastAPI
from fastapi.testclient import TestClient

from stubs import PAY_TO, PAYER, TEST_PRIVATE_KEY, StubScheme
from x402_facilitator import (
    FacilitationPipeline,
    FacilitatorRuntimeConfig,
    HookEvent,
    InMemoryLedgerStore,
    SchemeRegistry,
    SettlementReconciler,
    create_app,
)

USDC_BASE_SEPOLIA = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"


@pytest.fixture
def test_env(monkeypatch) -> None:
    """Set up test environment variables."""
    monkeypatch.setenv("EVM_PRIVATE_KEY", TEST_PRIVATE_KEY)
    monkeypatch.setenv("EVM_RPC_URL", "http://127.0.0.1:8545")
    monkeypatch.setenv("FACILITATOR_NETWORKS", "eip155:84532")

    # In-memory ledger
    for name in ("SUPABASE_URL", "SUPABASE_SERVICE_KEY", "SUPABASE_KEY", "LEDGER_LOCAL_ENDPOINTS"):
        monkeypatch.delenv(name, raising=False)
    for name in ("OTEL_EXPORTER_OTLP_ENDPOINT", "OTEL_CONSOLE_EXPORTER", "OTEL_SERVICE_NAME"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("FACILITATOR_NETWORK_CHAIN_MAP", raising=False)


@pytest.fixture
def cfg(test_env) -> FacilitatorRuntimeConfig:
    return FacilitatorRuntimeConfig()


@pytest.fixture
def sample_payment_data() -> dict:
    """Exact-EVM payment for 1 USDC on Base Sepolia."""
    return {
        "x402Version": 2,
        "paymentPayload": {
            "x402Version": 2,
            "scheme": "exact",
            "network": "eip155:84532",
            "payload": {
                "signature": "0x" + "d" * 130,
                "authorization": {
                    "from": PAYER,
                    "to": PAY_TO,
                    "value": "1000000",  # 1 USDC
                    "validAfter": "0",
                    "validBefore": "9999999999",
                    "nonce": "0x" + "0" * 63 + "1",
                },
            },
        },
        "paymentRequirements": {
            "scheme": "exact",
            "network": "eip155:84532",
            "amount": "1000000",
            "asset": USDC_BASE_SEPOLIA,
            "payTo": PAY_TO,
            "resource": "/premium-article",
            "maxTimeoutSeconds": 60,
            "extra": {"name": "USDC", "version": "2"},
        },
    }


@pytest.fixture
def stub_scheme() -> StubScheme:
    return StubScheme()


@pytest.fixture
def hook_log() -> List[str]:
    return []


def _recorder(log: List[str], event: HookEvent) -> Callable[[Any], None]:
    def hook(context: Any) -> None:
        log.append(event.value)

    return hook


@pytest.fixture
def pipeline(stub_scheme: StubScheme, hook_log: List[str]) -> FacilitationPipeline:
    """Pipeline over the stub scheme with a recorder on every lifecycle event."""
    registry = SchemeRegistry().register("eip155:84532", stub_scheme)
    pipeline = FacilitationPipeline(registry)
    for event in HookEvent:
        pipeline.add_hook(event, _recorder(hook_log, event))
    return pipeline


@pytest.fixture
def ledger() -> InMemoryLedgerStore:
    return InMemoryLedgerStore(
        [{"id": "ep_1", "user_id": "u1", "path": "/premium-article", "network": "eip155:84532"}]
    )


@pytest.fixture
def app(cfg: FacilitatorRuntimeConfig, pipeline: FacilitationPipeline, ledger: InMemoryLedgerStore) -> FastAPI:
    return create_app(cfg, pipeline=pipeline, reconciler=SettlementReconciler(ledger))


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Create test client."""
    return TestClient(app)
