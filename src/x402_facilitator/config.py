# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import json as _json
import os
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from .errors import ConfigError

_TRUTHY = {"1", "true", "yes"}

_DEFAULT_CHAIN_MAP = {"base": 8453, "base-sepolia": 84532}


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in _TRUTHY


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


def _env_number(name: str, default: str, cast: Callable[[str], Any]) -> Any:
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


def _env_chain_map() -> Dict[str, int]:
    """Parse FACILITATOR_NETWORK_CHAIN_MAP env into a dict.

    Accepts either JSON (e.g., '{"base":8453,"base-sepolia":84532}') or
    a comma-separated list of pairs (e.g., 'base:8453,base-sepolia:84532').
    """
    raw = os.getenv("FACILITATOR_NETWORK_CHAIN_MAP")
    if not raw:
        return dict(_DEFAULT_CHAIN_MAP)
    try:
        if raw.strip().startswith("{"):
            parsed = _json.loads(raw)
            return {**_DEFAULT_CHAIN_MAP, **{str(k): int(v) for k, v in parsed.items()}}
        out: Dict[str, int] = dict(_DEFAULT_CHAIN_MAP)
        for part in raw.split(","):
            if not part.strip():
                continue
            k, v = part.split(":", 1)
            out[k.strip()] = int(v.strip())
        return out
    except (ValueError, AttributeError) as e:
        raise ConfigError(f"FACILITATOR_NETWORK_CHAIN_MAP invalid: {e}") from e


def resolve_chain_id(network: str, chain_map: Optional[Dict[str, int]] = None) -> int:
    """Resolve a CAIP-2 ('eip155:84532') or legacy ('base-sepolia') network to a chain id; 0 if unknown."""
    if network.startswith("eip155:"):
        ref = network.split(":", 1)[1]
        return int(ref) if ref.isdigit() else 0
    return (_DEFAULT_CHAIN_MAP if chain_map is None else chain_map).get(network, 0)


def _env_local_endpoints() -> List[Dict[str, Any]]:
    raw = os.getenv("LEDGER_LOCAL_ENDPOINTS")
    if not raw:
        return []
    try:
        parsed = _json.loads(raw)
    except ValueError as e:
        raise ConfigError(f"LEDGER_LOCAL_ENDPOINTS must be JSON: {e}") from e
    if not isinstance(parsed, list):
        raise ConfigError("LEDGER_LOCAL_ENDPOINTS must be a JSON list")
    return parsed


class FacilitatorRuntimeConfig(BaseModel):
    evm_private_key: Optional[str] = Field(default_factory=lambda: os.getenv("EVM_PRIVATE_KEY") or None)
    rpc_url: str = Field(default_factory=lambda: os.getenv("EVM_RPC_URL", "https://sepolia.base.org"))
    networks: List[str] = Field(default_factory=lambda: _env_list("FACILITATOR_NETWORKS", "eip155:84532"))
    network_chain_map: Dict[str, int] = Field(default_factory=_env_chain_map)
    deploy_erc4337_with_eip6492: bool = Field(
        default_factory=lambda: _env_flag("DEPLOY_ERC4337_WITH_EIP6492", "1")
    )
    receipt_timeout_s: float = Field(
        default_factory=lambda: _env_number("FACILITATOR_RECEIPT_TIMEOUT_S", "120", float)
    )
    # Ledger: Supabase when configured, in-process memory otherwise.
    supabase_url: Optional[str] = Field(default_factory=lambda: os.getenv("SUPABASE_URL") or None)
    supabase_key: Optional[str] = Field(
        default_factory=lambda: os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_KEY") or None
    )
    ledger_timeout_s: float = Field(default_factory=lambda: _env_number("LEDGER_TIMEOUT_S", "10", float))
    ledger_endpoint_cache_ttl: int = Field(
        default_factory=lambda: _env_number("LEDGER_ENDPOINT_CACHE_TTL", "60", int)
    )
    ledger_local_endpoints: List[Dict[str, Any]] = Field(default_factory=_env_local_endpoints)
    debug_payloads: bool = Field(default_factory=lambda: _env_flag("FACILITATOR_DEBUG_PAYLOADS", "0"))
    otel_endpoint: Optional[str] = Field(default_factory=lambda: os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or None)
    otel_service_name: str = Field(default_factory=lambda: os.getenv("OTEL_SERVICE_NAME", "x402-facilitator"))
    otel_console: bool = Field(default_factory=lambda: _env_flag("OTEL_CONSOLE_EXPORTER", "0"))
    host: str = Field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = Field(default_factory=lambda: _env_number("PORT", "4022", int))

    @property
    def otel_enabled(self) -> bool:
        return bool(self.otel_endpoint or self.otel_console)

    @property
    def supabase_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    def require_signer_key(self) -> str:
        if not self.evm_private_key:
            raise ConfigError("EVM_PRIVATE_KEY environment variable is required")
        return self.evm_private_key


def get_facilitator_cfg() -> FacilitatorRuntimeConfig:
    return FacilitatorRuntimeConfig()
