# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""Record store for settlement reconciliation.

Two tables matter here: ``endpoints`` (payment-accepting endpoints, read-only,
unique by ``(path, network)``) and ``transactions`` (append-only ledger).
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union

import httpx
from cachetools import TTLCache
from pydantic import BaseModel, ConfigDict

from .config import FacilitatorRuntimeConfig
from .errors import DuplicateEndpointError, LedgerError

logger = logging.getLogger(__name__)


class EndpointRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Union[str, int]
    user_id: str
    path: str
    network: str


class TransactionRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    endpoint_id: Union[str, int]
    payer_wallet: str
    amount: Decimal
    net_amount: Decimal
    tx_hash: str
    chain: str
    status: str
    created_at: datetime


class LedgerStore(Protocol):
    async def find_endpoint(self, path: str, network: str) -> Optional[EndpointRecord]:
        ...

    async def insert_transaction(self, record: TransactionRecord) -> None:
        ...

    async def aclose(self) -> None:
        ...


class InMemoryLedgerStore:
    """Process-local ledger; used when no Supabase project is configured."""

    def __init__(self, endpoints: Optional[List[Union[EndpointRecord, Dict[str, Any]]]] = None) -> None:
        self._endpoints: Dict[Tuple[str, str], EndpointRecord] = {}
        self.transactions: List[TransactionRecord] = []
        for endpoint in endpoints or []:
            self.add_endpoint(endpoint)

    def add_endpoint(self, endpoint: Union[EndpointRecord, Dict[str, Any]]) -> EndpointRecord:
        if not isinstance(endpoint, EndpointRecord):
            data = dict(endpoint)
            data.setdefault("id", f"ep_{len(self._endpoints) + 1}")
            endpoint = EndpointRecord(**data)
        key = (endpoint.path, endpoint.network)
        if key in self._endpoints:
            raise DuplicateEndpointError(endpoint.path, endpoint.network)
        self._endpoints[key] = endpoint
        return endpoint

    async def find_endpoint(self, path: str, network: str) -> Optional[EndpointRecord]:
        return self._endpoints.get((path, network))

    async def insert_transaction(self, record: TransactionRecord) -> None:
        self.transactions.append(record)

    async def aclose(self) -> None:
        return None


class SupabaseLedgerStore:
    """Ledger backed by a Supabase project through its PostgREST API.

    Endpoint hits are cached for ``cache_ttl`` seconds; misses are not cached so
    that newly registered endpoints are picked up immediately.
    """

    def __init__(
        self,
        url: str,
        key: str,
        *,
        timeout_s: float = 10.0,
        cache_ttl: int = 60,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not url or not key:
            raise ValueError("url and key required for SupabaseLedgerStore")
        self.http = httpx.AsyncClient(
            base_url=f"{url.rstrip('/')}/rest/v1",
            headers={"apikey": key, "Authorization": f"Bearer {key}"},
            timeout=timeout_s,
            transport=transport,
        )
        self._cache: Optional[TTLCache] = TTLCache(maxsize=1024, ttl=cache_ttl) if cache_ttl > 0 else None

    @classmethod
    def from_config(cls, cfg: FacilitatorRuntimeConfig) -> "SupabaseLedgerStore":
        return cls(
            cfg.supabase_url or "",
            cfg.supabase_key or "",
            timeout_s=cfg.ledger_timeout_s,
            cache_ttl=cfg.ledger_endpoint_cache_ttl,
        )

    async def find_endpoint(self, path: str, network: str) -> Optional[EndpointRecord]:
        key = (path, network)
        if self._cache is not None and key in self._cache:
            return self._cache[key]
        try:
            r = await self.http.get(
                "/endpoints",
                params={
                    "select": "id,user_id,path,network",
                    "path": f"eq.{path}",
                    "network": f"eq.{network}",
                    "limit": "2",
                },
            )
        except httpx.HTTPError as e:
            raise LedgerError(f"endpoint lookup failed: {e}") from e
        if r.status_code != 200:
            raise LedgerError(f"endpoint lookup failed with {r.status_code}: {r.text}")
        rows = r.json()
        if not rows:
            return None
        if len(rows) > 1:
            raise LedgerError(f"multiple endpoints registered for path={path} network={network}")
        endpoint = EndpointRecord(**rows[0])
        if self._cache is not None:
            self._cache[key] = endpoint
        return endpoint

    async def insert_transaction(self, record: TransactionRecord) -> None:
        try:
            r = await self.http.post(
                "/transactions",
                json=record.model_dump(mode="json"),
                headers={"Prefer": "return=minimal"},
            )
        except httpx.HTTPError as e:
            raise LedgerError(f"transaction insert failed: {e}") from e
        if r.status_code not in (200, 201, 204):
            raise LedgerError(f"transaction insert failed with {r.status_code}: {r.text}")

    async def aclose(self) -> None:
        await self.http.aclose()


def build_ledger_store(cfg: FacilitatorRuntimeConfig) -> Union[SupabaseLedgerStore, InMemoryLedgerStore]:
    if cfg.supabase_enabled:
        logger.info(f"[LEDGER] Using Supabase ledger at {cfg.supabase_url}")
        return SupabaseLedgerStore.from_config(cfg)
    logger.warning(
        "[LEDGER] SUPABASE_URL/SUPABASE_SERVICE_KEY not set; settlements are recorded in process memory only"
    )
    return InMemoryLedgerStore(cfg.ledger_local_endpoints)
