# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""Post-settlement reconciliation.

After a successful settle, attribute the payment to a registered endpoint and
append one row to the transactions ledger. Nothing in here may raise into the
request path: every failure ends as a log line and a ``failed`` outcome.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Mapping, NamedTuple, Optional, Tuple
from urllib.parse import urlparse

from .errors import LedgerError
from .ledger import LedgerStore, TransactionRecord
from .models import PaymentPayload, PaymentRequirements, SettleResponse

logger = logging.getLogger(__name__)

# Accepted field names per attribute, in priority order. Clients in the wild
# still send several legacy shapes, so the first non-empty scalar wins.
# Each entry is (source, key path) with source in payload/requirements/response.
FieldPath = Tuple[str, Tuple[str, ...]]

ATTRIBUTION_FIELDS: Dict[str, Tuple[Tuple[FieldPath, ...], Any]] = {
    "payer_wallet": (
        (
            ("payload", ("payer",)),
            ("payload", ("sender",)),
            ("payload", ("payload", "authorization", "from")),
            ("payload", ("from",)),
            ("response", ("payer",)),
        ),
        "unknown",
    ),
    "amount": (
        (
            ("requirements", ("amount",)),
            ("requirements", ("value",)),
            ("requirements", ("maxAmountRequired",)),
        ),
        "0",
    ),
    "path": (
        (
            ("requirements", ("resource",)),
            ("requirements", ("resource", "url")),
            ("requirements", ("path",)),
            ("payload", ("resource", "url")),
        ),
        "/unknown",
    ),
    "network": (
        (
            ("payload", ("network",)),
            ("requirements", ("network",)),
            ("payload", ("accepted", "network")),
            ("response", ("network",)),
        ),
        "unknown",
    ),
    "tx_hash": (
        (
            ("response", ("transactionHash",)),
            ("response", ("transaction",)),
            ("response", ("hash",)),
        ),
        "0xmock",
    ),
}


class SettlementAttribution(NamedTuple):
    payer_wallet: str
    amount: Decimal
    path: str
    network: str
    tx_hash: str


class ReconciliationOutcome(str, Enum):
    recorded = "recorded"
    unattributed = "unattributed"
    skipped = "skipped"
    failed = "failed"


def _lookup(doc: Mapping[str, Any], path: Tuple[str, ...]) -> Any:
    ref: Any = doc
    for key in path:
        if isinstance(ref, Mapping) and key in ref:
            ref = ref[key]
        else:
            return None
    return ref


def first_present(sources: Mapping[str, Mapping[str, Any]], attribute: str) -> Any:
    paths, default = ATTRIBUTION_FIELDS[attribute]
    for source, path in paths:
        value = _lookup(sources.get(source) or {}, path)
        if isinstance(value, bool) or value is None or value == "":
            continue
        if isinstance(value, (str, int, float, Decimal)):
            return value
    return default


def normalize_path(resource: str) -> str:
    """Reduce an absolute resource URL to its path; relative paths pass through."""
    parsed = urlparse(resource)
    if parsed.scheme and parsed.netloc:
        return parsed.path or "/"
    return resource


def parse_amount(raw: Any) -> Decimal:
    try:
        amount = Decimal(str(raw).strip())
    except InvalidOperation as e:
        raise LedgerError(f"malformed amount: {raw!r}") from e
    if not amount.is_finite() or amount < 0:
        raise LedgerError(f"malformed amount: {raw!r}")
    return amount


def extract_attribution(
    payload: PaymentPayload,
    requirements: PaymentRequirements,
    response: SettleResponse,
) -> SettlementAttribution:
    sources = {
        "payload": payload.model_dump(exclude_none=True),
        "requirements": requirements.model_dump(exclude_none=True),
        "response": response.model_dump(exclude_none=True),
    }
    return SettlementAttribution(
        payer_wallet=str(first_present(sources, "payer_wallet")),
        amount=parse_amount(first_present(sources, "amount")),
        path=normalize_path(str(first_present(sources, "path"))),
        network=str(first_present(sources, "network")),
        tx_hash=str(first_present(sources, "tx_hash")),
    )


class SettlementReconciler:
    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    async def reconcile(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
        response: SettleResponse,
        *,
        req_id: Optional[str] = None,
    ) -> ReconciliationOutcome:
        tag = f"[{req_id}] " if req_id else ""
        if not response.success:
            return ReconciliationOutcome.skipped
        try:
            attribution = extract_attribution(payload, requirements, response)
            endpoint = await self.store.find_endpoint(attribution.path, attribution.network)
            if endpoint is None:
                logger.warning(
                    f"{tag}[LEDGER] Unattributed settlement: no endpoint for path: {attribution.path} "
                    f"and network: {attribution.network} (tx={attribution.tx_hash})"
                )
                return ReconciliationOutcome.unattributed
            record = TransactionRecord(
                user_id=endpoint.user_id,
                endpoint_id=endpoint.id,
                payer_wallet=attribution.payer_wallet,
                amount=attribution.amount,
                # Fee deduction is not implemented yet; the payee receives the full amount.
                net_amount=attribution.amount,
                tx_hash=attribution.tx_hash,
                chain=attribution.network,
                status="success",
                created_at=datetime.now(timezone.utc),
            )
            await self.store.insert_transaction(record)
        except Exception:
            logger.exception(f"{tag}[LEDGER] Error during settlement reconciliation")
            return ReconciliationOutcome.failed
        logger.info(f"{tag}[LEDGER] Transaction logged for user_id: {endpoint.user_id} (tx={record.tx_hash})")
        return ReconciliationOutcome.recorded
