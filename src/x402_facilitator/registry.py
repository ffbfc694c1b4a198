# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""
Scheme registry: which payment scheme handles which network.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Protocol, Union

from .errors import SchemeNotFoundError
from .models import (
    PaymentPayload,
    PaymentRequirements,
    SettleResponse,
    SupportedKind,
    SupportedResponse,
    VerifyResponse,
)

logger = logging.getLogger(__name__)


class SchemeFacilitator(Protocol):
    """Facilitator side of one payment scheme."""

    scheme: str
    x402_version: int

    def signer_addresses(self) -> List[str]:
        ...

    async def verify(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> VerifyResponse:
        ...

    async def settle(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> SettleResponse:
        """Settle onchain; raise SettlementAborted when the payment cannot be settled."""
        ...


def network_family(network: str) -> str:
    """'eip155:84532' -> 'eip155:*'; legacy names ('base-sepolia') map to their own key."""
    if ":" in network:
        return network.split(":", 1)[0] + ":*"
    return network


class SchemeRegistry:
    """
    Maps (network, scheme) to a scheme implementation.

    Populated once at startup and read-only afterwards.
    """

    def __init__(self) -> None:
        self._schemes: Dict[str, Dict[str, SchemeFacilitator]] = {}

    def register(
        self,
        networks: Union[str, Iterable[str]],
        facilitator: SchemeFacilitator,
    ) -> "SchemeRegistry":
        if isinstance(networks, str):
            networks = [networks]
        for network in networks:
            self._schemes.setdefault(network, {})[facilitator.scheme] = facilitator
            logger.info(f"[REGISTRY] Registered scheme={facilitator.scheme} network={network}")
        return self

    def find(self, scheme: Optional[str], network: Optional[str]) -> Optional[SchemeFacilitator]:
        if not scheme or not network:
            return None
        return self._schemes.get(network, {}).get(scheme)

    def require(self, scheme: Optional[str], network: Optional[str]) -> SchemeFacilitator:
        facilitator = self.find(scheme, network)
        if facilitator is None:
            raise SchemeNotFoundError(scheme, network)
        return facilitator

    def supported(self) -> SupportedResponse:
        kinds: List[SupportedKind] = []
        signers: Dict[str, List[str]] = {}
        for network, schemes in self._schemes.items():
            for scheme, facilitator in schemes.items():
                kinds.append(
                    SupportedKind(x402Version=facilitator.x402_version, scheme=scheme, network=network)
                )
                bucket = signers.setdefault(network_family(network), [])
                for address in facilitator.signer_addresses():
                    if address not in bucket:
                        bucket.append(address)
        return SupportedResponse(kinds=kinds, signers=signers)
