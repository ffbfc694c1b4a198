# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from typing import Optional

SETTLEMENT_ABORTED_PREFIX = "Settlement aborted: "


class FacilitatorError(Exception):
    pass


class ConfigError(FacilitatorError):
    pass


class ChainError(FacilitatorError):
    """Raised by the signer adapter when the chain client or the RPC node fails."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class SchemeNotFoundError(FacilitatorError):
    def __init__(self, scheme: Optional[str], network: Optional[str]):
        self.scheme = scheme
        self.network = network
        super().__init__(f"No facilitator registered for scheme: {scheme} and network: {network}")


class SettlementAborted(FacilitatorError):
    """A scheme decided the payment cannot be settled.

    This is a normal outcome for the caller (HTTP 200, ``success: false``), as
    opposed to an infrastructure fault. ``reason`` never carries the prefix.
    """

    def __init__(self, reason: str):
        if reason.startswith(SETTLEMENT_ABORTED_PREFIX):
            reason = reason[len(SETTLEMENT_ABORTED_PREFIX):]
        self.reason = reason
        super().__init__(f"{SETTLEMENT_ABORTED_PREFIX}{reason}")


class LedgerError(FacilitatorError):
    pass


class DuplicateEndpointError(LedgerError):
    def __init__(self, path: str, network: str):
        super().__init__(f"endpoint already registered for path={path} network={network}")


class InvalidRequestError(FacilitatorError):
    pass
