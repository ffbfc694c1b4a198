# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# -------------------------------
# Wire models
# -------------------------------


class PaymentPayload(BaseModel):
    """Caller-supplied payment claim.

    Only the fields the facilitator routes on are declared; everything else the
    client sent is preserved as extra data for the scheme and for ledger
    attribution.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    x402Version: Optional[int] = None
    scheme: Optional[str] = None
    network: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    resource: Optional[Union[str, Dict[str, Any]]] = None
    accepted: Optional[Dict[str, Any]] = None


class PaymentRequirements(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    scheme: Optional[str] = None
    network: Optional[str] = None
    amount: Optional[Union[str, int]] = None
    maxAmountRequired: Optional[Union[str, int]] = None
    asset: Optional[str] = None
    payTo: Optional[str] = None
    resource: Optional[Union[str, Dict[str, Any]]] = None
    maxTimeoutSeconds: Optional[int] = None
    extra: Dict[str, Any] = Field(default_factory=dict)

    def required_amount(self) -> Optional[str]:
        value = self.amount if self.amount is not None else self.maxAmountRequired
        return None if value is None else str(value)


class FacilitatorRequest(BaseModel):
    x402Version: Optional[int] = None
    paymentPayload: Optional[Dict[str, Any]] = None
    paymentRequirements: Optional[Dict[str, Any]] = None


class VerifyResponse(BaseModel):
    isValid: bool
    invalidReason: Optional[str] = None
    payer: Optional[str] = None


class SettleResponse(BaseModel):
    success: bool
    errorReason: Optional[str] = None
    transactionHash: Optional[str] = None
    network: str
    payer: Optional[str] = None


class SupportedKind(BaseModel):
    x402Version: int = 2
    scheme: str
    network: str


class SupportedResponse(BaseModel):
    kinds: List[SupportedKind] = Field(default_factory=list)
    signers: Dict[str, List[str]] = Field(default_factory=dict)


# -------------------------------
# Hook contexts
# -------------------------------


@dataclass(frozen=True)
class VerifyContext:
    payment_payload: PaymentPayload
    requirements: PaymentRequirements


@dataclass(frozen=True)
class VerifyResultContext(VerifyContext):
    result: VerifyResponse


@dataclass(frozen=True)
class VerifyFailureContext(VerifyContext):
    error: BaseException


@dataclass(frozen=True)
class SettleContext:
    payment_payload: PaymentPayload
    requirements: PaymentRequirements


@dataclass(frozen=True)
class SettleResultContext(SettleContext):
    result: SettleResponse


@dataclass(frozen=True)
class SettleFailureContext(SettleContext):
    error: BaseException
