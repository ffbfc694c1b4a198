# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""
"exact" payment scheme on EVM networks.

The payer signs an EIP-3009 ``TransferWithAuthorization`` for the token named
in ``paymentRequirements.asset``; the facilitator checks it and submits
``transferWithAuthorization`` from its own account. All chain access goes
through the FacilitatorSigner.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, NamedTuple, Optional, Union

from eth_utils import is_address, to_bytes

from ..config import resolve_chain_id
from ..errors import ChainError, SettlementAborted
from ..models import PaymentPayload, PaymentRequirements, SettleResponse, VerifyResponse
from ..registry import SchemeRegistry
from ..signer import FacilitatorSigner, is_contract_revert, parse_erc6492_signature, signature_bytes

logger = logging.getLogger(__name__)

SCHEME_EXACT = "exact"

# validBefore must be strictly later than now + this margin.
VALID_BEFORE_MARGIN_S = 6

TRANSFER_WITH_AUTHORIZATION_TYPES = {
    "TransferWithAuthorization": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
    ]
}

_AUTH_INPUTS = [
    {"name": "from", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "validAfter", "type": "uint256"},
    {"name": "validBefore", "type": "uint256"},
    {"name": "nonce", "type": "bytes32"},
]

TRANSFER_WITH_AUTHORIZATION_VRS_ABI = [
    {
        "inputs": _AUTH_INPUTS
        + [
            {"name": "v", "type": "uint8"},
            {"name": "r", "type": "bytes32"},
            {"name": "s", "type": "bytes32"},
        ],
        "name": "transferWithAuthorization",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    }
]

TRANSFER_WITH_AUTHORIZATION_BYTES_ABI = [
    {
        "inputs": _AUTH_INPUTS + [{"name": "signature", "type": "bytes"}],
        "name": "transferWithAuthorization",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    }
]

EIP3009_VIEW_ABI = [
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "authorizer", "type": "address"},
            {"name": "nonce", "type": "bytes32"},
        ],
        "name": "authorizationState",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
]


class Authorization(NamedTuple):
    payer: str
    to: str
    value: int
    valid_after: int
    valid_before: int
    nonce: bytes
    signature: bytes

    def message(self) -> Dict[str, Any]:
        return {
            "from": self.payer,
            "to": self.to,
            "value": self.value,
            "validAfter": self.valid_after,
            "validBefore": self.valid_before,
            "nonce": self.nonce,
        }

    def args(self) -> List[Any]:
        return [self.payer, self.to, self.value, self.valid_after, self.valid_before, self.nonce]


def _parse_authorization(payload: PaymentPayload) -> Optional[Authorization]:
    inner = payload.payload or {}
    auth = inner.get("authorization")
    signature = inner.get("signature")
    if not isinstance(auth, Mapping) or not signature:
        return None
    try:
        nonce = to_bytes(hexstr=str(auth["nonce"]))
        parsed = Authorization(
            payer=str(auth["from"]),
            to=str(auth["to"]),
            value=int(auth["value"]),
            valid_after=int(auth["validAfter"]),
            valid_before=int(auth["validBefore"]),
            nonce=nonce,
            signature=signature_bytes(signature),
        )
    except (KeyError, TypeError, ValueError):
        return None
    if len(nonce) != 32 or not is_address(parsed.payer) or not is_address(parsed.to):
        return None
    return parsed


def _split_vrs(signature: bytes):
    r, s, v = signature[:32], signature[32:64], signature[64]
    if v < 27:
        v += 27
    return v, r, s


class ExactEvmScheme:
    scheme = SCHEME_EXACT
    x402_version = 2

    def __init__(
        self,
        signer: FacilitatorSigner,
        *,
        deploy_erc4337_with_eip6492: bool = False,
        network_chain_map: Optional[Dict[str, int]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.signer = signer
        self.deploy_erc4337_with_eip6492 = deploy_erc4337_with_eip6492
        self._chain_map = network_chain_map
        self._clock = clock

    def signer_addresses(self) -> List[str]:
        return [self.signer.address]

    def _domain(self, requirements: PaymentRequirements) -> Optional[Dict[str, Any]]:
        extra = requirements.extra or {}
        name, version = extra.get("name"), extra.get("version")
        chain_id = resolve_chain_id(requirements.network or "", self._chain_map)
        if not name or not version or not chain_id or not requirements.asset:
            return None
        return {
            "name": name,
            "version": version,
            "chainId": chain_id,
            "verifyingContract": requirements.asset,
        }

    async def _signature_valid(self, auth: Authorization, domain: Dict[str, Any]) -> bool:
        return await self.signer.verify_typed_data(
            address=auth.payer,
            domain=domain,
            types=TRANSFER_WITH_AUTHORIZATION_TYPES,
            primary_type="TransferWithAuthorization",
            message=auth.message(),
            signature=auth.signature,
        )

    async def verify(self, payload: PaymentPayload, requirements: PaymentRequirements) -> VerifyResponse:
        def invalid(reason: str, payer: Optional[str] = None) -> VerifyResponse:
            return VerifyResponse(isValid=False, invalidReason=reason, payer=payer)

        payload_scheme = payload.scheme or (payload.accepted or {}).get("scheme")
        if requirements.scheme != SCHEME_EXACT or (payload_scheme and payload_scheme != SCHEME_EXACT):
            return invalid("unsupported_scheme")
        payload_network = payload.network or (payload.accepted or {}).get("network")
        if payload_network and payload_network != requirements.network:
            return invalid("network_mismatch")

        auth = _parse_authorization(payload)
        if auth is None:
            return invalid("invalid_payload")
        domain = self._domain(requirements)
        if domain is None:
            return invalid("missing_eip712_domain", auth.payer)

        if not requirements.payTo or auth.to.lower() != requirements.payTo.lower():
            return invalid("invalid_exact_evm_payload_recipient_mismatch", auth.payer)
        try:
            required = int(requirements.required_amount() or "")
        except ValueError:
            return invalid("invalid_payment_requirements", auth.payer)
        if auth.value < required:
            return invalid("invalid_exact_evm_payload_authorization_value", auth.payer)

        now = int(self._clock())
        if auth.valid_after > now:
            return invalid("invalid_exact_evm_payload_authorization_valid_after", auth.payer)
        if auth.valid_before <= now + VALID_BEFORE_MARGIN_S:
            return invalid("invalid_exact_evm_payload_authorization_valid_before", auth.payer)

        try:
            wrapped = parse_erc6492_signature(auth.signature)
        except Exception:
            return invalid("invalid_exact_evm_payload_signature", auth.payer)
        undeployed = wrapped is not None and not await self.signer.get_code(address=auth.payer)
        if undeployed and not self.deploy_erc4337_with_eip6492:
            return invalid("undeployed_smart_wallet", auth.payer)
        if undeployed:
            # Undeployed wallet: the signature is checked again after deployment at settle time.
            logger.info(f"[EXACT] {auth.payer} not deployed yet; deferring signature check to settlement")
        elif not await self._signature_valid(auth, domain):
            return invalid("invalid_exact_evm_payload_signature", auth.payer)

        used = await self.signer.read_contract(
            address=requirements.asset,
            abi=EIP3009_VIEW_ABI,
            function_name="authorizationState",
            args=[auth.payer, auth.nonce],
        )
        if used:
            return invalid("invalid_exact_evm_payload_authorization_nonce_used", auth.payer)

        balance = await self.signer.read_contract(
            address=requirements.asset,
            abi=EIP3009_VIEW_ABI,
            function_name="balanceOf",
            args=[auth.payer],
        )
        if int(balance) < auth.value:
            return invalid("insufficient_funds", auth.payer)

        return VerifyResponse(isValid=True, payer=auth.payer)

    async def settle(self, payload: PaymentPayload, requirements: PaymentRequirements) -> SettleResponse:
        verdict = await self.verify(payload, requirements)
        if not verdict.isValid:
            raise SettlementAborted(verdict.invalidReason or "invalid_payment")

        auth = _parse_authorization(payload)
        domain = self._domain(requirements)
        network = requirements.network or "unknown"
        wrapped = parse_erc6492_signature(auth.signature)
        is_contract = bool(await self.signer.get_code(address=auth.payer))

        if wrapped is not None and not is_contract:
            logger.info(f"[EXACT] Deploying smart wallet {auth.payer} via factory {wrapped.factory}")
            try:
                deploy_hash = await self.signer.send_transaction(to=wrapped.factory, data=wrapped.factory_calldata)
            except ChainError as e:
                if not is_contract_revert(e):
                    raise
                logger.warning(f"[EXACT] Smart wallet deployment for {auth.payer} rejected: {e}")
                raise SettlementAborted("smart_wallet_deployment_failed") from e
            receipt = await self.signer.wait_for_transaction_receipt(hash=deploy_hash)
            if receipt.get("status") != 1:
                raise SettlementAborted("smart_wallet_deployment_failed")
            is_contract = True
            if not await self._signature_valid(auth, domain):
                raise SettlementAborted("invalid_exact_evm_payload_signature")

        signature = wrapped.signature if wrapped is not None else auth.signature
        if is_contract or len(signature) != 65:
            abi = TRANSFER_WITH_AUTHORIZATION_BYTES_ABI
            args = auth.args() + [signature]
        else:
            abi = TRANSFER_WITH_AUTHORIZATION_VRS_ABI
            args = auth.args() + list(_split_vrs(signature))

        try:
            tx_hash = await self.signer.write_contract(
                address=requirements.asset,
                abi=abi,
                function_name="transferWithAuthorization",
                args=args,
            )
        except ChainError as e:
            # Rejected before broadcast, e.g. a concurrent settle already used the nonce.
            if not is_contract_revert(e):
                raise
            logger.warning(f"[EXACT] transferWithAuthorization rejected for {auth.payer}: {e}")
            raise SettlementAborted("invalid_transaction_state") from e
        receipt = await self.signer.wait_for_transaction_receipt(hash=tx_hash)
        if receipt.get("status") != 1:
            logger.warning(f"[EXACT] transferWithAuthorization reverted: {tx_hash}")
            return SettleResponse(
                success=False,
                errorReason="invalid_transaction_state",
                transactionHash=tx_hash,
                network=network,
                payer=auth.payer,
            )
        return SettleResponse(success=True, transactionHash=tx_hash, network=network, payer=auth.payer)


def register_exact_evm_scheme(
    registry: SchemeRegistry,
    *,
    signer: FacilitatorSigner,
    networks: Union[str, Iterable[str]],
    deploy_erc4337_with_eip6492: bool = False,
    network_chain_map: Optional[Dict[str, int]] = None,
) -> SchemeRegistry:
    return registry.register(
        networks,
        ExactEvmScheme(
            signer,
            deploy_erc4337_with_eip6492=deploy_erc4337_with_eip6492,
            network_chain_map=network_chain_map,
        ),
    )
