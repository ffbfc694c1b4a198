# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""Signer adapter: the chain operations the facilitator needs, bound to one account.

Schemes only ever talk to a :class:`FacilitatorSigner`; :class:`Web3Signer` is
the implementation backed by ``web3.py`` and an ``eth_account`` local key.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import (
    Any,
    Dict,
    Iterator,
    Mapping,
    NamedTuple,
    Optional,
    Protocol,
    Sequence,
    Union,
    runtime_checkable,
)

from eth_abi import decode as abi_decode
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_account.signers.local import LocalAccount
from eth_utils import keccak, to_bytes, to_checksum_address, to_hex
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError

from .config import FacilitatorRuntimeConfig
from .errors import ChainError, ConfigError

logger = logging.getLogger(__name__)

ERC1271_MAGIC_VALUE = bytes.fromhex("1626ba7e")
ERC6492_MAGIC_SUFFIX = bytes.fromhex("6492" * 16)

ERC1271_ABI = [
    {
        "inputs": [
            {"name": "hash", "type": "bytes32"},
            {"name": "signature", "type": "bytes"},
        ],
        "name": "isValidSignature",
        "outputs": [{"name": "magicValue", "type": "bytes4"}],
        "stateMutability": "view",
        "type": "function",
    }
]

_DOMAIN_FIELD_TYPES = (
    ("name", "string"),
    ("version", "string"),
    ("chainId", "uint256"),
    ("verifyingContract", "address"),
    ("salt", "bytes32"),
)

HexLike = Union[str, bytes]


@runtime_checkable
class FacilitatorSigner(Protocol):
    @property
    def address(self) -> str: ...

    async def get_code(self, *, address: str) -> bytes: ...

    async def read_contract(
        self,
        *,
        address: str,
        abi: Sequence[Mapping[str, Any]],
        function_name: str,
        args: Optional[Sequence[Any]] = None,
    ) -> Any: ...

    async def write_contract(
        self,
        *,
        address: str,
        abi: Sequence[Mapping[str, Any]],
        function_name: str,
        args: Sequence[Any],
    ) -> str: ...

    async def verify_typed_data(
        self,
        *,
        address: str,
        domain: Mapping[str, Any],
        types: Mapping[str, Any],
        primary_type: str,
        message: Mapping[str, Any],
        signature: HexLike,
    ) -> bool: ...

    async def send_transaction(self, *, to: str, data: HexLike) -> str: ...

    async def wait_for_transaction_receipt(self, *, hash: str) -> Mapping[str, Any]: ...


class ERC6492Signature(NamedTuple):
    factory: str
    factory_calldata: bytes
    signature: bytes


def signature_bytes(signature: HexLike) -> bytes:
    if isinstance(signature, str):
        return to_bytes(hexstr=signature)
    return bytes(signature)


def parse_erc6492_signature(signature: HexLike) -> Optional[ERC6492Signature]:
    """Unwrap an EIP-6492 counterfactual signature; None if it is not wrapped."""
    sig = signature_bytes(signature)
    if len(sig) <= len(ERC6492_MAGIC_SUFFIX) or not sig.endswith(ERC6492_MAGIC_SUFFIX):
        return None
    factory, calldata, inner = abi_decode(["address", "bytes", "bytes"], sig[: -len(ERC6492_MAGIC_SUFFIX)])
    return ERC6492Signature(to_checksum_address(factory), bytes(calldata), bytes(inner))


def typed_data_digest(
    domain: Mapping[str, Any],
    types: Mapping[str, Any],
    primary_type: str,
    message: Mapping[str, Any],
):
    """Return (signable_message, eip712_digest) for the given typed data."""
    all_types: Dict[str, Any] = dict(types)
    if "EIP712Domain" not in all_types:
        all_types["EIP712Domain"] = [
            {"name": name, "type": type_} for name, type_ in _DOMAIN_FIELD_TYPES if name in domain
        ]
    signable = encode_typed_data(
        full_message={
            "types": all_types,
            "domain": dict(domain),
            "primaryType": primary_type,
            "message": dict(message),
        }
    )
    digest = keccak(b"\x19" + signable.version + signable.header + signable.body)
    return signable, digest


@contextmanager
def _chain_call(operation: str) -> Iterator[None]:
    try:
        yield
    except ChainError:
        raise
    except Exception as e:
        raise ChainError(operation, str(e) or e.__class__.__name__) from e


def is_contract_revert(error: ChainError) -> bool:
    """True when the node rejected the call itself (revert), as opposed to a transport fault."""
    return isinstance(error.__cause__, ContractLogicError)


class Web3Signer:
    """FacilitatorSigner over an AsyncWeb3 client and one local account.

    Nonces are taken from the node's pending count; serialising concurrent
    submissions from the shared account is left to the node/client.
    """

    def __init__(self, w3: AsyncWeb3, account: LocalAccount, *, receipt_timeout_s: float = 120.0):
        self._w3 = w3
        self._account = account
        self._receipt_timeout_s = receipt_timeout_s

    @classmethod
    def from_config(cls, cfg: FacilitatorRuntimeConfig) -> "Web3Signer":
        key = cfg.require_signer_key()
        try:
            account = Account.from_key(key)
        except Exception as e:
            raise ConfigError(f"EVM_PRIVATE_KEY is not a valid private key: {e}") from e
        w3 = AsyncWeb3(AsyncHTTPProvider(cfg.rpc_url))
        return cls(w3, account, receipt_timeout_s=cfg.receipt_timeout_s)

    @property
    def address(self) -> str:
        return self._account.address

    def _function(self, address: str, abi: Sequence[Mapping[str, Any]], function_name: str, args: Sequence[Any]):
        contract = self._w3.eth.contract(address=to_checksum_address(address), abi=list(abi))
        return getattr(contract.functions, function_name)(*args)

    async def _next_nonce(self) -> int:
        return await self._w3.eth.get_transaction_count(self.address, "pending")

    async def _send_signed(self, tx: Dict[str, Any]) -> str:
        signed = self._account.sign_transaction(tx)
        tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        return to_hex(tx_hash)

    async def get_code(self, *, address: str) -> bytes:
        with _chain_call("getCode"):
            return bytes(await self._w3.eth.get_code(to_checksum_address(address)))

    async def read_contract(
        self,
        *,
        address: str,
        abi: Sequence[Mapping[str, Any]],
        function_name: str,
        args: Optional[Sequence[Any]] = None,
    ) -> Any:
        with _chain_call("readContract"):
            return await self._function(address, abi, function_name, args or []).call()

    async def write_contract(
        self,
        *,
        address: str,
        abi: Sequence[Mapping[str, Any]],
        function_name: str,
        args: Sequence[Any],
    ) -> str:
        with _chain_call("writeContract"):
            fn = self._function(address, abi, function_name, args or [])
            tx = await fn.build_transaction({"from": self.address, "nonce": await self._next_nonce()})
            tx_hash = await self._send_signed(tx)
        logger.info(f"[SIGNER] {function_name} submitted to {address}: {tx_hash}")
        return tx_hash

    async def send_transaction(self, *, to: str, data: HexLike) -> str:
        with _chain_call("sendTransaction"):
            tx: Dict[str, Any] = {
                "from": self.address,
                "to": to_checksum_address(to),
                "data": to_hex(signature_bytes(data)),
                "nonce": await self._next_nonce(),
                "chainId": await self._w3.eth.chain_id,
            }
            tx["gas"] = await self._w3.eth.estimate_gas(tx)
            tx["gasPrice"] = await self._w3.eth.gas_price
            tx_hash = await self._send_signed(tx)
        logger.info(f"[SIGNER] raw transaction submitted to {to}: {tx_hash}")
        return tx_hash

    async def wait_for_transaction_receipt(self, *, hash: str) -> Mapping[str, Any]:
        with _chain_call("waitForTransactionReceipt"):
            return await self._w3.eth.wait_for_transaction_receipt(hash, timeout=self._receipt_timeout_s)

    async def verify_typed_data(
        self,
        *,
        address: str,
        domain: Mapping[str, Any],
        types: Mapping[str, Any],
        primary_type: str,
        message: Mapping[str, Any],
        signature: HexLike,
    ) -> bool:
        try:
            signable, digest = typed_data_digest(domain, types, primary_type, message)
            sig = signature_bytes(signature)
            wrapped = parse_erc6492_signature(sig)
        except Exception as e:
            logger.debug(f"[SIGNER] typed data could not be encoded: {e}")
            return False
        inner = wrapped.signature if wrapped else sig

        code = await self.get_code(address=address)
        if code:
            return await self._is_valid_erc1271(address, digest, inner)
        if wrapped:
            logger.info(f"[SIGNER] {address} is not deployed; EIP-6492 signature needs deployment first")
            return False
        try:
            recovered = Account.recover_message(signable, signature=inner)
        except Exception as e:
            logger.debug(f"[SIGNER] signature recovery failed for {address}: {e}")
            return False
        return recovered.lower() == address.lower()

    async def _is_valid_erc1271(self, address: str, digest: bytes, signature: bytes) -> bool:
        try:
            result = await self.read_contract(
                address=address,
                abi=ERC1271_ABI,
                function_name="isValidSignature",
                args=[digest, signature],
            )
        except ChainError as e:
            if is_contract_revert(e):
                return False
            raise
        return bytes(result)[:4] == ERC1271_MAGIC_VALUE
