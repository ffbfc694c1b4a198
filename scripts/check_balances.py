# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""
Check the facilitator account's gas balance (and optionally a payer's USDC)
on the configured RPC endpoint.

Usage:
    python scripts/check_balances.py [payer_address ...]
"""

import sys
from datetime import datetime

from dotenv import load_dotenv
from eth_account import Account
from web3 import Web3

load_dotenv()

from x402_facilitator import ConfigError, FacilitatorRuntimeConfig  # noqa: E402

# USDC on Base Sepolia
USDC_CONTRACT_ADDRESS = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"

# Minimum ETH kept for settlement gas
MIN_GAS_BALANCE_ETH = 0.001

USDC_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
]


def check_balances(payers):
    try:
        cfg = FacilitatorRuntimeConfig()
        facilitator = Account.from_key(cfg.require_signer_key()).address
    except ConfigError as e:
        print(f"❌ {e}")
        return 1

    w3 = Web3(Web3.HTTPProvider(cfg.rpc_url))
    if not w3.is_connected():
        print(f"❌ Unable to connect to {cfg.rpc_url}")
        return 1

    print(f"✅ Connected to {cfg.rpc_url} (Chain ID: {w3.eth.chain_id})")
    print(f"📅 Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"🌐 Networks: {', '.join(cfg.networks)}")

    eth_balance = w3.from_wei(w3.eth.get_balance(facilitator), "ether")
    print(f"\n⛽ Facilitator account: {facilitator}")
    print(f"   ETH:  {eth_balance:.6f} ETH")
    ready = eth_balance >= MIN_GAS_BALANCE_ETH
    if ready:
        print("✅ Gas balance sufficient")
    else:
        print(f"❌ Gas balance low (need at least {MIN_GAS_BALANCE_ETH} ETH to settle)")

    if payers:
        usdc = w3.eth.contract(address=Web3.to_checksum_address(USDC_CONTRACT_ADDRESS), abi=USDC_ABI)
        for payer in payers:
            raw = usdc.functions.balanceOf(Web3.to_checksum_address(payer)).call()
            print(f"\n💰 Payer {payer}")
            print(f"   USDC: {raw / 10**6:.2f} USDC")

    return 0 if ready else 2


if __name__ == "__main__":
    sys.exit(check_balances(sys.argv[1:]))
