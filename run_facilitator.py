#!/usr/bin/env python3
# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""
Standalone runner for the x402 Facilitator.

Env:
  - EVM_PRIVATE_KEY (required): key of the account that submits settlements
  - EVM_RPC_URL (default: https://sepolia.base.org)
  - FACILITATOR_NETWORKS (default: eip155:84532)
  - SUPABASE_URL / SUPABASE_SERVICE_KEY: settlement ledger (in-memory when unset)
  - PORT (default: 4022)
  - HOST (default: 0.0.0.0)
  - LOG_LEVEL (default: INFO)
"""

import logging
import os
import sys

# Load .env BEFORE importing the facilitator so env vars are available during config
from dotenv import load_dotenv  # type: ignore
load_dotenv()

from x402_facilitator import ConfigError, FacilitatorRuntimeConfig, create_app
from x402_facilitator.otel import setup_tracing


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("facilitator")


def build_app():
    try:
        cfg = FacilitatorRuntimeConfig()
        cfg.require_signer_key()
        if cfg.otel_enabled:
            setup_tracing(cfg)
        return create_app(cfg), cfg
    except ConfigError as e:
        logger.critical(f"❌ {e}")
        sys.exit(1)


app, cfg = build_app()


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Facilitator listening on port {cfg.port}")
    uvicorn.run(app, host=cfg.host, port=cfg.port, log_level="info")
