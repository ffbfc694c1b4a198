# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
from .exact_evm import SCHEME_EXACT, ExactEvmScheme, register_exact_evm_scheme

__all__ = ["SCHEME_EXACT", "ExactEvmScheme", "register_exact_evm_scheme"]
