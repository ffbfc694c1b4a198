#!/usr/bin/env python3
# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""
Run test suite locally with proper environment setup.
"""
import os
import sys
import subprocess
from pathlib import Path


def setup_test_env():
    """Set up test environment variables."""
    env = os.environ.copy()
    # No live ledger or collector during tests
    for name in ("SUPABASE_URL", "SUPABASE_SERVICE_KEY", "SUPABASE_KEY", "OTEL_EXPORTER_OTLP_ENDPOINT"):
        env.pop(name, None)
    env.update({
        "EVM_PRIVATE_KEY": "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80",
        "EVM_RPC_URL": "http://127.0.0.1:8545",
        "FACILITATOR_NETWORKS": "eip155:84532",
    })
    return env


def run_command(cmd: list[str], env: dict) -> int:
    """Run a command with the given environment."""
    print(f"\n🚀 Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, env=env)
    return result.returncode


def main():
    """Run the test suite."""
    project_root = Path(__file__).parent.parent
    os.chdir(project_root)

    env = setup_test_env()

    print("\n📦 Installing facilitator with test extras...")
    run_command(["uv", "pip", "install", "--system", "-e", ".[test]"], env)

    if len(sys.argv) > 1:
        cmd = ["python", "-m", "pytest"] + sys.argv[1:]
    else:
        cmd = ["python", "-m", "pytest", "tests/", "-v", "--cov=x402_facilitator", "--cov-report=term"]

    exit_code = run_command(cmd, env)

    if exit_code == 0:
        print("\n✅ All tests passed!")
    else:
        print(f"\n❌ Tests failed with exit code {exit_code}")

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
