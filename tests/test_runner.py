# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""
Test the standalone runner's startup checks.
"""

import importlib
import logging
import os
import sys

import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))


@pytest.fixture
def import_runner(test_env, monkeypatch):
    # Keep a developer's local .env out of the process environment
    monkeypatch.setattr("dotenv.load_dotenv", lambda *args, **kwargs: False)
    monkeypatch.syspath_prepend(REPO_ROOT)
    sys.modules.pop("run_facilitator", None)
    yield lambda: importlib.import_module("run_facilitator")
    sys.modules.pop("run_facilitator", None)


class TestStartup:
    def test_missing_private_key_exits(self, import_runner, monkeypatch, caplog):
        monkeypatch.delenv("EVM_PRIVATE_KEY")

        with caplog.at_level(logging.CRITICAL, logger="facilitator"):
            with pytest.raises(SystemExit) as exc_info:
                import_runner()

        assert exc_info.value.code == 1
        assert "EVM_PRIVATE_KEY environment variable is required" in caplog.text

    def test_malformed_port_exits(self, import_runner, monkeypatch):
        monkeypatch.setenv("PORT", "http")

        with pytest.raises(SystemExit) as exc_info:
            import_runner()

        assert exc_info.value.code == 1

    def test_builds_app_with_key(self, import_runner, monkeypatch):
        monkeypatch.delenv("PORT", raising=False)

        runner = import_runner()

        assert runner.cfg.port == 4022
        assert {route.path for route in runner.app.routes} >= {"/verify", "/settle", "/supported", "/health"}
