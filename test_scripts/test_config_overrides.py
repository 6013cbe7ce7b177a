#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Tests that VAULT_* environment variables override config.py settings.

vault_be applies its overrides at import time, so each case imports it in
a fresh interpreter.
"""

import os
import subprocess
import sys

REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

PRINT_SETTINGS = ("import vault_be, vault_store; "
                  "print(vault_be.PORT, vault_be.HOST, vault_be.STORAGE_BACKEND, vault_be.ENABLE_COVER_GENERATION, "
                  "vault_be.ENABLE_WATERMARK, sorted(vault_store.ADMIN_EMAILS))")


def _import_vault(tmp_path, **overrides):
    env = dict(os.environ)
    env.update({
        "VAULT_DB": str(tmp_path / "nested" / "subdir" / "vault.db"),
        "VAULT_STORAGE_DIR": str(tmp_path / "storage"),
        "VAULT_WIZARD_STAGING_DIR": str(tmp_path / "staging"),
        "VAULT_STORAGE_BACKEND": "local",
    })
    env.update(overrides)
    return subprocess.run([sys.executable, "-c", PRINT_SETTINGS], cwd=REPO_ROOT, env=env,
                          capture_output=True, text=True, timeout=60)


def test_env_var_overrides(tmp_path):
    result = _import_vault(tmp_path, VAULT_PORT="5999", VAULT_HOST="0.0.0.0",
                           VAULT_ENABLE_COVER_GENERATION="off", VAULT_ENABLE_WATERMARK="0",
                           VAULT_ADMIN_EMAILS="Chief@Example.com, dean@example.com")
    assert result.returncode == 0, result.stderr
    assert result.stdout.strip() == "5999 0.0.0.0 local False False ['chief@example.com', 'dean@example.com']"


def test_database_directory_is_created(tmp_path):
    result = _import_vault(tmp_path)
    assert result.returncode == 0, result.stderr
    assert (tmp_path / "nested" / "subdir" / "vault.db").is_file()
    assert (tmp_path / "storage" / "papers-pdf").is_dir()
    assert (tmp_path / "staging").is_dir()


def test_invalid_port_falls_back_to_config(tmp_path):
    result = _import_vault(tmp_path, VAULT_PORT="not-a-port")
    assert result.returncode == 0, result.stderr
    assert result.stdout.split()[0] == "5001"


def test_unknown_storage_backend_is_rejected(tmp_path):
    result = _import_vault(tmp_path, VAULT_STORAGE_BACKEND="s3")
    assert result.returncode != 0
    assert "Invalid STORAGE_BACKEND: s3" in result.stderr
