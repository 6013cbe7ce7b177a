#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Startup directories for Research Vault.

The local storage backend keeps one folder per bucket under STORAGE_DIR;
the upload wizard stages selected files under WIZARD_STAGING_DIR.
"""

import os
import sys
import logging
from pathlib import Path
from typing import List, Tuple

logger = logging.getLogger(__name__)


def ensure_directory_exists(dir_path: str, description: str = "") -> Tuple[bool, str]:
    """Create dir_path (and parents) unless it is already a directory. Returns (ok, message)."""
    target = Path(dir_path).resolve()
    if target.is_dir():
        logger.debug(f"Directory already exists: {target}")
        return True, f"Directory already exists: {target}"
    if target.exists():
        logger.error(f"Path exists but is not a directory: {target}")
        return False, f"Path exists but is not a directory: {target}"
    try:
        target.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Could not create {target}: {e}")
        return False, f"Failed to create directory {target}: {e}"
    suffix = f" ({description})" if description else ""
    logger.info(f"Created directory: {target}{suffix}")
    return True, f"Created directory: {target}{suffix}"


def required_directories(base_dir: str, storage_dir: str, staging_dir: str,
                         backend: str, buckets) -> List[Tuple[str, str]]:
    """(path, description) pairs the running service writes to."""
    dirs = [(os.path.join(base_dir, staging_dir), "upload wizard staging")]
    if backend == "local":
        dirs += [(os.path.join(base_dir, storage_dir, b), f"bucket {b}") for b in sorted(set(buckets))]
    return dirs


def init_vault_directories(base_dir: str = None, storage_dir: str = None,
                           staging_dir: str = None) -> Tuple[bool, List[str]]:
    """
    Create the staging directory and, for the local backend, the bucket folders.

    Relative paths are resolved against base_dir (this file's directory by default).
    Every directory is attempted even after a failure.
    """
    try:
        from config import (STORAGE_BACKEND, STORAGE_DIR, WIZARD_STAGING_DIR,
                            PDF_BUCKET, COVERS_BUCKET, FIGURES_BUCKET, ETHICS_BUCKET)
    except ImportError:
        STORAGE_BACKEND = "local"
        STORAGE_DIR = "vault_storage"
        WIZARD_STAGING_DIR = "wizard_staging"
        PDF_BUCKET, COVERS_BUCKET, FIGURES_BUCKET, ETHICS_BUCKET = (
            "papers-pdf", "papers-covers", "papers-figures", "papers-pdf")

    dirs = required_directories(
        base_dir or os.path.dirname(os.path.abspath(__file__)),
        storage_dir or os.environ.get("VAULT_STORAGE_DIR", STORAGE_DIR),
        staging_dir or os.environ.get("VAULT_WIZARD_STAGING_DIR", WIZARD_STAGING_DIR),
        os.environ.get("VAULT_STORAGE_BACKEND", STORAGE_BACKEND).strip().lower(),
        (PDF_BUCKET, COVERS_BUCKET, FIGURES_BUCKET, ETHICS_BUCKET),
    )

    results = [ensure_directory_exists(path, description) for path, description in dirs]
    ok = all(success for success, _ in results)
    if ok:
        logger.info(f"Research Vault directories ready ({len(dirs)})")
    else:
        logger.warning("Some Research Vault directories could not be created")
    return ok, [message for _, message in results]


def check_directory_permissions(dir_path: str) -> Tuple[bool, str]:
    """Probe that dir_path is an existing, writable directory."""
    target = Path(dir_path).resolve()
    if not target.exists():
        return False, f"Directory does not exist: {target}"
    if not target.is_dir():
        return False, f"Path is not a directory: {target}"
    marker = target / ".vault_write_test"
    try:
        marker.write_text("ok")
        marker.unlink()
    except OSError as e:
        return False, f"Directory is not writable: {target} ({e})"
    return True, f"Directory is writable: {target}"


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    success, messages = init_vault_directories()
    for msg in messages:
        print(f"  {msg}")
    sys.exit(0 if success else 1)
