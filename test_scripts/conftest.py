#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Shared fixtures for the Research Vault tests.

vault_be reads its configuration at import time, so the environment is
pointed at a throwaway directory before anything imports it. Each API test
then gets its own database, object store and staging directory.
"""

import io
import os
import sys
import tempfile

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

_IMPORT_DIR = tempfile.mkdtemp(prefix="vault_test_")
os.environ["VAULT_DB"] = os.path.join(_IMPORT_DIR, "import.db")
os.environ["VAULT_STORAGE_DIR"] = os.path.join(_IMPORT_DIR, "storage")
os.environ["VAULT_WIZARD_STAGING_DIR"] = os.path.join(_IMPORT_DIR, "staging")
os.environ["VAULT_STORAGE_BACKEND"] = "local"
os.environ["VAULT_ADMIN_EMAILS"] = "admin@example.com"
os.environ["VAULT_ENABLE_EMAIL_NOTIFICATIONS"] = "false"

ADMIN_EMAIL = "admin@example.com"
PASSWORD = "correct-horse-42"


@pytest.fixture
def db_path(tmp_path):
    from vault_store import init_db
    path = str(tmp_path / "vault.db")
    init_db(path)
    return path


@pytest.fixture
def store(tmp_path):
    from object_storage import LocalObjectStore
    return LocalObjectStore(str(tmp_path / "objects"))


@pytest.fixture
def vault(tmp_path, monkeypatch, db_path, store):
    """vault_be wired to a fresh database, object store and staging directory."""
    import vault_store
    import vault_be

    staging = tmp_path / "staging"
    staging.mkdir()
    monkeypatch.setattr(vault_be, "DB_PATH", db_path)
    monkeypatch.setattr(vault_be, "object_store", store)
    monkeypatch.setattr(vault_be, "WIZARD_STAGING_DIR", str(staging))
    monkeypatch.setattr(vault_store, "ADMIN_EMAILS", {ADMIN_EMAIL})
    vault_be._session_tokens.clear()
    vault_be._live_file_handles.clear()
    return vault_be


@pytest.fixture
def client(vault):
    return vault.app.test_client()


@pytest.fixture
def make_user(db_path, client):
    """
    Create an active account and sign it in.

    Returns a factory: make_user(email, role="Resident Doctor", **names)
    -> (uid, headers) where headers carry the Bearer token.
    """
    from vault_store import create_user

    def factory(email, role="Resident Doctor", **names):
        uid = create_user(db_path, email, PASSWORD, role, **names)
        assert uid, f"could not create {email}"
        resp = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
        assert resp.status_code == 200
        return uid, {"Authorization": f"Bearer {resp.get_json()['token']}"}

    return factory


@pytest.fixture
def admin(make_user):
    return make_user(ADMIN_EMAIL, "Admin", first_name="Ada", last_name="Reyes")


def build_pdf(title="Outcomes of Early Ward Rounds", pages=1) -> bytes:
    import fitz

    doc = fitz.open()
    for n in range(pages):
        page = doc.new_page()
        if n == 0:
            page.insert_text((72, 72), title, fontsize=14)
            page.insert_text((72, 110), "Abstract")
            page.insert_text((72, 130), "We compared discharge times before and after early rounds.")
            page.insert_text((72, 170), "Introduction")
        else:
            page.insert_text((72, 72), f"Page {n + 1}")
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def pdf_bytes():
    return build_pdf()


@pytest.fixture
def pdf_upload(pdf_bytes):
    """Factory for a fresh multipart file tuple (streams are consumed per request)."""
    def factory(name="paper.pdf", content=None):
        return io.BytesIO(content if content is not None else pdf_bytes), name
    return factory
