#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Tests for the interactive Super Admin creation script.
"""

import pytest

import create_admin
from vault_store import get_user_by_email


@pytest.fixture
def answers(monkeypatch, tmp_path):
    """Point the script at a fresh database and feed it prompts."""
    db = str(tmp_path / "admin.db")
    monkeypatch.setattr(create_admin, "DB_PATH", db)

    def feed(lines, passwords):
        lines, passwords = iter(lines), iter(passwords)
        monkeypatch.setattr("builtins.input", lambda prompt="": next(lines))
        monkeypatch.setattr(create_admin.getpass, "getpass", lambda prompt="": next(passwords))
        return db

    return feed


def test_creates_super_admin(answers):
    db = answers(["Chief@Example.com", "Ada", "Reyes"], ["long-enough", "long-enough"])
    create_admin.main()
    user = get_user_by_email(db, "chief@example.com")
    assert user["role"] == "Super Admin"
    assert user["first_name"] == "Ada"


def test_rejects_mismatched_passwords(answers):
    db = answers(["chief@example.com", "Ada", "Reyes"], ["long-enough", "different!"])
    with pytest.raises(SystemExit):
        create_admin.main()
    assert get_user_by_email(db, "chief@example.com") is None


def test_rejects_existing_account(answers):
    answers(["chief@example.com", "Ada", "Reyes"], ["long-enough", "long-enough"])
    create_admin.main()
    answers(["chief@example.com"], [])
    with pytest.raises(SystemExit):
        create_admin.main()
