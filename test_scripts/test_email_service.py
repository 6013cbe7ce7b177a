#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Tests for SMTP notices. No real mail server is contacted.
"""

import smtplib
from unittest.mock import MagicMock, patch

import pytest

import email_service
from email_config import get_email_template

SMTP_CONFIG = {
    "smtp_host": "smtp.example.org",
    "smtp_port": 587,
    "use_ssl": False,
    "use_tls": True,
    "username": "mailer",
    "password": "secret",
}


@pytest.fixture
def smtp(monkeypatch):
    """A configured EmailService whose SMTP connection is a mock."""
    monkeypatch.setattr(email_service, "_email_service_instance", None)
    monkeypatch.setattr(email_service, "get_smtp_config", lambda: dict(SMTP_CONFIG))
    monkeypatch.setattr(email_service, "validate_smtp_config", lambda: (True, "Configuration valid"))
    with patch.object(email_service.smtplib, "SMTP") as smtp_cls:
        server = MagicMock()
        smtp_cls.return_value.__enter__.return_value = server
        yield smtp_cls, server


def test_templates_fill_in_names():
    subject = get_email_template("access_decision_subject", status="approved", title="Ward Rounds")
    assert subject == "Access request approved: Ward Rounds"
    body = get_email_template("account_created_text", name="Ana Cruz", role="Resident Doctor")
    assert "Hello Ana Cruz," in body
    assert '"Resident Doctor"' in body


def test_invalid_configuration_raises(monkeypatch):
    monkeypatch.setattr(email_service, "get_smtp_config", lambda: dict(SMTP_CONFIG, password=""))
    monkeypatch.setattr(email_service, "validate_smtp_config", lambda: (False, "SMTP password not configured"))
    with pytest.raises(ValueError, match="Invalid SMTP configuration"):
        email_service.EmailService()


def test_send_uses_starttls_and_login(smtp):
    smtp_cls, server = smtp
    ok, msg = email_service.get_email_service().send_access_decision(
        "rui@example.com", "Rui Lim", "Ana Cruz", "Ward Rounds", approved=False)

    assert ok
    assert msg == "Email sent to rui@example.com"
    smtp_cls.assert_called_once_with("smtp.example.org", 587, timeout=30)
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("mailer", "secret")
    sent = server.send_message.call_args[0][0]
    assert sent["To"] == "rui@example.com"
    assert sent["Subject"] == "Access request declined: Ward Rounds"
    assert "Ana Cruz declined your full-text access request" in sent.get_payload()


def test_authentication_failure_is_reported(smtp):
    _, server = smtp
    server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")
    ok, msg = email_service.get_email_service().send("a@example.com", "s", "b")
    assert not ok
    assert "authentication failed" in msg


def test_notify_by_email_never_raises(smtp, monkeypatch):
    assert email_service.notify_by_email("account_created", to_email="a@example.com", name="A", role="Admin")
    assert not email_service.notify_by_email("newsletter", to_email="a@example.com")

    monkeypatch.setattr(email_service, "_email_service_instance", None)
    monkeypatch.setattr(email_service, "validate_smtp_config", lambda: (False, "SMTP host not configured"))
    assert not email_service.notify_by_email("account_created", to_email="a@example.com", name="A", role="Admin")


def test_account_created_notice_sent_from_api(client, admin, monkeypatch, vault):
    monkeypatch.setattr(vault, "ENABLE_EMAIL_NOTIFICATIONS", True)
    with patch("email_service.notify_by_email") as notify:
        _, headers = admin
        resp = client.post("/api/users", json={"email": "new@example.com", "password": "long-enough",
                                               "role": "Resident Doctor", "first_name": "Rui",
                                               "last_name": "Lim"}, headers=headers)
    assert resp.status_code == 201
    notify.assert_called_once_with("account_created", to_email="new@example.com", name="Rui Lim",
                                   role="Resident Doctor")
