#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Email Service for account and access-request notices
Sends plain-text notices over SMTP for the configured provider
"""

import logging
import smtplib
from email.mime.text import MIMEText
from typing import Tuple

from email_config import (
    get_smtp_config,
    validate_smtp_config,
    get_email_template,
    SMTP_FROM_EMAIL,
    SMTP_FROM_NAME,
    EMAIL_PROVIDER,
)

logger = logging.getLogger(__name__)


class EmailService:
    """Service for sending notices by email."""

    def __init__(self):
        self.provider = EMAIL_PROVIDER.lower()
        self.from_email = SMTP_FROM_EMAIL
        self.from_name = SMTP_FROM_NAME
        self.smtp_config = get_smtp_config()
        is_valid, msg = validate_smtp_config()
        if not is_valid:
            raise ValueError(f"Invalid SMTP configuration: {msg}")

    def send(self, to_email: str, subject: str, body: str) -> Tuple[bool, str]:
        """Send a plain-text message. Returns (success, message)."""
        try:
            msg = MIMEText(body, 'plain')
            msg['From'] = f"{self.from_name} <{self.from_email}>"
            msg['To'] = to_email
            msg['Subject'] = subject

            if self.smtp_config.get("use_ssl"):
                with smtplib.SMTP_SSL(
                    self.smtp_config["smtp_host"],
                    self.smtp_config["smtp_port"],
                    timeout=30
                ) as server:
                    server.login(self.smtp_config["username"], self.smtp_config["password"])
                    server.send_message(msg)
            else:
                with smtplib.SMTP(
                    self.smtp_config["smtp_host"],
                    self.smtp_config["smtp_port"],
                    timeout=30
                ) as server:
                    if self.smtp_config.get("use_tls"):
                        server.starttls()
                    server.login(self.smtp_config["username"], self.smtp_config["password"])
                    server.send_message(msg)

            return True, f"Email sent to {to_email}"

        except smtplib.SMTPAuthenticationError:
            return False, "SMTP authentication failed. Check email provider credentials."
        except smtplib.SMTPException as e:
            return False, f"SMTP error: {str(e)}"
        except OSError as e:
            return False, f"Failed to send email: {str(e)}"

    def send_account_created(self, to_email: str, name: str, role: str) -> Tuple[bool, str]:
        return self.send(
            to_email,
            get_email_template("account_created_subject"),
            get_email_template("account_created_text", name=name, role=role),
        )

    def send_access_decision(self, to_email: str, name: str, decider: str, title: str,
                             approved: bool) -> Tuple[bool, str]:
        status = "approved" if approved else "declined"
        return self.send(
            to_email,
            get_email_template("access_decision_subject", status=status, title=title),
            get_email_template("access_decision_text", name=name, decider=decider, status=status, title=title),
        )


# Singleton instance
_email_service_instance = None


def get_email_service() -> EmailService:
    """Get singleton EmailService instance."""
    global _email_service_instance
    if _email_service_instance is None:
        _email_service_instance = EmailService()
    return _email_service_instance


def notify_by_email(kind: str, **kwargs) -> bool:
    """
    Send a notice without letting email problems reach the caller.

    kind is "account_created" or "access_decision"; kwargs are passed to the
    matching EmailService method.
    """
    try:
        service = get_email_service()
        if kind == "account_created":
            ok, msg = service.send_account_created(**kwargs)
        elif kind == "access_decision":
            ok, msg = service.send_access_decision(**kwargs)
        else:
            raise ValueError(f"Unknown notice kind: {kind}")
    except ValueError as e:
        logger.warning(f"Email notice '{kind}' not sent: {e}")
        return False
    if not ok:
        logger.warning(f"Email notice '{kind}' failed: {msg}")
    return ok


if __name__ == "__main__":
    # Quick configuration check: python3 email_service.py
    valid, message = validate_smtp_config()
    print(f"{EMAIL_PROVIDER}: {message}")
    if valid:
        cfg = get_email_service().smtp_config
        print(f"{cfg['smtp_host']}:{cfg['smtp_port']} ssl={cfg.get('use_ssl', False)} tls={cfg.get('use_tls', False)}")
