#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Email Configuration for account and access-request notices
Separate from main config.py for cleaner configuration
All SMTP provider settings and credentials are read from the environment
"""

import os

# ============================================================================
# Email Provider Configuration
# ============================================================================

# Supported providers: gmail, sendgrid, aws_ses, custom
EMAIL_PROVIDER = os.getenv("EMAIL_PROVIDER", "custom")

# Sender shown on outgoing notices
SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL", "noreply@research-vault.local")
SMTP_FROM_NAME = os.getenv("SMTP_FROM_NAME", "Research Vault")

# Link included in notices (e.g. "https://vault.example.org")
PORTAL_URL = os.getenv("VAULT_PORTAL_URL", "")

# ============================================================================
# Gmail Configuration
# ============================================================================
# Requires an App Password (not the account password)
# ============================================================================

GMAIL_CONFIG = {
    "smtp_host": "smtp.gmail.com",
    "smtp_port": 587,
    "use_ssl": False,
    "use_tls": True,
    "username": os.getenv("GMAIL_USERNAME", ""),
    "password": os.getenv("GMAIL_APP_PASSWORD", ""),
}

# ============================================================================
# SendGrid Configuration
# ============================================================================

SENDGRID_CONFIG = {
    "smtp_host": "smtp.sendgrid.net",
    "smtp_port": 587,
    "use_ssl": False,
    "use_tls": True,
    "username": "apikey",  # Always "apikey" for SendGrid
    "password": os.getenv("SENDGRID_API_KEY", ""),
}

# ============================================================================
# AWS SES Configuration
# ============================================================================

AWS_SES_CONFIG = {
    "smtp_host": os.getenv("AWS_SES_SMTP_HOST", "email-smtp.us-east-1.amazonaws.com"),
    "smtp_port": 587,
    "use_ssl": False,
    "use_tls": True,
    "username": os.getenv("AWS_SES_SMTP_USERNAME", ""),
    "password": os.getenv("AWS_SES_SMTP_PASSWORD", ""),
}

# ============================================================================
# Custom SMTP Configuration
# ============================================================================
# For institutional SMTP relays
# ============================================================================

CUSTOM_SMTP_CONFIG = {
    "smtp_host": os.getenv("CUSTOM_SMTP_HOST", ""),
    "smtp_port": int(os.getenv("CUSTOM_SMTP_PORT", "587")),
    "use_ssl": os.getenv("CUSTOM_SMTP_USE_SSL", "false").lower() == "true",
    "use_tls": os.getenv("CUSTOM_SMTP_USE_TLS", "true").lower() == "true",
    "username": os.getenv("CUSTOM_SMTP_USERNAME", ""),
    "password": os.getenv("CUSTOM_SMTP_PASSWORD", ""),
}

# ============================================================================
# Email Templates
# ============================================================================

EMAIL_TEMPLATES = {
    "account_created_subject": "Your Research Vault account",

    "account_created_text": """Hello {name},

An account has been created for you on Research Vault with the role "{role}".

Sign in with this email address and the password given to you by your administrator, then change it from your profile.

{portal_url}

---
This is an automated message from Research Vault. Please do not reply to this email.
""",

    "access_decision_subject": "Access request {status}: {title}",

    "access_decision_text": """Hello {name},

{decider} {status} your full-text access request for "{title}".

{portal_url}

---
This is an automated message from Research Vault. Please do not reply to this email.
""",
}

# ============================================================================
# Helper Functions
# ============================================================================

SMTP_PROVIDERS = {
    "gmail": GMAIL_CONFIG,
    "sendgrid": SENDGRID_CONFIG,
    "aws_ses": AWS_SES_CONFIG,
    "custom": CUSTOM_SMTP_CONFIG,
}


def get_smtp_config():
    """Get SMTP configuration for the selected provider."""
    config = SMTP_PROVIDERS.get(EMAIL_PROVIDER.lower())
    if not config:
        raise ValueError(f"Unknown SMTP provider: {EMAIL_PROVIDER}")
    return config


def validate_smtp_config():
    """Validate that SMTP configuration has required credentials."""
    config = get_smtp_config()

    if not config.get("smtp_host"):
        return False, "SMTP host not configured"

    if not config.get("username"):
        return False, f"SMTP username not configured for {EMAIL_PROVIDER}"

    if not config.get("password"):
        return False, f"SMTP password not configured for {EMAIL_PROVIDER}"

    return True, "Configuration valid"


def get_email_template(template_type, **kwargs):
    """Get email template with variables substituted."""
    template = EMAIL_TEMPLATES.get(template_type, "")
    kwargs.setdefault("portal_url", PORTAL_URL)
    return template.format(**kwargs) if kwargs else template
