#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
WSGI entry point for the Research Vault API.
This file is used by production WSGI servers like Gunicorn.

Usage:
    gunicorn -c gunicorn.conf.py wsgi:app

Or with systemd service:
    ExecStart=/path/to/venv/bin/gunicorn -c gunicorn.conf.py wsgi:app
"""

import os
import logging

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from vault_be import app, DB_PATH, WIZARD_STAGING_DIR, WIZARD_DRAFT_MAX_AGE_HOURS
from upload_wizard import purge_stale_drafts
from app import apply_proxy_fix, USE_PROXY_FIX

if USE_PROXY_FIX:
    apply_proxy_fix(app)

# Drop wizard drafts abandoned while the service was down
logger.info("[Upload Wizard] Purging stale drafts...")
purged = purge_stale_drafts(DB_PATH, WIZARD_STAGING_DIR, WIZARD_DRAFT_MAX_AGE_HOURS)
if purged:
    logger.info(f"[Upload Wizard] Purged {len(purged)} stale drafts")

if __name__ == "__main__":
    # This won't be used by Gunicorn, but allows running directly for testing
    print("WARNING: This file is meant to be used with a WSGI server like Gunicorn.")
    print("For development, use: python3 app.py")
    print("For production, use: gunicorn -c gunicorn.conf.py wsgi:app")
