#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration file for the Research Vault portal
Edit these settings before running the application
Environment variables prefixed with VAULT_ override these values at startup
"""

# Server Configuration
HOST = "127.0.0.1"  # Host address for the API server
PORT = 5001  # Port for the Flask backend

# Reverse proxy support (applies werkzeug ProxyFix in app.py)
USE_PROXY_FIX = True

# Database Configuration
DB_PATH = "vault.db"  # Path to SQLite database file

# Object Storage Configuration
# Choose between "local" (default) or "supabase"
#
# "local" mode:
#   - Files are written under STORAGE_DIR/<bucket>/<path>
#   - Public URLs point back at this API (/api/files/<bucket>/<path>)
#
# "supabase" mode:
#   - Files are uploaded to Supabase Storage buckets
#   - Requires SUPABASE_URL and SUPABASE_KEY
STORAGE_BACKEND = "local"  # Options: "local" or "supabase"
STORAGE_DIR = "vault_storage"  # Base directory for local object storage
PUBLIC_BASE_URL = ""  # Optional absolute prefix for local public URLs (e.g. "https://vault.example.org")

SUPABASE_URL = ""  # e.g. "https://xyzcompany.supabase.co"
SUPABASE_KEY = ""  # service role or anon key with storage access

# Bucket names
PDF_BUCKET = "papers-pdf"
COVERS_BUCKET = "papers-covers"
FIGURES_BUCKET = "papers-figures"
ETHICS_BUCKET = "papers-pdf"  # Ethics clearances share the PDF bucket

# Upload wizard staging (PDFs and figures selected before final submission)
WIZARD_STAGING_DIR = "wizard_staging"
WIZARD_DRAFT_MAX_AGE_HOURS = 24  # Drafts older than this are purged

# Upload limits
MAX_UPLOAD_MB = 50
ALLOWED_FIGURE_EXTENSIONS = ["png", "jpg", "jpeg", "gif", "webp"]
ALLOWED_ETHICS_EXTENSIONS = ["pdf", "png", "jpg", "jpeg"]

# Admin Configuration
# Optional: Comma-separated list of admin email addresses
# Accounts with these emails are treated as Super Admin regardless of their role
ADMIN_EMAILS = ""  # Example: "registrar@hospital.org,library@hospital.org"

# Session tokens
TOKEN_EXPIRATION = 86400  # 24 hours in seconds

# CrossRef lookup used to prefill wizard metadata from a DOI
CROSSREF_API_URL = "https://api.crossref.org/works/"
CROSSREF_TIMEOUT = 10

# Feature Flags
ENABLE_COVER_GENERATION = True  # Render first PDF page to PNG on submission
ENABLE_EMAIL_NOTIFICATIONS = False  # Send SMTP notices (see email_config.py)
ENABLE_WATERMARK = True  # Stamp served paper PDFs with the saved watermark preference

# Statistics
DEFAULT_STATS_VIEW = "Weekly"  # Daily, Weekly, Monthly or Custom
