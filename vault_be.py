#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import os
import time
import logging
import secrets
import threading
from datetime import datetime
from typing import Dict, Optional, Tuple

from flask import Flask, Response, request, jsonify
from flask_cors import CORS

import vault_store
from vault_store import (
    init_db,
    ROLE_TYPES,
    ALL_PERMISSIONS,
    ACCESS_CATALOG,
    get_all_roles,
    upsert_role,
    delete_role,
    create_user,
    get_user,
    list_users,
    update_user,
    set_user_password,
    verify_user_password,
    get_user_permissions,
    has_permission,
    get_paper,
    get_paper_by_file_path,
    list_papers,
    update_paper,
    archive_paper,
    restore_paper,
    delete_paper,
    get_dashboard_counts,
)
from access_store import (
    request_access_for_one,
    request_access_bulk,
    get_access_request,
    list_access_requests,
    decide_access_request,
    has_approved_access,
    list_notifications,
    count_unread,
    mark_read,
    mark_all_read,
    delete_notification,
)
from engagement_store import (
    log_event,
    get_counts,
    get_daily_totals,
    get_events_by_paper,
    top_papers_by_interest,
    create_collection,
    list_collections,
    delete_collection,
    add_bookmark,
    remove_bookmark,
    list_bookmarks,
    rate_paper,
    get_rating_summary,
)
from engagement_stats import compute_author_stats, StatsRangeError, VIEWS
from citations import citations_for_paper
from exports import (
    ANALYTICS_REPORTS,
    analytics_rows,
    export_accounts_csv,
    export_analytics_csv,
    export_filename,
)
from content_store import get_format, current_watermark, watermark_text
from object_storage import get_object_store, guess_content_type, StorageError
from pdf_tools import inspect_pdf, apply_watermark
import upload_wizard as wizard
from ethics_endpoints import init_ethics_routes
from ethics_store import BASE_PATH as ETHICS_BASE_PATH
from content_endpoints import init_content_routes
from security_config import security_events, client_ip, get_generic_error_message, secure_database_file

# Import configuration
try:
    from config import (
        HOST, PORT, DB_PATH, STORAGE_BACKEND, STORAGE_DIR, PUBLIC_BASE_URL,
        SUPABASE_URL, SUPABASE_KEY, PDF_BUCKET, COVERS_BUCKET, FIGURES_BUCKET, ETHICS_BUCKET,
        WIZARD_STAGING_DIR, WIZARD_DRAFT_MAX_AGE_HOURS, MAX_UPLOAD_MB,
        ALLOWED_FIGURE_EXTENSIONS, ALLOWED_ETHICS_EXTENSIONS, ADMIN_EMAILS, TOKEN_EXPIRATION,
        CROSSREF_API_URL, CROSSREF_TIMEOUT, ENABLE_COVER_GENERATION, ENABLE_EMAIL_NOTIFICATIONS,
        ENABLE_WATERMARK, DEFAULT_STATS_VIEW,
    )
except ImportError:
    # Fallback to environment variables if config.py doesn't exist
    HOST = os.environ.get("VAULT_HOST", "127.0.0.1")
    PORT = int(os.environ.get("VAULT_PORT", "5001"))
    DB_PATH = os.environ.get("VAULT_DB", "vault.db")
    STORAGE_BACKEND = os.environ.get("VAULT_STORAGE_BACKEND", "local")
    STORAGE_DIR = os.environ.get("VAULT_STORAGE_DIR", "vault_storage")
    PUBLIC_BASE_URL = os.environ.get("VAULT_PUBLIC_BASE_URL", "")
    SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
    SUPABASE_KEY = os.environ.get("SUPABASE_KEY", "")
    PDF_BUCKET, COVERS_BUCKET, FIGURES_BUCKET, ETHICS_BUCKET = (
        "papers-pdf", "papers-covers", "papers-figures", "papers-pdf")
    WIZARD_STAGING_DIR = "wizard_staging"
    WIZARD_DRAFT_MAX_AGE_HOURS = 24
    MAX_UPLOAD_MB = 50
    ALLOWED_FIGURE_EXTENSIONS = ["png", "jpg", "jpeg", "gif", "webp"]
    ALLOWED_ETHICS_EXTENSIONS = ["pdf", "png", "jpg", "jpeg"]
    ADMIN_EMAILS = ""
    TOKEN_EXPIRATION = 86400
    CROSSREF_API_URL = "https://api.crossref.org/works/"
    CROSSREF_TIMEOUT = 10
    ENABLE_COVER_GENERATION = True
    ENABLE_EMAIL_NOTIFICATIONS = False
    ENABLE_WATERMARK = True
    DEFAULT_STATS_VIEW = "Weekly"

# Setup logging first
logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# Override config with environment variables if present
DB_PATH = os.environ.get("VAULT_DB", DB_PATH)

# Validate and parse PORT safely
raw_port = os.environ.get("VAULT_PORT", str(PORT))
try:
    parsed_port = int(raw_port)
    if not (1 <= parsed_port <= 65535):
        raise ValueError("Port out of range")
    PORT = parsed_port
except Exception:
    logger.warning(f"Invalid VAULT_PORT='{raw_port}', falling back to default PORT={PORT}")
    # Keep existing PORT from config/import

HOST = os.environ.get("VAULT_HOST", HOST)
STORAGE_BACKEND = os.environ.get("VAULT_STORAGE_BACKEND", STORAGE_BACKEND).strip().lower()
STORAGE_DIR = os.environ.get("VAULT_STORAGE_DIR", STORAGE_DIR)
PUBLIC_BASE_URL = os.environ.get("VAULT_PUBLIC_BASE_URL", PUBLIC_BASE_URL)
SUPABASE_URL = os.environ.get("SUPABASE_URL", SUPABASE_URL)
SUPABASE_KEY = os.environ.get("SUPABASE_KEY", SUPABASE_KEY)
WIZARD_STAGING_DIR = os.environ.get("VAULT_WIZARD_STAGING_DIR", WIZARD_STAGING_DIR)
ADMIN_EMAILS = os.environ.get("VAULT_ADMIN_EMAILS", ADMIN_EMAILS)
ENABLE_COVER_GENERATION = _env_flag("VAULT_ENABLE_COVER_GENERATION", ENABLE_COVER_GENERATION)
ENABLE_EMAIL_NOTIFICATIONS = _env_flag("VAULT_ENABLE_EMAIL_NOTIFICATIONS", ENABLE_EMAIL_NOTIFICATIONS)
ENABLE_WATERMARK = _env_flag("VAULT_ENABLE_WATERMARK", ENABLE_WATERMARK)
try:
    TOKEN_EXPIRATION = int(os.environ.get("VAULT_TOKEN_EXPIRATION", TOKEN_EXPIRATION))
except ValueError:
    logger.warning(f"Invalid VAULT_TOKEN_EXPIRATION, keeping {TOKEN_EXPIRATION}")

# Validate storage backend
if STORAGE_BACKEND not in ["local", "supabase"]:
    raise ValueError(f"Invalid STORAGE_BACKEND: {STORAGE_BACKEND}. Must be 'local' or 'supabase'")

if DEFAULT_STATS_VIEW not in VIEWS:
    logger.warning(f"Invalid DEFAULT_STATS_VIEW='{DEFAULT_STATS_VIEW}', using Weekly")
    DEFAULT_STATS_VIEW = "Weekly"

# Admin emails are read by vault_store for permission checks
vault_store.ADMIN_EMAILS = set(e.strip().lower() for e in str(ADMIN_EMAILS or "").split(",") if e.strip())

# Relative storage paths live next to this file
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
STORAGE_DIR = os.path.join(BASE_DIR, STORAGE_DIR)
WIZARD_STAGING_DIR = os.path.join(BASE_DIR, WIZARD_STAGING_DIR)

# Ensure database directory exists and DB_PATH is not a directory
abs_db_path = os.path.abspath(DB_PATH)
if os.path.isdir(abs_db_path):
    raise ValueError(f"VAULT_DB points to a directory, expected file path: {abs_db_path}")
db_dir = os.path.dirname(abs_db_path) or "."
if db_dir and db_dir != '/' and not os.path.exists(db_dir):
    try:
        os.makedirs(db_dir, exist_ok=True)
        logger.info(f"Created database directory: {db_dir}")
    except Exception as e:
        raise RuntimeError(f"Failed to create database directory '{db_dir}': {e}") from e

# Initialize required directories (storage buckets, wizard staging)
try:
    from init_directories import init_vault_directories
    success, messages = init_vault_directories(storage_dir=STORAGE_DIR, staging_dir=WIZARD_STAGING_DIR)
    if not success:
        logger.warning("Some required directories could not be created. The application may encounter issues.")
        for msg in messages:
            if "Failed" in msg or "not" in msg.lower():
                logger.warning(msg)
except Exception as e:
    logger.warning(f"Failed to initialize directories: {e}. The application may encounter issues.")

# Initialize DB on startup
init_db(DB_PATH)
secure_database_file(DB_PATH)

object_store = get_object_store(STORAGE_BACKEND, STORAGE_DIR, PUBLIC_BASE_URL, SUPABASE_URL, SUPABASE_KEY)
BUCKETS = {"pdf": PDF_BUCKET, "covers": COVERS_BUCKET, "figures": FIGURES_BUCKET, "ethics": ETHICS_BUCKET}

app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = int(MAX_UPLOAD_MB) * 1024 * 1024
CORS(app, origins="*", supports_credentials=True)

# -----------------------------
# Session tokens
# -----------------------------
# Token storage for sessions (in-memory)
# Format: {token: {"uid": uid, "email": email, "expires_at": timestamp}}
_session_tokens = {}
_token_lock = threading.Lock()


def generate_session_token(uid: str, email: str) -> str:
    """Generate a secure random token for a signed-in user."""
    token = secrets.token_urlsafe(32)
    expires_at = time.time() + TOKEN_EXPIRATION
    with _token_lock:
        _session_tokens[token] = {"uid": uid, "email": email, "expires_at": expires_at}
    return token


def verify_session_token(token: str) -> Optional[str]:
    """Return the uid for a valid token, None otherwise."""
    if not token:
        return None

    with _token_lock:
        token_data = _session_tokens.get(token)
        if not token_data:
            return None

        if time.time() > token_data["expires_at"]:
            del _session_tokens[token]
            return None

        return token_data["uid"]


def revoke_session_token(token: str) -> bool:
    with _token_lock:
        if token in _session_tokens:
            del _session_tokens[token]
            return True
        return False


def revoke_user_tokens(uid: str) -> int:
    """Drop every session of a user (deactivation, password change)."""
    with _token_lock:
        tokens = [t for t, data in _session_tokens.items() if data["uid"] == uid]
        for token in tokens:
            del _session_tokens[token]
        return len(tokens)


def cleanup_expired_tokens():
    """Clean up expired tokens (should be called periodically)."""
    with _token_lock:
        current_time = time.time()
        expired_tokens = [
            token for token, data in _session_tokens.items()
            if current_time > data["expires_at"]
        ]
        for token in expired_tokens:
            del _session_tokens[token]
        if expired_tokens:
            logger.info(f"Cleaned up {len(expired_tokens)} expired session tokens")


def get_request_token(payload: dict = None) -> str:
    """Bearer header first, then the JSON body, then form/query 'token'."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    if isinstance(payload, dict) and payload.get("token"):
        return str(payload.get("token")).strip()
    return (request.form.get("token") or request.args.get("token") or "").strip()


def current_user(payload: dict = None) -> Optional[Dict]:
    uid = verify_session_token(get_request_token(payload))
    if not uid:
        return None
    user = get_user(DB_PATH, uid)
    if not user or user.get("status") != "active":
        return None
    return user


def require_user(payload: dict = None) -> Tuple[Optional[Dict], Optional[tuple]]:
    """Returns (user, None) or (None, error_response)."""
    if not get_request_token(payload):
        return None, (jsonify({"error": "Authentication required"}), 401)
    user = current_user(payload)
    if not user:
        return None, (jsonify({"error": "Invalid or expired session"}), 401)
    return user, None


def require_permission(permissions, payload: dict = None) -> Tuple[Optional[Dict], Optional[tuple]]:
    """Signed-in user holding at least one of the given permissions."""
    user, error_response = require_user(payload)
    if error_response:
        return None, error_response
    needed = (permissions,) if isinstance(permissions, str) else tuple(permissions)
    if not any(has_permission(DB_PATH, user, p) for p in needed):
        security_events.log_permission_denied(user["email"], " or ".join(needed), request.path)
        return None, (jsonify({"error": f"Permission required: {' or '.join(needed)}"}), 403)
    return user, None


def _server_error(message: str, e: Exception):
    logger.error(f"{message}: {e}", exc_info=True)
    return jsonify({"error": get_generic_error_message(str(e), message)}), 500


def _send_email_notice(kind: str, **kwargs) -> None:
    if not ENABLE_EMAIL_NOTIFICATIONS:
        return
    from email_service import notify_by_email
    notify_by_email(kind, **kwargs)


@app.get("/api/health")
def health():
    return jsonify({
        "ok": True,
        "db": DB_PATH,
        "storage_backend": STORAGE_BACKEND,
    })

# -----------------------------
# Auth
# -----------------------------
@app.post("/api/auth/login")
def login():
    """
    Authenticate a user and return a session token.
    Expected JSON: { "email": "user@example.org", "password": "secret" }
    Returns: { "authenticated": true, "token": "...", "user": {...}, "permissions": [...], "expires_in": 86400 }
    """
    try:
        payload = request.get_json(force=True, silent=False)
    except Exception:
        return jsonify({"error": "Invalid JSON"}), 400
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON"}), 400

    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""

    if not email or not password:
        return jsonify({"error": "Missing email or password"}), 400

    user = verify_user_password(DB_PATH, email, password)
    if not user:
        security_events.log_login(email, client_ip(request), False, "invalid credentials or inactive")
        return jsonify({"authenticated": False}), 401

    token = generate_session_token(user["uid"], user["email"])
    security_events.log_login(email, client_ip(request), True)
    return jsonify({
        "authenticated": True,
        "token": token,
        "user": user,
        "permissions": get_user_permissions(DB_PATH, user),
        "expires_in": TOKEN_EXPIRATION,
    })


@app.post("/api/auth/logout")
def logout():
    payload = request.get_json(force=True, silent=True) or {}
    token = get_request_token(payload)
    uid = verify_session_token(token)
    revoked = revoke_session_token(token)
    if uid:
        user = get_user(DB_PATH, uid)
        security_events.log_logout(user["email"] if user else uid)
    return jsonify({"ok": True, "revoked": revoked})


@app.get("/api/auth/me")
def me():
    user, error_response = require_user()
    if error_response:
        return error_response
    return jsonify({
        "user": user,
        "permissions": get_user_permissions(DB_PATH, user),
        "unread_notifications": count_unread(DB_PATH, user["uid"]),
    })


@app.post("/api/auth/password")
def change_password():
    """Expected JSON: { "token": "...", "current_password": "...", "new_password": "..." }"""
    try:
        payload = request.get_json(force=True, silent=False)
    except Exception:
        return jsonify({"error": "Invalid JSON"}), 400
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON"}), 400

    user, error_response = require_user(payload)
    if error_response:
        return error_response

    current = payload.get("current_password") or ""
    new_password = payload.get("new_password") or ""
    if len(new_password) < 8:
        return jsonify({"error": "New password must be at least 8 characters"}), 400
    if not verify_user_password(DB_PATH, user["email"], current):
        return jsonify({"error": "Current password is incorrect"}), 403
    if not set_user_password(DB_PATH, user["uid"], new_password):
        return jsonify({"error": "Failed to change password"}), 500

    revoke_user_tokens(user["uid"])
    token = generate_session_token(user["uid"], user["email"])
    return jsonify({"ok": True, "token": token, "expires_in": TOKEN_EXPIRATION})

# -----------------------------
# Users & roles
# -----------------------------
@app.post("/api/users")
def create_account():
    """
    Create a user account (requires Account Creation).
    Expected JSON: { "token": "...", "email": "...", "password": "...", "role": "Resident Doctor",
                     "first_name": "...", "middle_initial": "", "last_name": "...", "suffix": "", "department": "" }
    """
    try:
        payload = request.get_json(force=True, silent=False)
    except Exception:
        return jsonify({"error": "Invalid JSON"}), 400
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON"}), 400

    admin, error_response = require_permission("Account Creation", payload)
    if error_response:
        return error_response

    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    role = (payload.get("role") or "").strip()
    if not email or not password or not role:
        return jsonify({"error": "Missing email, password or role"}), 400
    if len(password) < 8:
        return jsonify({"error": "Password must be at least 8 characters"}), 400

    uid = create_user(
        DB_PATH, email, password, role,
        first_name=payload.get("first_name") or "",
        middle_initial=payload.get("middle_initial") or "",
        last_name=payload.get("last_name") or "",
        suffix=payload.get("suffix") or "",
        department=payload.get("department") or "",
    )
    if not uid:
        return jsonify({"error": "Failed to create user (duplicate email or unknown role)"}), 409

    user = get_user(DB_PATH, uid)
    security_events.log_account_created(email, admin["email"], user["role"])
    _send_email_notice("account_created", to_email=email, name=user["display_name"], role=user["role"])
    return jsonify({"ok": True, "user": user}), 201


@app.get("/api/users")
def get_users():
    """Query params: role, status (optional)"""
    user, error_response = require_permission(("Manage User Accounts", "Account Creation"))
    if error_response:
        return error_response
    users = list_users(DB_PATH, role=request.args.get("role") or None, status=request.args.get("status") or None)
    return jsonify({"users": users})


@app.get("/api/users/export")
def export_users():
    """CSV of the account list. Query params: role, status (optional)"""
    user, error_response = require_permission(("Manage User Accounts", "Account Creation"))
    if error_response:
        return error_response
    try:
        users = list_users(DB_PATH, role=request.args.get("role") or None, status=request.args.get("status") or None)
        role_types = {r["name"]: r["type"] for r in get_all_roles(DB_PATH)}
        csv_data = export_accounts_csv(users, role_types)
    except Exception as e:
        return _server_error("Failed to export accounts", e)
    return Response(
        csv_data,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={export_filename('Accounts')}"}
    )


@app.get("/api/users/directory")
def user_directory():
    """Active users for author tagging in the upload wizard."""
    user, error_response = require_user()
    if error_response:
        return error_response
    search = (request.args.get("search") or "").strip().lower()
    entries = [
        {"uid": u["uid"], "display_name": u["display_name"], "email": u["email"], "department": u["department"]}
        for u in list_users(DB_PATH, status="active")
    ]
    if search:
        entries = [e for e in entries if search in e["display_name"].lower() or search in e["email"]]
    return jsonify({"users": entries})


@app.put("/api/users/<uid>")
def edit_user(uid: str):
    try:
        payload = request.get_json(force=True, silent=False)
    except Exception:
        return jsonify({"error": "Invalid JSON"}), 400
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON"}), 400

    admin, error_response = require_permission("Manage User Accounts", payload)
    if error_response:
        return error_response

    target = get_user(DB_PATH, uid)
    if not target:
        return jsonify({"error": "User not found"}), 404

    fields = {k: payload.get(k) for k in ("first_name", "middle_initial", "last_name", "suffix",
                                           "role", "department", "status")}
    if not update_user(DB_PATH, uid, **fields):
        return jsonify({"error": "Invalid user update (unknown role or status)"}), 400

    if fields.get("status") and fields["status"] != target["status"]:
        security_events.log_account_status(target["email"], fields["status"], admin["email"])
        if fields["status"] == "deactivated":
            revoke_user_tokens(uid)
    return jsonify({"ok": True, "user": get_user(DB_PATH, uid)})


@app.post("/api/users/<uid>/status")
def set_user_status(uid: str):
    """Expected JSON: { "token": "...", "status": "active" | "deactivated" }"""
    try:
        payload = request.get_json(force=True, silent=False)
    except Exception:
        return jsonify({"error": "Invalid JSON"}), 400
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON"}), 400

    admin, error_response = require_permission("Manage User Accounts", payload)
    if error_response:
        return error_response

    status = (payload.get("status") or "").strip()
    if status not in ("active", "deactivated"):
        return jsonify({"error": "status must be 'active' or 'deactivated'"}), 400
    if uid == admin["uid"] and status == "deactivated":
        return jsonify({"error": "You cannot deactivate your own account"}), 400

    target = get_user(DB_PATH, uid)
    if not target:
        return jsonify({"error": "User not found"}), 404
    update_user(DB_PATH, uid, status=status)
    if status == "deactivated":
        revoke_user_tokens(uid)
    security_events.log_account_status(target["email"], status, admin["email"])
    return jsonify({"ok": True, "user": get_user(DB_PATH, uid)})


@app.get("/api/roles")
def get_roles():
    user, error_response = require_user()
    if error_response:
        return error_response
    return jsonify({
        "roles": get_all_roles(DB_PATH),
        "role_types": ROLE_TYPES,
        "permissions": ALL_PERMISSIONS,
        "access_catalog": ACCESS_CATALOG,
    })


@app.post("/api/roles")
def save_role():
    """Expected JSON: { "token": "...", "name": "...", "type": "Administration", "access": [...] }"""
    try:
        payload = request.get_json(force=True, silent=False)
    except Exception:
        return jsonify({"error": "Invalid JSON"}), 400
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON"}), 400

    user, error_response = require_permission("Manage User Accounts", payload)
    if error_response:
        return error_response

    access = payload.get("access") or []
    if not isinstance(access, list):
        return jsonify({"error": "access must be a list"}), 400
    if not upsert_role(DB_PATH, payload.get("name") or "", payload.get("type") or "", access):
        return jsonify({"error": "Invalid role, or the role is locked"}), 400
    return jsonify({"ok": True, "roles": get_all_roles(DB_PATH)})


@app.delete("/api/roles/<name>")
def remove_role(name: str):
    user, error_response = require_permission("Manage User Accounts")
    if error_response:
        return error_response
    if not delete_role(DB_PATH, name):
        return jsonify({"error": "Role not found, locked, or still assigned to users"}), 400
    return jsonify({"ok": True})

# -----------------------------
# Upload wizard
# -----------------------------
# draft id -> file handle of the staged PDF selected in this process
_live_file_handles = {}
_handles_lock = threading.Lock()

# Keys the client may not patch directly
WIZARD_MANAGED_KEYS = ("step", "fileName", "figures", "pageCount", "text", wizard.FILE_HANDLE_KEY)


def _draft_view(draft_id: str, data: Dict) -> Dict:
    view = wizard.hydrate(wizard.serialize(data))
    view.pop(wizard.FILE_HANDLE_KEY, None)
    return {
        "draft_id": draft_id,
        "data": view,
        "has_file": bool(data.get(wizard.FILE_HANDLE_KEY)),
        "step_name": wizard.STEPS.get(data.get("step"), ""),
    }


def _load_live_draft(draft_id: str, uid: str) -> Optional[Dict]:
    data = wizard.load_draft(DB_PATH, draft_id, uid)
    if data is None:
        return None
    with _handles_lock:
        return wizard.attach_file_handle(data, WIZARD_STAGING_DIR, draft_id, _live_file_handles)


def _forget_draft(draft_id: str) -> None:
    with _handles_lock:
        _live_file_handles.pop(draft_id, None)
    wizard.clear_staging(WIZARD_STAGING_DIR, draft_id)


def _wizard_user(payload: dict = None):
    return require_permission("Add Materials", payload)


@app.post("/api/wizard")
def start_wizard():
    payload = request.get_json(force=True, silent=True) or {}
    user, error_response = _wizard_user(payload)
    if error_response:
        return error_response
    try:
        draft_id, data = wizard.create_draft(DB_PATH, user["uid"])
    except Exception as e:
        return _server_error("Failed to start upload", e)
    return jsonify(_draft_view(draft_id, data)), 201


@app.get("/api/wizard/<draft_id>")
def get_wizard(draft_id: str):
    user, error_response = _wizard_user()
    if error_response:
        return error_response
    data = _load_live_draft(draft_id, user["uid"])
    if data is None:
        return jsonify({"error": "Draft not found"}), 404
    return jsonify(_draft_view(draft_id, data))


@app.patch("/api/wizard/<draft_id>")
def patch_wizard(draft_id: str):
    """Merge field changes into the draft. Expected JSON: { "token": "...", "patch": {...} }"""
    try:
        payload = request.get_json(force=True, silent=False)
    except Exception:
        return jsonify({"error": "Invalid JSON"}), 400
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON"}), 400

    user, error_response = _wizard_user(payload)
    if error_response:
        return error_response
    data = _load_live_draft(draft_id, user["uid"])
    if data is None:
        return jsonify({"error": "Draft not found"}), 404

    patch = payload.get("patch")
    if not isinstance(patch, dict):
        return jsonify({"error": "patch must be an object"}), 400
    patch = {k: v for k, v in patch.items() if k not in WIZARD_MANAGED_KEYS}

    data = wizard.merge(data, patch)
    wizard.save_draft(DB_PATH, draft_id, user["uid"], data)
    return jsonify(_draft_view(draft_id, data))


@app.post("/api/wizard/<draft_id>/step")
def go_to_step(draft_id: str):
    """Expected JSON: { "token": "...", "step": 3 }. 409 when earlier steps are incomplete."""
    try:
        payload = request.get_json(force=True, silent=False)
    except Exception:
        return jsonify({"error": "Invalid JSON"}), 400
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON"}), 400

    user, error_response = _wizard_user(payload)
    if error_response:
        return error_response
    data = _load_live_draft(draft_id, user["uid"])
    if data is None:
        return jsonify({"error": "Draft not found"}), 404

    try:
        data = wizard.set_step(data, payload.get("step"))
    except wizard.StepGateError as e:
        return jsonify({"error": str(e), "step": data.get("step")}), 409
    except (wizard.WizardError, TypeError, ValueError):
        return jsonify({"error": "Invalid step"}), 400

    wizard.save_draft(DB_PATH, draft_id, user["uid"], data)
    return jsonify(_draft_view(draft_id, data))


@app.post("/api/wizard/<draft_id>/file")
def stage_wizard_file(draft_id: str):
    """
    Select the PDF for the draft (step 1).
    Expects multipart/form-data with: token, file (PDF)
    """
    user, error_response = _wizard_user()
    if error_response:
        return error_response
    data = _load_live_draft(draft_id, user["uid"])
    if data is None:
        return jsonify({"error": "Draft not found"}), 404

    file = request.files.get("file")
    if file is None or file.filename == "":
        return jsonify({"error": "No file selected"}), 400
    if not file.filename.lower().endswith(".pdf"):
        return jsonify({"error": "Only PDF files are allowed."}), 400

    content = file.read()
    ok, info, msg = inspect_pdf(content)
    if not ok:
        return jsonify({"error": msg}), 400

    try:
        path = wizard.stage_pdf(WIZARD_STAGING_DIR, draft_id, content)
    except (OSError, wizard.WizardError) as e:
        return _server_error("Failed to stage PDF", e)

    handle = {"path": path, "name": file.filename, "size": len(content)}
    with _handles_lock:
        _live_file_handles[draft_id] = handle

    data = wizard.set_file(data, handle, file.filename)
    data["pageCount"] = info["pageCount"]
    data["text"] = info["text"]
    if info["abstract"] and not data.get("abstract"):
        data["abstract"] = info["abstract"]
    if info["title"] and not data.get("title"):
        data["title"] = info["title"]
    wizard.save_draft(DB_PATH, draft_id, user["uid"], data)
    return jsonify(_draft_view(draft_id, data))


@app.delete("/api/wizard/<draft_id>/file")
def clear_wizard_file(draft_id: str):
    user, error_response = _wizard_user()
    if error_response:
        return error_response
    data = _load_live_draft(draft_id, user["uid"])
    if data is None:
        return jsonify({"error": "Draft not found"}), 404
    with _handles_lock:
        _live_file_handles.pop(draft_id, None)
    wizard.unstage_pdf(WIZARD_STAGING_DIR, draft_id)
    data = wizard.set_file(data, None)
    data.update({"pageCount": 0, "text": ""})
    wizard.save_draft(DB_PATH, draft_id, user["uid"], data)
    return jsonify(_draft_view(draft_id, data))


@app.post("/api/wizard/<draft_id>/figures")
def stage_wizard_figure(draft_id: str):
    """Expects multipart/form-data with: token, file (image)"""
    user, error_response = _wizard_user()
    if error_response:
        return error_response
    data = _load_live_draft(draft_id, user["uid"])
    if data is None:
        return jsonify({"error": "Draft not found"}), 404

    file = request.files.get("file")
    if file is None or file.filename == "":
        return jsonify({"error": "No file selected"}), 400
    ext = file.filename.rsplit(".", 1)[-1].lower() if "." in file.filename else ""
    if ext not in ALLOWED_FIGURE_EXTENSIONS:
        return jsonify({"error": f"Allowed figure types: {', '.join(ALLOWED_FIGURE_EXTENSIONS)}"}), 400

    name = wizard.stage_figure(WIZARD_STAGING_DIR, draft_id, file.filename, file.read())
    data["figures"] = list(data.get("figures") or []) + [name]
    wizard.save_draft(DB_PATH, draft_id, user["uid"], data)
    return jsonify(_draft_view(draft_id, data)), 201


@app.delete("/api/wizard/<draft_id>/figures/<name>")
def remove_wizard_figure(draft_id: str, name: str):
    user, error_response = _wizard_user()
    if error_response:
        return error_response
    data = _load_live_draft(draft_id, user["uid"])
    if data is None:
        return jsonify({"error": "Draft not found"}), 404
    wizard.remove_staged_figure(WIZARD_STAGING_DIR, draft_id, name)
    data["figures"] = [f for f in data.get("figures") or [] if f != name]
    wizard.save_draft(DB_PATH, draft_id, user["uid"], data)
    return jsonify(_draft_view(draft_id, data))


@app.post("/api/wizard/<draft_id>/format")
def choose_wizard_format(draft_id: str):
    """Copy a format's fields into the draft. Expected JSON: { "token": "...", "format_id": 1 }"""
    try:
        payload = request.get_json(force=True, silent=False)
    except Exception:
        return jsonify({"error": "Invalid JSON"}), 400
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON"}), 400

    user, error_response = _wizard_user(payload)
    if error_response:
        return error_response
    data = _load_live_draft(draft_id, user["uid"])
    if data is None:
        return jsonify({"error": "Draft not found"}), 404

    fmt = get_format(DB_PATH, payload.get("format_id"))
    if not fmt:
        return jsonify({"error": "Format not found"}), 404

    data = wizard.merge(data, {
        "formatId": str(fmt["id"]),
        "formatName": fmt["name"],
        "description": fmt.get("description") or "",
        "formatFields": fmt["fields"],
        "requiredFields": fmt["required_fields"],
    })
    wizard.save_draft(DB_PATH, draft_id, user["uid"], data)
    return jsonify(_draft_view(draft_id, data))


@app.post("/api/wizard/<draft_id>/doi")
def prefill_wizard_doi(draft_id: str):
    """Look up a DOI on CrossRef and merge title, authors and date. Expected JSON: { "token": "...", "doi": "..." }"""
    try:
        payload = request.get_json(force=True, silent=False)
    except Exception:
        return jsonify({"error": "Invalid JSON"}), 400
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON"}), 400

    user, error_response = _wizard_user(payload)
    if error_response:
        return error_response
    data = _load_live_draft(draft_id, user["uid"])
    if data is None:
        return jsonify({"error": "Draft not found"}), 404

    doi = (payload.get("doi") or "").strip()
    if not doi:
        return jsonify({"error": "Missing 'doi'"}), 400

    result = wizard.fetch_doi_metadata(doi, CROSSREF_API_URL, CROSSREF_TIMEOUT)
    if not result.get("valid"):
        return jsonify({"valid": False, "error": result.get("error")}), 200

    patch = dict(result["patch"])
    if result.get("journal"):
        fields = dict(data.get("fieldsData") or {})
        fields.setdefault("Journal Name", result["journal"])
        patch["fieldsData"] = fields
    data = wizard.merge(data, patch)
    wizard.save_draft(DB_PATH, draft_id, user["uid"], data)
    view = _draft_view(draft_id, data)
    view["valid"] = True
    return jsonify(view)


@app.delete("/api/wizard/<draft_id>")
def discard_wizard(draft_id: str):
    """Leave the wizard: drop the draft and its staged files."""
    user, error_response = _wizard_user()
    if error_response:
        return error_response
    if not wizard.delete_draft(DB_PATH, draft_id, user["uid"]):
        return jsonify({"error": "Draft not found"}), 404
    _forget_draft(draft_id)
    return jsonify({"ok": True})


@app.post("/api/wizard/<draft_id>/reset")
def reset_wizard(draft_id: str):
    user, error_response = _wizard_user()
    if error_response:
        return error_response
    if wizard.load_draft(DB_PATH, draft_id, user["uid"]) is None:
        return jsonify({"error": "Draft not found"}), 404
    _forget_draft(draft_id)
    data = wizard.reset()
    wizard.save_draft(DB_PATH, draft_id, user["uid"], data)
    return jsonify(_draft_view(draft_id, data))


@app.post("/api/wizard/<draft_id>/submit")
def submit_wizard(draft_id: str):
    payload = request.get_json(force=True, silent=True) or {}
    user, error_response = _wizard_user(payload)
    if error_response:
        return error_response
    data = _load_live_draft(draft_id, user["uid"])
    if data is None:
        return jsonify({"error": "Draft not found"}), 404

    pdf_bytes = None
    pdf_path = wizard.staged_pdf_path(WIZARD_STAGING_DIR, draft_id)
    if data.get(wizard.FILE_HANDLE_KEY) and pdf_path:
        with open(pdf_path, "rb") as f:
            pdf_bytes = f.read()

    figures = []
    for name in data.get("figures") or []:
        content = wizard.read_staged_figure(WIZARD_STAGING_DIR, draft_id, name)
        if content is not None:
            figures.append((name, content))

    try:
        result = wizard.submit_wizard(DB_PATH, object_store, BUCKETS, data, pdf_bytes, figures, user["uid"],
                                      enable_cover=ENABLE_COVER_GENERATION)
    except wizard.WizardError as e:
        return jsonify({"error": str(e)}), 400
    except StorageError as e:
        return _server_error("Upload failed. Please try again.", e)
    except Exception as e:
        return _server_error("Failed to submit research", e)

    wizard.delete_draft(DB_PATH, draft_id, user["uid"])
    _forget_draft(draft_id)
    return jsonify({"ok": True, **result}), 201

# -----------------------------
# Papers
# -----------------------------
def can_access_file(paper: Dict, user: Optional[Dict]) -> bool:
    """Public: any signed-in user. Private: authors, uploader, Manage Materials, approved requesters."""
    if not user:
        return False
    if paper.get("upload_type") == "Public":
        return True
    uid = user["uid"]
    if uid in (paper.get("author_uids") or []) or uid == paper.get("uploaded_by"):
        return True
    if has_permission(DB_PATH, user, "Manage Materials"):
        return True
    return has_approved_access(DB_PATH, paper["id"], uid)


def paper_view(paper: Dict, user: Optional[Dict]) -> Dict:
    view = dict(paper)
    view["can_access_file"] = can_access_file(paper, user)
    if not view["can_access_file"]:
        view["file_url"] = None
        view["file_path"] = None
    return view


def watermarked_pdf(content: bytes, user: Dict, paper_id: str) -> bytes:
    """Stamp the current watermark preference on a served PDF. Failures serve the file unstamped."""
    if not ENABLE_WATERMARK:
        return content
    try:
        pref = current_watermark(DB_PATH)
        return apply_watermark(content, watermark_text(pref, user, paper_id), pref["settings"])
    except Exception as e:
        logger.warning(f"Watermark skipped for {paper_id}: {e}")
        return content


def _paper_for_request(paper_id: str, user: Dict):
    """Published papers for everyone; archived ones only for Manage Materials."""
    paper = get_paper(DB_PATH, paper_id)
    if not paper:
        return None
    if paper["status"] != "Published" and not has_permission(DB_PATH, user, "Manage Materials"):
        return None
    return paper


@app.get("/api/papers")
def search_papers():
    """
    Query params:
        - q (optional): free text over title, abstract, keywords, authors, DOI
        - publication_type, upload_type (optional)
        - status (optional): Published (default) or Archived (Manage Materials only)
        - mine (optional): "1" for papers where the caller is a tagged author
    """
    user, error_response = require_user()
    if error_response:
        return error_response

    status = request.args.get("status", "Published")
    if status not in vault_store.PAPER_STATUSES:
        return jsonify({"error": "Invalid status"}), 400
    if status == "Archived" and not has_permission(DB_PATH, user, "Manage Materials"):
        return jsonify({"error": "Permission required: Manage Materials"}), 403

    try:
        papers = list_papers(
            DB_PATH, status=status, query=request.args.get("q", ""),
            publication_type=request.args.get("publication_type") or None,
            upload_type=request.args.get("upload_type") or None,
            author_uid=user["uid"] if request.args.get("mine") == "1" else None,
            limit=request.args.get("limit", default=200, type=int),
        )
        return jsonify({"papers": [paper_view(p, user) for p in papers]})
    except Exception as e:
        return _server_error("Failed to search papers", e)


@app.get("/api/papers/<paper_id>")
def get_one_paper(paper_id: str):
    """Paper details with metric counts and ratings. Logs a read."""
    user, error_response = require_user()
    if error_response:
        return error_response
    paper = _paper_for_request(paper_id, user)
    if not paper:
        return jsonify({"error": "Paper not found"}), 404

    if paper["status"] == "Published":
        log_event(DB_PATH, paper, "read", user["uid"])
    view = paper_view(paper, user)
    view["metrics"] = get_counts(DB_PATH, paper_id)
    view["rating"] = get_rating_summary(DB_PATH, paper_id, user["uid"])
    return jsonify({"paper": view})


@app.get("/api/papers/<paper_id>/metrics")
def get_paper_metrics(paper_id: str):
    user, error_response = require_user()
    if error_response:
        return error_response
    if not _paper_for_request(paper_id, user):
        return jsonify({"error": "Paper not found"}), 404
    return jsonify({"counts": get_counts(DB_PATH, paper_id), "daily": get_daily_totals(DB_PATH, paper_id)})


@app.put("/api/papers/<paper_id>")
def edit_paper(paper_id: str):
    try:
        payload = request.get_json(force=True, silent=False)
    except Exception:
        return jsonify({"error": "Invalid JSON"}), 400
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON"}), 400

    user, error_response = require_permission("Manage Materials", payload)
    if error_response:
        return error_response
    if not get_paper(DB_PATH, paper_id):
        return jsonify({"error": "Paper not found"}), 404

    fields = payload.get("fields") or {}
    if not isinstance(fields, dict):
        return jsonify({"error": "fields must be an object"}), 400
    if "fields_data" in fields and isinstance(fields["fields_data"], dict):
        fields["fields_data"] = wizard.normalize_fields_data(fields["fields_data"])
    if not update_paper(DB_PATH, paper_id, **fields):
        return jsonify({"error": "Invalid paper update"}), 400
    return jsonify({"ok": True, "paper": paper_view(get_paper(DB_PATH, paper_id), user)})


@app.delete("/api/papers/<paper_id>")
def remove_paper(paper_id: str):
    """Delete the record and its stored PDF, cover and figures."""
    user, error_response = require_permission("Manage Materials")
    if error_response:
        return error_response
    paper = get_paper(DB_PATH, paper_id)
    if not paper:
        return jsonify({"error": "Paper not found"}), 404

    if not delete_paper(DB_PATH, paper_id):
        return jsonify({"error": "Failed to delete paper"}), 500

    folder = (paper.get("file_path") or "").rsplit("/", 1)[0]
    try:
        if paper.get("file_path"):
            object_store.remove(PDF_BUCKET, [paper["file_path"]])
        if folder and paper.get("cover_url"):
            object_store.remove(COVERS_BUCKET, [f"{folder}/cover.png"])
        figure_paths = [f["path"] for f in paper.get("figures") or [] if isinstance(f, dict) and f.get("path")]
        if figure_paths:
            object_store.remove(FIGURES_BUCKET, figure_paths)
    except StorageError as e:
        logger.warning(f"Paper {paper_id} deleted but some files remain: {e}")
    logger.info(f"Paper {paper_id} deleted by {user['uid']}")
    return jsonify({"ok": True})


@app.post("/api/papers/<paper_id>/archive")
def archive_one_paper(paper_id: str):
    payload = request.get_json(force=True, silent=True) or {}
    user, error_response = require_permission("Manage Materials", payload)
    if error_response:
        return error_response
    if not get_paper(DB_PATH, paper_id):
        return jsonify({"error": "Paper not found"}), 404
    if not archive_paper(DB_PATH, paper_id, user["uid"], user["display_name"]):
        return jsonify({"error": "Paper is already archived"}), 409
    return jsonify({"ok": True, "paper": get_paper(DB_PATH, paper_id)})


@app.post("/api/papers/<paper_id>/restore")
def restore_one_paper(paper_id: str):
    payload = request.get_json(force=True, silent=True) or {}
    user, error_response = require_permission("Manage Materials", payload)
    if error_response:
        return error_response
    if not get_paper(DB_PATH, paper_id):
        return jsonify({"error": "Paper not found"}), 404
    if not restore_paper(DB_PATH, paper_id):
        return jsonify({"error": "Paper is not archived"}), 409
    return jsonify({"ok": True, "paper": get_paper(DB_PATH, paper_id)})


@app.get("/api/papers/<paper_id>/file")
def download_paper_file(paper_id: str):
    """Serve the PDF when the caller may access it. Logs a download."""
    user, error_response = require_user()
    if error_response:
        return error_response
    paper = _paper_for_request(paper_id, user)
    if not paper:
        return jsonify({"error": "Paper not found"}), 404
    if not can_access_file(paper, user):
        return jsonify({"error": "This paper is private. Request access from its authors.",
                        "requestable": True}), 403
    if not paper.get("file_path"):
        return jsonify({"error": "No file stored for this paper"}), 404

    try:
        content = object_store.download(PDF_BUCKET, paper["file_path"])
    except StorageError as e:
        return _server_error("Failed to read paper file", e)

    log_event(DB_PATH, paper, "download", user["uid"])
    filename = paper.get("file_name") or f"{paper_id}.pdf"
    return Response(
        watermarked_pdf(content, user, paper_id),
        mimetype="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@app.get("/api/papers/<paper_id>/citations")
def get_paper_citations(paper_id: str):
    user, error_response = require_user()
    if error_response:
        return error_response
    paper = _paper_for_request(paper_id, user)
    if not paper:
        return jsonify({"error": "Paper not found"}), 404
    log_event(DB_PATH, paper, "cite", user["uid"], {"style": request.args.get("style") or "all"})
    return jsonify({"citations": citations_for_paper(paper)})


@app.post("/api/papers/<paper_id>/rating")
def rate_one_paper(paper_id: str):
    """Expected JSON: { "token": "...", "value": 1-5 }"""
    try:
        payload = request.get_json(force=True, silent=False)
    except Exception:
        return jsonify({"error": "Invalid JSON"}), 400
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON"}), 400

    user, error_response = require_user(payload)
    if error_response:
        return error_response
    paper = _paper_for_request(paper_id, user)
    if not paper:
        return jsonify({"error": "Paper not found"}), 404
    if not rate_paper(DB_PATH, user["uid"], paper, payload.get("value")):
        return jsonify({"error": "Rating must be a whole number from 1 to 5"}), 400
    return jsonify({"ok": True, "rating": get_rating_summary(DB_PATH, paper_id, user["uid"])})

# -----------------------------
# Access requests
# -----------------------------
@app.post("/api/papers/<paper_id>/request-access")
def request_paper_access(paper_id: str):
    payload = request.get_json(force=True, silent=True) or {}
    user, error_response = require_user(payload)
    if error_response:
        return error_response
    paper = _paper_for_request(paper_id, user)
    if not paper:
        return jsonify({"error": "Paper not found"}), 404
    if can_access_file(paper, user):
        return jsonify({"error": "You already have access to this paper"}), 400
    try:
        result = request_access_for_one(DB_PATH, paper, user["uid"], user["display_name"])
    except Exception as e:
        return _server_error("Failed to send request", e)
    return jsonify({"ok": True, **result})


@app.post("/api/access-requests/bulk")
def request_bulk_access():
    """Expected JSON: { "token": "...", "paper_ids": ["RP-...", ...] }"""
    try:
        payload = request.get_json(force=True, silent=False)
    except Exception:
        return jsonify({"error": "Invalid JSON"}), 400
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON"}), 400

    user, error_response = require_user(payload)
    if error_response:
        return error_response
    paper_ids = payload.get("paper_ids") or []
    if not isinstance(paper_ids, list) or not paper_ids:
        return jsonify({"error": "paper_ids must be a non-empty list"}), 400

    papers = []
    for paper_id in dict.fromkeys(str(p) for p in paper_ids):
        paper = _paper_for_request(paper_id, user)
        if paper and not can_access_file(paper, user):
            papers.append(paper)
    try:
        result = request_access_bulk(DB_PATH, papers, user["uid"], user["display_name"])
    except Exception as e:
        return _server_error("Failed to send requests", e)
    return jsonify({"ok": True, **result})


@app.get("/api/access-requests")
def get_access_requests():
    """
    Query params:
        - role: "author" (requests for my papers, default) or "requester" (my own requests)
        - status (optional): pending, approved, denied
    """
    user, error_response = require_user()
    if error_response:
        return error_response
    status = request.args.get("status") or None
    if request.args.get("role") == "requester":
        rows = list_access_requests(DB_PATH, requester_uid=user["uid"], status=status)
    elif request.args.get("role") == "all" and has_permission(DB_PATH, user, "Manage Materials"):
        rows = list_access_requests(DB_PATH, status=status)
    else:
        mine = [p["id"] for p in list_papers(DB_PATH, status=None, author_uid=user["uid"], limit=0)]
        rows = list_access_requests(DB_PATH, paper_ids=mine, status=status)
    return jsonify({"requests": rows})


@app.post("/api/access-requests/<int:request_id>/decision")
def decide_request(request_id: int):
    """Expected JSON: { "token": "...", "approve": true/false }"""
    try:
        payload = request.get_json(force=True, silent=False)
    except Exception:
        return jsonify({"error": "Invalid JSON"}), 400
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON"}), 400

    user, error_response = require_user(payload)
    if error_response:
        return error_response
    if not isinstance(payload.get("approve"), bool):
        return jsonify({"error": "Missing 'approve' (true or false)"}), 400

    access_request = get_access_request(DB_PATH, request_id)
    if not access_request:
        return jsonify({"error": "Request not found"}), 404
    paper = get_paper(DB_PATH, access_request["paper_id"])
    is_author = paper is not None and user["uid"] in (paper.get("author_uids") or [])
    if not is_author and not has_permission(DB_PATH, user, "Manage Materials"):
        security_events.log_permission_denied(user["email"], "paper author", request.path)
        return jsonify({"error": "Only the paper's authors or an admin can decide this request"}), 403

    approve = payload["approve"]
    title = paper.get("title") if paper else ""
    updated = decide_access_request(DB_PATH, request_id, user["uid"], approve, title)

    requester = get_user(DB_PATH, access_request["requester_uid"])
    if requester:
        _send_email_notice("access_decision", to_email=requester["email"], name=requester["display_name"],
                           decider=user["display_name"], title=title or "Untitled Research", approved=approve)
    return jsonify({"ok": True, "request": updated})

# -----------------------------
# Notifications
# -----------------------------
@app.get("/api/notifications")
def get_notifications():
    """Query params: unread ("1" for unread only), limit"""
    user, error_response = require_user()
    if error_response:
        return error_response
    items = list_notifications(DB_PATH, user["uid"], unread_only=request.args.get("unread") == "1",
                               limit=request.args.get("limit", default=100, type=int))
    return jsonify({"notifications": items, "unread": count_unread(DB_PATH, user["uid"])})


@app.post("/api/notifications/<int:notification_id>/read")
def read_notification(notification_id: int):
    user, error_response = require_user()
    if error_response:
        return error_response
    if not mark_read(DB_PATH, user["uid"], notification_id):
        return jsonify({"error": "Notification not found"}), 404
    return jsonify({"ok": True})


@app.post("/api/notifications/read-all")
def read_all_notifications():
    user, error_response = require_user()
    if error_response:
        return error_response
    return jsonify({"ok": True, "updated": mark_all_read(DB_PATH, user["uid"])})


@app.delete("/api/notifications/<int:notification_id>")
def remove_notification(notification_id: int):
    user, error_response = require_user()
    if error_response:
        return error_response
    if not delete_notification(DB_PATH, user["uid"], notification_id):
        return jsonify({"error": "Notification not found"}), 404
    return jsonify({"ok": True})

# -----------------------------
# Bookmarks
# -----------------------------
@app.get("/api/bookmarks")
def get_bookmarks():
    """Query params: collection (optional)"""
    user, error_response = require_permission("Bookmarking")
    if error_response:
        return error_response
    return jsonify({
        "collections": list_collections(DB_PATH, user["uid"]),
        "bookmarks": list_bookmarks(DB_PATH, user["uid"], request.args.get("collection") or None),
    })


@app.post("/api/bookmarks")
def add_one_bookmark():
    """Expected JSON: { "token": "...", "paper_id": "RP-...", "collection": "Reading list" }"""
    try:
        payload = request.get_json(force=True, silent=False)
    except Exception:
        return jsonify({"error": "Invalid JSON"}), 400
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON"}), 400

    user, error_response = require_permission("Bookmarking", payload)
    if error_response:
        return error_response
    paper = _paper_for_request(str(payload.get("paper_id") or ""), user)
    if not paper:
        return jsonify({"error": "Paper not found"}), 404
    if not add_bookmark(DB_PATH, user["uid"], paper, payload.get("collection") or ""):
        return jsonify({"error": "Collection name is required"}), 400
    return jsonify({"ok": True, "collections": list_collections(DB_PATH, user["uid"])}), 201


@app.delete("/api/bookmarks/<paper_id>")
def remove_one_bookmark(paper_id: str):
    """Query params: collection (optional, all collections when omitted)"""
    user, error_response = require_permission("Bookmarking")
    if error_response:
        return error_response
    removed = remove_bookmark(DB_PATH, user["uid"], paper_id, request.args.get("collection") or None)
    return jsonify({"ok": True, "removed": removed})


@app.post("/api/bookmarks/collections")
def add_collection():
    try:
        payload = request.get_json(force=True, silent=False)
    except Exception:
        return jsonify({"error": "Invalid JSON"}), 400
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON"}), 400

    user, error_response = require_permission("Bookmarking", payload)
    if error_response:
        return error_response
    if not create_collection(DB_PATH, user["uid"], payload.get("name") or ""):
        return jsonify({"error": "Collection name is required"}), 400
    return jsonify({"ok": True, "collections": list_collections(DB_PATH, user["uid"])}), 201


@app.delete("/api/bookmarks/collections/<name>")
def remove_collection(name: str):
    user, error_response = require_permission("Bookmarking")
    if error_response:
        return error_response
    if not delete_collection(DB_PATH, user["uid"], name):
        return jsonify({"error": "Collection not found"}), 404
    return jsonify({"ok": True})

# -----------------------------
# Statistics
# -----------------------------
@app.get("/api/stats")
def get_my_stats():
    """
    Engagement for papers where the caller is a tagged author.
    Query params:
        - view: Daily, Weekly, Monthly or Custom
        - start, end: YYYY-MM-DD (Custom only)
    """
    user, error_response = require_user()
    if error_response:
        return error_response

    view = request.args.get("view") or DEFAULT_STATS_VIEW
    try:
        papers = list_papers(DB_PATH, status=None, author_uid=user["uid"], limit=0)
        events = get_events_by_paper(DB_PATH, [p["id"] for p in papers])
        stats = compute_author_stats(user["uid"], papers, events, view=view,
                                     start_iso=request.args.get("start", ""),
                                     end_iso=request.args.get("end", ""))
    except StatsRangeError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        return _server_error("Failed to compute statistics", e)
    stats["papers"] = [{"id": p["id"], "title": p["title"], "metrics": get_counts(DB_PATH, p["id"])}
                       for p in papers]
    return jsonify(stats)


@app.get("/api/admin/dashboard")
def admin_dashboard():
    user, error_response = require_permission(("Manage Materials", "Settings"))
    if error_response:
        return error_response
    try:
        counts = get_dashboard_counts(DB_PATH)
        counts["top_papers"] = top_papers_by_interest(DB_PATH, request.args.get("limit", default=10, type=int))
        return jsonify(counts)
    except Exception as e:
        return _server_error("Failed to load dashboard", e)


@app.get("/api/admin/dashboard/export")
def export_dashboard_report():
    """
    CSV of one dashboard report.
    Query params:
        - report: top_papers (default), publication_types or users_by_role
        - start, end (optional, YYYY-MM-DD): event days counted for top_papers
        - limit (optional): rows for top_papers
    """
    user, error_response = require_permission(("Manage Materials", "Settings"))
    if error_response:
        return error_response
    report = request.args.get("report") or "top_papers"
    if report not in ANALYTICS_REPORTS:
        return jsonify({"error": f"Unknown report. Choose one of: {', '.join(ANALYTICS_REPORTS)}"}), 400
    start = (request.args.get("start") or "").strip()
    end = (request.args.get("end") or "").strip()
    try:
        for day in (start, end):
            if day:
                datetime.strptime(day, "%Y-%m-%d")
    except ValueError:
        return jsonify({"error": "start and end must be YYYY-MM-DD"}), 400
    if start and end and start > end:
        return jsonify({"error": "start must not be after end"}), 400

    try:
        top = top_papers_by_interest(DB_PATH, request.args.get("limit", default=50, type=int),
                                     start_day=start or None, end_day=end or None)
        rows = analytics_rows(report, get_dashboard_counts(DB_PATH), top)
        date_range = f"{start or 'Beginning'} - {end or 'Today'}" if report == "top_papers" and (start or end) else ""
        csv_data = export_analytics_csv(ANALYTICS_REPORTS[report]["columns"], rows,
                                        document_type=ANALYTICS_REPORTS[report]["document_type"],
                                        date_range=date_range, prepared_by=user["display_name"])
    except Exception as e:
        return _server_error("Failed to export report", e)
    return Response(
        csv_data,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={export_filename('Analytics_' + report)}"}
    )

# -----------------------------
# Local object storage
# -----------------------------
def _check_object_access(bucket: str, object_path: str):
    """
    Covers and figures are public. Clearance files need an ethics permission;
    paper PDFs go through the same access check as /api/papers/<id>/file.
    Returns (paper, user, error_response); paper and user are set for paper PDFs.
    """
    object_path = object_path.lstrip("/")
    if bucket == ETHICS_BUCKET and object_path.startswith(f"{ETHICS_BASE_PATH}/"):
        user, error_response = require_permission(("Add Materials", "Manage Materials"))
        return None, None, error_response
    if bucket != PDF_BUCKET:
        return None, None, None

    user, error_response = require_user()
    if error_response:
        return None, None, error_response
    paper = get_paper_by_file_path(DB_PATH, object_path)
    if not paper or not _paper_for_request(paper["id"], user):
        return None, None, (jsonify({"error": "File not found"}), 404)
    if not can_access_file(paper, user):
        return None, None, (jsonify({"error": "This paper is private. Request access from its authors.",
                                     "requestable": True}), 403)
    return paper, user, None


@app.get("/api/files/<bucket>/<path:object_path>")
def serve_object(bucket: str, object_path: str):
    """Serve objects written by the local storage backend."""
    if object_store.backend != "local":
        return jsonify({"error": "Files are served by the storage provider"}), 404
    if bucket not in set(BUCKETS.values()):
        return jsonify({"error": "Unknown bucket"}), 404
    paper, user, error_response = _check_object_access(bucket, object_path)
    if error_response:
        return error_response
    try:
        content = object_store.download(bucket, object_path)
    except StorageError:
        return jsonify({"error": "File not found"}), 404
    if paper:
        content = watermarked_pdf(content, user, paper["id"])
    return Response(content, mimetype=guess_content_type(object_path))


init_ethics_routes(app, lambda: DB_PATH, lambda: object_store, ETHICS_BUCKET, require_permission,
                   ALLOWED_ETHICS_EXTENSIONS)
init_content_routes(app, lambda: DB_PATH, require_user, require_permission)


def start_maintenance_thread(interval_seconds: int = 3600) -> threading.Thread:
    """Hourly cleanup of expired tokens and stale wizard drafts."""
    def maintenance_task():
        while True:
            time.sleep(interval_seconds)
            try:
                cleanup_expired_tokens()
                for draft_id in wizard.purge_stale_drafts(DB_PATH, WIZARD_STAGING_DIR, WIZARD_DRAFT_MAX_AGE_HOURS):
                    with _handles_lock:
                        _live_file_handles.pop(draft_id, None)
            except Exception as e:
                logger.error(f"Maintenance task error: {e}")

    thread = threading.Thread(target=maintenance_task, daemon=True, name="VaultMaintenance")
    thread.start()
    logger.info("Background maintenance task started")
    return thread


if __name__ == "__main__":
    start_maintenance_thread()
    # Never run with debug=True in production - it allows arbitrary code execution
    app.run(host=HOST, port=PORT, debug=False)
