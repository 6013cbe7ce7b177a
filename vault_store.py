#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import os
import re
import json
import time
import secrets
import sqlite3
import logging
from datetime import datetime, timezone

import bcrypt

logger = logging.getLogger(__name__)

# -----------------------------
# Role & permission catalog
# -----------------------------
ROLE_TYPES = ["Resident Doctor", "Administration", "Super Admin"]

ALL_PERMISSIONS = [
    "Search Reference Materials",
    "Bookmarking",
    "Communication",
    "Manage Tag Reference",
    "Account Creation",
    "Manage User Accounts",
    "Manage Materials",
    "Add Materials",
    "Settings",
]

ACCESS_CATALOG = {
    "Resident Doctor": [
        "Search Reference Materials",
        "Bookmarking",
        "Communication",
        "Manage Tag Reference",
    ],
    "Administration": [
        "Account Creation",
        "Manage User Accounts",
        "Manage Materials",
        "Add Materials",
        "Settings",
    ],
    "Super Admin": ALL_PERMISSIONS,
}

DEFAULT_ROLES = [
    {"name": "Super Admin", "type": "Super Admin", "access": ALL_PERMISSIONS, "locked": True},
    {"name": "Admin", "type": "Administration", "access": ACCESS_CATALOG["Administration"], "locked": False},
    {"name": "Resident Doctor", "type": "Resident Doctor", "access": ACCESS_CATALOG["Resident Doctor"], "locked": False},
]

PAPER_STATUSES = ("Published", "Archived")

ADMIN_EMAILS = set(e.strip().lower() for e in os.environ.get("VAULT_ADMIN_EMAILS", "").split(",") if e.strip())


def is_admin_email(email: str) -> bool:
    """Check if an email is in the configured admin list."""
    return (email or "").strip().lower() in ADMIN_EMAILS


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def now_ms() -> int:
    return int(time.time() * 1000)


def get_conn(db_path: str) -> sqlite3.Connection:
    # New connection per call; autocommit; FK on
    conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def rows_to_dicts(cur) -> list:
    cols = [c[0] for c in cur.description]
    return [dict(zip(cols, row)) for row in cur.fetchall()]


def row_to_dict(cur):
    row = cur.fetchone()
    if row is None:
        return None
    cols = [c[0] for c in cur.description]
    return dict(zip(cols, row))


def _loads(raw, default):
    if raw is None or raw == "":
        return default
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return default
    return value if isinstance(value, type(default)) else default


def init_db(db_path: str) -> None:
    conn = get_conn(db_path)
    cur = conn.cursor()

    cur.execute("""
        CREATE TABLE IF NOT EXISTS users (
            uid TEXT PRIMARY KEY,
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            first_name TEXT DEFAULT '',
            middle_initial TEXT DEFAULT '',
            last_name TEXT DEFAULT '',
            suffix TEXT DEFAULT '',
            role TEXT NOT NULL,
            department TEXT DEFAULT '',
            status TEXT NOT NULL DEFAULT 'active',
            created_at TEXT NOT NULL,
            updated_at TEXT
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS roles (
            name TEXT PRIMARY KEY COLLATE NOCASE,
            type TEXT NOT NULL,
            access TEXT NOT NULL,
            locked INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS papers (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            publication_type TEXT NOT NULL,
            upload_type TEXT NOT NULL,
            paper_type TEXT DEFAULT '',
            publication_scope TEXT DEFAULT '',
            file_name TEXT,
            file_url TEXT,
            file_path TEXT,
            cover_url TEXT DEFAULT '',
            format_id TEXT,
            format_fields TEXT,
            required_fields TEXT,
            fields_data TEXT,
            author_uids TEXT,
            manual_authors TEXT,
            author_display_names TEXT,
            figures TEXT,
            keywords TEXT,
            indexed TEXT,
            pages INTEGER DEFAULT 0,
            doi TEXT DEFAULT '',
            publication_date TEXT DEFAULT '',
            research_field TEXT DEFAULT '',
            abstract TEXT DEFAULT '',
            ethics_id TEXT,
            uploaded_by TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'Published',
            archived_at INTEGER,
            archived_by TEXT,
            created_at INTEGER NOT NULL,
            updated_at INTEGER
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            recipient_uid TEXT NOT NULL,
            title TEXT NOT NULL,
            message TEXT NOT NULL,
            type TEXT NOT NULL DEFAULT 'info',
            source TEXT NOT NULL DEFAULT 'system',
            action_url TEXT,
            action_text TEXT,
            meta TEXT,
            read INTEGER NOT NULL DEFAULT 0,
            created_at INTEGER NOT NULL
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS access_requests (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            paper_id TEXT NOT NULL,
            requester_uid TEXT NOT NULL,
            requester_name TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            decided_by TEXT,
            decided_at INTEGER,
            created_at INTEGER NOT NULL,
            FOREIGN KEY(paper_id) REFERENCES papers(id) ON DELETE CASCADE,
            UNIQUE(paper_id, requester_uid)
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS paper_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            paper_id TEXT NOT NULL,
            action TEXT NOT NULL,
            actor TEXT NOT NULL,
            paper_title TEXT,
            meta TEXT,
            day TEXT NOT NULL,
            timestamp INTEGER NOT NULL
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS bookmark_collections (
            uid TEXT NOT NULL,
            name TEXT NOT NULL,
            created_at TEXT NOT NULL,
            PRIMARY KEY (uid, name)
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS bookmarks (
            uid TEXT NOT NULL,
            collection TEXT NOT NULL,
            paper_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            PRIMARY KEY (uid, collection, paper_id),
            FOREIGN KEY(paper_id) REFERENCES papers(id) ON DELETE CASCADE
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS ratings (
            paper_id TEXT NOT NULL,
            uid TEXT NOT NULL,
            value INTEGER NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (paper_id, uid),
            FOREIGN KEY(paper_id) REFERENCES papers(id) ON DELETE CASCADE
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS ethics_clearances (
            id TEXT PRIMARY KEY,
            url TEXT NOT NULL,
            storage_path TEXT NOT NULL,
            file_name TEXT NOT NULL,
            file_size INTEGER,
            content_type TEXT,
            signatory_name TEXT NOT NULL,
            date_required TEXT NOT NULL,
            uploaded_by TEXT NOT NULL,
            uploaded_by_name TEXT,
            uploaded_at INTEGER NOT NULL,
            status TEXT NOT NULL DEFAULT 'uploaded',
            updated_at INTEGER
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS departments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE COLLATE NOCASE,
            description TEXT NOT NULL,
            image_url TEXT DEFAULT '',
            date_created TEXT NOT NULL
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS department_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            action TEXT NOT NULL,
            name TEXT NOT NULL,
            edited_by TEXT NOT NULL,
            created_at TEXT NOT NULL
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS policies (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            content TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS policy_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            action TEXT NOT NULL,
            content TEXT NOT NULL,
            edited_by TEXT NOT NULL,
            created_at TEXT NOT NULL
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS site_components (
            name TEXT PRIMARY KEY,
            content TEXT NOT NULL,
            updated_by TEXT,
            updated_at TEXT NOT NULL
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS component_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            component TEXT NOT NULL,
            content TEXT NOT NULL,
            action TEXT NOT NULL,
            version TEXT NOT NULL,
            restored_from TEXT,
            edited_by TEXT NOT NULL,
            created_at TEXT NOT NULL
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS formats (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE COLLATE NOCASE,
            description TEXT DEFAULT '',
            fields TEXT NOT NULL,
            required_fields TEXT NOT NULL,
            created_by TEXT,
            created_at TEXT NOT NULL
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS format_field_options (
            name TEXT PRIMARY KEY COLLATE NOCASE,
            created_at TEXT NOT NULL
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS privacy_policies (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            version TEXT NOT NULL,
            effective_date TEXT NOT NULL,
            sections TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'Active',
            created_by TEXT,
            created_at TEXT NOT NULL,
            last_modified TEXT
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS watermark_versions (
            version TEXT PRIMARY KEY,
            settings TEXT NOT NULL,
            static_text TEXT,
            note TEXT DEFAULT '',
            created_by TEXT NOT NULL,
            created_at TEXT NOT NULL
        );
    """)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS wizard_drafts (
            draft_id TEXT PRIMARY KEY,
            owner_uid TEXT NOT NULL,
            data TEXT NOT NULL,
            created_at INTEGER NOT NULL,
            updated_at INTEGER NOT NULL
        );
    """)

    cur.execute("CREATE INDEX IF NOT EXISTS idx_papers_status ON papers(status);")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_notifications_recipient ON notifications(recipient_uid, created_at);")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_paper_events_paper ON paper_events(paper_id, timestamp);")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_component_history ON component_history(component);")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_wizard_drafts_owner ON wizard_drafts(owner_uid);")

    created = now_iso()
    for role in DEFAULT_ROLES:
        cur.execute("INSERT OR IGNORE INTO roles(name, type, access, locked, created_at) VALUES (?, ?, ?, ?, ?);",
                    (role["name"], role["type"], json.dumps(role["access"]), 1 if role["locked"] else 0, created))

    conn.close()


# -----------------------------
# Roles
# -----------------------------
def _role_from_row(row: dict) -> dict:
    return {
        "name": row["name"],
        "type": row["type"],
        "access": _loads(row["access"], []),
        "locked": bool(row["locked"]),
    }


def get_all_roles(db_path: str) -> list:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT name, type, access, locked FROM roles ORDER BY type, name;")
        return [_role_from_row(r) for r in rows_to_dicts(cur)]
    except sqlite3.Error as e:
        logger.error(f"Failed to list roles: {e}")
        return []
    finally:
        conn.close()


def get_role(db_path: str, name: str):
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT name, type, access, locked FROM roles WHERE name = ?;", ((name or "").strip(),))
        row = row_to_dict(cur)
        return _role_from_row(row) if row else None
    finally:
        conn.close()


def upsert_role(db_path: str, name: str, role_type: str, access: list) -> bool:
    """Insert or update a role by case-insensitive name. Locked roles are left untouched."""
    name = (name or "").strip()
    if not name or role_type not in ROLE_TYPES:
        return False
    allowed = set(ACCESS_CATALOG[role_type])
    access = [p for p in ALL_PERMISSIONS if p in set(access or []) and p in allowed]

    existing = get_role(db_path, name)
    if existing and existing["locked"]:
        return False

    conn = get_conn(db_path); cur = conn.cursor()
    try:
        if existing:
            cur.execute("UPDATE roles SET type = ?, access = ? WHERE name = ?;",
                        (role_type, json.dumps(access), name))
        else:
            cur.execute("INSERT INTO roles(name, type, access, locked, created_at) VALUES (?, ?, ?, 0, ?);",
                        (name, role_type, json.dumps(access), now_iso()))
        return True
    except sqlite3.Error as e:
        logger.error(f"Failed to upsert role {name}: {e}")
        return False
    finally:
        conn.close()


def delete_role(db_path: str, name: str) -> bool:
    role = get_role(db_path, name)
    if not role or role["locked"]:
        return False
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT COUNT(1) FROM users WHERE role = ? COLLATE NOCASE;", (role["name"],))
        if cur.fetchone()[0] > 0:
            return False
        cur.execute("DELETE FROM roles WHERE name = ?;", (role["name"],))
        return cur.rowcount > 0
    finally:
        conn.close()


# -----------------------------
# Users
# -----------------------------
USER_COLUMNS = ("uid, email, first_name, middle_initial, last_name, suffix, role, "
                "department, status, created_at, updated_at")


def format_display_name(user: dict) -> str:
    """First M. Last Suffix, falling back to email and then 'Someone'."""
    if not user:
        return "Someone"
    first = (user.get("first_name") or "").strip()
    mi_raw = (user.get("middle_initial") or "").strip()
    last = (user.get("last_name") or "").strip()
    suffix = (user.get("suffix") or "").strip()
    mi = f"{mi_raw[0].upper()}." if mi_raw else ""
    full = " ".join(p for p in (first, mi, last) if p)
    if suffix and full:
        full = f"{full} {suffix}"
    return full or (user.get("email") or "").strip() or "Someone"


def _public_user(row: dict) -> dict:
    user = dict(row)
    user.pop("password_hash", None)
    user["display_name"] = format_display_name(user)
    return user


def create_user(db_path: str, email: str, password: str, role: str,
                first_name: str = "", middle_initial: str = "", last_name: str = "",
                suffix: str = "", department: str = "") -> str:
    """Create a user account with a bcrypt password hash. Returns the new uid or '' on failure."""
    email = (email or "").strip().lower()
    if not email or not password:
        return ""
    if not get_role(db_path, role):
        logger.warning(f"Refusing to create user with unknown role '{role}'")
        return ""

    uid = secrets.token_hex(14)
    password_hash = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute(f"""INSERT INTO users(uid, email, password_hash, first_name, middle_initial, last_name,
                        suffix, role, department, status, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'active', ?);""",
                    (uid, email, password_hash, first_name.strip(), middle_initial.strip(),
                     last_name.strip(), suffix.strip(), get_role(db_path, role)["name"],
                     department.strip(), now_iso()))
        return uid
    except sqlite3.IntegrityError:
        logger.warning(f"User already exists: {email}")
        return ""
    except sqlite3.Error as e:
        logger.error(f"Failed to create user: {e}")
        return ""
    finally:
        conn.close()


def get_user(db_path: str, uid: str):
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE uid = ?;", (uid,))
        row = row_to_dict(cur)
        return _public_user(row) if row else None
    finally:
        conn.close()


def get_user_by_email(db_path: str, email: str):
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE email = ?;", ((email or "").strip().lower(),))
        row = row_to_dict(cur)
        return _public_user(row) if row else None
    finally:
        conn.close()


def get_users_by_uids(db_path: str, uids: list) -> dict:
    """Map uid -> public user for the given uids (unknown uids are omitted)."""
    uids = [u for u in dict.fromkeys(uids or []) if u]
    if not uids:
        return {}
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        placeholders = ",".join("?" for _ in uids)
        cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE uid IN ({placeholders});", uids)
        return {row["uid"]: _public_user(row) for row in rows_to_dicts(cur)}
    finally:
        conn.close()


def list_users(db_path: str, role: str = None, status: str = None) -> list:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        q = f"SELECT {USER_COLUMNS} FROM users WHERE 1=1"
        params = []
        if role:
            q += " AND role = ? COLLATE NOCASE"
            params.append(role)
        if status:
            q += " AND status = ?"
            params.append(status)
        q += " ORDER BY last_name, first_name, email;"
        cur.execute(q, params)
        return [_public_user(r) for r in rows_to_dicts(cur)]
    except sqlite3.Error as e:
        logger.error(f"Failed to list users: {e}")
        return []
    finally:
        conn.close()


def update_user(db_path: str, uid: str, **fields) -> bool:
    """Update profile fields of a user. Unknown keys are ignored."""
    allowed = ("first_name", "middle_initial", "last_name", "suffix", "role", "department", "status")
    updates = {k: (v.strip() if isinstance(v, str) else v) for k, v in fields.items()
               if k in allowed and v is not None}
    if "status" in updates and updates["status"] not in ("active", "deactivated"):
        return False
    if "role" in updates:
        role = get_role(db_path, updates["role"])
        if not role:
            return False
        updates["role"] = role["name"]
    if not updates:
        return get_user(db_path, uid) is not None

    conn = get_conn(db_path); cur = conn.cursor()
    try:
        assignments = ", ".join(f"{k} = ?" for k in updates)
        cur.execute(f"UPDATE users SET {assignments}, updated_at = ? WHERE uid = ?;",
                    list(updates.values()) + [now_iso(), uid])
        return cur.rowcount > 0
    except sqlite3.Error as e:
        logger.error(f"Failed to update user {uid}: {e}")
        return False
    finally:
        conn.close()


def set_user_password(db_path: str, uid: str, new_password: str) -> bool:
    if not new_password:
        return False
    password_hash = bcrypt.hashpw(new_password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("UPDATE users SET password_hash = ?, updated_at = ? WHERE uid = ?;",
                    (password_hash, now_iso(), uid))
        return cur.rowcount > 0
    finally:
        conn.close()


def verify_user_password(db_path: str, email: str, password: str):
    """Return the public user when the password matches an active account, else None."""
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute(f"SELECT {USER_COLUMNS}, password_hash FROM users WHERE email = ?;",
                    ((email or "").strip().lower(),))
        row = row_to_dict(cur)
    finally:
        conn.close()

    if not row or row["status"] != "active":
        return None
    try:
        if bcrypt.checkpw(password.encode('utf-8'), row["password_hash"].encode('utf-8')):
            return _public_user(row)
    except ValueError as e:
        logger.error(f"Corrupt password hash for {email}: {e}")
    return None


def get_user_permissions(db_path: str, user: dict) -> list:
    """Permissions granted by the user's role. Configured admin emails get everything."""
    if not user:
        return []
    if is_admin_email(user.get("email")):
        return list(ALL_PERMISSIONS)
    role = get_role(db_path, user.get("role") or "")
    if not role:
        return []
    if role["type"] == "Super Admin":
        return list(ALL_PERMISSIONS)
    return role["access"]


def has_permission(db_path: str, user: dict, permission: str) -> bool:
    return permission in get_user_permissions(db_path, user)


# -----------------------------
# Papers
# -----------------------------
PAPER_JSON_LIST_FIELDS = ("format_fields", "required_fields", "author_uids", "manual_authors",
                          "author_display_names", "figures", "keywords", "indexed")
PAPER_JSON_DICT_FIELDS = ("fields_data", "archived_by")


def _paper_from_row(row: dict) -> dict:
    paper = dict(row)
    for key in PAPER_JSON_LIST_FIELDS:
        paper[key] = _loads(paper.get(key), [])
    for key in PAPER_JSON_DICT_FIELDS:
        paper[key] = _loads(paper.get(key), {})
    if not paper["archived_by"]:
        paper["archived_by"] = None
    return paper


def new_paper_id(db_path: str) -> str:
    """RP-<epoch ms>, bumped until unused."""
    stamp = now_ms()
    while get_paper(db_path, f"RP-{stamp}") is not None:
        stamp += 1
    return f"RP-{stamp}"


def create_paper(db_path: str, record: dict) -> bool:
    """Insert a paper record as built by the upload wizard."""
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        now = now_ms()
        values = dict(record)
        for key in PAPER_JSON_LIST_FIELDS:
            values[key] = json.dumps(values.get(key) or [])
        values["fields_data"] = json.dumps(values.get("fields_data") or {})
        values.setdefault("status", "Published")
        values.setdefault("created_at", now)
        values["updated_at"] = now
        values.pop("archived_by", None)
        columns = list(values.keys())
        cur.execute(f"INSERT INTO papers({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)});",
                    [values[c] for c in columns])
        return True
    except sqlite3.Error as e:
        logger.error(f"Failed to create paper {record.get('id')}: {e}")
        return False
    finally:
        conn.close()


def get_paper(db_path: str, paper_id: str):
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT * FROM papers WHERE id = ?;", (paper_id,))
        row = row_to_dict(cur)
        return _paper_from_row(row) if row else None
    finally:
        conn.close()


def get_paper_by_file_path(db_path: str, file_path: str):
    """The paper whose stored PDF lives at file_path (leading slash ignored)."""
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT * FROM papers WHERE file_path = ?;", ((file_path or "").lstrip("/"),))
        row = row_to_dict(cur)
        return _paper_from_row(row) if row else None
    finally:
        conn.close()


def list_papers(db_path: str, status: str = "Published", query: str = "",
                publication_type: str = None, upload_type: str = None,
                author_uid: str = None, limit: int = 200) -> list:
    """List papers filtered by status, type, access type, author and free text."""
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        q = "SELECT * FROM papers WHERE 1=1"
        params = []
        if status:
            q += " AND status = ?"
            params.append(status)
        if publication_type:
            q += " AND publication_type = ?"
            params.append(publication_type)
        if upload_type:
            q += " AND upload_type = ?"
            params.append(upload_type)
        q += " ORDER BY created_at DESC;"
        cur.execute(q, params)
        papers = [_paper_from_row(r) for r in rows_to_dicts(cur)]
    except sqlite3.Error as e:
        logger.error(f"Failed to list papers: {e}")
        return []
    finally:
        conn.close()

    if author_uid:
        papers = [p for p in papers if author_uid in p["author_uids"]]

    terms = [t for t in re.split(r"\s+", (query or "").strip().lower()) if t]
    if terms:
        def haystack(p):
            parts = [p.get("title") or "", p.get("abstract") or "", p.get("doi") or ""]
            parts += p["keywords"] + p["author_display_names"] + p["manual_authors"]
            return " ".join(parts).lower()
        papers = [p for p in papers if all(t in haystack(p) for t in terms)]

    return papers[:limit] if limit else papers


def update_paper(db_path: str, paper_id: str, **fields) -> bool:
    """Update editable paper metadata. Unknown keys are ignored."""
    editable = ("title", "publication_type", "upload_type", "paper_type", "publication_scope",
                "doi", "publication_date", "research_field", "abstract", "pages", "ethics_id",
                "keywords", "indexed", "manual_authors", "author_uids", "author_display_names",
                "fields_data")
    updates = {k: v for k, v in fields.items() if k in editable and v is not None}
    if "upload_type" in updates and updates["upload_type"] not in ("Private", "Public"):
        return False
    for key in list(updates):
        if key in PAPER_JSON_LIST_FIELDS or key in PAPER_JSON_DICT_FIELDS:
            updates[key] = json.dumps(updates[key])
    if not updates:
        return get_paper(db_path, paper_id) is not None

    conn = get_conn(db_path); cur = conn.cursor()
    try:
        assignments = ", ".join(f"{k} = ?" for k in updates)
        cur.execute(f"UPDATE papers SET {assignments}, updated_at = ? WHERE id = ?;",
                    list(updates.values()) + [now_ms(), paper_id])
        return cur.rowcount > 0
    except sqlite3.Error as e:
        logger.error(f"Failed to update paper {paper_id}: {e}")
        return False
    finally:
        conn.close()


def archive_paper(db_path: str, paper_id: str, archived_by_uid: str, archived_by_name: str) -> bool:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("""UPDATE papers SET status = 'Archived', archived_at = ?, archived_by = ?, updated_at = ?
                       WHERE id = ? AND status = 'Published';""",
                    (now_ms(), json.dumps({"uid": archived_by_uid, "name": archived_by_name or "Admin"}),
                     now_ms(), paper_id))
        return cur.rowcount > 0
    finally:
        conn.close()


def restore_paper(db_path: str, paper_id: str) -> bool:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("""UPDATE papers SET status = 'Published', archived_at = NULL, archived_by = NULL, updated_at = ?
                       WHERE id = ? AND status = 'Archived';""",
                    (now_ms(), paper_id))
        return cur.rowcount > 0
    finally:
        conn.close()


def delete_paper(db_path: str, paper_id: str) -> bool:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("DELETE FROM paper_events WHERE paper_id = ?;", (paper_id,))
        cur.execute("DELETE FROM papers WHERE id = ?;", (paper_id,))
        return cur.rowcount > 0
    except sqlite3.Error as e:
        logger.error(f"Failed to delete paper {paper_id}: {e}")
        return False
    finally:
        conn.close()


def get_papers_by_ethics_id(db_path: str) -> dict:
    """Map ethics clearance id -> list of {id, title} of papers tagged with it."""
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT id, title, ethics_id FROM papers WHERE ethics_id IS NOT NULL AND ethics_id != '';")
        tagged = {}
        for paper_id, title, ethics_id in cur.fetchall():
            tagged.setdefault(ethics_id, []).append({"id": paper_id, "title": title})
        return tagged
    finally:
        conn.close()


def get_dashboard_counts(db_path: str) -> dict:
    """Aggregate counts for the admin dashboard."""
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT status, COUNT(1) FROM papers GROUP BY status;")
        by_status = {status: n for status, n in cur.fetchall()}
        cur.execute("SELECT publication_type, COUNT(1) FROM papers WHERE status = 'Published' GROUP BY publication_type;")
        by_type = {t or "General": n for t, n in cur.fetchall()}
        cur.execute("SELECT publication_scope, COUNT(1) FROM papers WHERE status = 'Published' GROUP BY publication_scope;")
        by_scope = {"Local": 0, "International": 0}
        for scope, n in cur.fetchall():
            by_scope[scope or "Unspecified"] = by_scope.get(scope or "Unspecified", 0) + n
        cur.execute("SELECT upload_type, COUNT(1) FROM papers WHERE status = 'Published' GROUP BY upload_type;")
        by_access = {t: n for t, n in cur.fetchall()}
        cur.execute("SELECT role, COUNT(1) FROM users GROUP BY role;")
        users_by_role = {r: n for r, n in cur.fetchall()}
        return {
            "papers": {
                "published": by_status.get("Published", 0),
                "archived": by_status.get("Archived", 0),
                "by_publication_type": by_type,
                "by_scope": by_scope,
                "by_access_type": by_access,
            },
            "users_by_role": users_by_role,
        }
    finally:
        conn.close()
