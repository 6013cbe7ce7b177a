#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Site content administered from the settings pages: departments, the policies
& guidelines document, mission/vision text with versioned history, upload
formats with their field option catalog, versioned watermark preferences
and privacy policies.
"""

import re
import json
import math
import logging
import sqlite3
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from vault_store import get_conn, rows_to_dicts, row_to_dict, now_iso

logger = logging.getLogger(__name__)

COMPONENTS = ("Mission", "Vision")

BUILTIN_FIELD_OPTIONS = [
    "Other", "Abstract", "Description", "Keywords", "Journal Name", "Volume", "Issue",
    "DOI", "Publisher", "Type Of Research", "Is This Peer-Reviewed?", "Methodology",
    "Conference Name", "Page Numbers", "Location", "ISBN", "Publication Date",
]
DEFAULT_FORMAT_FIELDS = ["Title", "Abstract", "Authors", "Page Numbers", "Research Field", "Keywords"]


class ContentError(ValueError):
    """Invalid content administration input."""


class DuplicateNameError(ContentError):
    pass


# -----------------------------
# Departments
# -----------------------------
def _log_department(cur, action: str, name: str, editor: str) -> None:
    cur.execute("INSERT INTO department_history(action, name, edited_by, created_at) VALUES (?, ?, ?, ?);",
                (action, name, editor or "Unknown", now_iso()))


def list_departments(db_path: str, search: str = "") -> List[Dict]:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT id, name, description, image_url, date_created FROM departments ORDER BY name;")
        rows = rows_to_dicts(cur)
    finally:
        conn.close()
    search = (search or "").strip().lower()
    return [r for r in rows if search in r["name"].lower()] if search else rows


def create_department(db_path: str, name: str, description: str, editor: str, image_url: str = "") -> int:
    name = (name or "").strip()
    description = (description or "").strip()
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT name FROM departments WHERE lower(name) = lower(?);", (name,))
        existing = cur.fetchone()
        if existing:
            raise DuplicateNameError(f"Department '{existing[0]}' already exists.")
        if not name or not description:
            raise ContentError("Please fill in all fields.")
        cur.execute("BEGIN;")
        cur.execute("INSERT INTO departments(name, description, image_url, date_created) VALUES (?, ?, ?, ?);",
                    (name, description, image_url or "", now_iso()))
        dept_id = cur.lastrowid
        _log_department(cur, "New Department", name, editor)
        cur.execute("COMMIT;")
        return dept_id
    except sqlite3.Error as e:
        if conn.in_transaction:
            cur.execute("ROLLBACK;")
        logger.error(f"Error creating department: {e}")
        return -1
    finally:
        conn.close()


def update_department(db_path: str, dept_id: int, editor: str, name: str = None, description: str = None,
                      image_url: str = None) -> bool:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT name, description, image_url FROM departments WHERE id = ?;", (dept_id,))
        row = cur.fetchone()
        if not row:
            return False
        new_name = (name if name is not None else row[0]).strip()
        new_desc = (description if description is not None else row[1]).strip()
        if not new_name or not new_desc:
            raise ContentError("Please fill in all fields.")
        cur.execute("SELECT 1 FROM departments WHERE lower(name) = lower(?) AND id != ?;", (new_name, dept_id))
        if cur.fetchone():
            raise DuplicateNameError(f"Department '{new_name}' already exists.")
        cur.execute("""UPDATE departments SET name = ?, description = ?, image_url = ?, date_created = ?
                       WHERE id = ?;""",
                    (new_name, new_desc, image_url if image_url is not None else row[2], now_iso(), dept_id))
        _log_department(cur, "Updated", new_name, editor)
        return True
    finally:
        conn.close()


def delete_department(db_path: str, dept_id: int, editor: str) -> bool:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT name FROM departments WHERE id = ?;", (dept_id,))
        row = cur.fetchone()
        if not row:
            return False
        cur.execute("DELETE FROM departments WHERE id = ?;", (dept_id,))
        _log_department(cur, "Deleted", row[0], editor)
        return True
    finally:
        conn.close()


def department_history(db_path: str) -> List[Dict]:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT * FROM department_history ORDER BY id DESC;")
        return rows_to_dicts(cur)
    finally:
        conn.close()


# -----------------------------
# Policies & guidelines
# -----------------------------
def _log_policy(cur, action: str, content: str, editor: str) -> None:
    cur.execute("INSERT INTO policy_history(action, content, edited_by, created_at) VALUES (?, ?, ?, ?);",
                (action, content, editor or "Unknown", now_iso()))


def get_policy(db_path: str) -> Optional[Dict]:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT id, content, created_at, updated_at FROM policies ORDER BY id DESC LIMIT 1;")
        return row_to_dict(cur)
    finally:
        conn.close()


def add_policy(db_path: str, content: str, editor: str) -> int:
    """A new policy replaces every existing one."""
    content = (content or "").strip()
    if not content:
        raise ContentError("Content cannot be empty")
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("BEGIN;")
        cur.execute("DELETE FROM policies;")
        cur.execute("INSERT INTO policies(content, created_at) VALUES (?, ?);", (content, now_iso()))
        policy_id = cur.lastrowid
        _log_policy(cur, "Added", content, editor)
        cur.execute("COMMIT;")
        return policy_id
    except sqlite3.Error as e:
        if conn.in_transaction:
            cur.execute("ROLLBACK;")
        logger.error(f"Failed to add policy: {e}")
        return -1
    finally:
        conn.close()


def edit_policy(db_path: str, policy_id: int, content: str, editor: str) -> bool:
    content = (content or "").strip()
    if not content:
        raise ContentError("Content cannot be empty")
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("UPDATE policies SET content = ?, updated_at = ? WHERE id = ?;", (content, now_iso(), policy_id))
        if cur.rowcount == 0:
            return False
        _log_policy(cur, "Edited", content, editor)
        return True
    finally:
        conn.close()


def delete_policy(db_path: str, policy_id: int, editor: str) -> bool:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT content FROM policies WHERE id = ?;", (policy_id,))
        row = cur.fetchone()
        if not row:
            return False
        cur.execute("DELETE FROM policies WHERE id = ?;", (policy_id,))
        _log_policy(cur, "Deleted", row[0], editor)
        return True
    finally:
        conn.close()


def policy_history(db_path: str) -> List[Dict]:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT * FROM policy_history ORDER BY id DESC;")
        return rows_to_dicts(cur)
    finally:
        conn.close()


# -----------------------------
# Mission / Vision
# -----------------------------
def parse_version(version: str) -> Tuple[int, int]:
    raw = re.sub(r"^v", "", version or "v0", flags=re.IGNORECASE)
    major_str, _, minor_str = raw.partition(".")
    major = int(major_str) if major_str.isdigit() else 0
    minor = int(minor_str) if minor_str.isdigit() else 0
    return major, minor


def format_version(major: int, minor: int) -> str:
    return f"v{major}.{minor}" if minor > 0 else f"v{major}"


def _component_name(component: str) -> str:
    name = (component or "").strip().capitalize()
    if name not in COMPONENTS:
        raise ContentError(f"Unknown component: {component}")
    return name


def _latest_version(cur, component: str) -> Tuple[int, int]:
    cur.execute("SELECT version FROM component_history WHERE component = ?;", (component,))
    versions = [parse_version(r[0]) for r in cur.fetchall()]
    return max(versions) if versions else (0, 0)


def get_component(db_path: str, component: str) -> Optional[Dict]:
    component = _component_name(component)
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT name, content, updated_by, updated_at FROM site_components WHERE name = ?;", (component,))
        return row_to_dict(cur)
    finally:
        conn.close()


def _write_component(cur, component: str, content: str, editor: str, action: str, version: str,
                     restored_from: str = None) -> Dict:
    now = now_iso()
    cur.execute("""INSERT INTO site_components(name, content, updated_by, updated_at) VALUES (?, ?, ?, ?)
                   ON CONFLICT(name) DO UPDATE SET content = excluded.content,
                   updated_by = excluded.updated_by, updated_at = excluded.updated_at;""",
                (component, content, editor, now))
    cur.execute("""INSERT INTO component_history(component, content, action, version, restored_from,
                   edited_by, created_at) VALUES (?, ?, ?, ?, ?, ?, ?);""",
                (component, content, action, version, restored_from, editor, now))
    return {"id": cur.lastrowid, "component": component, "content": content, "action": action,
            "version": version, "restored_from": restored_from, "edited_by": editor, "created_at": now}


def save_component(db_path: str, component: str, content: str, editor: str, mode: str = "edit") -> Dict:
    """
    Save Mission or Vision text and append a history entry.

    mode "add" bumps the major version (vN); anything else is an edit and
    bumps the minor version (vN.M).
    """
    component = _component_name(component)
    content = (content or "").strip()
    if not content:
        raise ContentError("Cannot save empty text.")
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("BEGIN IMMEDIATE;")
        major, minor = _latest_version(cur, component)
        if mode == "add":
            action, version = "Added", format_version(major + 1, 0)
        else:
            action, version = "Edited", format_version(major, minor + 1)
        entry = _write_component(cur, component, content, editor or "Unknown User", action, version)
        cur.execute("COMMIT;")
        return entry
    except sqlite3.Error:
        if conn.in_transaction:
            cur.execute("ROLLBACK;")
        raise
    finally:
        conn.close()


def restore_component(db_path: str, component: str, history_id: int, editor: str) -> Optional[Dict]:
    """Reinstate a history entry's text as a new minor version marked Restored."""
    component = _component_name(component)
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("BEGIN IMMEDIATE;")
        cur.execute("SELECT content, version FROM component_history WHERE id = ? AND component = ?;",
                    (history_id, component))
        row = cur.fetchone()
        if not row:
            cur.execute("ROLLBACK;")
            return None
        major, minor = _latest_version(cur, component)
        entry = _write_component(cur, component, row[0], editor or "Unknown User", "Restored",
                                 format_version(major, minor + 1), restored_from=row[1])
        cur.execute("COMMIT;")
        return entry
    except sqlite3.Error:
        if conn.in_transaction:
            cur.execute("ROLLBACK;")
        raise
    finally:
        conn.close()


def component_history(db_path: str, component: str, limit: int = None) -> List[Dict]:
    """History newest version first."""
    component = _component_name(component)
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT * FROM component_history WHERE component = ?;", (component,))
        rows = rows_to_dicts(cur)
    finally:
        conn.close()
    rows.sort(key=lambda r: (parse_version(r["version"]), r["id"]), reverse=True)
    return rows[:limit] if limit else rows


# -----------------------------
# Upload formats
# -----------------------------
def title_words(s: str) -> str:
    return " ".join(w[0].upper() + w[1:].lower() for w in (s or "").split())


def _dedupe_names(names: List[str]) -> List[str]:
    seen = set()
    out = []
    for name in names:
        norm = title_words(str(name or "").strip())
        if norm and norm.lower() not in seen:
            seen.add(norm.lower())
            out.append(norm)
    return out


def list_field_options(db_path: str) -> List[str]:
    """Stored options merged with the built-in catalog, de-duplicated case-insensitively."""
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT name FROM format_field_options ORDER BY name;")
        stored = [r[0] for r in cur.fetchall()]
    finally:
        conn.close()
    return sorted(_dedupe_names(stored + BUILTIN_FIELD_OPTIONS), key=str.lower)


def add_field_option(db_path: str, name: str) -> str:
    formatted = title_words((name or "").strip())
    if not formatted:
        raise ContentError("Field option name is required.")
    if formatted.lower() in (o.lower() for o in list_field_options(db_path)):
        raise DuplicateNameError("That field option already exists.")
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("INSERT INTO format_field_options(name, created_at) VALUES (?, ?);", (formatted, now_iso()))
        return formatted
    finally:
        conn.close()


def _format_from_row(row: Dict) -> Dict:
    fmt = dict(row)
    fmt["fields"] = json.loads(fmt["fields"] or "[]")
    fmt["required_fields"] = json.loads(fmt["required_fields"] or "[]")
    return fmt


def _clean_format(name: str, fields: List[str], required_fields: List[str]) -> Tuple[str, List[str], List[str]]:
    name = title_words((name or "").strip())
    if not name:
        raise ContentError("Please enter a format name.")
    fields = _dedupe_names(list(DEFAULT_FORMAT_FIELDS) + list(fields or []))
    field_set = set(fields)
    required = _dedupe_names(list(DEFAULT_FORMAT_FIELDS) + list(required_fields or []))
    return name, fields, [f for f in required if f in field_set]


def create_format(db_path: str, name: str, description: str, fields: List[str], required_fields: List[str],
                  created_by: str) -> int:
    """Default fields are always present and required; required fields are kept to a subset of fields."""
    name, fields, required = _clean_format(name, fields, required_fields)
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("""INSERT INTO formats(name, description, fields, required_fields, created_by, created_at)
                       VALUES (?, ?, ?, ?, ?, ?);""",
                    (name, title_words(description or ""), json.dumps(fields), json.dumps(required),
                     created_by, now_iso()))
        return cur.lastrowid
    except sqlite3.IntegrityError:
        raise DuplicateNameError(f"Format '{name}' already exists.")
    finally:
        conn.close()


def update_format(db_path: str, format_id: int, name: str, description: str, fields: List[str],
                  required_fields: List[str]) -> bool:
    name, fields, required = _clean_format(name, fields, required_fields)
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("""UPDATE formats SET name = ?, description = ?, fields = ?, required_fields = ?
                       WHERE id = ?;""",
                    (name, title_words(description or ""), json.dumps(fields), json.dumps(required), format_id))
        return cur.rowcount > 0
    except sqlite3.IntegrityError:
        raise DuplicateNameError(f"Format '{name}' already exists.")
    finally:
        conn.close()


def get_format(db_path: str, format_id) -> Optional[Dict]:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT * FROM formats WHERE id = ?;", (format_id,))
        row = row_to_dict(cur)
        return _format_from_row(row) if row else None
    finally:
        conn.close()


def list_formats(db_path: str) -> List[Dict]:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT * FROM formats ORDER BY name;")
        return [_format_from_row(r) for r in rows_to_dicts(cur)]
    finally:
        conn.close()


def delete_format(db_path: str, format_id: int) -> bool:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("DELETE FROM formats WHERE id = ?;", (format_id,))
        return cur.rowcount > 0
    finally:
        conn.close()


# -----------------------------
# Watermark preferences
# -----------------------------
WATERMARK_MODES = ("tiled", "top-left", "top-right", "bottom-left", "bottom-right", "center", "custom")
DEFAULT_WATERMARK_SETTINGS = {"mode": "tiled", "opacity": 0.14, "fontSize": 18}
MAX_STATIC_TEXT = 200


def _clamp(value, low: float, high: float, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    return min(high, max(low, number))


def clean_watermark_settings(settings) -> Dict:
    """Unknown modes fall back to tiled. x/y are fractions of the page, kept for custom placement only."""
    settings = settings if isinstance(settings, dict) else {}
    mode = settings.get("mode") if settings.get("mode") in WATERMARK_MODES else "tiled"
    cleaned = {
        "mode": mode,
        "opacity": round(_clamp(settings.get("opacity"), 0.04, 1.0, 0.14), 2),
        "fontSize": int(round(_clamp(settings.get("fontSize"), 12, 48, 18))),
    }
    if mode == "custom":
        cleaned["x"] = round(_clamp(settings.get("x"), 0.02, 0.98, 0.5), 3)
        cleaned["y"] = round(_clamp(settings.get("y"), 0.02, 0.98, 0.5), 3)
    return cleaned


def _watermark_from_row(row: Dict) -> Dict:
    pref = dict(row)
    pref["settings"] = clean_watermark_settings(json.loads(pref["settings"] or "{}"))
    pref["static_text"] = pref.get("static_text") or None
    return pref


def list_watermark_versions(db_path: str) -> List[Dict]:
    """Every saved preference, latest version first."""
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT * FROM watermark_versions;")
        rows = rows_to_dicts(cur)
    finally:
        conn.close()
    prefs = [_watermark_from_row(r) for r in rows]
    prefs.sort(key=lambda p: parse_version(p["version"]), reverse=True)
    return prefs


def _insert_watermark(cur, version: str, settings: Dict, static_text: Optional[str], note: str,
                      created_by: str) -> None:
    cur.execute("""INSERT INTO watermark_versions(version, settings, static_text, note, created_by, created_at)
                   VALUES (?, ?, ?, ?, ?, ?);""",
                (version, json.dumps(settings), static_text, note or "", created_by, now_iso()))


def current_watermark(db_path: str) -> Dict:
    """The latest preference. A v1 default is seeded when none has been saved."""
    prefs = list_watermark_versions(db_path)
    if prefs:
        return prefs[0]
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        _insert_watermark(cur, "v1", dict(DEFAULT_WATERMARK_SETTINGS), None, "Initial default", "system")
    except sqlite3.IntegrityError:
        pass  # seeded by a concurrent request
    finally:
        conn.close()
    return list_watermark_versions(db_path)[0]


def save_watermark(db_path: str, settings, static_text: Optional[str], editor: str, note: str = "",
                   mode: str = "new") -> Dict:
    """
    Save a watermark preference as a new version.

    mode "new" bumps the major version (vN); "edit" bumps the minor version
    (vN.M) of the latest one. Blank static text means the dynamic viewer text.
    """
    settings = clean_watermark_settings(settings)
    static_text = " ".join(str(static_text or "").split())[:MAX_STATIC_TEXT] or None
    current_watermark(db_path)
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("BEGIN IMMEDIATE;")
        cur.execute("SELECT version FROM watermark_versions;")
        major, minor = max(parse_version(r[0]) for r in cur.fetchall())
        version = format_version(major, minor + 1) if mode == "edit" else format_version(major + 1, 0)
        _insert_watermark(cur, version, settings, static_text, (note or "").strip(), editor or "Unknown User")
        cur.execute("COMMIT;")
    except sqlite3.Error:
        if conn.in_transaction:
            cur.execute("ROLLBACK;")
        raise
    finally:
        conn.close()
    logger.info(f"Watermark {version} saved by {editor}")
    return next(p for p in list_watermark_versions(db_path) if p["version"] == version)


def delete_watermark_version(db_path: str, version: str) -> Optional[Dict]:
    """Remove one version. Returns the preference now in effect, or None when the version is unknown."""
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("DELETE FROM watermark_versions WHERE version = ?;", (version,))
        if cur.rowcount == 0:
            return None
    finally:
        conn.close()
    return current_watermark(db_path)


def watermark_text(pref: Dict, user: Dict, paper_id: str = "", when: datetime = None) -> str:
    """Static text when the preference sets one, else who is viewing which paper and when."""
    if pref.get("static_text"):
        return pref["static_text"]
    user = user or {}
    uid = user.get("uid") or ""
    name = user.get("display_name") or user.get("email") or uid
    contact = user.get("email") or f"UID:{uid}"
    stamp = (when or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
    return f"Research Vault | {name} | {contact} | Paper:{paper_id or 'N/A'} | {stamp}"


# -----------------------------
# Privacy policies
# -----------------------------
PRIVACY_STATUSES = ("Active", "Inactive")


def _clean_sections(sections, drop_empty: bool = False) -> List[Dict]:
    if not isinstance(sections, list):
        raise ContentError("Sections must be a list.")
    cleaned = []
    for section in sections:
        section = section if isinstance(section, dict) else {}
        title = str(section.get("sectionTitle") or "").strip()
        content = str(section.get("content") or "").strip()
        if drop_empty and not title and not content:
            continue
        if not title or not content:
            raise ContentError("Every section needs a title and content.")
        cleaned.append({"sectionTitle": title, "content": content})
    if not cleaned:
        raise ContentError("Add at least one section.")
    return cleaned


def _clean_effective_date(value: str) -> str:
    value = (value or "").strip()
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise ContentError("Effective date must be YYYY-MM-DD.")
    return value


def _privacy_from_row(row: Dict) -> Dict:
    policy = dict(row)
    policy["sections"] = json.loads(policy["sections"] or "[]")
    policy["version_label"] = f"v{policy['version']}"
    return policy


def list_privacy_policies(db_path: str) -> List[Dict]:
    """Most recently modified first."""
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("""SELECT * FROM privacy_policies
                       ORDER BY COALESCE(last_modified, created_at) DESC, id DESC;""")
        return [_privacy_from_row(r) for r in rows_to_dicts(cur)]
    finally:
        conn.close()


def get_privacy_policy(db_path: str, policy_id: int) -> Optional[Dict]:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT * FROM privacy_policies WHERE id = ?;", (policy_id,))
        row = row_to_dict(cur)
        return _privacy_from_row(row) if row else None
    finally:
        conn.close()


def current_privacy_policy(db_path: str) -> Optional[Dict]:
    """The most recently modified Active policy."""
    return next((p for p in list_privacy_policies(db_path) if p["status"] == "Active"), None)


def create_privacy_policy(db_path: str, title: str, effective_date: str, sections, editor: str) -> Dict:
    """The version is assigned: one past the highest major version on record."""
    title = (title or "").strip()
    if not title:
        raise ContentError("Policy title is required.")
    effective_date = _clean_effective_date(effective_date)
    sections = _clean_sections(sections)
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("BEGIN IMMEDIATE;")
        cur.execute("SELECT version FROM privacy_policies;")
        majors = [parse_version(r[0])[0] for r in cur.fetchall()]
        version = str(max(majors) + 1 if majors else 1)
        cur.execute("""INSERT INTO privacy_policies(title, version, effective_date, sections, status,
                       created_by, created_at) VALUES (?, ?, ?, ?, 'Active', ?, ?);""",
                    (title, version, effective_date, json.dumps(sections), editor, now_iso()))
        policy_id = cur.lastrowid
        cur.execute("COMMIT;")
    except sqlite3.Error:
        if conn.in_transaction:
            cur.execute("ROLLBACK;")
        raise
    finally:
        conn.close()
    return get_privacy_policy(db_path, policy_id)


def update_privacy_policy(db_path: str, policy_id: int, title: str, version: str, effective_date: str,
                          sections, status: str = None) -> Optional[Dict]:
    """Sections left entirely blank are dropped."""
    title = (title or "").strip()
    version = re.sub(r"^v", "", (version or "").strip(), flags=re.IGNORECASE)
    if not title or not version:
        raise ContentError("Title, version and effective date are required.")
    effective_date = _clean_effective_date(effective_date)
    sections = _clean_sections(sections, drop_empty=True)
    if status is not None and status not in PRIVACY_STATUSES:
        raise ContentError(f"Status must be one of: {', '.join(PRIVACY_STATUSES)}")
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("""UPDATE privacy_policies SET title = ?, version = ?, effective_date = ?, sections = ?,
                       status = COALESCE(?, status), last_modified = ? WHERE id = ?;""",
                    (title, version, effective_date, json.dumps(sections), status, now_iso(), policy_id))
        if cur.rowcount == 0:
            return None
    finally:
        conn.close()
    return get_privacy_policy(db_path, policy_id)


def delete_privacy_policy(db_path: str, policy_id: int) -> bool:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("DELETE FROM privacy_policies WHERE id = ?;", (policy_id,))
        return cur.rowcount > 0
    finally:
        conn.close()
