#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Ethics clearance records and their stored files.
"""

import csv
import secrets
import logging
import sqlite3
from io import StringIO
from datetime import datetime
from typing import Dict, List, Optional

from vault_store import get_conn, rows_to_dicts, row_to_dict, now_ms, get_papers_by_ethics_id

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = ("pdf", "png", "jpg", "jpeg")
BASE_PATH = "ClearanceEthics"

CSV_HEADER = ["Reference ID", "Signatory Name", "Date Required", "File Name", "File URL",
              "Content Type", "Uploaded By", "Date Uploaded", "Tagged Research Count"]


class EthicsValidationError(ValueError):
    pass


def file_ext(filename: str) -> str:
    name = filename or ""
    return name.rsplit(".", 1)[-1].lower() if "." in name else ""


def content_type_for(ext: str, provided: str = "") -> str:
    if provided:
        return provided
    return "application/pdf" if ext == "pdf" else f"image/{ext}"


def validate_clearance(signatory_name: str, date_required: str, file_name: Optional[str],
                       allowed_extensions=ALLOWED_EXTENSIONS, file_required: bool = True) -> None:
    if file_required and not file_name:
        raise EthicsValidationError("Please choose a file to upload.")
    if file_name and file_ext(file_name) not in allowed_extensions:
        raise EthicsValidationError("Allowed: PDF, PNG, JPG.")
    if not (signatory_name or "").strip():
        raise EthicsValidationError("Signatory name is required.")
    if not (date_required or "").strip():
        raise EthicsValidationError("Date acquired is mandatory.")


def new_clearance_id() -> str:
    return f"EC{now_ms()}{secrets.token_hex(3)}"


def storage_path_for(clearance_id: str, filename: str) -> str:
    ext = file_ext(filename) or "pdf"
    return f"{BASE_PATH}/{clearance_id}/clearance_{now_ms()}.{ext}"


def upload_clearance(db_path: str, store, bucket: str, file_name: str, data: bytes, signatory_name: str,
                     date_required: str, uploaded_by: str, uploaded_by_name: str, content_type: str = "",
                     allowed_extensions=ALLOWED_EXTENSIONS) -> Dict:
    """Validate, store the file under ClearanceEthics/<id>/ and save the record."""
    validate_clearance(signatory_name, date_required, file_name, allowed_extensions)
    clearance_id = new_clearance_id()
    path = store.upload(bucket, storage_path_for(clearance_id, file_name), data,
                        content_type_for(file_ext(file_name), content_type))
    record = {
        "id": clearance_id,
        "url": store.public_url(bucket, path),
        "storage_path": path,
        "file_name": file_name,
        "file_size": len(data),
        "content_type": content_type_for(file_ext(file_name), content_type),
        "signatory_name": signatory_name.strip(),
        "date_required": date_required.strip(),
        "uploaded_by": uploaded_by,
        "uploaded_by_name": uploaded_by_name,
        "uploaded_at": now_ms(),
        "status": "uploaded",
    }
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        columns = list(record.keys())
        cur.execute(f"INSERT INTO ethics_clearances({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)});",
                    [record[c] for c in columns])
    except sqlite3.Error:
        # Don't leave an orphaned object behind
        store.remove(bucket, [path])
        raise
    finally:
        conn.close()
    return record


def get_clearance(db_path: str, clearance_id: str) -> Optional[Dict]:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT * FROM ethics_clearances WHERE id = ?;", (clearance_id,))
        return row_to_dict(cur)
    finally:
        conn.close()


def list_clearances(db_path: str, search: str = "") -> List[Dict]:
    """Newest first, each with the papers tagged to it."""
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT * FROM ethics_clearances ORDER BY uploaded_at DESC;")
        rows = rows_to_dicts(cur)
    finally:
        conn.close()
    tagged = get_papers_by_ethics_id(db_path)
    for row in rows:
        row["tagged_papers"] = tagged.get(row["id"], [])
        row["tagged_count"] = len(row["tagged_papers"])
    search = (search or "").strip().lower()
    if search:
        rows = [r for r in rows
                if search in (r["signatory_name"] or "").lower()
                or search in (r["file_name"] or "").lower()
                or any(search in p["title"].lower() for p in r["tagged_papers"])]
    return rows


def update_clearance(db_path: str, store, bucket: str, clearance_id: str, signatory_name: str = None,
                     date_required: str = None, file_name: str = None, data: bytes = None,
                     content_type: str = "", allowed_extensions=ALLOWED_EXTENSIONS) -> Optional[Dict]:
    """Edit signatory/date and optionally replace the stored file (old file removed)."""
    current = get_clearance(db_path, clearance_id)
    if not current:
        return None
    signatory_name = current["signatory_name"] if signatory_name is None else signatory_name
    date_required = current["date_required"] if date_required is None else date_required
    replacing = bool(file_name and data is not None)
    validate_clearance(signatory_name, date_required, file_name if replacing else None,
                       allowed_extensions, file_required=False)

    updates = {"signatory_name": signatory_name.strip(), "date_required": date_required.strip(),
               "updated_at": now_ms()}
    old_path = None
    if replacing:
        path = store.upload(bucket, storage_path_for(clearance_id, file_name), data,
                            content_type_for(file_ext(file_name), content_type))
        updates.update({
            "url": store.public_url(bucket, path),
            "storage_path": path,
            "file_name": file_name,
            "file_size": len(data),
            "content_type": content_type_for(file_ext(file_name), content_type),
        })
        old_path = current["storage_path"]

    conn = get_conn(db_path); cur = conn.cursor()
    try:
        assignments = ", ".join(f"{k} = ?" for k in updates)
        cur.execute(f"UPDATE ethics_clearances SET {assignments} WHERE id = ?;",
                    list(updates.values()) + [clearance_id])
    finally:
        conn.close()

    if old_path and old_path != updates.get("storage_path"):
        try:
            store.remove(bucket, [old_path])
        except Exception as e:
            logger.warning(f"Could not remove replaced clearance file {old_path}: {e}")
    return get_clearance(db_path, clearance_id)


def delete_clearance(db_path: str, store, bucket: str, clearance_id: str) -> bool:
    """Remove the stored file and the record, and untag papers that referenced it."""
    current = get_clearance(db_path, clearance_id)
    if not current:
        return False
    store.remove(bucket, [current["storage_path"]])
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("DELETE FROM ethics_clearances WHERE id = ?;", (clearance_id,))
        cur.execute("UPDATE papers SET ethics_id = NULL WHERE ethics_id = ?;", (clearance_id,))
        return True
    finally:
        conn.close()


def _uploaded_at_text(ms) -> str:
    if not ms:
        return ""
    return datetime.fromtimestamp(ms / 1000.0).strftime("%B %d, %Y %I:%M %p")


def export_clearances_csv(rows: List[Dict]) -> str:
    output = StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for r in rows:
        writer.writerow([
            r.get("id") or "",
            r.get("signatory_name") or "",
            r.get("date_required") or "",
            r.get("file_name") or "",
            r.get("url") or "",
            r.get("content_type") or "",
            r.get("uploaded_by_name") or "",
            _uploaded_at_text(r.get("uploaded_at")),
            str(r.get("tagged_count", 0)),
        ])
    csv_data = output.getvalue()
    output.close()
    return csv_data
