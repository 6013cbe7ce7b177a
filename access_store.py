#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Notifications and full-text access requests.

Notifications are per-recipient rows; access requests notify every tagged
author of a paper (never the requester) and record a pending request that an
author or admin later approves or denies.
"""

import re
import json
import logging
import sqlite3
from typing import Callable, Dict, List, Optional

from vault_store import (
    get_conn, rows_to_dicts, row_to_dict, now_ms,
    get_user, format_display_name,
)

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = ("info", "success", "warning", "error")
ACCESS_SOURCE = "accessRequest"
REQUEST_STATUSES = ("pending", "approved", "denied")

_INVALID_KEY_CHARS = re.compile(r"[.#$/\[\]]")


def is_valid_key(key) -> bool:
    """Recipient ids must be non-empty and free of . # $ / [ ]"""
    return isinstance(key, str) and key.strip() != "" and not _INVALID_KEY_CHARS.search(key)


def unique_non_empty(values) -> List[str]:
    return list(dict.fromkeys(v for v in (values or []) if isinstance(v, str) and v.strip()))


def get_display_name(db_path: str, uid: str) -> str:
    try:
        return format_display_name(get_user(db_path, uid))
    except sqlite3.Error as e:
        logger.warning(f"Could not resolve display name for {uid}: {e}")
        return "Someone"


# -----------------------------
# Notifications
# -----------------------------
def _notification_from_row(row: dict) -> dict:
    return {
        "id": row["id"],
        "title": row["title"],
        "message": row["message"],
        "type": row["type"],
        "source": row["source"],
        "actionUrl": row["action_url"],
        "actionText": row["action_text"],
        "meta": json.loads(row["meta"]) if row["meta"] else None,
        "read": bool(row["read"]),
        "createdAt": row["created_at"],
    }


def send_notification(db_path: str, to_uid: str, payload: Dict) -> int:
    """Write one notification. Returns its id, or -1 when the recipient key is invalid or the write fails."""
    if not is_valid_key(to_uid):
        return -1
    ntype = payload.get("type") or "info"
    if ntype not in NOTIFICATION_TYPES:
        ntype = "info"
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("""INSERT INTO notifications(recipient_uid, title, message, type, source,
                       action_url, action_text, meta, read, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?);""",
                    (to_uid, payload.get("title") or "", payload.get("message") or "", ntype,
                     payload.get("source") or "system", payload.get("actionUrl"),
                     payload.get("actionText"),
                     json.dumps(payload["meta"]) if payload.get("meta") else None,
                     now_ms()))
        return cur.lastrowid
    except sqlite3.Error as e:
        logger.error(f"Failed to write notification for {to_uid}: {e}")
        return -1
    finally:
        conn.close()


def send_bulk(db_path: str, uids: List[str], build: Callable[[str], Dict]) -> List[int]:
    """Send build(uid) to each unique non-empty uid."""
    ids = []
    for uid in unique_non_empty(uids):
        nid = send_notification(db_path, uid, build(uid))
        if nid > 0:
            ids.append(nid)
    return ids


def list_notifications(db_path: str, uid: str, unread_only: bool = False, limit: int = 100) -> List[Dict]:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        q = "SELECT * FROM notifications WHERE recipient_uid = ?"
        if unread_only:
            q += " AND read = 0"
        q += " ORDER BY created_at DESC, id DESC LIMIT ?;"
        cur.execute(q, (uid, limit))
        return [_notification_from_row(r) for r in rows_to_dicts(cur)]
    except sqlite3.Error as e:
        logger.error(f"Failed to list notifications for {uid}: {e}")
        return []
    finally:
        conn.close()


def count_unread(db_path: str, uid: str) -> int:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT COUNT(1) FROM notifications WHERE recipient_uid = ? AND read = 0;", (uid,))
        return cur.fetchone()[0]
    finally:
        conn.close()


def mark_read(db_path: str, uid: str, notification_id: int) -> bool:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("UPDATE notifications SET read = 1 WHERE id = ? AND recipient_uid = ?;",
                    (notification_id, uid))
        return cur.rowcount > 0
    finally:
        conn.close()


def mark_all_read(db_path: str, uid: str) -> int:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("UPDATE notifications SET read = 1 WHERE recipient_uid = ? AND read = 0;", (uid,))
        return cur.rowcount
    finally:
        conn.close()


def delete_notification(db_path: str, uid: str, notification_id: int) -> bool:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("DELETE FROM notifications WHERE id = ? AND recipient_uid = ?;", (notification_id, uid))
        return cur.rowcount > 0
    finally:
        conn.close()


# -----------------------------
# Access requests
# -----------------------------
def _access_payload(paper: Dict, requester_uid: str, requester_name: str, action_url: str) -> Dict:
    safe_title = paper.get("title") or "Untitled Research"
    return {
        "title": "Access Request",
        "message": f'{requester_name} requested full-text access to "{safe_title}".',
        "type": "info",
        "source": ACCESS_SOURCE,
        "actionUrl": action_url,
        "actionText": "View Request",
        "meta": {
            "paperId": paper.get("id"),
            "paperTitle": safe_title,
            "fileName": paper.get("file_name"),
            "fileUrl": paper.get("file_url"),
            "uploadType": paper.get("upload_type"),
            "requesterUid": requester_uid,
            "requesterName": requester_name,
        },
    }


def record_access_request(db_path: str, paper_id: str, requester_uid: str, requester_name: str) -> int:
    """
    Record (or re-open) a pending request. A denied request goes back to pending;
    an approved one is left as is. Returns the request id or -1.
    """
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT id, status FROM access_requests WHERE paper_id = ? AND requester_uid = ?;",
                    (paper_id, requester_uid))
        row = cur.fetchone()
        if row:
            request_id, status = row
            if status == "denied":
                cur.execute("""UPDATE access_requests SET status = 'pending', decided_by = NULL,
                               decided_at = NULL, created_at = ? WHERE id = ?;""", (now_ms(), request_id))
            return request_id
        cur.execute("""INSERT INTO access_requests(paper_id, requester_uid, requester_name, status, created_at)
                       VALUES (?, ?, ?, 'pending', ?);""",
                    (paper_id, requester_uid, requester_name, now_ms()))
        return cur.lastrowid
    except sqlite3.Error as e:
        logger.error(f"Failed to record access request for {paper_id}: {e}")
        return -1
    finally:
        conn.close()


def request_access_for_one(db_path: str, paper: Dict, requester_uid: str,
                           requester_name: Optional[str] = None) -> Dict:
    """Notify every tagged author of one paper. The requester is skipped."""
    if not requester_uid:
        return {"requestId": -1, "notified": []}
    requester_name = requester_name or get_display_name(db_path, requester_uid)
    request_id = record_access_request(db_path, paper["id"], requester_uid, requester_name)

    recipients = [uid for uid in unique_non_empty(paper.get("author_uids")) if is_valid_key(uid)]
    action_url = f"/view/{paper['id']}"
    notified = []
    for to_uid in recipients:
        if to_uid == requester_uid:
            continue
        nid = send_notification(db_path, to_uid, _access_payload(paper, requester_uid, requester_name, action_url))
        if nid > 0:
            notified.append(to_uid)
    return {"requestId": request_id, "notified": notified}


def request_access_bulk(db_path: str, papers: List[Dict], requester_uid: str,
                        requester_name: Optional[str] = None) -> Dict:
    """Notify the authors of many papers, once per (author, paper)."""
    if not requester_uid or not papers:
        return {"requestIds": [], "notified": 0}
    requester_name = requester_name or get_display_name(db_path, requester_uid)
    seen = set()
    request_ids = []
    notified = 0
    for paper in papers:
        request_ids.append(record_access_request(db_path, paper["id"], requester_uid, requester_name))
        action_url = f"/request/{paper['id']}"
        for to_uid in unique_non_empty(paper.get("author_uids")):
            if not is_valid_key(to_uid) or to_uid == requester_uid:
                continue
            dedupe_key = f"{to_uid}__{paper['id']}"
            if dedupe_key in seen:
                continue
            seen.add(dedupe_key)
            if send_notification(db_path, to_uid,
                                 _access_payload(paper, requester_uid, requester_name, action_url)) > 0:
                notified += 1
    return {"requestIds": request_ids, "notified": notified}


def get_access_request(db_path: str, request_id: int):
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT * FROM access_requests WHERE id = ?;", (request_id,))
        return row_to_dict(cur)
    finally:
        conn.close()


def list_access_requests(db_path: str, paper_ids: List[str] = None, requester_uid: str = None,
                         status: str = None) -> List[Dict]:
    """Filter by a set of papers (an author's papers) and/or by requester."""
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        q = """SELECT r.*, p.title AS paper_title FROM access_requests r
               JOIN papers p ON p.id = r.paper_id WHERE 1=1"""
        params = []
        if paper_ids is not None:
            if not paper_ids:
                return []
            q += f" AND r.paper_id IN ({','.join('?' for _ in paper_ids)})"
            params.extend(paper_ids)
        if requester_uid:
            q += " AND r.requester_uid = ?"
            params.append(requester_uid)
        if status:
            q += " AND r.status = ?"
            params.append(status)
        q += " ORDER BY r.created_at DESC;"
        cur.execute(q, params)
        return rows_to_dicts(cur)
    except sqlite3.Error as e:
        logger.error(f"Failed to list access requests: {e}")
        return []
    finally:
        conn.close()


def decide_access_request(db_path: str, request_id: int, decider_uid: str, approve: bool,
                          paper_title: str = "") -> Optional[Dict]:
    """Approve or deny a request and notify the requester. Returns the updated request."""
    status = "approved" if approve else "denied"
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("UPDATE access_requests SET status = ?, decided_by = ?, decided_at = ? WHERE id = ?;",
                    (status, decider_uid, now_ms(), request_id))
        if cur.rowcount == 0:
            return None
    finally:
        conn.close()

    request_row = get_access_request(db_path, request_id)
    decider_name = get_display_name(db_path, decider_uid)
    safe_title = paper_title or "Untitled Research"
    verb = "approved" if approve else "declined"
    send_notification(db_path, request_row["requester_uid"], {
        "title": "Access Approved" if approve else "Access Declined",
        "message": f'{decider_name} {verb} your full-text access request for "{safe_title}".',
        "type": "success" if approve else "warning",
        "source": ACCESS_SOURCE,
        "actionUrl": f"/view/{request_row['paper_id']}",
        "actionText": "View Paper",
        "meta": {"paperId": request_row["paper_id"], "requestId": request_id, "status": status},
    })
    return request_row


def has_approved_access(db_path: str, paper_id: str, uid: str) -> bool:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("""SELECT 1 FROM access_requests
                       WHERE paper_id = ? AND requester_uid = ? AND status = 'approved';""",
                    (paper_id, uid))
        return cur.fetchone() is not None
    finally:
        conn.close()
