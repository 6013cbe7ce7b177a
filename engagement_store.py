#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Paper metric events, bookmarks and ratings.
"""

import json
import logging
import sqlite3
from datetime import date
from typing import Dict, List, Optional

from vault_store import get_conn, rows_to_dicts, now_ms, now_iso

logger = logging.getLogger(__name__)

PM_ACTIONS = ("read", "download", "bookmark", "cite", "rating")
MAX_COLLECTION_NAME = 80


def log_event(db_path: str, paper: Dict, action: str, actor: Optional[str], meta: Dict = None,
              timestamp_ms: int = None) -> int:
    """Record a metric event. Anonymous actors are logged as 'guest'. Returns the event id or -1."""
    if action not in PM_ACTIONS:
        logger.warning(f"Ignoring unknown metric action '{action}'")
        return -1
    ts = timestamp_ms if timestamp_ms is not None else now_ms()
    day = date.fromtimestamp(ts / 1000.0).isoformat()
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("""INSERT INTO paper_events(paper_id, action, actor, paper_title, meta, day, timestamp)
                       VALUES (?, ?, ?, ?, ?, ?, ?);""",
                    (paper["id"], action, actor or "guest", paper.get("title"),
                     json.dumps(meta) if meta else None, day, ts))
        return cur.lastrowid
    except sqlite3.Error as e:
        logger.error(f"logPM error for {paper.get('id')}: {e}")
        return -1
    finally:
        conn.close()


def get_counts(db_path: str, paper_id: str) -> Dict[str, int]:
    """Counts per action, zero-filled, plus interest (their sum)."""
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT action, COUNT(1) FROM paper_events WHERE paper_id = ? GROUP BY action;", (paper_id,))
        found = dict(cur.fetchall())
    finally:
        conn.close()
    counts = {action: found.get(action, 0) for action in PM_ACTIONS}
    counts["interest"] = sum(counts[a] for a in PM_ACTIONS)
    return counts


def get_daily_totals(db_path: str, paper_id: str) -> Dict[str, Dict[str, int]]:
    """{day: {action: n}} for one paper."""
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("""SELECT day, action, COUNT(1) FROM paper_events WHERE paper_id = ?
                       GROUP BY day, action ORDER BY day;""", (paper_id,))
        totals: Dict[str, Dict[str, int]] = {}
        for day, action, n in cur.fetchall():
            totals.setdefault(day, {})[action] = n
        return totals
    finally:
        conn.close()


def get_events_by_paper(db_path: str, paper_ids: List[str]) -> Dict[str, List[Dict]]:
    """Raw events grouped per paper, in the shape the stats bucketing reads."""
    if not paper_ids:
        return {}
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute(f"""SELECT paper_id, action, actor AS "by", day, timestamp FROM paper_events
                        WHERE paper_id IN ({','.join('?' for _ in paper_ids)}) ORDER BY timestamp;""",
                    list(paper_ids))
        grouped: Dict[str, List[Dict]] = {pid: [] for pid in paper_ids}
        for row in rows_to_dicts(cur):
            grouped[row.pop("paper_id")].append(row)
        return grouped
    finally:
        conn.close()


def top_papers_by_interest(db_path: str, limit: int = 10, start_day: str = None,
                           end_day: str = None) -> List[Dict]:
    """Published papers ranked by event count. start_day/end_day (YYYY-MM-DD) bound the events counted."""
    where = "p.status = 'Published'"
    params = []
    if start_day:
        where += " AND e.day >= ?"
        params.append(start_day)
    if end_day:
        where += " AND e.day <= ?"
        params.append(end_day)
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute(f"""SELECT p.id, p.title, p.publication_type, COUNT(e.id) AS interest,
                               SUM(e.action = 'read') AS reads, SUM(e.action = 'download') AS downloads,
                               SUM(e.action = 'bookmark') AS bookmarks, SUM(e.action = 'cite') AS cites,
                               SUM(e.action = 'rating') AS ratings
                        FROM papers p JOIN paper_events e ON e.paper_id = p.id
                        WHERE {where}
                        GROUP BY p.id ORDER BY interest DESC, p.id LIMIT ?;""", params + [limit])
        return rows_to_dicts(cur)
    finally:
        conn.close()


# -----------------------------
# Bookmarks
# -----------------------------
def _clean_collection(name: str) -> str:
    name = " ".join((name or "").split())
    return name[:MAX_COLLECTION_NAME]


def create_collection(db_path: str, uid: str, name: str) -> bool:
    name = _clean_collection(name)
    if not name:
        return False
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("INSERT OR IGNORE INTO bookmark_collections(uid, name, created_at) VALUES (?, ?, ?);",
                    (uid, name, now_iso()))
        return True
    finally:
        conn.close()


def list_collections(db_path: str, uid: str) -> List[Dict]:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("""SELECT c.name, COUNT(b.paper_id) AS count FROM bookmark_collections c
                       LEFT JOIN bookmarks b ON b.uid = c.uid AND b.collection = c.name
                       WHERE c.uid = ? GROUP BY c.name ORDER BY c.name;""", (uid,))
        return rows_to_dicts(cur)
    finally:
        conn.close()


def delete_collection(db_path: str, uid: str, name: str) -> bool:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("DELETE FROM bookmarks WHERE uid = ? AND collection = ?;", (uid, name))
        cur.execute("DELETE FROM bookmark_collections WHERE uid = ? AND name = ?;", (uid, name))
        return cur.rowcount > 0
    finally:
        conn.close()


def add_bookmark(db_path: str, uid: str, paper: Dict, collection: str) -> bool:
    """Bookmark a paper into a collection (created on demand) and log a bookmark event."""
    collection = _clean_collection(collection)
    if not collection:
        return False
    create_collection(db_path, uid, collection)
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("INSERT OR IGNORE INTO bookmarks(uid, collection, paper_id, created_at) VALUES (?, ?, ?, ?);",
                    (uid, collection, paper["id"], now_iso()))
        added = cur.rowcount > 0
    except sqlite3.Error as e:
        logger.error(f"Failed to bookmark {paper.get('id')} for {uid}: {e}")
        return False
    finally:
        conn.close()
    if added:
        log_event(db_path, paper, "bookmark", uid, {"collection": collection})
    return True


def remove_bookmark(db_path: str, uid: str, paper_id: str, collection: str = None) -> int:
    """Remove from one collection, or from all of them when collection is None."""
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        if collection is None:
            cur.execute("DELETE FROM bookmarks WHERE uid = ? AND paper_id = ?;", (uid, paper_id))
        else:
            cur.execute("DELETE FROM bookmarks WHERE uid = ? AND paper_id = ? AND collection = ?;",
                        (uid, paper_id, collection))
        return cur.rowcount
    finally:
        conn.close()


def list_bookmarks(db_path: str, uid: str, collection: str = None) -> List[Dict]:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        q = """SELECT b.collection, b.paper_id, b.created_at, p.title, p.publication_type, p.status
               FROM bookmarks b JOIN papers p ON p.id = b.paper_id WHERE b.uid = ?"""
        params = [uid]
        if collection:
            q += " AND b.collection = ?"
            params.append(collection)
        q += " ORDER BY b.created_at DESC;"
        cur.execute(q, params)
        return rows_to_dicts(cur)
    finally:
        conn.close()


# -----------------------------
# Ratings
# -----------------------------
def rate_paper(db_path: str, uid: str, paper: Dict, value: int) -> bool:
    """Upsert a 1-5 rating and log a rating event."""
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
        return False
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("""INSERT INTO ratings(paper_id, uid, value, updated_at) VALUES (?, ?, ?, ?)
                       ON CONFLICT(paper_id, uid) DO UPDATE SET value = excluded.value,
                       updated_at = excluded.updated_at;""",
                    (paper["id"], uid, value, now_iso()))
    except sqlite3.Error as e:
        logger.error(f"Failed to rate {paper.get('id')}: {e}")
        return False
    finally:
        conn.close()
    log_event(db_path, paper, "rating", uid, {"value": value})
    return True


def get_rating_summary(db_path: str, paper_id: str, uid: str = None) -> Dict:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT AVG(value), COUNT(1) FROM ratings WHERE paper_id = ?;", (paper_id,))
        avg, count = cur.fetchone()
        mine = None
        if uid:
            cur.execute("SELECT value FROM ratings WHERE paper_id = ? AND uid = ?;", (paper_id, uid))
            row = cur.fetchone()
            mine = row[0] if row else None
        return {"average": round(avg, 2) if avg is not None else 0, "count": count, "mine": mine}
    finally:
        conn.close()
