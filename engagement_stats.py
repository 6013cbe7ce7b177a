#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Engagement statistics for authors.

Buckets paper metric events (read, download, bookmark, cite, rating) into
daily, weekly (Monday start, ISO week keys) or monthly series. Presets cover
the last 30 days, 12 weeks or 12 months; a custom range picks its own
granularity from its length and drops events outside the range.
"""

import re
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

GRANULARITIES = ("Daily", "Weekly", "Monthly")
VIEWS = GRANULARITIES + ("Custom",)

ACTION_FIELDS = {
    "read": "reads",
    "download": "downloads",
    "bookmark": "bookmarks",
    "cite": "cites",
    "rating": "ratings",
}
METRIC_FIELDS = ("reads", "downloads", "bookmarks", "cites", "ratings")


class StatsRangeError(ValueError):
    """Invalid custom date range."""


# -----------------------------
# Date helpers
# -----------------------------
def start_of_week(d: date) -> date:
    # weekday() is 0 for Monday
    return d - timedelta(days=d.weekday())


def start_of_month(d: date) -> date:
    return d.replace(day=1)


def add_months(d: date, n: int) -> date:
    month_index = d.year * 12 + (d.month - 1) + n
    return date(month_index // 12, month_index % 12 + 1, 1)


def parse_iso_date(s) -> Optional[date]:
    """Strict YYYY-MM-DD; impossible dates give None."""
    if not isinstance(s, str):
        return None
    m = re.match(r"^(\d{4})-(\d{2})-(\d{2})$", s)
    if not m:
        return None
    try:
        return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    except ValueError:
        return None


def parse_mdy(s) -> Optional[date]:
    """M/D/YYYY or M-D-YYYY."""
    if not isinstance(s, str):
        return None
    m = re.match(r"^(\d{1,2})[/\-](\d{1,2})[/\-](\d{4})$", s.strip())
    if not m:
        return None
    try:
        return date(int(m.group(3)), int(m.group(1)), int(m.group(2)))
    except ValueError:
        return None


def _parse_instant(value) -> Optional[date]:
    if isinstance(value, bool) or value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0).date()
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    if re.match(r"^-?\d+(\.\d+)?$", text):
        return _parse_instant(float(text))
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone()
    return parsed.date()


def event_date(event: Dict) -> Optional[date]:
    """day (ISO, then M/D/YYYY), else timestamp, else ts."""
    day = event.get("day")
    if isinstance(day, str) and day:
        d = parse_iso_date(day) or parse_mdy(day)
        if d:
            return d
    for key in ("timestamp", "ts"):
        if event.get(key):
            d = _parse_instant(event[key])
            if d:
                return d
    return None


def auto_granularity(start: date, end: date) -> str:
    days = (end - start).days + 1
    if days <= 31:
        return "Daily"
    if days <= 180:
        return "Weekly"
    return "Monthly"


# -----------------------------
# Keys and labels
# -----------------------------
def key_daily(d: date) -> str:
    return d.isoformat()


def key_weekly(d: date) -> str:
    return start_of_week(d).strftime("%G-W%V")


def key_monthly(d: date) -> str:
    return f"{d.year}-{d.month:02d}"


def label_daily_short(d: date) -> str:
    return d.strftime("%b %d")


def label_mdy(d: date) -> str:
    return f"{d.month}/{d.day}/{d.year}"


def label_monthly(d: date) -> str:
    return d.strftime("%b %y")


def build_anchors(granularity: str, start: date = None, end: date = None,
                  today: date = None) -> Tuple[List[str], List[str], Callable[[date], str]]:
    """
    Bucket keys, labels and the key function for a granularity.

    With start and end the anchors cover that range; otherwise the preset
    window ending today is used.
    """
    today = today or date.today()
    custom = start is not None and end is not None

    if granularity == "Daily":
        if custom:
            anchors = [start + timedelta(days=i) for i in range((end - start).days + 1)]
            labeler = label_mdy
        else:
            anchors = [today - timedelta(days=i) for i in range(29, -1, -1)]
            labeler = label_daily_short
        return [key_daily(a) for a in anchors], [labeler(a) for a in anchors], key_daily

    if granularity == "Weekly":
        if custom:
            anchors = []
            cur, last = start_of_week(start), start_of_week(end)
            while cur <= last:
                anchors.append(cur)
                cur += timedelta(days=7)
        else:
            cur = start_of_week(today)
            anchors = [cur - timedelta(days=7 * i) for i in range(11, -1, -1)]
        keys = [key_weekly(a) for a in anchors]
        return keys, list(keys), key_weekly

    if granularity == "Monthly":
        if custom:
            anchors = []
            cur, last = start_of_month(start), start_of_month(end)
            while cur <= last:
                anchors.append(cur)
                cur = add_months(cur, 1)
        else:
            cur = start_of_month(today)
            anchors = [add_months(cur, -i) for i in range(11, -1, -1)]
        return [key_monthly(a) for a in anchors], [label_monthly(a) for a in anchors], key_monthly

    raise StatsRangeError(f"Unknown granularity: {granularity}")


def parse_custom_range(start_iso: str, end_iso: str) -> Tuple[date, date, str]:
    start = parse_iso_date(start_iso)
    end = parse_iso_date(end_iso)
    if not start or not end:
        raise StatsRangeError("Please choose valid dates.")
    if start > end:
        raise StatsRangeError("Start date must be on or before End date.")
    return start, end, auto_granularity(start, end)


def _empty_point(key: str, label: str) -> Dict:
    point = {"label": label, "dateKey": key}
    for field in METRIC_FIELDS:
        point[field] = 0
    point["interest"] = 0
    return point


def compute_author_stats(uid: str, papers: Iterable[Dict], events_by_paper: Dict[str, List[Dict]],
                         view: str = "Weekly", start_iso: str = "", end_iso: str = "",
                         today: date = None) -> Dict:
    """
    Series and totals for the papers where uid is a tagged author.

    Events whose actor is one of the paper's authors are ignored. A Custom
    view needs start_iso/end_iso (YYYY-MM-DD); events outside it are dropped.
    """
    if view not in VIEWS:
        raise StatsRangeError(f"Unknown view: {view}")

    paper_authors: Dict[str, Set[str]] = {}
    my_papers: Set[str] = set()
    for paper in papers:
        authors = set(a for a in (paper.get("author_uids") or []) if a)
        paper_authors[paper["id"]] = authors
        if uid in authors:
            my_papers.add(paper["id"])

    start = end = None
    if view == "Custom":
        start, end, granularity = parse_custom_range(start_iso, end_iso)
    else:
        granularity = view

    keys, labels, key_of = build_anchors(granularity, start, end, today=today)
    buckets = {k: _empty_point(k, labels[i]) for i, k in enumerate(keys)}

    for paper_id in my_papers:
        authors = paper_authors.get(paper_id, set())
        for event in events_by_paper.get(paper_id) or []:
            d = event_date(event)
            if d is None:
                continue
            if start is not None and (d < start or d > end):
                continue
            actor = str(event.get("by") or event.get("actor") or "").strip()
            if actor and actor in authors:
                continue
            field = ACTION_FIELDS.get(str(event.get("action") or event.get("type") or "").lower())
            bucket = buckets.get(key_of(d))
            if field and bucket is not None:
                bucket[field] += 1

    series = list(buckets.values())
    totals = {field: 0 for field in METRIC_FIELDS}
    totals["interest"] = 0
    for point in series:
        point["interest"] = sum(point[f] for f in METRIC_FIELDS)
        for field in METRIC_FIELDS:
            totals[field] += point[field]
        totals["interest"] += point["interest"]

    return {
        "view": view,
        "granularity": granularity,
        "range": {"start": start.isoformat(), "end": end.isoformat()} if start else None,
        "series": series,
        "totals": totals,
        "totalPapers": len(my_papers),
    }
