#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
CSV exports for the account list and the admin analytics reports.

Both start with a UTF-8 byte order mark and quote every cell.
"""

import csv
from datetime import date
from io import StringIO
from typing import Dict, List, Optional, Sequence

BOM = "\ufeff"

ACCOUNT_HEADER = ["UID", "Full Name", "Email", "Department", "Role", "Account Type", "Status", "Created At"]

ANALYTICS_REPORTS = {
    "top_papers": {
        "document_type": "Top Papers by Interest",
        "columns": ["Rank", "Paper ID", "Title", "Publication Type", "Reads", "Downloads", "Bookmarks",
                    "Cites", "Ratings", "Interest"],
    },
    "publication_types": {
        "document_type": "Published Papers by Publication Type",
        "columns": ["Publication Type", "Published Papers"],
    },
    "users_by_role": {
        "document_type": "Users by Role",
        "columns": ["Role", "Users"],
    },
}


def _writer(output: StringIO):
    return csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")


def export_filename(prefix: str, today: date = None) -> str:
    return f"{prefix}_{(today or date.today()).isoformat()}.csv"


def account_full_name(user: Dict) -> str:
    """Last, First M. Suffix, or "-" when no name is on file."""
    first = (user.get("first_name") or "").strip()
    last = (user.get("last_name") or "").strip()
    mi_raw = (user.get("middle_initial") or "").strip()
    suffix = (user.get("suffix") or "").strip()
    given = " ".join(p for p in (first, f"{mi_raw[0].upper()}." if mi_raw else "", suffix) if p)
    if last and given:
        return f"{last}, {given}"
    return last or given or "-"


def export_accounts_csv(users: List[Dict], role_types: Dict[str, str]) -> str:
    output = StringIO()
    writer = _writer(output)
    writer.writerow(ACCOUNT_HEADER)
    for u in users:
        writer.writerow([
            u.get("uid") or "",
            account_full_name(u),
            u.get("email") or "",
            u.get("department") or "",
            u.get("role") or "",
            role_types.get(u.get("role") or "", ""),
            "Inactive" if u.get("status") == "deactivated" else "Active",
            u.get("created_at") or "",
        ])
    csv_data = output.getvalue()
    output.close()
    return BOM + csv_data


def _plain_dashes(text: str) -> str:
    return text.replace("\u2013", "-").replace("\u2014", "-")


def export_analytics_csv(columns: Sequence[str], rows: List[Sequence], document_type: str = "",
                         date_range: str = "", prepared_by: str = "",
                         title: str = "Research Vault Analytics") -> str:
    """
    A report table with an optional heading block (title, document type,
    date range) above it and a "Prepared by" line below it.
    """
    output = StringIO()
    writer = _writer(output)
    if document_type or date_range:
        writer.writerow([title])
        if document_type:
            writer.writerow(["Document type", document_type])
        if date_range:
            writer.writerow(["Date range", _plain_dashes(date_range)])
        output.write("\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow(["" if v is None else v for v in row])
    if prepared_by:
        output.write("\n")
        writer.writerow(["Prepared by", prepared_by])
    csv_data = output.getvalue()
    output.close()
    return BOM + csv_data


def analytics_rows(report: str, dashboard: Dict, top_papers: List[Dict]) -> Optional[List[List]]:
    """Rows for one of ANALYTICS_REPORTS, or None for an unknown report."""
    if report == "top_papers":
        return [[rank, p["id"], p.get("title") or "", p.get("publication_type") or "",
                 p.get("reads") or 0, p.get("downloads") or 0, p.get("bookmarks") or 0,
                 p.get("cites") or 0, p.get("ratings") or 0, p.get("interest") or 0]
                for rank, p in enumerate(top_papers, start=1)]
    if report == "publication_types":
        return [[t, n] for t, n in sorted(dashboard["papers"]["by_publication_type"].items())]
    if report == "users_by_role":
        return [[r, n] for r, n in sorted(dashboard["users_by_role"].items())]
    return None
