#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Citation strings (MLA, APA, Chicago, Harvard, Vancouver) for a paper.
Author names are given as "First [Middle] Last".
"""

import re
from typing import Dict, List

CITATION_STYLES = ("MLA", "APA", "Chicago", "Harvard", "Vancouver")
APA_MAX_AUTHORS = 6


def oxford_join(names: List[str]) -> str:
    if len(names) <= 2:
        return " and ".join(names)
    return f"{', '.join(names[:-1])}, and {names[-1]}"


def initials(full: str) -> str:
    """Keep the first name, initial the rest: 'Ana Maria Cruz' -> 'Ana M. C.'"""
    parts = full.split()
    return " ".join(p if i == 0 else f"{p[0].upper()}." for i, p in enumerate(parts))


def last_first(full: str) -> str:
    parts = full.strip().split()
    if len(parts) <= 1:
        return parts[0] if parts else ""
    last = parts.pop()
    return f"{last}, {' '.join(parts)}"


def apa_authors(authors: List[str]) -> str:
    formatted = []
    for author in authors:
        parts = author.strip().split()
        if not parts:
            continue
        last = parts.pop()
        ini = " ".join(f"{p[0].upper()}." for p in parts)
        formatted.append(f"{last}, {ini}")
    return ", ".join(formatted)


def format_citations(authors: List[str], title: str, year="", venue: str = "") -> Dict[str, str]:
    """All five citation strings for one paper."""
    authors = [a for a in (authors or []) if a and a.strip()]
    yr = str(year) if year else ""
    venue = venue or ""
    title = title or ""

    mla = re.sub(r"\s+,", ",", f'{oxford_join(authors)}. "{title}." {venue}, {yr}.')
    apa = (f"{apa_authors(authors[:APA_MAX_AUTHORS])}"
           f"{', et al.' if len(authors) > APA_MAX_AUTHORS else ''} ({yr}). {title}. {venue}.")
    chicago = f'{oxford_join(authors)}. "{title}." {venue} ({yr}).'
    harvard = f"{oxford_join([initials(a) for a in authors])} ({yr}) {title}. {venue}."
    vancouver = f"{', '.join(last_first(a).replace(',', '', 1) for a in authors)}. {title}. {venue}. {yr}."

    return {"MLA": mla, "APA": apa, "Chicago": chicago, "Harvard": harvard, "Vancouver": vancouver}


def paper_year(paper: Dict) -> str:
    """Four-digit year from the publication date, if any."""
    m = re.search(r"\b(\d{4})\b", paper.get("publication_date") or "")
    return m.group(1) if m else ""


def paper_venue(paper: Dict) -> str:
    fields = paper.get("fields_data") or {}
    for key in ("journal", "journalname", "venue", "conference", "conferencename", "publisher"):
        if fields.get(key):
            return str(fields[key])
    return ""


def citations_for_paper(paper: Dict) -> Dict[str, str]:
    authors = list(paper.get("author_display_names") or []) or list(paper.get("manual_authors") or [])
    # Display names may be "Last, First M."; citation helpers expect "First Last"
    normalized = []
    for name in authors:
        if "," in name:
            last, _, rest = name.partition(",")
            name = f"{rest.strip()} {last.strip()}".strip()
        normalized.append(name)
    return format_citations(normalized, paper.get("title") or "", paper_year(paper), paper_venue(paper))
