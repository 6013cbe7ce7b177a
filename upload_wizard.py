#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Upload wizard: draft state, step gate, staging and final submission.

Five linear steps: 1 Upload, 2 Access, 3 Metadata, 4 Details, 5 Review.
A draft is a JSON document persisted on every change. The selected PDF is the
draft's file handle ("fileBlob"); it lives in memory/staging only and is
never written into the draft JSON, so a draft read back from the database
starts without one.
"""

import os
import re
import json
import shutil
import logging
import secrets
import sqlite3
from typing import Dict, List, Optional, Tuple

import requests

from vault_store import (
    get_conn, row_to_dict, now_ms, get_users_by_uids, create_paper, new_paper_id,
    format_display_name, get_user,
)
from access_store import is_valid_key, send_bulk
from object_storage import guess_content_type, StorageError
from pdf_tools import render_cover_png

logger = logging.getLogger(__name__)

STORAGE_KEY = "uploadWizard:v1"
STEPS = {1: "Upload", 2: "Access", 3: "Metadata", 4: "Details", 5: "Review"}
FIRST_STEP = 1
LAST_STEP = 5

UPLOAD_TYPES = ("Private", "Public")
PAPER_TYPES = ("Abstract Only", "Full Text")
PUBLICATION_SCOPES = ("Local", "International")

FILE_HANDLE_KEY = "fileBlob"
LIST_FIELDS = ("formatFields", "requiredFields", "authorUIDs", "manualAuthors", "indexed",
               "keywords", "figures")
MAP_FIELDS = ("authorLabelMap", "fieldsData", "ethicsMeta")

DEFAULT_DATA = {
    "step": 1,
    "fileName": "",
    "uploadType": "",
    "chosenPaperType": "",
    "verified": False,
    "formatId": "",
    "formatName": "",
    "description": "",
    "formatFields": [],
    "requiredFields": [],
    "publicationType": "",
    "publicationScope": "",
    "abstract": "",
    "text": "",
    "pageCount": 0,
    "title": "",
    "authorUIDs": [],
    "manualAuthors": [],
    "authorLabelMap": {},
    "publicationDate": "",
    "doi": "",
    "fieldsData": {},
    "indexed": [],
    "pages": 0,
    "researchField": "",
    "otherField": "",
    "hasEthics": "",
    "ethicsId": "",
    "ethicsMeta": {},
    "keywords": [],
    "figures": [],
}

DOI_PATTERN = r'^10\.\d{4,9}/[-._;()/:A-Za-z0-9]+$'


class WizardError(ValueError):
    """A user-facing wizard validation failure."""


class StepGateError(WizardError):
    """Forward navigation refused because an earlier step is incomplete."""


# -----------------------------
# Sanitizers
# -----------------------------
def sanitize_upload_type(value) -> str:
    """Map legacy access values onto Private/Public."""
    if value == "Private":
        return "Private"
    if value in ("Public", "Public only", "Private & Public"):
        return "Public"
    return ""


def sanitize_has_ethics(value) -> str:
    if value is True or value == "Yes":
        return "Yes"
    return ""


def _sanitize_step(value) -> int:
    try:
        step = int(value)
    except (TypeError, ValueError):
        return FIRST_STEP
    return step if FIRST_STEP <= step <= LAST_STEP else FIRST_STEP


def _normalize_shapes(data: Dict, keys) -> None:
    for key in keys:
        if key in LIST_FIELDS and not isinstance(data.get(key), list):
            data[key] = []
        elif key in MAP_FIELDS and not isinstance(data.get(key), dict):
            data[key] = {}


def new_wizard_data() -> Dict:
    data = json.loads(json.dumps(DEFAULT_DATA))
    data[FILE_HANDLE_KEY] = None
    return data


def hydrate(raw) -> Dict:
    """
    Build wizard data from a persisted draft (JSON text or dict).

    Defaults are layered under the stored values, legacy values are
    sanitized and the file handle is always empty. Unreadable input gives
    a fresh draft.
    """
    if isinstance(raw, (str, bytes)):
        try:
            parsed = json.loads(raw)
        except ValueError:
            return new_wizard_data()
    else:
        parsed = raw
    if not isinstance(parsed, dict):
        return new_wizard_data()

    data = new_wizard_data()
    data.update({k: v for k, v in parsed.items() if k in DEFAULT_DATA})
    data["uploadType"] = sanitize_upload_type(parsed.get("uploadType"))
    data["hasEthics"] = sanitize_has_ethics(parsed.get("hasEthics"))
    data["step"] = _sanitize_step(data.get("step"))
    data["verified"] = bool(data.get("verified"))
    data[FILE_HANDLE_KEY] = None
    _normalize_shapes(data, LIST_FIELDS + MAP_FIELDS)
    return data


def merge(data: Dict, patch: Dict) -> Dict:
    """Shallow-merge a patch, sanitizing only the keys it touches."""
    patch = {k: v for k, v in (patch or {}).items() if k in DEFAULT_DATA and k != FILE_HANDLE_KEY}
    merged = dict(data)
    merged.update(patch)
    if "uploadType" in patch:
        merged["uploadType"] = sanitize_upload_type(patch["uploadType"])
    if "hasEthics" in patch:
        merged["hasEthics"] = sanitize_has_ethics(patch["hasEthics"])
    if "step" in patch:
        merged["step"] = _sanitize_step(patch["step"])
    if "verified" in patch:
        merged["verified"] = bool(patch["verified"])
    _normalize_shapes(merged, [k for k in patch if k in LIST_FIELDS or k in MAP_FIELDS])
    return merged


def serialize(data: Dict) -> str:
    """JSON for persistence. The file handle is never included."""
    return json.dumps({k: v for k, v in data.items() if k != FILE_HANDLE_KEY})


def set_file(data: Dict, handle, file_name: str = "") -> Dict:
    updated = dict(data)
    updated[FILE_HANDLE_KEY] = handle
    updated["fileName"] = file_name if handle else ""
    return updated


def reset() -> Dict:
    return new_wizard_data()


# -----------------------------
# Step gate
# -----------------------------
def can_jump(data: Dict, from_step: int, to_step: int) -> bool:
    """Backward is always allowed; forward only when earlier steps are complete."""
    if to_step <= from_step:
        return True
    if to_step >= 2 and not data.get("publicationType"):
        return False
    if to_step >= 3 and not data.get(FILE_HANDLE_KEY):
        return False
    if to_step >= 4 and (not data.get("uploadType") or not data.get("verified")):
        return False
    return True


def gate_reason(data: Dict, to_step: int) -> str:
    if to_step >= 2 and not data.get("publicationType"):
        return "Choose a publication type first."
    if to_step >= 3 and not data.get(FILE_HANDLE_KEY):
        return "Select a PDF file first."
    if to_step >= 4 and (not data.get("uploadType") or not data.get("verified")):
        return "Set the access type and confirm the upload first."
    return ""


def set_step(data: Dict, step: int) -> Dict:
    """Move to step. Staying on the current step changes nothing."""
    step = int(step)
    if step not in STEPS:
        raise WizardError(f"Unknown step: {step}")
    if data.get("step") == step:
        return data
    if not can_jump(data, data.get("step", FIRST_STEP), step):
        raise StepGateError(gate_reason(data, step) or f"Cannot go to step {step} yet.")
    updated = dict(data)
    updated["step"] = step
    return updated


# -----------------------------
# Review helpers
# -----------------------------
def sanitize_name(name: str) -> str:
    name = re.sub(r"[^\w.\-]+", "_", name or "")
    name = re.sub(r"_+", "_", name)
    return name.strip("_")


def normalize_field_key(label: str) -> str:
    return re.sub(r"\s+", "", (label or "").lower())


def normalize_fields_data(fields_data: Dict) -> Dict:
    return {normalize_field_key(label): value for label, value in (fields_data or {}).items()}


def extract_keywords(format_fields: List[str], fields_data: Dict) -> List[str]:
    """Comma-split the first field whose label mentions keyword or tag."""
    label = next((f for f in format_fields or [] if re.search(r"keyword|tag", f, re.IGNORECASE)), None)
    if not label:
        return []
    raw = (fields_data or {}).get(label) or ""
    return [k.strip() for k in str(raw).split(",") if k.strip()]


def is_author_field(label: str) -> bool:
    return (label or "").strip().lower() in ("authors", "author")


def validate_required(data: Dict) -> None:
    """Every required field must be filled; authors may come from UIDs or manual names; DOI is optional."""
    for field in data.get("requiredFields") or []:
        if is_author_field(field):
            if len(data.get("authorUIDs") or []) + len(data.get("manualAuthors") or []) == 0:
                raise WizardError("Please add at least one author.")
            continue
        if re.match(r"^doi$", field.strip(), re.IGNORECASE):
            continue
        value = (data.get("fieldsData") or {}).get(field) or ""
        if not str(value).strip():
            raise WizardError(f"Please fill in the required field: {field}")


def coerce_uid(value) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        return (value.get("uid") or value.get("id") or "").strip()
    return ""


def recipient_uids(data: Dict, uploader_uid: str) -> List[str]:
    """Tagged authors from authorUIDs and authorLabelMap keys, minus the uploader and invalid keys."""
    raw = list(data.get("authorUIDs") or []) + list((data.get("authorLabelMap") or {}).keys())
    uids = [coerce_uid(x) for x in raw]
    return list(dict.fromkeys(u for u in uids if u and u != uploader_uid and is_valid_key(u)))


def compose_author_name(user: Optional[Dict], fallback: str) -> str:
    """'Last, First M. Suffix' for author lists."""
    if not user:
        return fallback
    last = (user.get("last_name") or "").strip()
    first = (user.get("first_name") or "").strip()
    mi = (user.get("middle_initial") or "").strip()
    rest = " ".join(p for p in (first, f"{mi}." if mi else "", (user.get("suffix") or "").strip()) if p)
    if last and rest:
        return f"{last}, {rest}"
    return " ".join(p for p in (first, last) if p) or fallback


def resolve_author_names(db_path: str, data: Dict) -> List[str]:
    uids = [u for u in data.get("authorUIDs") or [] if isinstance(u, str)]
    label_map = data.get("authorLabelMap") or {}
    from_map = [label_map[u] for u in uids if label_map.get(u)]
    users = get_users_by_uids(db_path, [u for u in uids if not label_map.get(u)])
    fetched = [compose_author_name(users.get(u), u) for u in uids if not label_map.get(u)]
    manual = [m for m in data.get("manualAuthors") or [] if isinstance(m, str)]
    return list(dict.fromkeys(n for n in from_map + fetched + manual if n))


def paper_title(data: Dict) -> str:
    fields = data.get("fieldsData") or {}
    return (fields.get("Title") or fields.get("title") or data.get("title") or "").strip()


def build_paper_record(data: Dict, paper_id: str, uploader_uid: str, file_url: str, file_path: str,
                       cover_url: str, figures: List[Dict], display_names: List[str]) -> Dict:
    fields = data.get("fieldsData") or {}
    research_field = data.get("researchField") or ""
    if research_field.lower() in ("other", "others") and data.get("otherField"):
        research_field = data["otherField"]
    return {
        "id": paper_id,
        "title": paper_title(data) or "Untitled Research",
        "publication_type": data.get("publicationType") or "General",
        "upload_type": data.get("uploadType"),
        "paper_type": data.get("chosenPaperType") or "",
        "publication_scope": data.get("publicationScope") or "",
        "file_name": data.get("fileName") or "",
        "file_url": file_url,
        "file_path": file_path,
        "cover_url": cover_url,
        "format_id": data.get("formatId") or None,
        "format_fields": data.get("formatFields") or [],
        "required_fields": data.get("requiredFields") or [],
        "fields_data": normalize_fields_data(fields),
        "author_uids": [coerce_uid(u) for u in data.get("authorUIDs") or [] if coerce_uid(u)],
        "manual_authors": data.get("manualAuthors") or [],
        "author_display_names": display_names,
        "figures": figures,
        "keywords": extract_keywords(data.get("formatFields"), fields),
        "indexed": data.get("indexed") or [],
        "pages": int(data.get("pages") or data.get("pageCount") or 0),
        "doi": (data.get("doi") or fields.get("DOI") or "").strip(),
        "publication_date": data.get("publicationDate") or fields.get("Publication Date") or "",
        "research_field": research_field,
        "abstract": data.get("abstract") or fields.get("Abstract") or "",
        "ethics_id": data.get("ethicsId") if data.get("hasEthics") == "Yes" and data.get("ethicsId") else None,
        "uploaded_by": uploader_uid,
    }


# -----------------------------
# Draft persistence
# -----------------------------
def create_draft(db_path: str, owner_uid: str) -> Tuple[str, Dict]:
    draft_id = secrets.token_urlsafe(16)
    data = new_wizard_data()
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("""INSERT INTO wizard_drafts(draft_id, owner_uid, data, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?);""",
                    (draft_id, owner_uid, serialize(data), now_ms(), now_ms()))
    finally:
        conn.close()
    return draft_id, data


def load_draft(db_path: str, draft_id: str, owner_uid: str) -> Optional[Dict]:
    """Hydrated draft data for its owner, or None."""
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT data FROM wizard_drafts WHERE draft_id = ? AND owner_uid = ?;", (draft_id, owner_uid))
        row = row_to_dict(cur)
    finally:
        conn.close()
    return hydrate(row["data"]) if row else None


def save_draft(db_path: str, draft_id: str, owner_uid: str, data: Dict) -> bool:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("UPDATE wizard_drafts SET data = ?, updated_at = ? WHERE draft_id = ? AND owner_uid = ?;",
                    (serialize(data), now_ms(), draft_id, owner_uid))
        return cur.rowcount > 0
    except sqlite3.Error as e:
        logger.error(f"Failed to save wizard draft {draft_id}: {e}")
        return False
    finally:
        conn.close()


def delete_draft(db_path: str, draft_id: str, owner_uid: str = None) -> bool:
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        if owner_uid is None:
            cur.execute("DELETE FROM wizard_drafts WHERE draft_id = ?;", (draft_id,))
        else:
            cur.execute("DELETE FROM wizard_drafts WHERE draft_id = ? AND owner_uid = ?;", (draft_id, owner_uid))
        return cur.rowcount > 0
    finally:
        conn.close()


def purge_stale_drafts(db_path: str, staging_dir: str, max_age_hours: float) -> List[str]:
    """Delete drafts untouched for max_age_hours along with their staged files."""
    cutoff = now_ms() - int(max_age_hours * 3600 * 1000)
    conn = get_conn(db_path); cur = conn.cursor()
    try:
        cur.execute("SELECT draft_id FROM wizard_drafts WHERE updated_at < ?;", (cutoff,))
        stale = [r[0] for r in cur.fetchall()]
        cur.execute("DELETE FROM wizard_drafts WHERE updated_at < ?;", (cutoff,))
    finally:
        conn.close()
    for draft_id in stale:
        clear_staging(staging_dir, draft_id)
    if stale:
        logger.info(f"Purged {len(stale)} stale wizard drafts")
    return stale


# -----------------------------
# Staging
# -----------------------------
STAGED_PDF_NAME = "paper.pdf"


def _draft_dir(staging_dir: str, draft_id: str) -> str:
    if not re.match(r"^[A-Za-z0-9_\-]+$", draft_id or ""):
        raise WizardError("Invalid draft id")
    return os.path.join(staging_dir, draft_id)


def stage_pdf(staging_dir: str, draft_id: str, data: bytes) -> str:
    folder = _draft_dir(staging_dir, draft_id)
    os.makedirs(folder, exist_ok=True)
    path = os.path.join(folder, STAGED_PDF_NAME)
    with open(path, "wb") as f:
        f.write(data)
    return path


def staged_pdf_path(staging_dir: str, draft_id: str) -> Optional[str]:
    path = os.path.join(_draft_dir(staging_dir, draft_id), STAGED_PDF_NAME)
    return path if os.path.isfile(path) else None


def unstage_pdf(staging_dir: str, draft_id: str) -> None:
    path = staged_pdf_path(staging_dir, draft_id)
    if path:
        os.remove(path)


def stage_figure(staging_dir: str, draft_id: str, file_name: str, data: bytes) -> str:
    """Store a figure and return its staged name (made unique within the draft)."""
    folder = os.path.join(_draft_dir(staging_dir, draft_id), "figures")
    os.makedirs(folder, exist_ok=True)
    clean = sanitize_name(file_name) or "figure"
    stem, ext = os.path.splitext(clean)
    candidate, n = clean, 1
    while os.path.exists(os.path.join(folder, candidate)):
        candidate = f"{stem}_{n}{ext}"
        n += 1
    with open(os.path.join(folder, candidate), "wb") as f:
        f.write(data)
    return candidate


def remove_staged_figure(staging_dir: str, draft_id: str, name: str) -> bool:
    path = os.path.join(_draft_dir(staging_dir, draft_id), "figures", sanitize_name(name))
    if os.path.isfile(path):
        os.remove(path)
        return True
    return False


def read_staged_figure(staging_dir: str, draft_id: str, name: str) -> Optional[bytes]:
    path = os.path.join(_draft_dir(staging_dir, draft_id), "figures", sanitize_name(name))
    if not os.path.isfile(path):
        return None
    with open(path, "rb") as f:
        return f.read()


def clear_staging(staging_dir: str, draft_id: str) -> None:
    shutil.rmtree(_draft_dir(staging_dir, draft_id), ignore_errors=True)


def attach_file_handle(data: Dict, staging_dir: str, draft_id: str, live_handles: Dict) -> Dict:
    """Re-attach the staged PDF only when this process still holds the handle for the draft."""
    handle = live_handles.get(draft_id)
    if handle and staged_pdf_path(staging_dir, draft_id):
        data = dict(data)
        data[FILE_HANDLE_KEY] = handle
    return data


# -----------------------------
# DOI prefill
# -----------------------------
def normalize_doi(doi: str) -> str:
    if not doi:
        return ""
    doi = doi.strip()
    doi = doi.replace("https://doi.org/", "").replace("http://doi.org/", "")
    return doi.lower()


def fetch_doi_metadata(doi: str, api_url: str = "https://api.crossref.org/works/", timeout: int = 10) -> Dict:
    """
    Look up a DOI on CrossRef and map it onto wizard fields.

    Returns {"valid": bool, "error"?: str, "patch"?: {...}}.
    """
    doi = normalize_doi(doi)
    if not re.match(DOI_PATTERN, doi):
        return {"valid": False, "error": "Invalid DOI format"}

    try:
        response = requests.get(f"{api_url}{doi}", headers={"Accept": "application/json"}, timeout=timeout)
    except requests.exceptions.Timeout:
        return {"valid": False, "error": "CrossRef API timeout"}
    except requests.exceptions.RequestException as e:
        logger.warning(f"CrossRef lookup failed for {doi}: {e}")
        return {"valid": False, "error": "Failed to fetch DOI metadata"}

    if response.status_code != 200:
        return {"valid": False, "error": "DOI not found in CrossRef"}

    message = response.json().get("message", {})
    title = message.get("title", [""])[0] if message.get("title") else ""

    authors = []
    for author in message.get("author", []):
        given = author.get("given", "")
        family = author.get("family", "")
        if given and family:
            authors.append(f"{given} {family}")
        elif family:
            authors.append(family)

    publication_date = ""
    for key in ("published-print", "published-online", "issued"):
        parts = (message.get(key) or {}).get("date-parts", [[]])
        if parts and parts[0] and parts[0][0]:
            publication_date = "-".join(f"{p:02d}" if i else str(p) for i, p in enumerate(parts[0]))
            break

    abstract = re.sub(r"<[^>]+>", "", message.get("abstract") or "").strip()
    patch = {"doi": doi, "title": title, "publicationDate": publication_date}
    if authors:
        patch["manualAuthors"] = authors
    if abstract:
        patch["abstract"] = abstract
    return {"valid": True, "patch": patch, "journal": (message.get("container-title") or [""])[0]}


# -----------------------------
# Submission
# -----------------------------
def remove_uploads(store, uploaded: List[Tuple[str, str]]) -> None:
    """Best-effort removal of (bucket, path) objects written by a failed submission."""
    by_bucket = {}
    for bucket, path in uploaded:
        by_bucket.setdefault(bucket, []).append(path)
    for bucket, paths in by_bucket.items():
        try:
            store.remove(bucket, paths)
        except StorageError as e:
            logger.warning(f"Could not remove {len(paths)} uploaded file(s) from {bucket}: {e}")


def submit_wizard(db_path: str, store, buckets: Dict, data: Dict, pdf_bytes: Optional[bytes],
                  figures: List[Tuple[str, bytes]], uploader_uid: str,
                  enable_cover: bool = True) -> Dict:
    """
    Publish a completed draft.

    Uploads the PDF, a cover PNG (non-fatal) and figures, saves the paper
    record and notifies tagged authors (non-fatal). Raises WizardError on
    validation failures; storage errors propagate.
    """
    if not uploader_uid:
        raise WizardError("You must be logged in to submit.")
    validate_required(data)
    if not data.get(FILE_HANDLE_KEY) or not pdf_bytes:
        raise WizardError("Missing file blob")
    if data.get("uploadType") not in UPLOAD_TYPES:
        raise WizardError("Choose an access type (Private or Public).")

    paper_id = new_paper_id(db_path)
    pub_folder = f"/{data.get('publicationType') or 'General'}/{paper_id}"

    pdf_path = store.upload(buckets["pdf"], f"{pub_folder}/paper.pdf", pdf_bytes, "application/pdf")
    file_url = store.public_url(buckets["pdf"], pdf_path)
    uploaded = [(buckets["pdf"], pdf_path)]

    cover_url = ""
    if enable_cover:
        try:
            cover = render_cover_png(pdf_bytes)
            if cover:
                cover_path = store.upload(buckets["covers"], f"{pub_folder}/cover.png", cover, "image/png")
                uploaded.append((buckets["covers"], cover_path))
                cover_url = store.public_url(buckets["covers"], cover_path)
        except Exception as e:
            logger.warning(f"Cover generation/upload failed for {paper_id} (non-fatal): {e}")

    figure_uploads = []
    try:
        for idx, (name, content) in enumerate(figures or []):
            clean = sanitize_name(name or f"figure_{idx}")
            fig_path = store.upload(buckets["figures"], f"{pub_folder}/figures/{now_ms()}_{idx}_{clean}",
                                    content, guess_content_type(clean))
            uploaded.append((buckets["figures"], fig_path))
            figure_uploads.append({
                "name": name,
                "type": guess_content_type(clean),
                "size": len(content),
                "url": store.public_url(buckets["figures"], fig_path),
                "path": fig_path,
            })

        record = build_paper_record(data, paper_id, uploader_uid, file_url, pdf_path, cover_url,
                                    figure_uploads, resolve_author_names(db_path, data))
        if not create_paper(db_path, record):
            raise RuntimeError(f"Failed to save paper record {paper_id}")
    except Exception:
        # Don't leave orphaned objects behind
        remove_uploads(store, uploaded)
        raise

    notified = []
    try:
        uploader_name = format_display_name(get_user(db_path, uploader_uid))
        title_text = paper_title(data) or "a paper"
        notified = send_bulk(db_path, recipient_uids(data, uploader_uid), lambda uid: {
            "title": "You were tagged as an author",
            "message": f"{uploader_name} submitted “{title_text}”.",
            "type": "info",
            "actionUrl": f"/view/{paper_id}",
            "actionText": "View paper",
            "source": "research",
        })
    except Exception as e:
        logger.warning(f"Author notification failed for {paper_id} (non-fatal): {e}")

    logger.info(f"Published {paper_id} by {uploader_uid} ({len(figure_uploads)} figures, {len(notified)} notified)")
    return {"paper_id": paper_id, "file_url": file_url, "cover_url": cover_url, "figures": figure_uploads,
            "notified": len(notified)}
