#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
End-to-end tests for the upload wizard endpoints.
"""

import io
import os
from unittest.mock import Mock, patch

import pytest

from content_store import DEFAULT_FORMAT_FIELDS, create_format

REQUIRED_VALUES = {
    "Title": "Outcomes of Early Ward Rounds",
    "Abstract": "We compared discharge times.",
    "Page Numbers": "1-5",
    "Research Field": "Surgery",
    "Keywords": "rounds, wards",
}


@pytest.fixture
def wizard_client(client, admin):
    """Returns (post_json, headers) for the signed-in admin."""
    _, headers = admin

    def call(method, url, body=None):
        return getattr(client, method)(url, json=body if body is not None else {}, headers=headers)

    return call, headers


def _start(call):
    resp = call("post", "/api/wizard")
    assert resp.status_code == 201
    return resp.get_json()["draft_id"]


def _upload_pdf(client, headers, draft_id, content, name="paper.pdf"):
    return client.post(f"/api/wizard/{draft_id}/file", data={"file": (io.BytesIO(content), name)},
                       headers=headers, content_type="multipart/form-data")


def test_full_submission(client, wizard_client, make_user, db_path, pdf_bytes, vault, store):
    call, headers = wizard_client
    coauthor_uid, coauthor = make_user("ana@example.com", first_name="Ana", last_name="Cruz")
    fmt_id = create_format(db_path, "Journal Article", "", ["DOI"], [], "Ada")

    draft_id = _start(call)
    view = call("get", f"/api/wizard/{draft_id}").get_json()
    assert view["data"]["step"] == 1
    assert view["has_file"] is False
    assert view["step_name"] == "Upload"

    resp = call("post", f"/api/wizard/{draft_id}/step", {"step": 2})
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "Choose a publication type first."

    view = call("patch", f"/api/wizard/{draft_id}",
                {"patch": {"publicationType": "Journal", "step": 5, "fileBlob": "x"}}).get_json()
    assert view["data"]["publicationType"] == "Journal"
    assert view["data"]["step"] == 1
    assert "fileBlob" not in view["data"]

    assert call("post", f"/api/wizard/{draft_id}/step", {"step": 2}).status_code == 200
    resp = call("post", f"/api/wizard/{draft_id}/step", {"step": 3})
    assert resp.status_code == 409
    assert resp.get_json()["step"] == 2

    assert _upload_pdf(client, headers, draft_id, pdf_bytes, name="notes.txt").status_code == 400
    resp = _upload_pdf(client, headers, draft_id, b"not a pdf")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "File is not a PDF"

    resp = _upload_pdf(client, headers, draft_id, pdf_bytes)
    assert resp.status_code == 200
    view = resp.get_json()
    assert view["has_file"] is True
    assert view["data"]["fileName"] == "paper.pdf"
    assert view["data"]["pageCount"] == 1
    assert view["data"]["title"] == "Outcomes of Early Ward Rounds"
    assert view["data"]["abstract"] == "We compared discharge times before and after early rounds."

    assert call("post", f"/api/wizard/{draft_id}/step", {"step": 3}).status_code == 200
    assert call("post", f"/api/wizard/{draft_id}/step", {"step": 4}).status_code == 409

    view = call("patch", f"/api/wizard/{draft_id}",
                {"patch": {"uploadType": "Private & Public", "verified": True}}).get_json()
    assert view["data"]["uploadType"] == "Public"
    assert call("post", f"/api/wizard/{draft_id}/step", {"step": 4}).status_code == 200

    assert call("post", f"/api/wizard/{draft_id}/format", {"format_id": 9999}).status_code == 404
    view = call("post", f"/api/wizard/{draft_id}/format", {"format_id": fmt_id}).get_json()
    assert view["data"]["formatName"] == "Journal Article"
    assert view["data"]["requiredFields"] == DEFAULT_FORMAT_FIELDS
    assert view["data"]["formatFields"] == DEFAULT_FORMAT_FIELDS + ["Doi"]

    for name in ("chart.png", "chart.png"):
        resp = client.post(f"/api/wizard/{draft_id}/figures", data={"file": (io.BytesIO(b"png"), name)},
                           headers=headers, content_type="multipart/form-data")
        assert resp.status_code == 201
    assert resp.get_json()["data"]["figures"] == ["chart.png", "chart_1.png"]
    resp = client.post(f"/api/wizard/{draft_id}/figures", data={"file": (io.BytesIO(b"x"), "run.exe")},
                       headers=headers, content_type="multipart/form-data")
    assert resp.status_code == 400
    view = call("delete", f"/api/wizard/{draft_id}/figures/chart_1.png").get_json()
    assert view["data"]["figures"] == ["chart.png"]

    resp = call("post", f"/api/wizard/{draft_id}/submit")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Please fill in the required field: Title"

    call("patch", f"/api/wizard/{draft_id}", {"patch": {
        "fieldsData": REQUIRED_VALUES,
        "authorUIDs": [coauthor_uid],
        "manualAuthors": ["Dee Lim"],
        "publicationDate": "2021-03-05",
    }})
    assert call("post", f"/api/wizard/{draft_id}/step", {"step": 5}).status_code == 200

    resp = call("post", f"/api/wizard/{draft_id}/submit")
    assert resp.status_code == 201
    result = resp.get_json()
    assert result["paper_id"].startswith("RP-")
    assert result["notified"] == 1
    assert len(result["figures"]) == 1
    assert result["cover_url"]

    assert call("get", f"/api/wizard/{draft_id}").status_code == 404
    assert not os.path.exists(os.path.join(vault.WIZARD_STAGING_DIR, draft_id))

    paper = call("get", f"/api/papers/{result['paper_id']}").get_json()["paper"]
    assert paper["upload_type"] == "Public"
    assert paper["keywords"] == ["rounds", "wards"]
    assert paper["author_display_names"] == ["Cruz, Ana", "Dee Lim"]
    assert paper["fields_data"]["pagenumbers"] == "1-5"
    assert paper["file_path"] == f"Journal/{result['paper_id']}/paper.pdf"
    assert store.download("papers-pdf", paper["file_path"]) == pdf_bytes

    note = client.get("/api/notifications", headers=coauthor).get_json()["notifications"][0]
    assert note["title"] == "You were tagged as an author"
    assert note["actionUrl"] == f"/view/{result['paper_id']}"


def test_file_selection_does_not_survive_a_restart(client, wizard_client, vault, pdf_bytes):
    call, headers = wizard_client
    draft_id = _start(call)
    call("patch", f"/api/wizard/{draft_id}", {"patch": {"publicationType": "Thesis", "uploadType": "Private"}})
    assert _upload_pdf(client, headers, draft_id, pdf_bytes).status_code == 200
    assert call("post", f"/api/wizard/{draft_id}/step", {"step": 2}).status_code == 200

    # A new process has no live handle for the staged file
    vault._live_file_handles.clear()

    view = call("get", f"/api/wizard/{draft_id}").get_json()
    assert view["has_file"] is False
    assert view["data"]["step"] == 2
    resp = call("post", f"/api/wizard/{draft_id}/step", {"step": 3})
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "Select a PDF file first."
    resp = call("post", f"/api/wizard/{draft_id}/submit")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Missing file blob"


def test_clear_file_and_reset(client, wizard_client, pdf_bytes):
    call, headers = wizard_client
    draft_id = _start(call)
    _upload_pdf(client, headers, draft_id, pdf_bytes)

    view = call("delete", f"/api/wizard/{draft_id}/file").get_json()
    assert view["has_file"] is False
    assert view["data"]["fileName"] == ""
    assert view["data"]["pageCount"] == 0

    call("patch", f"/api/wizard/{draft_id}", {"patch": {"title": "Kept until reset"}})
    view = call("post", f"/api/wizard/{draft_id}/reset").get_json()
    assert view["data"]["title"] == ""
    assert view["data"]["step"] == 1


def test_drafts_are_scoped_to_their_owner(client, wizard_client, make_user):
    call, _ = wizard_client
    draft_id = _start(call)
    _, other_admin = make_user("other.admin@example.com", role="Admin")
    _, resident = make_user("resident@example.com")

    assert client.get(f"/api/wizard/{draft_id}", headers=other_admin).status_code == 404
    assert client.post("/api/wizard", json={}, headers=resident).status_code == 403

    assert call("delete", f"/api/wizard/{draft_id}").status_code == 200
    assert call("delete", f"/api/wizard/{draft_id}").status_code == 404


def test_invalid_step_and_patch(wizard_client):
    call, _ = wizard_client
    draft_id = _start(call)
    assert call("post", f"/api/wizard/{draft_id}/step", {"step": 9}).status_code == 400
    assert call("post", f"/api/wizard/{draft_id}/step", {"step": "two"}).status_code == 400
    assert call("patch", f"/api/wizard/{draft_id}", {"patch": ["not", "a", "dict"]}).status_code == 400


def test_doi_prefill(wizard_client):
    call, _ = wizard_client
    draft_id = _start(call)

    crossref = Mock(status_code=200)
    crossref.json.return_value = {"message": {
        "title": ["Early Rounds"],
        "author": [{"given": "Ana", "family": "Cruz"}],
        "issued": {"date-parts": [[2021, 3, 5]]},
        "container-title": ["J Ward Med"],
    }}
    with patch("upload_wizard.requests.get", return_value=crossref):
        view = call("post", f"/api/wizard/{draft_id}/doi", {"doi": "https://doi.org/10.1000/XYZ.1"}).get_json()

    assert view["valid"] is True
    assert view["data"]["doi"] == "10.1000/xyz.1"
    assert view["data"]["title"] == "Early Rounds"
    assert view["data"]["manualAuthors"] == ["Ana Cruz"]
    assert view["data"]["publicationDate"] == "2021-03-05"
    assert view["data"]["fieldsData"] == {"Journal Name": "J Ward Med"}

    resp = call("post", f"/api/wizard/{draft_id}/doi", {"doi": "not-a-doi"})
    assert resp.status_code == 200
    assert resp.get_json() == {"valid": False, "error": "Invalid DOI format"}
    assert call("post", f"/api/wizard/{draft_id}/doi", {"doi": ""}).status_code == 400
