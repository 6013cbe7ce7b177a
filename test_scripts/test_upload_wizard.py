#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Tests for upload wizard draft state, the step gate, staging and submission.
"""

import json
from unittest.mock import Mock, patch

import pytest
import requests

import upload_wizard as wizard
from access_store import list_notifications
from vault_store import create_user, get_conn, get_paper


# -----------------------------
# Draft state
# -----------------------------
def test_new_draft_starts_on_step_one_without_file():
    data = wizard.new_wizard_data()
    assert data["step"] == 1
    assert data[wizard.FILE_HANDLE_KEY] is None
    assert data["authorUIDs"] == []
    assert data["fieldsData"] == {}


def test_hydrate_sanitizes_legacy_values():
    raw = json.dumps({
        "step": 3,
        "uploadType": "Private & Public",
        "hasEthics": True,
        "fileBlob": {"path": "/tmp/x.pdf"},
        "authorUIDs": "not-a-list",
        "fieldsData": ["not", "a", "map"],
        "unknownKey": 1,
    })
    data = wizard.hydrate(raw)
    assert data["step"] == 3
    assert data["uploadType"] == "Public"
    assert data["hasEthics"] == "Yes"
    assert data[wizard.FILE_HANDLE_KEY] is None
    assert data["authorUIDs"] == []
    assert data["fieldsData"] == {}
    assert "unknownKey" not in data


def test_hydrate_unreadable_input_gives_fresh_draft():
    assert wizard.hydrate("{not json") == wizard.new_wizard_data()
    assert wizard.hydrate("[1, 2]") == wizard.new_wizard_data()
    assert wizard.hydrate(json.dumps({"step": 9}))["step"] == 1


def test_sanitize_upload_type():
    assert wizard.sanitize_upload_type("Private") == "Private"
    assert wizard.sanitize_upload_type("Public only") == "Public"
    assert wizard.sanitize_upload_type("Restricted") == ""
    assert wizard.sanitize_upload_type(None) == ""


def test_merge_only_sanitizes_touched_keys_and_ignores_file_handle():
    data = wizard.new_wizard_data()
    merged = wizard.merge(data, {"uploadType": "Public only", "title": "T", "fileBlob": "sneaky",
                                 "keywords": "a,b"})
    assert merged["uploadType"] == "Public"
    assert merged["title"] == "T"
    assert merged[wizard.FILE_HANDLE_KEY] is None
    assert merged["keywords"] == []
    # original untouched
    assert data["title"] == ""


def test_serialize_never_includes_file_handle():
    data = wizard.set_file(wizard.new_wizard_data(), {"path": "/tmp/p.pdf"}, "p.pdf")
    stored = json.loads(wizard.serialize(data))
    assert wizard.FILE_HANDLE_KEY not in stored
    assert stored["fileName"] == "p.pdf"
    assert wizard.hydrate(wizard.serialize(data))[wizard.FILE_HANDLE_KEY] is None


def test_set_file_none_clears_file_name():
    data = wizard.set_file(wizard.new_wizard_data(), {"path": "x"}, "x.pdf")
    cleared = wizard.set_file(data, None)
    assert cleared["fileName"] == ""
    assert cleared[wizard.FILE_HANDLE_KEY] is None


# -----------------------------
# Step gate
# -----------------------------
def test_backward_navigation_is_always_allowed():
    data = wizard.new_wizard_data()
    assert wizard.can_jump(data, 5, 1)
    assert wizard.can_jump(data, 3, 3)


def test_forward_navigation_requires_completed_steps():
    data = wizard.new_wizard_data()
    assert not wizard.can_jump(data, 1, 2)

    data["publicationType"] = "Journal"
    assert wizard.can_jump(data, 1, 2)
    assert not wizard.can_jump(data, 1, 3)

    data[wizard.FILE_HANDLE_KEY] = {"path": "x"}
    assert wizard.can_jump(data, 1, 3)
    assert not wizard.can_jump(data, 1, 4)

    data["uploadType"] = "Private"
    assert not wizard.can_jump(data, 1, 4)
    data["verified"] = True
    assert wizard.can_jump(data, 1, 5)


def test_set_step_refuses_gated_jump():
    data = wizard.new_wizard_data()
    with pytest.raises(wizard.StepGateError) as exc:
        wizard.set_step(data, 3)
    assert "publication type" in str(exc.value)
    with pytest.raises(wizard.WizardError):
        wizard.set_step(data, 7)


def test_set_step_same_step_is_a_no_op():
    data = wizard.new_wizard_data()
    assert wizard.set_step(data, 1) is data


# -----------------------------
# Review helpers
# -----------------------------
def test_validate_required_accepts_manual_authors_and_skips_doi():
    data = wizard.merge(wizard.new_wizard_data(), {
        "requiredFields": ["Title", "Authors", "DOI"],
        "fieldsData": {"Title": "Sepsis bundles"},
        "manualAuthors": ["Ana Cruz"],
    })
    wizard.validate_required(data)


def test_validate_required_reports_missing_field():
    data = wizard.merge(wizard.new_wizard_data(), {
        "requiredFields": ["Title", "Abstract"],
        "fieldsData": {"Title": "Sepsis bundles", "Abstract": "   "},
    })
    with pytest.raises(wizard.WizardError, match="Abstract"):
        wizard.validate_required(data)


def test_validate_required_needs_an_author():
    data = wizard.merge(wizard.new_wizard_data(), {"requiredFields": ["Authors"]})
    with pytest.raises(wizard.WizardError, match="author"):
        wizard.validate_required(data)


def test_extract_keywords_uses_first_keyword_or_tag_field():
    fields = ["Title", "Tags", "Keywords"]
    assert wizard.extract_keywords(fields, {"Tags": " icu, sepsis ,, "}) == ["icu", "sepsis"]
    assert wizard.extract_keywords(["Title"], {"Title": "x"}) == []


def test_normalize_fields_data_lowercases_and_strips_spaces():
    assert wizard.normalize_fields_data({"Journal Name": "J", "Page  Numbers": "1-4"}) == {
        "journalname": "J", "pagenumbers": "1-4"}


def test_recipient_uids_skip_uploader_and_invalid_keys():
    data = {
        "authorUIDs": ["u1", "uploader", {"uid": "u2"}, "bad.key", ""],
        "authorLabelMap": {"u3": "Cruz, Ana", "u1": "dupe"},
    }
    assert wizard.recipient_uids(data, "uploader") == ["u1", "u2", "u3"]


def test_compose_author_name():
    user = {"first_name": "Ana", "middle_initial": "M", "last_name": "Cruz", "suffix": "Jr"}
    assert wizard.compose_author_name(user, "uid") == "Cruz, Ana M. Jr"
    assert wizard.compose_author_name({"first_name": "Ana"}, "uid") == "Ana"
    assert wizard.compose_author_name(None, "uid") == "uid"


def test_build_paper_record_uses_other_field_and_ethics_only_when_yes():
    data = wizard.merge(wizard.new_wizard_data(), {
        "publicationType": "Journal",
        "uploadType": "Private",
        "researchField": "Other",
        "otherField": "Wound Care",
        "ethicsId": "EC1",
        "fieldsData": {"Title": "  Dressings  ", "Journal Name": "J"},
        "pageCount": 7,
    })
    record = wizard.build_paper_record(data, "RP-1", "u0", "url", "path", "", [], [])
    assert record["title"] == "Dressings"
    assert record["research_field"] == "Wound Care"
    assert record["ethics_id"] is None
    assert record["pages"] == 7
    assert record["fields_data"] == {"title": "  Dressings  ", "journalname": "J"}

    data["hasEthics"] = "Yes"
    assert wizard.build_paper_record(data, "RP-1", "u0", "", "", "", [], [])["ethics_id"] == "EC1"


# -----------------------------
# Draft persistence and staging
# -----------------------------
def test_draft_round_trip_is_owner_scoped(db_path):
    draft_id, data = wizard.create_draft(db_path, "owner")
    data = wizard.merge(data, {"title": "Draft title"})
    data = wizard.set_file(data, {"path": "x"}, "x.pdf")
    assert wizard.save_draft(db_path, draft_id, "owner", data)

    loaded = wizard.load_draft(db_path, draft_id, "owner")
    assert loaded["title"] == "Draft title"
    assert loaded[wizard.FILE_HANDLE_KEY] is None
    assert wizard.load_draft(db_path, draft_id, "someone-else") is None
    assert not wizard.delete_draft(db_path, draft_id, "someone-else")
    assert wizard.delete_draft(db_path, draft_id, "owner")
    assert wizard.load_draft(db_path, draft_id, "owner") is None


def test_purge_stale_drafts_removes_staging(db_path, tmp_path):
    staging = str(tmp_path / "staging")
    old_id, _ = wizard.create_draft(db_path, "owner")
    fresh_id, _ = wizard.create_draft(db_path, "owner")
    wizard.stage_pdf(staging, old_id, b"%PDF-1.4")
    conn = get_conn(db_path)
    conn.execute("UPDATE wizard_drafts SET updated_at = 0 WHERE draft_id = ?;", (old_id,))
    conn.close()

    assert wizard.purge_stale_drafts(db_path, staging, 1) == [old_id]
    assert wizard.staged_pdf_path(staging, old_id) is None
    assert wizard.load_draft(db_path, fresh_id, "owner") is not None


def test_stage_figure_names_are_unique(tmp_path):
    staging = str(tmp_path)
    first = wizard.stage_figure(staging, "d1", "Fig 1.png", b"a")
    second = wizard.stage_figure(staging, "d1", "Fig 1.png", b"b")
    assert first == "Fig_1.png"
    assert second == "Fig_1_1.png"
    assert wizard.read_staged_figure(staging, "d1", second) == b"b"
    assert wizard.remove_staged_figure(staging, "d1", first)
    assert wizard.read_staged_figure(staging, "d1", first) is None


def test_staging_rejects_path_like_draft_ids(tmp_path):
    with pytest.raises(wizard.WizardError):
        wizard.stage_pdf(str(tmp_path), "../escape", b"%PDF")


def test_attach_file_handle_needs_live_handle_and_staged_file(tmp_path):
    staging = str(tmp_path)
    data = wizard.new_wizard_data()
    handle = {"path": "p"}
    assert wizard.attach_file_handle(data, staging, "d1", {"d1": handle})[wizard.FILE_HANDLE_KEY] is None
    wizard.stage_pdf(staging, "d1", b"%PDF-1.4")
    assert wizard.attach_file_handle(data, staging, "d1", {})[wizard.FILE_HANDLE_KEY] is None
    assert wizard.attach_file_handle(data, staging, "d1", {"d1": handle})[wizard.FILE_HANDLE_KEY] == handle


# -----------------------------
# DOI prefill
# -----------------------------
def test_normalize_doi():
    assert wizard.normalize_doi(" https://doi.org/10.1000/ABC ") == "10.1000/abc"
    assert wizard.normalize_doi("") == ""


def test_fetch_doi_metadata_maps_crossref_fields():
    mock_response = Mock()
    mock_response.status_code = 200
    mock_response.json.return_value = {"message": {
        "title": ["Sepsis Outcomes"],
        "author": [{"given": "Ana", "family": "Cruz"}, {"family": "Reyes"}],
        "published-print": {"date-parts": [[2021, 3, 5]]},
        "abstract": "<jats:p>Short abstract.</jats:p>",
        "container-title": ["Journal of Ward Medicine"],
    }}
    with patch("requests.get", return_value=mock_response) as mock_get:
        result = wizard.fetch_doi_metadata("10.1234/ABC.5", "https://api.example.org/works/")

    mock_get.assert_called_once()
    assert mock_get.call_args[0][0] == "https://api.example.org/works/10.1234/abc.5"
    assert result["valid"] is True
    assert result["journal"] == "Journal of Ward Medicine"
    assert result["patch"] == {
        "doi": "10.1234/abc.5",
        "title": "Sepsis Outcomes",
        "publicationDate": "2021-03-05",
        "manualAuthors": ["Ana Cruz", "Reyes"],
        "abstract": "Short abstract.",
    }


def test_fetch_doi_metadata_rejects_bad_format_without_network():
    with patch("requests.get") as mock_get:
        result = wizard.fetch_doi_metadata("not-a-doi")
    assert result == {"valid": False, "error": "Invalid DOI format"}
    mock_get.assert_not_called()


def test_fetch_doi_metadata_handles_timeout_and_404():
    with patch("requests.get", side_effect=requests.exceptions.Timeout()):
        assert wizard.fetch_doi_metadata("10.1234/x")["error"] == "CrossRef API timeout"
    with patch("requests.get", return_value=Mock(status_code=404)):
        assert wizard.fetch_doi_metadata("10.1234/x")["error"] == "DOI not found in CrossRef"


# -----------------------------
# Submission
# -----------------------------
BUCKETS = {"pdf": "papers-pdf", "covers": "papers-covers", "figures": "papers-figures", "ethics": "papers-pdf"}


def _ready_draft(author_uids):
    return wizard.merge(wizard.set_file(wizard.new_wizard_data(), {"path": "staged"}, "study.pdf"), {
        "publicationType": "Journal",
        "uploadType": "Private",
        "verified": True,
        "formatFields": ["Title", "Keywords"],
        "requiredFields": ["Title", "Authors"],
        "fieldsData": {"Title": "Early Rounds", "Keywords": "rounds, discharge"},
        "authorUIDs": author_uids,
        "manualAuthors": ["Carl Santos"],
    })


def test_submit_wizard_publishes_paper_and_notifies_coauthors(db_path, store, pdf_bytes):
    uploader = create_user(db_path, "up@example.com", "pw-123456", "Resident Doctor",
                           first_name="Uma", last_name="Perez")
    coauthor = create_user(db_path, "co@example.com", "pw-123456", "Resident Doctor",
                           first_name="Ana", middle_initial="M", last_name="Cruz")
    data = _ready_draft([uploader, coauthor])

    result = wizard.submit_wizard(db_path, store, BUCKETS, data, pdf_bytes, [("fig 1.png", b"png")], uploader)

    paper = get_paper(db_path, result["paper_id"])
    assert paper["title"] == "Early Rounds"
    assert paper["status"] == "Published"
    assert paper["file_path"] == f"Journal/{result['paper_id']}/paper.pdf"
    assert store.download("papers-pdf", paper["file_path"]) == pdf_bytes
    assert paper["keywords"] == ["rounds", "discharge"]
    assert paper["author_display_names"] == ["Perez, Uma", "Cruz, Ana M.", "Carl Santos"]
    assert result["cover_url"]
    assert store.exists("papers-covers", f"Journal/{result['paper_id']}/cover.png")
    assert len(paper["figures"]) == 1
    assert store.download("papers-figures", paper["figures"][0]["path"]) == b"png"

    assert result["notified"] == 1
    assert list_notifications(db_path, coauthor)[0]["actionUrl"] == f"/view/{result['paper_id']}"
    assert list_notifications(db_path, uploader) == []


def test_submit_wizard_requires_file_and_access_type(db_path, store, pdf_bytes):
    data = _ready_draft(["u1"])
    with pytest.raises(wizard.WizardError, match="Missing file blob"):
        wizard.submit_wizard(db_path, store, BUCKETS, wizard.set_file(data, None), pdf_bytes, [], "u1")
    with pytest.raises(wizard.WizardError, match="access type"):
        wizard.submit_wizard(db_path, store, BUCKETS, dict(data, uploadType=""), pdf_bytes, [], "u1")
    with pytest.raises(wizard.WizardError, match="logged in"):
        wizard.submit_wizard(db_path, store, BUCKETS, data, pdf_bytes, [], "")


def test_submit_wizard_survives_cover_failure(db_path, store, pdf_bytes):
    data = _ready_draft(["u1"])
    with patch("upload_wizard.render_cover_png", side_effect=RuntimeError("boom")):
        result = wizard.submit_wizard(db_path, store, BUCKETS, data, pdf_bytes, [], "u1")
    assert result["cover_url"] == ""
    assert get_paper(db_path, result["paper_id"]) is not None


def test_submit_wizard_removes_uploads_when_record_insert_fails(db_path, store, pdf_bytes):
    data = _ready_draft(["u1"])
    with patch("upload_wizard.create_paper", return_value=False):
        with pytest.raises(RuntimeError, match="Failed to save paper record"):
            wizard.submit_wizard(db_path, store, BUCKETS, data, pdf_bytes, [("chart.png", b"png")], "u1")
    assert store.list_objects("papers-pdf") == []
    assert store.list_objects("papers-covers") == []
    assert store.list_objects("papers-figures") == []


def test_submit_wizard_removes_uploads_when_figure_upload_fails(db_path, store, pdf_bytes):
    data = _ready_draft(["u1"])
    real_upload = store.upload

    def upload(bucket, path, content, content_type=None):
        if bucket == "papers-figures":
            raise wizard.StorageError("bucket offline")
        return real_upload(bucket, path, content, content_type)

    with patch.object(store, "upload", side_effect=upload):
        with pytest.raises(wizard.StorageError):
            wizard.submit_wizard(db_path, store, BUCKETS, data, pdf_bytes, [("chart.png", b"png")], "u1")
    assert store.list_objects("papers-pdf") == []
    assert store.list_objects("papers-covers") == []
