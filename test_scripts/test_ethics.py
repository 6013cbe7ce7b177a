#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Tests for ethics clearance records, their stored files and the API.
"""

import io

import pytest

from ethics_store import (
    CSV_HEADER,
    EthicsValidationError,
    delete_clearance,
    export_clearances_csv,
    get_clearance,
    list_clearances,
    update_clearance,
    upload_clearance,
)
from vault_store import create_paper, get_paper

BUCKET = "ethics"
PDF = b"%PDF-1.4 clearance"


def _upload(db_path, store, name="clearance.pdf", signatory="Dr. Santos"):
    return upload_clearance(db_path, store, BUCKET, name, PDF, signatory, "2024-01-05", "u1", "Ada Reyes")


def test_upload_stores_file_under_clearance_folder(db_path, store):
    record = _upload(db_path, store)
    assert record["id"].startswith("EC")
    assert record["storage_path"].startswith(f"ClearanceEthics/{record['id']}/clearance_")
    assert record["storage_path"].endswith(".pdf")
    assert record["content_type"] == "application/pdf"
    assert record["file_size"] == len(PDF)
    assert record["url"].endswith(f"/api/files/{BUCKET}/{record['storage_path']}")
    assert store.download(BUCKET, record["storage_path"]) == PDF
    assert get_clearance(db_path, record["id"])["signatory_name"] == "Dr. Santos"


@pytest.mark.parametrize("name,signatory,date_required,message", [
    (None, "Dr. Santos", "2024-01-05", "choose a file"),
    ("notes.txt", "Dr. Santos", "2024-01-05", "Allowed"),
    ("scan.png", "  ", "2024-01-05", "Signatory"),
    ("scan.png", "Dr. Santos", "", "Date acquired"),
])
def test_upload_validation(db_path, store, name, signatory, date_required, message):
    with pytest.raises(EthicsValidationError, match=message):
        upload_clearance(db_path, store, BUCKET, name, PDF, signatory, date_required, "u1", "Ada")
    assert store.list_objects(BUCKET) == []


def test_list_reports_tagged_papers_and_searches(db_path, store):
    first = _upload(db_path, store, signatory="Dr. Santos")
    _upload(db_path, store, name="board.png", signatory="Dr. Lim")
    create_paper(db_path, {"id": "RP-1", "title": "Ward Rounds", "publication_type": "Journal",
                           "upload_type": "Public", "uploaded_by": "u1", "ethics_id": first["id"]})

    rows = {r["id"]: r for r in list_clearances(db_path)}
    assert rows[first["id"]]["tagged_count"] == 1
    assert rows[first["id"]]["tagged_papers"] == [{"id": "RP-1", "title": "Ward Rounds"}]

    assert [r["signatory_name"] for r in list_clearances(db_path, "lim")] == ["Dr. Lim"]
    assert [r["id"] for r in list_clearances(db_path, "ward")] == [first["id"]]


def test_update_replaces_file_and_removes_old(db_path, store):
    record = _upload(db_path, store)
    old_path = record["storage_path"]

    updated = update_clearance(db_path, store, BUCKET, record["id"], signatory_name="Dr. Reyes",
                               file_name="scan.png", data=b"png-bytes")
    assert updated["signatory_name"] == "Dr. Reyes"
    assert updated["date_required"] == "2024-01-05"
    assert updated["content_type"] == "image/png"
    assert updated["storage_path"].endswith(".png")
    assert not store.exists(BUCKET, old_path)
    assert store.exists(BUCKET, updated["storage_path"])

    with pytest.raises(EthicsValidationError):
        update_clearance(db_path, store, BUCKET, record["id"], signatory_name=" ")
    assert update_clearance(db_path, store, BUCKET, "EC-missing", signatory_name="x") is None


def test_delete_untags_papers(db_path, store):
    record = _upload(db_path, store)
    create_paper(db_path, {"id": "RP-1", "title": "Ward Rounds", "publication_type": "Journal",
                           "upload_type": "Public", "uploaded_by": "u1", "ethics_id": record["id"]})

    assert delete_clearance(db_path, store, BUCKET, record["id"])
    assert get_clearance(db_path, record["id"]) is None
    assert get_paper(db_path, "RP-1")["ethics_id"] is None
    assert store.list_objects(BUCKET) == []
    assert not delete_clearance(db_path, store, BUCKET, record["id"])


def test_export_csv():
    rows = [{"id": "EC1", "signatory_name": "Dr. Santos", "date_required": "2024-01-05",
             "file_name": "c.pdf", "url": "http://x/c.pdf", "content_type": "application/pdf",
             "uploaded_by_name": "Ada", "uploaded_at": None, "tagged_count": 2}]
    lines = export_clearances_csv(rows).splitlines()
    assert lines[0] == ",".join(f'"{h}"' for h in CSV_HEADER)
    assert lines[1] == '"EC1","Dr. Santos","2024-01-05","c.pdf","http://x/c.pdf","application/pdf","Ada","","2"'


# -----------------------------
# API
# -----------------------------
def _form(name="clearance.pdf", content=PDF):
    return {"file": (io.BytesIO(content), name), "signatory_name": "Dr. Santos", "date_required": "2024-01-05"}


def test_api_upload_requires_materials_permission(client, admin, make_user):
    _, resident = make_user("resident@example.com")

    assert client.post("/api/ethics", data=_form(), content_type="multipart/form-data").status_code == 401
    assert client.post("/api/ethics", data=_form(), headers=resident,
                       content_type="multipart/form-data").status_code == 403

    _, headers = admin
    resp = client.post("/api/ethics", data=_form(), headers=headers, content_type="multipart/form-data")
    assert resp.status_code == 201
    clearance = resp.get_json()["clearance"]
    assert clearance["uploaded_by_name"] == "Ada Reyes"

    resp = client.get(f"/api/ethics/{clearance['id']}", headers=headers)
    assert resp.status_code == 200
    assert client.get("/api/ethics/EC-missing", headers=headers).status_code == 404


def test_api_rejects_bad_extension(client, admin):
    _, headers = admin
    resp = client.post("/api/ethics", data=_form(name="notes.txt"), headers=headers,
                       content_type="multipart/form-data")
    assert resp.status_code == 400
    assert "Allowed" in resp.get_json()["error"]


def test_api_edit_list_export_delete(client, admin):
    _, headers = admin
    clearance = client.post("/api/ethics", data=_form(), headers=headers,
                            content_type="multipart/form-data").get_json()["clearance"]

    resp = client.put(f"/api/ethics/{clearance['id']}", json={"signatory_name": "Dr. Lim"}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()["clearance"]["signatory_name"] == "Dr. Lim"

    listed = client.get("/api/ethics?search=lim", headers=headers).get_json()["clearances"]
    assert [c["id"] for c in listed] == [clearance["id"]]

    resp = client.get("/api/ethics/export", headers=headers)
    assert resp.status_code == 200
    assert resp.mimetype == "text/csv"
    assert "attachment; filename=ethics_clearances_" in resp.headers["Content-Disposition"]
    assert resp.get_data(as_text=True).startswith('"Reference ID"')

    assert client.delete(f"/api/ethics/{clearance['id']}", headers=headers).status_code == 200
    assert client.delete(f"/api/ethics/{clearance['id']}", headers=headers).status_code == 404
