#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Tests for notifications and full-text access requests (store level).
"""

from access_store import (
    ACCESS_SOURCE,
    count_unread,
    decide_access_request,
    delete_notification,
    has_approved_access,
    is_valid_key,
    list_access_requests,
    list_notifications,
    mark_all_read,
    mark_read,
    request_access_bulk,
    request_access_for_one,
    send_bulk,
    send_notification,
)
from vault_store import create_paper, create_user, get_paper


def _user(db_path, email, first, last):
    return create_user(db_path, email, "pw-123456", "Resident Doctor", first_name=first, last_name=last)


def _paper(db_path, paper_id, author_uids, upload_type="Private"):
    assert create_paper(db_path, {
        "id": paper_id,
        "title": f"Paper {paper_id}",
        "publication_type": "Journal",
        "upload_type": upload_type,
        "file_name": "paper.pdf",
        "author_uids": author_uids,
        "uploaded_by": author_uids[0] if author_uids else "someone",
    })
    return get_paper(db_path, paper_id)


def test_is_valid_key():
    assert is_valid_key("abc123")
    assert not is_valid_key("")
    assert not is_valid_key("   ")
    assert not is_valid_key("a.b")
    assert not is_valid_key("a/b")
    assert not is_valid_key("a[0]")
    assert not is_valid_key(None)


def test_notifications_lifecycle(db_path):
    first = send_notification(db_path, "u1", {"title": "Hello", "message": "One", "type": "bogus"})
    second = send_notification(db_path, "u1", {"title": "Hello", "message": "Two", "meta": {"k": 1}})
    assert first > 0 and second > 0
    assert send_notification(db_path, "bad.key", {"title": "x"}) == -1

    items = list_notifications(db_path, "u1")
    assert [n["message"] for n in items] == ["Two", "One"]
    assert items[1]["type"] == "info"
    assert items[0]["meta"] == {"k": 1}
    assert count_unread(db_path, "u1") == 2

    assert mark_read(db_path, "u1", first)
    assert not mark_read(db_path, "u2", second)
    assert [n["message"] for n in list_notifications(db_path, "u1", unread_only=True)] == ["Two"]
    assert mark_all_read(db_path, "u1") == 1
    assert count_unread(db_path, "u1") == 0

    assert not delete_notification(db_path, "u2", first)
    assert delete_notification(db_path, "u1", first)
    assert len(list_notifications(db_path, "u1")) == 1


def test_send_bulk_dedupes_recipients(db_path):
    ids = send_bulk(db_path, ["u1", "u1", "", "u2", "bad.key"], lambda uid: {"title": f"to {uid}", "message": "m"})
    assert len(ids) == 2
    assert list_notifications(db_path, "u1")[0]["title"] == "to u1"


def test_request_access_notifies_authors_but_not_requester(db_path):
    a1 = _user(db_path, "a1@example.com", "Ana", "Cruz")
    a2 = _user(db_path, "a2@example.com", "Ben", "Reyes")
    requester = _user(db_path, "req@example.com", "Rui", "Lim")
    paper = _paper(db_path, "RP-1", [a1, a2, requester, "bad.key"])

    result = request_access_for_one(db_path, paper, requester)
    assert result["requestId"] > 0
    assert sorted(result["notified"]) == sorted([a1, a2])
    assert list_notifications(db_path, requester) == []

    note = list_notifications(db_path, a1)[0]
    assert note["source"] == ACCESS_SOURCE
    assert note["actionUrl"] == "/view/RP-1"
    assert note["message"] == 'Rui Lim requested full-text access to "Paper RP-1".'
    assert note["meta"]["paperId"] == "RP-1"
    assert note["meta"]["requesterUid"] == requester


def test_repeat_request_reuses_row_and_reopens_denied(db_path):
    a1 = _user(db_path, "a1@example.com", "Ana", "Cruz")
    paper = _paper(db_path, "RP-1", [a1])

    first = request_access_for_one(db_path, paper, "r1", "Reader")["requestId"]
    assert request_access_for_one(db_path, paper, "r1", "Reader")["requestId"] == first

    decide_access_request(db_path, first, a1, False, paper["title"])
    assert list_access_requests(db_path, requester_uid="r1")[0]["status"] == "denied"
    request_access_for_one(db_path, paper, "r1", "Reader")
    assert list_access_requests(db_path, requester_uid="r1")[0]["status"] == "pending"


def test_decision_notifies_requester_and_grants_access(db_path):
    a1 = _user(db_path, "a1@example.com", "Ana", "Cruz")
    requester = _user(db_path, "req@example.com", "Rui", "Lim")
    paper = _paper(db_path, "RP-1", [a1])
    request_id = request_access_for_one(db_path, paper, requester)["requestId"]

    assert not has_approved_access(db_path, "RP-1", requester)
    updated = decide_access_request(db_path, request_id, a1, True, paper["title"])
    assert updated["status"] == "approved"
    assert updated["decided_by"] == a1
    assert has_approved_access(db_path, "RP-1", requester)

    note = list_notifications(db_path, requester)[0]
    assert note["title"] == "Access Approved"
    assert note["type"] == "success"
    assert note["message"] == 'Ana Cruz approved your full-text access request for "Paper RP-1".'
    assert decide_access_request(db_path, 9999, a1, True) is None


def test_bulk_request_notifies_once_per_author_and_paper(db_path):
    a1 = _user(db_path, "a1@example.com", "Ana", "Cruz")
    p1 = _paper(db_path, "RP-1", [a1, a1])
    p2 = _paper(db_path, "RP-2", [a1, "r1"])

    result = request_access_bulk(db_path, [p1, p2], "r1", "Reader")
    assert result["notified"] == 2
    assert len(result["requestIds"]) == 2
    assert {n["meta"]["paperId"] for n in list_notifications(db_path, a1)} == {"RP-1", "RP-2"}
    assert list_notifications(db_path, a1)[0]["actionUrl"].startswith("/request/")

    assert request_access_bulk(db_path, [], "r1") == {"requestIds": [], "notified": 0}


def test_list_access_requests_by_paper_set(db_path):
    a1 = _user(db_path, "a1@example.com", "Ana", "Cruz")
    _paper(db_path, "RP-1", [a1])
    _paper(db_path, "RP-2", [a1])
    request_access_bulk(db_path, [get_paper(db_path, "RP-1"), get_paper(db_path, "RP-2")], "r1", "Reader")

    rows = list_access_requests(db_path, paper_ids=["RP-2"])
    assert [r["paper_id"] for r in rows] == ["RP-2"]
    assert rows[0]["paper_title"] == "Paper RP-2"
    assert list_access_requests(db_path, paper_ids=[]) == []
    assert len(list_access_requests(db_path, status="pending")) == 2
