#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Tests for PDF inspection, cover rendering and watermarks.
"""

import fitz
import pytest

from conftest import build_pdf
from pdf_tools import apply_watermark, extract_abstract, inspect_pdf, is_pdf_bytes, render_cover_png


def test_is_pdf_bytes():
    assert is_pdf_bytes(b"%PDF-1.7\n...")
    assert is_pdf_bytes(b"\n  %PDF-1.4")
    assert not is_pdf_bytes(b"PK\x03\x04")
    assert not is_pdf_bytes(b"")


def test_extract_abstract_stops_at_next_heading():
    text = "Title\nAbstract: We measured things.\nMore detail here.\nKeywords: rounds, wards\nBody"
    assert extract_abstract(text) == "We measured things. More detail here."
    assert extract_abstract("ABSTRACT\nShort.\n1. Introduction\nText") == "Short."
    assert extract_abstract("No heading at all") == ""
    assert extract_abstract("") == ""


def test_inspect_pdf_reads_pages_title_and_abstract():
    ok, info, message = inspect_pdf(build_pdf(pages=3))
    assert ok
    assert message == "Read 3 page(s)"
    assert info["pageCount"] == 3
    assert info["title"] == "Outcomes of Early Ward Rounds"
    assert info["abstract"] == "We compared discharge times before and after early rounds."
    assert "Page 3" in info["text"]


def test_inspect_pdf_rejects_non_pdf():
    ok, info, message = inspect_pdf(b"not a pdf")
    assert not ok
    assert info == {}
    assert message == "File is not a PDF"


def test_render_cover_png(pdf_bytes):
    png = render_cover_png(pdf_bytes)
    assert png.startswith(b"\x89PNG")
    assert render_cover_png(b"garbage") is None


def _page_texts(data):
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        return [page.get_text() for page in doc]
    finally:
        doc.close()


def test_apply_watermark_stamps_every_page():
    stamped = apply_watermark(build_pdf(pages=2), "Research Vault | Rui Lim",
                              {"mode": "bottom-right", "opacity": 0.2, "fontSize": 14})
    texts = _page_texts(stamped)
    assert len(texts) == 2
    assert all("Research Vault | Rui Lim" in t for t in texts)
    assert "Outcomes of Early Ward Rounds" in texts[0]


def test_apply_watermark_tiled_and_custom_keep_the_document_readable():
    original = build_pdf(pages=1)
    for settings in ({"mode": "tiled", "opacity": 0.14, "fontSize": 18},
                     {"mode": "custom", "x": 0.25, "y": 0.75, "opacity": 1, "fontSize": 12}):
        stamped = apply_watermark(original, "CONFIDENTIAL", settings)
        assert stamped != original
        ok, info, _ = inspect_pdf(stamped)
        assert ok and info["pageCount"] == 1
        assert "CONFIDENTIAL" in info["text"]


def test_apply_watermark_rejects_non_pdf():
    with pytest.raises(ValueError):
        apply_watermark(b"PK\x03\x04", "text", {"mode": "center"})
