#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
PDF inspection for the upload wizard
Page count, text, abstract, first-page cover rendering and viewer watermarks using PyMuPDF (fitz)
"""

import re
import pymupdf as fitz  # PyMuPDF
import logging
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# Security limits to prevent abuse
MAX_TEXT_PAGES = 60  # Pages scanned for text extraction
MAX_TEXT_LENGTH = 200000  # Characters of extracted text kept on the draft
MAX_ABSTRACT_LENGTH = 3000
COVER_ZOOM = 1.5

_ABSTRACT_START = re.compile(r"\babstract\b[\s:.\-]*", re.IGNORECASE)
_ABSTRACT_END = re.compile(
    r"\n\s*(?:key\s*words?|index terms|introduction|1\.?\s+introduction|background)\b",
    re.IGNORECASE,
)


def is_pdf_bytes(data: bytes) -> bool:
    return bool(data) and data.lstrip()[:5] == b"%PDF-"


def extract_abstract(text: str) -> str:
    """
    Pull the abstract paragraph out of extracted text.

    Takes what follows an "Abstract" heading up to the keywords/introduction
    heading. Returns "" when no heading is found.
    """
    if not text:
        return ""
    start = _ABSTRACT_START.search(text)
    if not start:
        return ""
    rest = text[start.end():]
    end = _ABSTRACT_END.search(rest)
    abstract = rest[:end.start()] if end else rest[:MAX_ABSTRACT_LENGTH]
    abstract = re.sub(r"\s+", " ", abstract).strip()
    return abstract[:MAX_ABSTRACT_LENGTH]


def guess_title(doc) -> str:
    """Document metadata title, else the first non-empty line of page one."""
    meta_title = ((doc.metadata or {}).get("title") or "").strip()
    if meta_title:
        return meta_title
    if len(doc) == 0:
        return ""
    for line in doc[0].get_text().splitlines():
        line = line.strip()
        if len(line) > 3:
            return line[:300]
    return ""


def inspect_pdf(data: bytes) -> Tuple[bool, Dict, str]:
    """
    Read page count, text, abstract and a title guess from PDF bytes.

    Returns:
        Tuple of (success: bool, info: Dict, message: str)
        info keys: pageCount, text, abstract, title
    """
    if not is_pdf_bytes(data):
        return False, {}, "File is not a PDF"

    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        logger.error(f"Error opening PDF: {e}", exc_info=True)
        return False, {}, f"Error reading PDF: {str(e)}"

    try:
        page_count = len(doc)
        chunks = []
        for page_num in range(min(page_count, MAX_TEXT_PAGES)):
            chunks.append(doc[page_num].get_text())
        text = "\n".join(chunks)[:MAX_TEXT_LENGTH]
        info = {
            "pageCount": page_count,
            "text": text,
            "abstract": extract_abstract(text),
            "title": guess_title(doc),
        }
        return True, info, f"Read {page_count} page(s)"
    finally:
        doc.close()


def render_cover_png(data: bytes, zoom: float = COVER_ZOOM) -> Optional[bytes]:
    """Render the first page as PNG bytes. Returns None when rendering fails."""
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        logger.warning(f"Cover rendering skipped, PDF could not be opened: {e}")
        return None
    try:
        if len(doc) == 0:
            return None
        pix = doc[0].get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
        return pix.tobytes("png")
    except Exception as e:
        logger.warning(f"Cover rendering failed: {e}")
        return None
    finally:
        doc.close()


WATERMARK_COLOR = (0x7f / 255, 0x1d / 255, 0x1d / 255)
WATERMARK_MARGIN = 24
WATERMARK_ANGLE = 30


def _watermark_origin(rect, mode: str, text_width: float, font_size: float, settings: Dict) -> fitz.Point:
    m = WATERMARK_MARGIN
    right = rect.width - m - text_width
    if mode == "top-left":
        return fitz.Point(m, m + font_size)
    if mode == "top-right":
        return fitz.Point(right, m + font_size)
    if mode == "bottom-left":
        return fitz.Point(m, rect.height - m)
    if mode == "bottom-right":
        return fitz.Point(right, rect.height - m)
    if mode == "custom":
        x = float(settings.get("x", 0.5)) * rect.width
        y = float(settings.get("y", 0.5)) * rect.height
        return fitz.Point(x - text_width / 2, y + font_size / 2)
    return fitz.Point((rect.width - text_width) / 2, (rect.height + font_size) / 2)


def _stamp_page(page, text: str, settings: Dict) -> None:
    font_size = float(settings.get("fontSize", 18))
    opacity = float(settings.get("opacity", 0.14))
    mode = settings.get("mode", "tiled")
    rect = page.rect
    text_width = fitz.get_text_length(text, fontname="helv", fontsize=font_size)

    if mode != "tiled":
        page.insert_text(_watermark_origin(rect, mode, text_width, font_size, settings), text,
                         fontsize=font_size, fontname="helv", color=WATERMARK_COLOR, fill_opacity=opacity)
        return

    # Rotated rows; odd rows shift by half a step
    step_x = max(320.0, text_width * 1.2)
    step_y = max(160.0, font_size * 2)
    row = 0
    y = -rect.height / 2
    while y < rect.height * 1.5:
        x = -rect.width / 2 + (step_x / 2 if row % 2 else 0)
        while x < rect.width * 1.5:
            origin = fitz.Point(x, y)
            page.insert_text(origin, text, fontsize=font_size, fontname="helv", color=WATERMARK_COLOR,
                             fill_opacity=opacity, morph=(origin, fitz.Matrix(WATERMARK_ANGLE)))
            x += step_x
        y += step_y
        row += 1


def apply_watermark(data: bytes, text: str, settings: Dict) -> bytes:
    """
    Stamp text on every page and return the new PDF bytes.

    settings: mode (tiled, top-left, top-right, bottom-left, bottom-right,
    center or custom), opacity, fontSize and, for custom, x/y page fractions.
    Raises ValueError when the data is not a readable PDF.
    """
    if not is_pdf_bytes(data):
        raise ValueError("File is not a PDF")
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise ValueError(f"Error reading PDF: {e}") from e
    try:
        for page in doc:
            _stamp_page(page, text, settings)
        return doc.tobytes(garbage=3, deflate=True)
    finally:
        doc.close()
