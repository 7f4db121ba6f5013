"""
PDF Text and Thumbnail Extraction.

Built on PyMuPDF (imported as fitz). Produces:
    - text: every page's text, inner line breaks joined with spaces, and a
      single "\\n" after each page, so a page break always ends a chunk
    - thumbnail: page 1 rendered at thumbnail_scale as JPEG bytes

Usage:
    doc = extract_pdf("books/moby-dick.pdf")
    chunks = segment(doc.text)
    Path("cover.jpg").write_bytes(doc.thumbnail)
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Union

import fitz

from readaloud.core.config import Defaults
from readaloud.core.errors import ExtractionError
from readaloud.core.logging import get_logger, info
from readaloud.utils.timeit import timeit

_LOG = get_logger("readaloud.extraction")


@dataclass
class ExtractedDocument:
    text: str
    thumbnail: bytes
    page_count: int


def _page_text(page: "fitz.Page") -> str:
    lines = page.get_text("text").splitlines()
    return " ".join(line.strip() for line in lines if line.strip())


def render_thumbnail(
    doc: "fitz.Document",
    scale: float = Defaults.LIBRARY_THUMBNAIL_SCALE,
    quality: int = Defaults.LIBRARY_THUMBNAIL_QUALITY,
) -> bytes:
    """Render the first page as JPEG bytes."""
    page = doc.load_page(0)
    pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale))
    return pix.tobytes("jpeg", jpg_quality=quality)


def extract_pdf(
    path: Union[str, Path],
    thumbnail_scale: float = Defaults.LIBRARY_THUMBNAIL_SCALE,
    thumbnail_quality: int = Defaults.LIBRARY_THUMBNAIL_QUALITY,
) -> ExtractedDocument:
    """
    Extract text and a first-page thumbnail from a PDF.

    Raises:
        ExtractionError: The file is missing, not a PDF, encrypted, or empty.
    """
    path = Path(path)
    if not path.is_file():
        raise ExtractionError(f"File not found: {path}", details={"path": str(path)})

    try:
        with timeit("extract_pdf") as t:
            with fitz.open(str(path)) as doc:
                if doc.needs_pass:
                    raise ExtractionError("PDF is password protected.", details={"path": str(path)})
                if doc.page_count == 0:
                    raise ExtractionError("PDF has no pages.", details={"path": str(path)})

                text = "".join(_page_text(page) + "\n" for page in doc)
                thumbnail = render_thumbnail(doc, thumbnail_scale, thumbnail_quality)
                page_count = doc.page_count
    except ExtractionError:
        raise
    except (fitz.FileDataError, RuntimeError, ValueError) as e:
        raise ExtractionError(f"Could not read PDF: {e}", details={"path": str(path)}) from e

    info(_LOG, "extracted", file=path.name, pages=page_count, chars=len(text), seconds=round(t.seconds, 3))
    return ExtractedDocument(text=text, thumbnail=thumbnail, page_count=page_count)
