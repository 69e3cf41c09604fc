"""Renderer boundary: positioned spans via PyMuPDF, flat text via pdfplumber.

PyMuPDF is the structured renderer used by the metadata, table and markdown
passes. pdfplumber is the plain linear text extractor they fall back to when
PyMuPDF cannot open a document.
"""
from __future__ import annotations

import io
import logging
import threading

import pdfplumber
import pymupdf

from .models import PlainText, TextFragment

logger = logging.getLogger(__name__)

# Keys read from the embedded metadata dictionary
_METADATA_KEYS = ("title", "author", "subject", "keywords", "creationDate")

# PyMuPDF is not thread-safe; stages run in worker threads, so every call
# into it goes through this lock.
_MUPDF_LOCK = threading.RLock()


class RendererUnavailableError(RuntimeError):
    """The renderer could not open or read the document."""


def _clean_metadata(raw: dict | None) -> dict[str, str]:
    """Keep non-empty string values, lower-casing keys."""
    cleaned: dict[str, str] = {}
    for key, value in (raw or {}).items():
        if isinstance(value, str) and value.strip():
            cleaned[key[0].lower() + key[1:]] = value.strip()
    return cleaned


class PyMuPDFDocument:
    """An open document exposing spans, text and metadata per page."""

    def __init__(self, doc: pymupdf.Document):
        self._doc = doc

    @property
    def page_count(self) -> int:
        with _MUPDF_LOCK:
            return self._doc.page_count

    def metadata(self) -> dict[str, str]:
        with _MUPDF_LOCK:
            raw = self._doc.metadata or {}
        return {k: v for k, v in _clean_metadata(raw).items() if k in _METADATA_KEYS}

    def fragments(self, page_index: int) -> list[TextFragment]:
        """Text spans of one page with baseline position and font metrics."""
        try:
            with _MUPDF_LOCK:
                page_dict = self._doc[page_index].get_text("dict")
        except Exception as e:
            raise RendererUnavailableError(
                f"Cannot read page {page_index + 1}: {e}"
            ) from e

        fragments = []
        for block in page_dict.get("blocks", []):
            if block.get("type", 0) != 0:
                continue
            for line in block.get("lines", []):
                for span in line.get("spans", []):
                    text = span.get("text", "")
                    if not text.strip():
                        continue
                    x0, y0, x1, y1 = span["bbox"]
                    fragments.append(TextFragment(
                        text=text,
                        x=x0,
                        y=span.get("origin", (x0, y1))[1],
                        width=x1 - x0,
                        height=y1 - y0,
                        font_name=span.get("font", ""),
                        font_size=span.get("size", 0.0),
                    ))
        return fragments

    def text(self, page_index: int) -> str:
        """Reading-order text of one page, one line per text line."""
        try:
            with _MUPDF_LOCK:
                return self._doc[page_index].get_text(sort=True)
        except Exception as e:
            raise RendererUnavailableError(
                f"Cannot read page {page_index + 1}: {e}"
            ) from e

    def close(self) -> None:
        with _MUPDF_LOCK:
            self._doc.close()

    def __enter__(self) -> PyMuPDFDocument:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class PyMuPDFRenderer:
    """Structured renderer backed by PyMuPDF."""

    def open(self, data: bytes) -> PyMuPDFDocument:
        try:
            with _MUPDF_LOCK:
                doc = pymupdf.open(stream=data, filetype="pdf")
        except Exception as e:
            raise RendererUnavailableError(f"PyMuPDF could not open document: {e}") from e
        return PyMuPDFDocument(doc)


class PdfPlumberTextExtractor:
    """Fallback linear text extractor backed by pdfplumber."""

    def extract(self, data: bytes) -> PlainText:
        try:
            with pdfplumber.open(io.BytesIO(data)) as pdf:
                pages = [page.extract_text() or "" for page in pdf.pages]
                metadata = _clean_metadata(
                    {k: v for k, v in (pdf.metadata or {}).items() if isinstance(v, str)}
                )
        except Exception as e:
            raise RendererUnavailableError(f"pdfplumber could not read document: {e}") from e
        logger.debug(f"pdfplumber fallback read {len(pages)} pages")
        return PlainText(pages=pages, metadata=metadata)
