"""Two-pass bibliographic metadata recovery.

Pass 1 reads the PDF's embedded metadata dictionary. Pass 2 mines the first
pages of rendered text for DOI, abstract, date, journal and keywords, and for
title/authors when the dictionary has none. Pass 1 always wins; pass 2 only
fills gaps.
"""
from __future__ import annotations

import logging
import re

from .interfaces import DocumentRendererProtocol, TextExtractorProtocol
from .models import DocumentMetadata, PlainText
from .renderer import PdfPlumberTextExtractor, PyMuPDFRenderer, RendererUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_SCAN_PAGES = 2

_MONTHS = (
    r"(?:January|February|March|April|May|June|July|August|September|"
    r"October|November|December)"
)

DOI_PATTERN = re.compile(r"\b(10\.\d{4,9}/[^\s,;]+)")
DOI_TRAILING = re.compile(r"[.)\]]+$")

ABSTRACT_PATTERN = re.compile(
    r"\b(?:abstract|summary)\b\s*[:\-.]?\s*(.{50,2000}?)"
    r"(?=\n\s*(?:keywords?\b|key\s*words|index\s+terms|introduction\b|1\.?\s|background\b)|\n\s*\n)",
    re.IGNORECASE | re.DOTALL,
)

DATE_PATTERNS = [
    re.compile(rf"\b({_MONTHS}\s+(?:\d{{1,2}},?\s+)?\d{{4}})\b", re.IGNORECASE),
    re.compile(r"\b(\d{4}-\d{2}-\d{2})\b"),
    re.compile(rf"\b(\d{{1,2}}\s+{_MONTHS}\s+\d{{4}})\b", re.IGNORECASE),
]

JOURNAL_PATTERNS = [
    re.compile(r"\bjournal\s*:\s*([^\n]{5,200})", re.IGNORECASE),
    re.compile(r"\b(?:published\s+in|proceedings\s+of)\s*[:\-]?\s*([^\n]{5,200})", re.IGNORECASE),
    re.compile(r"([^\n]{0,80}\bjournal\s+of\b[^\n]{3,120})", re.IGNORECASE),
]

KEYWORDS_PATTERN = re.compile(
    r"\b(?:keywords?|key\s*words?|index\s+terms?)\b\s*[:\-—]?\s*([^\n]{10,500})",
    re.IGNORECASE,
)

AUTHOR_SEPARATOR = re.compile(r"\s*[,;]\s*|\s+\band\b\s+|\s*&\s*", re.IGNORECASE)
KEYWORD_SEPARATOR = re.compile(r"\s*[,;]\s*")

TITLE_MIN_LENGTH = 10   # exclusive
TITLE_MAX_LENGTH = 300  # exclusive
AUTHOR_BLOCK_MIN = 3
AUTHOR_BLOCK_MAX = 500


# =============================================================================
# Field parsers
# =============================================================================

def split_authors(raw: str | None) -> list[str] | None:
    """Tokenize an author string, dropping numeric or degenerate tokens."""
    if not raw:
        return None
    authors = []
    for token in AUTHOR_SEPARATOR.split(raw):
        token = token.strip().strip("*0123456789†‡ ")
        if 2 <= len(token) <= 100 and not token.replace(" ", "").isdigit():
            authors.append(token)
    return authors or None


def split_keywords(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    keywords = [k.strip().rstrip(".") for k in KEYWORD_SEPARATOR.split(raw)]
    keywords = [k for k in keywords if 2 <= len(k) < 100]
    return keywords or None


def find_doi(text: str) -> str | None:
    match = DOI_PATTERN.search(text)
    if not match:
        return None
    return DOI_TRAILING.sub("", match.group(1))


def find_abstract(text: str) -> str | None:
    match = ABSTRACT_PATTERN.search(text)
    if not match:
        return None
    return " ".join(match.group(1).split())


def find_publication_date(text: str) -> str | None:
    for pattern in DATE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def find_journal(text: str) -> str | None:
    for pattern in JOURNAL_PATTERNS:
        match = pattern.search(text)
        if match:
            journal = match.group(1).strip().rstrip(".,;")
            if len(journal) >= 5:
                return journal
    return None


def find_keywords(text: str) -> list[str] | None:
    match = KEYWORDS_PATTERN.search(text)
    return split_keywords(match.group(1)) if match else None


def find_title_line(text: str) -> tuple[str, int] | None:
    """First substantial line short enough to be a title, with its end offset."""
    offset = 0
    for line in text.split("\n"):
        stripped = line.strip()
        if TITLE_MIN_LENGTH < len(stripped) < TITLE_MAX_LENGTH and not DOI_PATTERN.search(stripped):
            return stripped, offset + len(line)
        offset += len(line) + 1
    return None


def find_author_block(text: str, title_end: int) -> list[str] | None:
    """Authors from the lines between the title and the abstract marker."""
    marker = re.search(r"\babstract\b", text[title_end:], re.IGNORECASE)
    if not marker:
        return None
    block = " ".join(text[title_end:title_end + marker.start()].split())
    if not AUTHOR_BLOCK_MIN <= len(block) <= AUTHOR_BLOCK_MAX:
        return None
    return split_authors(block)


def metadata_from_dictionary(raw: dict[str, str]) -> DocumentMetadata:
    """Pass 1: fields from the embedded metadata dictionary."""
    return DocumentMetadata(
        title=raw.get("title") or None,
        authors=split_authors(raw.get("author")),
        keywords=split_keywords(raw.get("keywords")),
    )


def fill_from_text(
    metadata: DocumentMetadata,
    text: str,
    *,
    infer_title: bool = True,
) -> DocumentMetadata:
    """Pass 2: fill missing fields from rendered text, in place."""
    metadata.doi = metadata.doi or find_doi(text)
    metadata.abstract = metadata.abstract or find_abstract(text)
    metadata.publication_date = metadata.publication_date or find_publication_date(text)
    metadata.journal = metadata.journal or find_journal(text)
    metadata.keywords = metadata.keywords or find_keywords(text)

    if infer_title and not metadata.title:
        found = find_title_line(text)
        if found:
            metadata.title, title_end = found
            if not metadata.authors:
                metadata.authors = find_author_block(text, title_end)
    return metadata


# =============================================================================
# Extractor
# =============================================================================

class MetadataExtractor:
    """Recover DocumentMetadata from PDF bytes."""

    def __init__(
        self,
        renderer: DocumentRendererProtocol | None = None,
        text_extractor: TextExtractorProtocol | None = None,
        scan_pages: int = DEFAULT_SCAN_PAGES,
    ):
        self.renderer = renderer or PyMuPDFRenderer()
        self.text_extractor = text_extractor or PdfPlumberTextExtractor()
        self.scan_pages = scan_pages

    def extract(self, data: bytes) -> tuple[DocumentMetadata, list[str]]:
        """Run both passes, falling back to flat text if the renderer fails.

        Returns:
            Tuple of (metadata, warnings)
        """
        try:
            return self._extract_structured(data), []
        except RendererUnavailableError as e:
            logger.warning(f"Structured metadata pass unavailable, using text fallback: {e}")
            warnings = [f"Metadata renderer unavailable; used plain-text fallback: {e}"]

        try:
            plain = self.text_extractor.extract(data)
        except RendererUnavailableError as e:
            logger.warning(f"Metadata extraction failed: {e}")
            warnings.append(f"Metadata extraction failed: {e}")
            return DocumentMetadata(), warnings

        return self._extract_plain(plain), warnings

    def _extract_structured(self, data: bytes) -> DocumentMetadata:
        with self.renderer.open(data) as doc:
            metadata = metadata_from_dictionary(doc.metadata())
            metadata.page_count = doc.page_count
            pages = [doc.text(i) for i in range(min(self.scan_pages, doc.page_count))]
        return fill_from_text(metadata, "\n\n".join(pages))

    def _extract_plain(self, plain: PlainText) -> DocumentMetadata:
        metadata = metadata_from_dictionary(plain.metadata)
        metadata.page_count = plain.page_count
        text = "\n\n".join(plain.pages[:self.scan_pages])
        return fill_from_text(metadata, text, infer_title=False)
