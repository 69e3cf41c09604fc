"""
Shared pytest fixtures for paper-evidence tests.

PDFs are built in memory with PyMuPDF so tests never depend on files on disk.
"""
from __future__ import annotations

import pymupdf
import pytest

from paper_evidence.models import PlainText
from paper_evidence.renderer import RendererUnavailableError
from paper_evidence.repository import SQLiteRepository


# =============================================================================
# PDF builders
# =============================================================================

TABLE_HEADERS = ["Epoch", "Accuracy (%)", "Loss"]
TABLE_ROWS = [
    ["1", "72.5", "0.81"],
    ["2", "78.1", "0.64"],
    ["3", "81.3", "0.52"],
    ["4", "84.0", "0.47"],
]
TABLE_COLUMN_X = [72, 172, 272]

PROSE_LINES = [
    "The proposed model improved accuracy from 72.5% to 81.3%",
    "compared to the baseline and reduced latency by 35 ms.",
    "Throughput increased to 1200 requests per second overall.",
]

WJARR_LINES = [
    "World Journal of Advanced Research and Reviews, 2023, 18(02), 123-130",
    "DOI: 10.30574/wjarr.2023.18.2.0789",
    "Received on 12 April 2023; revised on 20 May 2023",
]

# A citation header line as it appears on WJARR article pages
WJARR_CITATION = (
    "World Journal of Advanced Research and Reviews, 2025, 26(02), 874-879. "
    "DOI 10.30574/wjarr.2025.26.2.1521."
)


def build_pdf(
    pages: list[list[tuple[float, float, str]]],
    metadata: dict | None = None,
    fontsize: float = 10,
) -> bytes:
    """PDF bytes with each (x, baseline_y, text) inserted on its page."""
    doc = pymupdf.open()
    for items in pages:
        page = doc.new_page(width=612, height=792)
        for x, y, text in items:
            page.insert_text((x, y), text, fontsize=fontsize)
    if metadata:
        doc.set_metadata(metadata)
    data = doc.tobytes()
    doc.close()
    return data


def table_page(headers=None, rows=None, top: float = 100, row_height: float = 20):
    headers = headers or TABLE_HEADERS
    rows = rows if rows is not None else TABLE_ROWS
    items = [(TABLE_COLUMN_X[i], top, h) for i, h in enumerate(headers)]
    for r, row in enumerate(rows, start=1):
        for c, cell in enumerate(row):
            if cell:
                items.append((TABLE_COLUMN_X[c], top + r * row_height, cell))
    return items


def text_page(lines: list[str], top: float = 100, line_height: float = 14):
    return [(72, top + i * line_height, line) for i, line in enumerate(lines)]


@pytest.fixture
def table_pdf() -> bytes:
    """One page holding a clean 3-column, 4-row results table."""
    return build_pdf([table_page()])


@pytest.fixture
def prose_pdf() -> bytes:
    """One page of metric-bearing running text and no table."""
    return build_pdf([text_page(PROSE_LINES)], fontsize=11)


@pytest.fixture
def wjarr_pdf() -> bytes:
    """Journal front-matter whose numbers are all bibliographic."""
    return build_pdf([text_page(WJARR_LINES)], fontsize=11)


@pytest.fixture
def metadata_pdf() -> bytes:
    lines = [
        "Forecasting Demand with Neural Networks",
        "Journal of Machine Learning Research",
        "Published March 2021",
        "DOI: 10.1234/jmlr.2021.0042",
        "Abstract: We study the forecasting accuracy of neural networks across many retail datasets.",
        "Keywords: forecasting, neural networks, time series",
    ]
    return build_pdf(
        [text_page(lines), text_page(["Introduction"])],
        metadata={"title": "Forecasting Demand with Neural Networks", "author": "Ada Lovelace, Alan Turing"},
    )


# =============================================================================
# Store
# =============================================================================

@pytest.fixture
def repo():
    """Ephemeral in-memory repository."""
    repository = SQLiteRepository(":memory:")
    yield repository
    repository.close()


# =============================================================================
# Fakes
# =============================================================================

class FailingRenderer:
    """Structured renderer that can never open a document."""

    def open(self, data: bytes):
        raise RendererUnavailableError("renderer offline")


class FakeTextExtractor:
    """Fallback text extractor returning canned pages."""

    def __init__(self, pages: list[str] | None = None, metadata: dict | None = None, fail: bool = False):
        self.pages = pages or []
        self.metadata = metadata or {}
        self.fail = fail

    def extract(self, data: bytes) -> PlainText:
        if self.fail:
            raise RendererUnavailableError("no text layer")
        return PlainText(pages=list(self.pages), metadata=dict(self.metadata))


@pytest.fixture
def failing_renderer() -> FailingRenderer:
    return FailingRenderer()
