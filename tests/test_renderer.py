"""Tests for the PyMuPDF and pdfplumber renderer adapters."""
import pytest
from conftest import TABLE_COLUMN_X, TABLE_HEADERS
from paper_evidence.renderer import PdfPlumberTextExtractor, PyMuPDFRenderer, RendererUnavailableError


def test_fragments_carry_position_and_font(table_pdf):
    with PyMuPDFRenderer().open(table_pdf) as doc:
        assert doc.page_count == 1
        fragments = doc.fragments(0)
    header = [f for f in fragments if f.text.strip() in TABLE_HEADERS]
    assert sorted(f.x for f in header) == pytest.approx(TABLE_COLUMN_X, abs=0.5)
    assert all(f.y == pytest.approx(100, abs=0.5) for f in header)
    assert all(f.font_size == pytest.approx(10) for f in fragments)


def test_metadata_keys(metadata_pdf):
    with PyMuPDFRenderer().open(metadata_pdf) as doc:
        meta = doc.metadata()
    assert meta["title"] == "Forecasting Demand with Neural Networks"
    assert meta["author"] == "Ada Lovelace, Alan Turing"
    assert "producer" not in meta


def test_open_garbage_raises():
    with pytest.raises(RendererUnavailableError):
        PyMuPDFRenderer().open(b"not a pdf")


def test_pdfplumber_fallback(prose_pdf):
    plain = PdfPlumberTextExtractor().extract(prose_pdf)
    assert plain.page_count == 1
    assert "latency" in plain.text


def test_pdfplumber_garbage_raises():
    with pytest.raises(RendererUnavailableError):
        PdfPlumberTextExtractor().extract(b"not a pdf")
