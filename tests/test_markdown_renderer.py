"""Tests for Markdown reconstruction."""
from conftest import PROSE_LINES, FakeTextExtractor, build_pdf, text_page
from paper_evidence.markdown_renderer import (
    PAGE_SEPARATOR,
    MarkdownRenderer,
    format_fragment,
    heading_level,
)
from paper_evidence.models import TextFragment


def test_heading_levels():
    assert heading_level(24, 12) == 1
    assert heading_level(20, 12) == 2
    assert heading_level(16, 12) == 3
    assert heading_level(13, 12) == 0
    assert heading_level(12, 0) == 0


def test_emphasis_from_font_name():
    assert format_fragment(TextFragment("a", 0, 0, font_name="Helvetica-Bold")) == "**a**"
    assert format_fragment(TextFragment("a", 0, 0, font_name="Times-Italic")) == "*a*"
    assert format_fragment(TextFragment("a", 0, 0, font_name="Arial-BoldOblique")) == "***a***"
    assert format_fragment(TextFragment("a", 0, 0, font_name="Helvetica")) == "a"


def test_render_page_headings_and_paragraphs():
    fragments = [
        TextFragment("Results", 72, 50, font_size=24),
        TextFragment("Accuracy", 72, 100, font_name="Helvetica-Bold", font_size=12),
        TextFragment("improved.", 130, 100, font_name="Helvetica", font_size=12),
        TextFragment("Next line", 72, 114, font_size=12),
        TextFragment("after gap", 72, 160, font_size=12),
    ]
    md = MarkdownRenderer().render_page(fragments)
    assert md == "# Results\n\n**Accuracy** improved.\nNext line\n\nafter gap"


def test_render_empty_page():
    assert MarkdownRenderer().render_page([TextFragment("  ", 0, 0)]) == ""


def test_convert_pdf(prose_pdf):
    md, warnings = MarkdownRenderer().convert(prose_pdf)
    assert warnings == []
    assert "72.5% to 81.3%" in md
    assert "latency by 35 ms" in md


def test_pages_are_separated():
    data = build_pdf([text_page(["First page text"]), text_page(["Second page text"])])
    md, _ = MarkdownRenderer().convert(data)
    assert md == "First page text" + PAGE_SEPARATOR + "Second page text"


def test_fallback_to_plain_text(failing_renderer):
    renderer = MarkdownRenderer(failing_renderer, FakeTextExtractor(pages=PROSE_LINES[:2]))
    md, warnings = renderer.convert(b"%PDF")
    assert md == PROSE_LINES[0] + PAGE_SEPARATOR + PROSE_LINES[1]
    assert len(warnings) == 1


def test_unreadable_document(failing_renderer):
    renderer = MarkdownRenderer(failing_renderer, FakeTextExtractor(fail=True))
    md, warnings = renderer.convert(b"%PDF")
    assert md == ""
    assert len(warnings) == 2
