"""Reading-order Markdown reconstruction from font metrics.

Headings come from the size ratio of a line's first span against the page's
median (body) size; emphasis comes from font-name substrings; paragraph
breaks come from vertical gaps between consecutive lines. The result is the
input to prose numeric mining.
"""
from __future__ import annotations

import logging

from ._row_clustering import cluster_fragments_into_rows, median
from .interfaces import DocumentRendererProtocol, TextExtractorProtocol
from .models import TextFragment
from .renderer import PdfPlumberTextExtractor, PyMuPDFRenderer, RendererUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_BODY_FONT_SIZE = 12.0
DEFAULT_LINE_TOLERANCE = 2.0
DEFAULT_PARAGRAPH_GAP = 18.0

# (minimum size ratio vs body, heading level), checked in order
HEADING_RATIOS = ((2.0, 1), (1.6, 2), (1.3, 3))

BOLD_MARKERS = ("bold", "heavy", "black")
ITALIC_MARKERS = ("italic", "oblique")

PAGE_SEPARATOR = "\n\n---\n\n"


def heading_level(font_size: float, body_size: float) -> int:
    """Markdown heading level for a font size, 0 for body text."""
    if body_size <= 0:
        return 0
    ratio = font_size / body_size
    for threshold, level in HEADING_RATIOS:
        if ratio >= threshold:
            return level
    return 0


def format_fragment(fragment: TextFragment) -> str:
    """Wrap a span's text in Markdown emphasis inferred from its font name."""
    text = fragment.text.strip()
    if not text:
        return ""
    font = fragment.font_name.lower()
    bold = any(marker in font for marker in BOLD_MARKERS)
    italic = any(marker in font for marker in ITALIC_MARKERS)
    if bold and italic:
        return f"***{text}***"
    if bold:
        return f"**{text}**"
    if italic:
        return f"*{text}*"
    return text


class MarkdownRenderer:
    """Convert PDF bytes to Markdown with heading and emphasis inference."""

    def __init__(
        self,
        renderer: DocumentRendererProtocol | None = None,
        text_extractor: TextExtractorProtocol | None = None,
        *,
        line_tolerance: float = DEFAULT_LINE_TOLERANCE,
        paragraph_gap: float = DEFAULT_PARAGRAPH_GAP,
    ):
        self.renderer = renderer or PyMuPDFRenderer()
        self.text_extractor = text_extractor or PdfPlumberTextExtractor()
        self.line_tolerance = line_tolerance
        self.paragraph_gap = paragraph_gap

    def convert(self, data: bytes) -> tuple[str, list[str]]:
        """Render the whole document.

        Returns:
            Tuple of (markdown, warnings). Markdown is "" only when neither
            the structured renderer nor the text fallback can read the file.
        """
        try:
            with self.renderer.open(data) as doc:
                pages = [self.render_page(doc.fragments(i)) for i in range(doc.page_count)]
            return PAGE_SEPARATOR.join(pages).strip(), []
        except RendererUnavailableError as e:
            logger.warning(f"Markdown renderer unavailable, using flat text: {e}")
            warnings = [f"Markdown renderer unavailable; used plain-text fallback: {e}"]

        try:
            plain = self.text_extractor.extract(data)
        except RendererUnavailableError as e:
            logger.warning(f"Text fallback failed: {e}")
            warnings.append(f"Text extraction failed: {e}")
            return "", warnings
        return PAGE_SEPARATOR.join(p.strip() for p in plain.pages).strip(), warnings

    def render_page(self, fragments: list[TextFragment]) -> str:
        """Markdown for one page's fragments."""
        fragments = [f for f in fragments if f.text.strip()]
        if not fragments:
            return ""

        body_size = median(
            [f.font_size for f in fragments if f.font_size > 0], DEFAULT_BODY_FONT_SIZE
        )
        lines = cluster_fragments_into_rows(fragments, tolerance=self.line_tolerance)

        parts: list[str] = []
        last_y: float | None = None
        for line in lines:
            y = line[0].y
            if last_y is not None and abs(y - last_y) > self.paragraph_gap and parts:
                parts.append("")
            last_y = y

            level = heading_level(line[0].font_size, body_size)
            if level:
                plain = " ".join(f.text.strip() for f in line if f.text.strip())
                parts.append(f"{'#' * level} {plain}")
            else:
                parts.append(" ".join(s for s in map(format_fragment, line) if s))

        return "\n".join(parts)
