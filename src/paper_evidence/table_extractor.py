"""Table recovery from positioned text fragments.

Tables are reconstructed per page from the structured renderer's spans:
fragments are grouped into rows by baseline, x positions are clustered into
column bands, cells are filled band by band and the first well-populated row
becomes the header. Every candidate gets a confidence score and QA flags so
that low-quality reconstructions are kept for review instead of trusted.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from ._row_clustering import cluster_fragments_into_rows
from .interfaces import DocumentRendererProtocol
from .models import (
    PARSE_FAILED,
    PARSE_PARSED,
    PARSE_PARTIAL,
    ExtractedTable,
    TextFragment,
)
from .renderer import PyMuPDFRenderer, RendererUnavailableError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Geometry thresholds (PDF points)
# ---------------------------------------------------------------------------
DEFAULT_ROW_TOLERANCE = 3.0
DEFAULT_COLUMN_CLUSTER_DISTANCE = 15.0
DEFAULT_COLUMN_MARGIN = 2.0           # band start = min x - margin
DEFAULT_COLUMN_TEXT_WIDTH = 50.0      # band end = max x + allowance
DEFAULT_ASSIGNMENT_SLACK = 5.0
DEFAULT_MIN_COLUMNS = 2
DEFAULT_MIN_ROWS = 2                  # data rows beyond the header
MIN_FRAGMENTS_PER_PAGE = 4

# ---------------------------------------------------------------------------
# Confidence scoring
# ---------------------------------------------------------------------------
TOO_FEW_COLUMNS_PENALTY = 0.4
TOO_FEW_ROWS_PENALTY = 0.3
HIGH_EMPTY_RATIO = 0.5
HIGH_EMPTY_PENALTY = 0.3
MODERATE_EMPTY_RATIO = 0.25
MODERATE_EMPTY_PENALTY = 0.15
INCONSISTENT_COLUMNS_PENALTY = 0.1
CONSISTENT_COLUMNS_BONUS = 0.1
EMPTY_HEADERS_PENALTY = 0.2
# Applied after clamping: every empty cell costs a little, so more empty
# cells in the same structure always score lower.
EMPTY_CELL_DAMPING = 0.1

FAILED_CONFIDENCE = 0.3
PARSED_CONFIDENCE = 0.6
DEFAULT_MIN_TABLE_CONFIDENCE = 0.6

# QA flags
FLAG_TOO_FEW_COLUMNS = "too_few_columns"
FLAG_TOO_FEW_ROWS = "too_few_rows"
FLAG_HIGH_EMPTY = "high_empty_cell_ratio"
FLAG_MODERATE_EMPTY = "moderate_empty_cells"
FLAG_INCONSISTENT_COLUMNS = "inconsistent_column_count"
FLAG_EMPTY_HEADERS = "empty_headers"


@dataclass
class ColumnBand:
    """Horizontal extent of one detected column."""
    start: float
    end: float


# =============================================================================
# Geometry
# =============================================================================

def detect_column_bands(
    rows: list[list[TextFragment]],
    *,
    cluster_distance: float = DEFAULT_COLUMN_CLUSTER_DISTANCE,
    margin: float = DEFAULT_COLUMN_MARGIN,
    text_width: float = DEFAULT_COLUMN_TEXT_WIDTH,
) -> list[ColumnBand]:
    """Cluster fragment x positions into column bands, left to right."""
    xs = sorted(frag.x for row in rows for frag in row)
    if not xs:
        return []

    clusters: list[list[float]] = [[xs[0]]]
    for x in xs[1:]:
        if x - clusters[-1][-1] < cluster_distance:
            clusters[-1].append(x)
        else:
            clusters.append([x])

    return [ColumnBand(start=c[0] - margin, end=c[-1] + text_width) for c in clusters]


def assign_to_columns(
    row: list[TextFragment],
    bands: list[ColumnBand],
    *,
    slack: float = DEFAULT_ASSIGNMENT_SLACK,
) -> list[str]:
    """Place each fragment in the right-most band starting at or before it.

    Fragments landing in the same band are joined with a space.
    """
    cells: list[list[str]] = [[] for _ in bands]
    for frag in sorted(row, key=lambda f: f.x):
        index = 0
        for i, band in enumerate(bands):
            if band.start <= frag.x + slack:
                index = i
            else:
                break
        text = frag.text.strip()
        if text:
            cells[index].append(text)
    return [" ".join(parts) for parts in cells]


def select_header(cell_rows: list[list[str]]) -> int | None:
    """Index of the first row with at least half its cells non-empty."""
    for i, cells in enumerate(cell_rows):
        if not cells:
            continue
        filled = sum(1 for c in cells if c.strip())
        if filled * 2 >= len(cells):
            return i
    return None


# =============================================================================
# Scoring
# =============================================================================

def score_table(
    headers: list[str],
    rows: list[list[str]],
    *,
    min_columns: int = DEFAULT_MIN_COLUMNS,
    min_rows: int = DEFAULT_MIN_ROWS,
) -> tuple[float, list[str]]:
    """Confidence in [0, 1] and QA flags for a reconstructed table."""
    flags: list[str] = []
    score = 1.0
    num_cols = len(headers)

    if num_cols < min_columns:
        score -= TOO_FEW_COLUMNS_PENALTY
        flags.append(FLAG_TOO_FEW_COLUMNS)
    if len(rows) < min_rows:
        score -= TOO_FEW_ROWS_PENALTY
        flags.append(FLAG_TOO_FEW_ROWS)

    data_cells = sum(len(r) for r in rows)
    data_empty = sum(1 for r in rows for c in r if not c.strip())
    empty_ratio = data_empty / data_cells if data_cells else 1.0
    if empty_ratio > HIGH_EMPTY_RATIO:
        score -= HIGH_EMPTY_PENALTY
        flags.append(FLAG_HIGH_EMPTY)
    elif empty_ratio > MODERATE_EMPTY_RATIO:
        score -= MODERATE_EMPTY_PENALTY
        flags.append(FLAG_MODERATE_EMPTY)

    if rows:
        if all(len(r) == num_cols for r in rows):
            score += CONSISTENT_COLUMNS_BONUS
        else:
            score -= INCONSISTENT_COLUMNS_PENALTY
            flags.append(FLAG_INCONSISTENT_COLUMNS)

    header_empty = sum(1 for h in headers if not h.strip())
    if header_empty == num_cols:
        score -= EMPTY_HEADERS_PENALTY
        flags.append(FLAG_EMPTY_HEADERS)

    score = max(0.0, min(1.0, score))

    total_cells = num_cols + data_cells
    if total_cells:
        score *= 1.0 - EMPTY_CELL_DAMPING * (header_empty + data_empty) / total_cells

    return score, flags


def parse_status_for(confidence: float, flags: list[str]) -> str:
    if confidence < FAILED_CONFIDENCE:
        return PARSE_FAILED
    if confidence < PARSED_CONFIDENCE or FLAG_INCONSISTENT_COLUMNS in flags:
        return PARSE_PARTIAL
    return PARSE_PARSED


def filter_trusted_tables(
    tables: list[ExtractedTable],
    min_confidence: float = DEFAULT_MIN_TABLE_CONFIDENCE,
) -> tuple[list[ExtractedTable], list[ExtractedTable]]:
    """Split tables into (trusted, flagged); the threshold itself is trusted."""
    trusted = [t for t in tables if t.is_trusted(min_confidence)]
    flagged = [t for t in tables if not t.is_trusted(min_confidence)]
    return trusted, flagged


# =============================================================================
# Extractor
# =============================================================================

class TableExtractor:
    """Detect one table candidate per page from positioned spans."""

    def __init__(
        self,
        renderer: DocumentRendererProtocol | None = None,
        *,
        row_tolerance: float = DEFAULT_ROW_TOLERANCE,
        column_cluster_distance: float = DEFAULT_COLUMN_CLUSTER_DISTANCE,
        column_margin: float = DEFAULT_COLUMN_MARGIN,
        column_text_width: float = DEFAULT_COLUMN_TEXT_WIDTH,
        min_columns: int = DEFAULT_MIN_COLUMNS,
        min_rows: int = DEFAULT_MIN_ROWS,
    ):
        """
        Initialize table extractor.

        Args:
            renderer: Structured renderer; PyMuPDF when omitted
            row_tolerance: Max baseline distance for fragments in one row
            column_cluster_distance: Max gap between x positions of one column
            column_margin: Band start offset left of the leftmost fragment
            column_text_width: Band width allowance right of the last x
            min_columns: Minimum columns for a table candidate
            min_rows: Minimum data rows (excluding header)
        """
        self.renderer = renderer or PyMuPDFRenderer()
        self.row_tolerance = row_tolerance
        self.column_cluster_distance = column_cluster_distance
        self.column_margin = column_margin
        self.column_text_width = column_text_width
        self.min_columns = min_columns
        self.min_rows = min_rows

    @classmethod
    def from_config(cls, config, renderer: DocumentRendererProtocol | None = None) -> TableExtractor:
        return cls(
            renderer,
            row_tolerance=config.table_row_tolerance,
            column_cluster_distance=config.table_column_cluster_distance,
            column_margin=config.table_column_margin,
            column_text_width=config.table_column_text_width,
            min_columns=config.table_min_columns,
            min_rows=config.table_min_rows,
        )

    def extract_tables(self, data: bytes) -> tuple[list[ExtractedTable], list[str]]:
        """Extract table candidates from every page.

        Never raises for unreadable documents: an unavailable renderer yields
        an empty list and a warning.

        Returns:
            Tuple of (tables sorted by page, warnings)
        """
        warnings: list[str] = []
        try:
            doc = self.renderer.open(data)
        except RendererUnavailableError as e:
            logger.warning(f"Table extraction skipped: {e}")
            return [], [f"Table extraction skipped; renderer unavailable: {e}"]

        tables: list[ExtractedTable] = []
        with doc:
            for page_index in range(doc.page_count):
                try:
                    fragments = doc.fragments(page_index)
                except RendererUnavailableError as e:
                    logger.warning(f"Skipping page {page_index + 1}: {e}")
                    warnings.append(f"Table extraction skipped page {page_index + 1}: {e}")
                    continue
                table = self.detect_page_table(fragments, page_index + 1)
                if table is not None:
                    tables.append(table)

        logger.debug(f"Detected {len(tables)} table candidates")
        return tables, warnings

    def detect_page_table(
        self, fragments: list[TextFragment], page_number: int
    ) -> ExtractedTable | None:
        """Reconstruct the page's table candidate, or None if non-tabular."""
        fragments = [f for f in fragments if f.text.strip()]
        if len(fragments) < MIN_FRAGMENTS_PER_PAGE:
            return None

        rows = cluster_fragments_into_rows(fragments, tolerance=self.row_tolerance)
        if len(rows) < self.min_rows + 1:
            return None

        bands = detect_column_bands(
            rows,
            cluster_distance=self.column_cluster_distance,
            margin=self.column_margin,
            text_width=self.column_text_width,
        )
        if len(bands) < self.min_columns:
            return None

        cell_rows = [assign_to_columns(row, bands) for row in rows]
        header_index = select_header(cell_rows)
        if header_index is None:
            return None

        headers = cell_rows[header_index]
        data_rows = cell_rows[header_index + 1:]
        if len(data_rows) < self.min_rows:
            return None

        confidence, flags = score_table(
            headers, data_rows, min_columns=self.min_columns, min_rows=self.min_rows
        )
        used = [f for row in rows[header_index:] for f in row]
        bbox = (
            min(f.x for f in used),
            min(f.y - f.height for f in used),
            max(f.x + f.width for f in used),
            max(f.y for f in used),
        )
        logger.debug(
            f"Page {page_number}: {len(bands)} columns, {len(data_rows)} rows, "
            f"confidence {confidence:.2f} {flags}"
        )
        return ExtractedTable(
            page_number=page_number,
            table_index=0,
            headers=headers,
            rows=data_rows,
            confidence=confidence,
            parse_status=parse_status_for(confidence, flags),
            qa_flags=flags,
            bbox=bbox,
        )
