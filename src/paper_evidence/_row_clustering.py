"""Row clustering utility shared by the table and markdown passes.

Groups positioned text fragments into visual rows by baseline proximity.
"""
from __future__ import annotations

from .models import TextFragment


def cluster_fragments_into_rows(
    fragments: list[TextFragment],
    *,
    tolerance: float,
) -> list[list[TextFragment]]:
    """Cluster fragments into rows by y proximity.

    Fragments are sorted by (y, x). A fragment joins the current row while
    its y differs from the row's first fragment by less than ``tolerance``;
    otherwise it starts a new row.

    Args:
        fragments: Fragments of a single page.
        tolerance: Maximum y distance (exclusive) to the row anchor.

    Returns:
        List of rows, each sorted left to right. Rows sorted top to bottom.
    """
    if not fragments:
        return []

    ordered = sorted(fragments, key=lambda f: (f.y, f.x))

    rows: list[list[TextFragment]] = []
    current_row: list[TextFragment] = [ordered[0]]
    anchor_y = ordered[0].y

    for frag in ordered[1:]:
        if abs(frag.y - anchor_y) < tolerance:
            current_row.append(frag)
        else:
            rows.append(sorted(current_row, key=lambda f: f.x))
            current_row = [frag]
            anchor_y = frag.y

    rows.append(sorted(current_row, key=lambda f: f.x))
    return rows


def median(values: list[float], default: float) -> float:
    """Upper median of values, or ``default`` when empty."""
    if not values:
        return default
    ordered = sorted(values)
    return ordered[len(ordered) // 2]
