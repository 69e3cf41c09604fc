"""
All dataclasses for the system. No dependencies on implementation modules.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

# Ingestion lifecycle
STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

# A rerun may re-enter "processing" from any state; a record stuck in
# "processing" after a crash or timeout is rerun as well.
STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_PENDING: frozenset({STATUS_PROCESSING}),
    STATUS_PROCESSING: frozenset({STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED}),
    STATUS_COMPLETED: frozenset({STATUS_PROCESSING}),
    STATUS_FAILED: frozenset({STATUS_PROCESSING}),
}

# Table parse status
PARSE_PARSED = "parsed"
PARSE_PARTIAL = "partial"
PARSE_FAILED = "failed"

# Prose lanes
LANE_STRONG = "strong"
LANE_WEAK = "weak"
LANE_NONE = "none"

PROSE_SOURCE = "prose_numeric_extraction"


class InvalidStatusTransitionError(ValueError):
    """Raised when an ingestion is moved between incompatible states."""

    def __init__(self, current: str, new: str):
        self.current = current
        self.new = new
        super().__init__(f"Illegal ingestion status transition: {current} -> {new}")


def check_transition(current: str, new: str) -> None:
    """Raise InvalidStatusTransitionError unless current -> new is allowed."""
    if new not in STATUS_TRANSITIONS.get(current, frozenset()):
        raise InvalidStatusTransitionError(current, new)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# RENDERER MODELS
# =============================================================================

@dataclass
class TextFragment:
    """A positioned run of text on a page (PDF points, y grows downwards)."""
    text: str
    x: float
    y: float                  # baseline
    width: float = 0.0
    height: float = 0.0
    font_name: str = ""
    font_size: float = 0.0


@dataclass
class PlainText:
    """Flattened text from the fallback extractor."""
    pages: list[str]
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def text(self) -> str:
        return "\n\n".join(self.pages)


# =============================================================================
# DOCUMENT MODELS
# =============================================================================

@dataclass
class DocumentMetadata:
    """Bibliographic fields recovered from a document.

    Missing fields stay None so they are never confused with real values.
    """
    title: str | None = None
    authors: list[str] | None = None
    abstract: str | None = None
    doi: str | None = None
    publication_date: str | None = None
    journal: str | None = None
    keywords: list[str] | None = None
    page_count: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict | None) -> DocumentMetadata:
        if not data:
            return cls()
        known = {k: data.get(k) for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)


@dataclass
class Ingestion:
    """One processed document per (owner, content hash)."""
    id: str
    owner_id: str
    file_name: str
    content_hash: str
    size_bytes: int
    status: str = STATUS_PENDING
    version: int = 1
    page_count: int | None = None
    metadata: dict = field(default_factory=dict)
    error_message: str | None = None
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ExtractedTable:
    """A table recovered from positioned text on one page."""
    page_number: int                           # 1-indexed
    table_index: int                           # Index within page (0-based)
    headers: list[str]
    rows: list[list[str]]
    confidence: float
    parse_status: str = PARSE_PARSED
    qa_flags: list[str] = field(default_factory=list)
    bbox: tuple[float, float, float, float] | None = None
    id: str = ""                               # Assigned when persisted
    ingestion_id: str = ""
    ingestion_version: int = 1

    @property
    def num_rows(self) -> int:
        """Number of data rows (excludes header)."""
        return len(self.rows)

    @property
    def num_cols(self) -> int:
        header_count = len(self.headers) if self.headers else 0
        row_count = max((len(r) for r in self.rows), default=0)
        return max(header_count, row_count)

    def is_trusted(self, min_confidence: float) -> bool:
        return self.confidence >= min_confidence

    def to_markdown(self) -> str:
        lines = []
        if self.headers:
            lines.append("| " + " | ".join(self.headers) + " |")
            lines.append("| " + " | ".join(["---"] * len(self.headers)) + " |")
        for row in self.rows:
            padded = row + [""] * (self.num_cols - len(row))
            lines.append("| " + " | ".join(padded[:self.num_cols]) + " |")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ingestion_id": self.ingestion_id,
            "page": self.page_number,
            "table_index": self.table_index,
            "headers": self.headers,
            "rows": self.rows,
            "confidence": round(self.confidence, 4),
            "parse_status": self.parse_status,
            "qa_flags": list(self.qa_flags),
            "num_rows": self.num_rows,
            "num_cols": self.num_cols,
            "markdown": self.to_markdown(),
        }


# =============================================================================
# NUMERIC EVIDENCE MODELS
# =============================================================================

@dataclass(frozen=True)
class TableProvenance:
    """The point was read from a persisted table."""
    table_id: str
    kind: str = field(default="table", init=False)

    def to_metadata(self) -> dict:
        return {"source": "table", "sourceTableId": self.table_id}


@dataclass(frozen=True)
class ProseProvenance:
    """The point was mined from running text."""
    lane: str
    context_snippet: str
    extraction_version: str
    kind: str = field(default="prose", init=False)

    def to_metadata(self) -> dict:
        return {
            "source": PROSE_SOURCE,
            "extractionVersion": self.extraction_version,
            "extractionLane": self.lane,
            "contextSnippet": self.context_snippet,
        }


Provenance = TableProvenance | ProseProvenance


@dataclass
class ScientificDataPoint:
    """One numeric observation with its extraction origin."""
    x_name: str
    y_name: str
    x_value: float
    y_value: float
    provenance: Provenance | None = None
    unit_x: str | None = None
    unit_y: str | None = None
    metadata: dict = field(default_factory=dict)
    id: str = ""
    ingestion_id: str | None = None
    ingestion_version: int = 1
    created_at: str = ""

    @property
    def source_table_id(self) -> str | None:
        if isinstance(self.provenance, TableProvenance):
            return self.provenance.table_id
        return None

    @property
    def source(self) -> str:
        """Source tag used in responses: table, prose or unknown."""
        if self.provenance is None:
            return "unknown"
        return self.provenance.kind

    @property
    def context_snippet(self) -> str | None:
        if isinstance(self.provenance, ProseProvenance):
            return self.provenance.context_snippet
        return self.metadata.get("contextSnippet")

    def full_metadata(self) -> dict:
        """Metadata with provenance fields merged in (what gets persisted)."""
        merged = dict(self.metadata)
        if self.provenance is not None:
            merged.update(self.provenance.to_metadata())
        return merged

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ingestion_id": self.ingestion_id,
            "source_table_id": self.source_table_id,
            "x_name": self.x_name,
            "y_name": self.y_name,
            "x_value": self.x_value,
            "y_value": self.y_value,
            "unit_x": self.unit_x,
            "unit_y": self.unit_y,
            "metadata": self.full_metadata(),
        }


@dataclass
class ComputeRun:
    """A cached analysis result keyed by its deterministic hash."""
    method: str
    method_version: str
    params: dict
    result: dict
    deterministic_hash: str
    ingestion_id: str | None = None
    created_by: str | None = None
    id: str = ""
    created_at: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class NumericEvidenceItem:
    """A value surfaced to callers, with its classification."""
    value: float
    source: str                          # "table" | "prose" | "unknown"
    context_snippet: str | None = None
    x_name: str = ""
    y_name: str = ""
    category: str | None = None
    confidence: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)
