"""Configuration management."""
from dataclasses import dataclass
from pathlib import Path
import json
import os


@dataclass
class Config:
    """Application configuration."""
    db_path: Path
    owner_id: str
    # Trust gate for extracted tables
    min_table_confidence: float
    # Table geometry (PDF points)
    table_row_tolerance: float
    table_column_cluster_distance: float
    table_column_margin: float
    table_column_text_width: float
    table_min_columns: int
    table_min_rows: int
    # Markdown reconstruction
    markdown_line_tolerance: float
    markdown_paragraph_gap: float
    # Prose numeric mining
    prose_snippet_radius: int
    prose_min_snippet_length: int
    prose_max_candidates: int
    prose_strong_cap: int
    prose_weak_cap: int
    # Metadata pass 2 scans this many leading pages
    metadata_scan_pages: int
    # Analysis
    anomaly_threshold: float
    analysis_timeout: float  # seconds
    batch_concurrency: int

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load config from file and/or environment."""
        if path is not None:
            config_path = Path(path).expanduser()
        else:
            config_path = Path("~/.config/paper-evidence/config.json").expanduser()

        data = {}
        if config_path.exists():
            with open(config_path) as f:
                data = json.load(f)

        db_path = os.environ.get("PAPER_EVIDENCE_DB") or data.get(
            "db_path", "~/.local/share/paper-evidence/evidence.sqlite"
        )

        return cls(
            db_path=Path(db_path).expanduser(),
            owner_id=os.environ.get("PAPER_EVIDENCE_OWNER") or data.get("owner_id", "local"),
            min_table_confidence=data.get("min_table_confidence", 0.6),
            # Table geometry
            table_row_tolerance=data.get("table_row_tolerance", 3.0),
            table_column_cluster_distance=data.get("table_column_cluster_distance", 15.0),
            table_column_margin=data.get("table_column_margin", 2.0),
            table_column_text_width=data.get("table_column_text_width", 50.0),
            table_min_columns=data.get("table_min_columns", 2),
            table_min_rows=data.get("table_min_rows", 2),
            # Markdown
            markdown_line_tolerance=data.get("markdown_line_tolerance", 2.0),
            markdown_paragraph_gap=data.get("markdown_paragraph_gap", 18.0),
            # Prose mining
            prose_snippet_radius=data.get("prose_snippet_radius", 80),
            prose_min_snippet_length=data.get("prose_min_snippet_length", 24),
            prose_max_candidates=data.get("prose_max_candidates", 120),
            prose_strong_cap=data.get("prose_strong_cap", 80),
            prose_weak_cap=data.get("prose_weak_cap", 40),
            metadata_scan_pages=data.get("metadata_scan_pages", 2),
            # Analysis
            anomaly_threshold=data.get("anomaly_threshold", 2.0),
            analysis_timeout=data.get("analysis_timeout", 30.0),
            batch_concurrency=data.get("batch_concurrency", 2),
        )

    def validate(self) -> list[str]:
        """Return list of validation errors, empty if valid."""
        errors = []
        if not 0.0 <= self.min_table_confidence <= 1.0:
            errors.append(
                f"min_table_confidence must be within [0, 1], got {self.min_table_confidence}"
            )
        if self.table_min_columns < 1 or self.table_min_rows < 1:
            errors.append("table_min_columns and table_min_rows must be at least 1")
        if self.table_row_tolerance <= 0 or self.markdown_line_tolerance <= 0:
            errors.append("Row and line tolerances must be positive")
        if self.prose_strong_cap < 2 or self.prose_weak_cap < 2:
            errors.append("Prose lane caps must allow at least 2 candidates")
        if self.analysis_timeout <= 0:
            errors.append(f"analysis_timeout must be positive, got {self.analysis_timeout}")
        if self.batch_concurrency < 1:
            errors.append(f"batch_concurrency must be at least 1, got {self.batch_concurrency}")

        try:
            import pymupdf
            version_parts = pymupdf.version[0].split(".")[:2]
            version = tuple(map(int, version_parts))
            if version < (1, 23):
                errors.append(
                    f"Span extraction requires PyMuPDF 1.23+, found {pymupdf.version[0]}. "
                    "Run: pip install --upgrade pymupdf"
                )
        except Exception as e:
            errors.append(f"Cannot check PyMuPDF version: {e}")

        return errors
