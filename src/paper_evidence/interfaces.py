"""
Protocol definitions for the pipeline's collaborators.
Lets the orchestrator run against real renderers and stores or test fakes.
"""
from typing import Protocol, runtime_checkable

from .models import (
    ComputeRun,
    DocumentMetadata,
    ExtractedTable,
    Ingestion,
    PlainText,
    ScientificDataPoint,
    TextFragment,
)


@runtime_checkable
class RenderedDocumentProtocol(Protocol):
    """An open document from the structured renderer."""

    @property
    def page_count(self) -> int:
        ...

    def metadata(self) -> dict[str, str]:
        """Embedded metadata dictionary, empty values removed."""
        ...

    def fragments(self, page_index: int) -> list[TextFragment]:
        """Positioned text fragments of a page (0-based index)."""
        ...

    def text(self, page_index: int) -> str:
        """Line-ordered text of a page."""
        ...

    def close(self) -> None:
        ...

    def __enter__(self) -> "RenderedDocumentProtocol":
        ...

    def __exit__(self, *exc) -> None:
        ...


@runtime_checkable
class DocumentRendererProtocol(Protocol):
    """Interface for the structured (positioned text) renderer."""

    def open(self, data: bytes) -> RenderedDocumentProtocol:
        """Open document bytes; raises RendererUnavailableError on failure."""
        ...


@runtime_checkable
class TextExtractorProtocol(Protocol):
    """Interface for the plain linear text fallback."""

    def extract(self, data: bytes) -> PlainText:
        """Extract flattened text; raises RendererUnavailableError on failure."""
        ...


@runtime_checkable
class MetadataExtractorProtocol(Protocol):

    def extract(self, data: bytes) -> tuple[DocumentMetadata, list[str]]:
        """Return (metadata, warnings)."""
        ...


@runtime_checkable
class TableExtractorProtocol(Protocol):

    def extract_tables(self, data: bytes) -> tuple[list[ExtractedTable], list[str]]:
        """Return (tables, warnings). Never raises for unreadable documents."""
        ...


@runtime_checkable
class MarkdownRendererProtocol(Protocol):

    def convert(self, data: bytes) -> tuple[str, list[str]]:
        """Return (markdown, warnings)."""
        ...


@runtime_checkable
class ScientificDataRepositoryProtocol(Protocol):
    """Persistence boundary for ingestions and their derived records.

    Reads return None (or empty lists) when nothing matches. Writes raise
    RepositoryError with the store's message when they cannot complete.
    """

    def create_ingestion(
        self,
        owner_id: str,
        file_name: str,
        content_hash: str,
        size_bytes: int,
        metadata: dict | None = None,
    ) -> Ingestion:
        """Create the record, or return the existing one for (owner, hash)."""
        ...

    def update_ingestion_status(
        self,
        ingestion_id: str,
        status: str,
        error_message: str | None = None,
        *,
        page_count: int | None = None,
        metadata: dict | None = None,
        increment_version: bool = False,
        expected_status: str | None = None,
    ) -> Ingestion | None:
        """Update status; returns the updated record, or None if unknown or
        no longer in ``expected_status``."""
        ...

    def get_ingestion(self, ingestion_id: str) -> Ingestion | None:
        ...

    def list_ingestions(
        self, owner_id: str, limit: int = 50, status: str | None = None
    ) -> list[Ingestion]:
        ...

    def save_extracted_tables(
        self, ingestion_id: str, version: int, tables: list[ExtractedTable]
    ) -> list[ExtractedTable]:
        """Persist tables; returns copies carrying their assigned ids."""
        ...

    def get_extracted_tables(
        self, ingestion_id: str, version: int | None = None
    ) -> list[ExtractedTable]:
        """Tables of a version (default: the ingestion's current version)."""
        ...

    def save_data_points(self, points: list[ScientificDataPoint]) -> list[ScientificDataPoint]:
        ...

    def get_data_points(
        self, ingestion_id: str, version: int | None = None
    ) -> list[ScientificDataPoint]:
        ...

    def save_compute_run(self, run: ComputeRun) -> ComputeRun:
        """Insert if the hash is absent; returns the stored run either way."""
        ...

    def get_compute_runs(
        self, ingestion_id: str | None = None, limit: int = 50
    ) -> list[ComputeRun]:
        ...

    def find_compute_run_by_hash(self, deterministic_hash: str) -> ComputeRun | None:
        ...
