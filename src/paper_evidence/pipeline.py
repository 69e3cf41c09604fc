"""Ingestion orchestrator.

Runs one document through the extraction stages in a fixed order
(metadata -> tables -> markdown -> numeric extraction -> compute ->
reasoning) and drives the ingestion status state machine:

    pending -> processing -> completed | failed

Rendering stages and store calls are blocking, so they run in worker
threads; the orchestrator itself is a coroutine so the analysis service can
bound it with a timeout and run several documents concurrently.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field

from .compute_engine import (
    ENGINE_VERSION,
    FULL_ANALYSIS_METHOD,
    full_analysis_hash,
    run_full_analysis,
)
from .config import Config
from .hashing import content_hash
from .interfaces import (
    MarkdownRendererProtocol,
    MetadataExtractorProtocol,
    ScientificDataRepositoryProtocol,
    TableExtractorProtocol,
)
from .markdown_renderer import MarkdownRenderer
from .metadata_extractor import MetadataExtractor
from .models import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    ComputeRun,
    DocumentMetadata,
    ExtractedTable,
    Ingestion,
    ScientificDataPoint,
    TableProvenance,
    check_transition,
)
from .prose_extractor import PROSE_EXTRACTION_VERSION, ProseNumericExtractor
from .reasoning import ReasoningGraph, build_reasoning_graph
from .renderer import PdfPlumberTextExtractor, PyMuPDFRenderer
from .repository import RepositoryError
from .table_extractor import DEFAULT_MIN_TABLE_CONFIDENCE, TableExtractor, filter_trusted_tables

logger = logging.getLogger(__name__)

# Version of the extraction stages as a whole. A completed ingestion produced
# by an older version is reprocessed on re-submission.
EXTRACTOR_VERSION = PROSE_EXTRACTION_VERSION

MIN_ANALYSIS_POINTS = 2

REPROCESS_WARNING = "Ingestion already completed; reprocessing with latest extractor pipeline."
CACHE_HIT_WARNING = "Compute run cache hit; using existing results."

_NUMBER_PREFIX = re.compile(r"^[+\-−]?\d+(?:\.\d+)?(?:[eE][+\-]?\d+)?")
_HEADER_UNIT = re.compile(r"^(.*?)\s*[(\[]\s*([^()\[\]]{1,20})\s*[)\]]\s*$")


@dataclass
class PipelineOptions:
    min_table_confidence: float | None = None   # None: use the configured value
    run_analysis: bool = True
    skip_markdown: bool = False
    force_reprocess: bool = False


@dataclass
class PipelineResult:
    """Everything one run produced (or, when reused, what was stored)."""
    ingestion: Ingestion
    metadata: DocumentMetadata
    trusted_tables: list[ExtractedTable] = field(default_factory=list)
    flagged_tables: list[ExtractedTable] = field(default_factory=list)
    data_points: list[ScientificDataPoint] = field(default_factory=list)
    compute_run: ComputeRun | None = None
    reasoning_graph: ReasoningGraph | None = None
    markdown: str = ""
    warnings: list[str] = field(default_factory=list)
    reused: bool = False

    @property
    def tables(self) -> list[ExtractedTable]:
        return self.trusted_tables + self.flagged_tables


# =============================================================================
# Table-derived points
# =============================================================================

def parse_numeric_cell(cell: str) -> float | None:
    """Leading number of a cell ("12.5%", "1,204", "0.82 ± 0.03"), or None."""
    text = cell.strip().replace(",", "").replace("−", "-")
    match = _NUMBER_PREFIX.match(text)
    if not match:
        return None
    return float(match.group(0))


def split_header_unit(header: str) -> tuple[str, str | None]:
    """'Latency (ms)' -> ('Latency', 'ms')."""
    match = _HEADER_UNIT.match(header.strip())
    if match and match.group(1):
        return match.group(1).strip(), match.group(2).strip()
    return header.strip(), None


def table_data_points(
    tables: list[ExtractedTable], ingestion_id: str | None, version: int = 1
) -> list[ScientificDataPoint]:
    """Numeric (x, y) rows from the first two columns of each table."""
    points = []
    for table in tables:
        if len(table.headers) < 2:
            continue
        x_name, unit_x = split_header_unit(table.headers[0] or "x")
        y_name, unit_y = split_header_unit(table.headers[1] or "y")
        for row in table.rows:
            if len(row) < 2:
                continue
            x, y = parse_numeric_cell(row[0]), parse_numeric_cell(row[1])
            if x is None or y is None:
                continue
            points.append(ScientificDataPoint(
                x_name=x_name or "x",
                y_name=y_name or "y",
                x_value=x,
                y_value=y,
                unit_x=unit_x,
                unit_y=unit_y,
                provenance=TableProvenance(table_id=table.id),
                metadata={"pageNumber": table.page_number, "tableConfidence": round(table.confidence, 4)},
                ingestion_id=ingestion_id,
                ingestion_version=version,
            ))
    return points


def _version_tuple(version: str | None) -> tuple[int, ...]:
    if not version:
        return ()
    parts = []
    for piece in str(version).split("."):
        digits = re.match(r"\d+", piece)
        parts.append(int(digits.group(0)) if digits else 0)
    return tuple(parts)


# =============================================================================
# Orchestrator
# =============================================================================

class IngestionPipeline:
    """Sequence the extraction stages for one document."""

    def __init__(
        self,
        repository: ScientificDataRepositoryProtocol,
        *,
        metadata_extractor: MetadataExtractorProtocol | None = None,
        table_extractor: TableExtractorProtocol | None = None,
        markdown_renderer: MarkdownRendererProtocol | None = None,
        prose_extractor: ProseNumericExtractor | None = None,
        min_table_confidence: float = DEFAULT_MIN_TABLE_CONFIDENCE,
        anomaly_threshold: float = 2.0,
        extractor_version: str = EXTRACTOR_VERSION,
    ):
        self.repository = repository
        self.metadata_extractor = metadata_extractor or MetadataExtractor()
        self.table_extractor = table_extractor or TableExtractor()
        self.markdown_renderer = markdown_renderer or MarkdownRenderer()
        self.prose_extractor = prose_extractor or ProseNumericExtractor()
        self.min_table_confidence = min_table_confidence
        self.anomaly_threshold = anomaly_threshold
        self.extractor_version = extractor_version
        # (owner_id, content hash) -> set when the run holding it finishes
        self._in_flight: dict[tuple[str, str], asyncio.Event] = {}

    @classmethod
    def from_config(
        cls, config: Config, repository: ScientificDataRepositoryProtocol
    ) -> IngestionPipeline:
        """Build the default PyMuPDF/pdfplumber stack from configuration."""
        renderer = PyMuPDFRenderer()
        text_extractor = PdfPlumberTextExtractor()
        return cls(
            repository,
            metadata_extractor=MetadataExtractor(
                renderer, text_extractor, scan_pages=config.metadata_scan_pages
            ),
            table_extractor=TableExtractor.from_config(config, renderer),
            markdown_renderer=MarkdownRenderer(
                renderer,
                text_extractor,
                line_tolerance=config.markdown_line_tolerance,
                paragraph_gap=config.markdown_paragraph_gap,
            ),
            prose_extractor=ProseNumericExtractor.from_config(config),
            min_table_confidence=config.min_table_confidence,
            anomaly_threshold=config.anomaly_threshold,
        )

    async def _call(self, func, *args, **kwargs):
        return await asyncio.to_thread(func, *args, **kwargs)

    def needs_reprocessing(self, ingestion: Ingestion, force: bool = False) -> bool:
        """Whether a completed ingestion should run the stages again."""
        if force:
            return True
        stored = ingestion.metadata.get("extractorVersion")
        return _version_tuple(stored) < _version_tuple(self.extractor_version)

    async def run(
        self,
        data: bytes,
        file_name: str,
        owner_id: str,
        options: PipelineOptions | None = None,
    ) -> PipelineResult:
        """Process one document.

        Runs for the same (owner, document) are serialized: a second
        submission waits for the first to finish and then follows the
        re-submission policy against what it stored.

        Raises:
            RepositoryError: the store failed; the ingestion is marked failed
                when it can still be reached.
            Exception: any stage error, after marking the ingestion failed.
        """
        options = options or PipelineOptions()
        digest = content_hash(data)
        key = (owner_id, digest)

        in_flight = self._in_flight.get(key)
        while in_flight is not None:
            logger.info(f"{file_name}: waiting for the in-flight run of the same document")
            await in_flight.wait()
            in_flight = self._in_flight.get(key)

        done = asyncio.Event()
        self._in_flight[key] = done
        try:
            return await self._run_exclusive(data, file_name, owner_id, digest, options)
        finally:
            del self._in_flight[key]
            done.set()

    async def _run_exclusive(
        self,
        data: bytes,
        file_name: str,
        owner_id: str,
        digest: str,
        options: PipelineOptions,
    ) -> PipelineResult:
        min_confidence = (
            options.min_table_confidence
            if options.min_table_confidence is not None
            else self.min_table_confidence
        )
        warnings: list[str] = []

        ingestion = await self._call(
            self.repository.create_ingestion, owner_id, file_name, digest, len(data)
        )
        if ingestion is None:
            raise RepositoryError("Failed to create ingestion record.")

        if ingestion.status == STATUS_COMPLETED:
            if not self.needs_reprocessing(ingestion, options.force_reprocess):
                logger.info(f"{file_name}: ingestion {ingestion.id} already completed; reusing results")
                return await self._stored_result(ingestion, min_confidence, options)
            warnings.append(REPROCESS_WARNING)

        check_transition(ingestion.status, STATUS_PROCESSING)
        claimed = await self._call(
            self.repository.update_ingestion_status,
            ingestion.id,
            STATUS_PROCESSING,
            increment_version=ingestion.status != STATUS_PENDING,
            expected_status=ingestion.status,
        )
        if claimed is None:
            current = await self._call(self.repository.get_ingestion, ingestion.id)
            if current is None:
                raise RepositoryError("Ingestion record disappeared before processing.")
            if current.status == STATUS_COMPLETED and not options.force_reprocess:
                logger.info(f"{file_name}: ingestion {ingestion.id} completed by another run")
                return await self._stored_result(current, min_confidence, options)
            raise RepositoryError(
                f"Ingestion {ingestion.id} was claimed by another run (status {current.status})."
            )
        ingestion = claimed

        try:
            return await self._process(ingestion, data, file_name, min_confidence, options, warnings)
        except Exception as e:
            logger.error(f"{file_name}: ingestion {ingestion.id} failed: {e}")
            try:
                await self._call(
                    self.repository.update_ingestion_status, ingestion.id, STATUS_FAILED, str(e)
                )
            except RepositoryError as status_error:
                logger.error(f"Could not record failure for {ingestion.id}: {status_error}")
            raise

    async def _process(
        self,
        ingestion: Ingestion,
        data: bytes,
        file_name: str,
        min_confidence: float,
        options: PipelineOptions,
        warnings: list[str],
    ) -> PipelineResult:
        version = ingestion.version

        # 1. Metadata
        metadata, stage_warnings = await self._call(self.metadata_extractor.extract, data)
        warnings.extend(stage_warnings)

        # 2. Tables and trust gate
        tables, stage_warnings = await self._call(self.table_extractor.extract_tables, data)
        warnings.extend(stage_warnings)
        saved_tables = await self._call(
            self.repository.save_extracted_tables, ingestion.id, version, tables
        )
        trusted, flagged = filter_trusted_tables(saved_tables, min_confidence)
        if flagged:
            warnings.append(
                f"{len(flagged)} table(s) below confidence threshold ({min_confidence}); "
                "flagged for human review."
            )
        logger.debug(f"{file_name}: {len(trusted)} trusted, {len(flagged)} flagged tables")

        # 3. Markdown
        markdown = ""
        if not options.skip_markdown:
            markdown, stage_warnings = await self._call(self.markdown_renderer.convert, data)
            warnings.extend(stage_warnings)

        # 4. Numeric extraction, prose fallback when tables are insufficient
        points = table_data_points(trusted, ingestion.id, version)
        if len(points) < MIN_ANALYSIS_POINTS and markdown.strip():
            prose = self.prose_extractor.extract(markdown)
            prose_points = prose.to_data_points(ingestion.id, version)
            if prose_points:
                points.extend(prose_points)
                warnings.append(
                    "Table-derived numeric points were insufficient; used prose numeric "
                    f"extraction fallback ({len(prose_points)} points, lane={prose.lane})."
                )
                logger.info(f"{file_name}: prose fallback produced {len(prose_points)} points ({prose.lane})")

        saved_points = await self._call(self.repository.save_data_points, points)

        # 5. Compute (cached by deterministic hash) and 6. reasoning
        compute_run = None
        graph = None
        if len(saved_points) < MIN_ANALYSIS_POINTS:
            warnings.append("Fewer than 2 numeric data points extracted; skipping analysis.")
        elif options.run_analysis:
            compute_run = await self._compute(ingestion, saved_points, warnings)
            graph = build_reasoning_graph(saved_points)

        completed = await self._call(
            self.repository.update_ingestion_status,
            ingestion.id,
            STATUS_COMPLETED,
            page_count=metadata.page_count,
            metadata={
                "extractorVersion": self.extractor_version,
                "document": metadata.to_dict(),
                "warnings": [w for w in warnings if w != REPROCESS_WARNING],
            },
        )
        logger.info(
            f"{file_name}: completed with {len(saved_tables)} tables, "
            f"{len(saved_points)} points, compute_run={'yes' if compute_run else 'no'}"
        )
        return PipelineResult(
            ingestion=completed or ingestion,
            metadata=metadata,
            trusted_tables=trusted,
            flagged_tables=flagged,
            data_points=saved_points,
            compute_run=compute_run,
            reasoning_graph=graph,
            markdown=markdown,
            warnings=warnings,
        )

    async def _compute(
        self,
        ingestion: Ingestion,
        points: list[ScientificDataPoint],
        warnings: list[str],
    ) -> ComputeRun | None:
        pairs = [(p.x_value, p.y_value) for p in points]
        digest = full_analysis_hash(pairs, self.anomaly_threshold)

        cached = await self._call(self.repository.find_compute_run_by_hash, digest)
        if cached is not None:
            warnings.append(CACHE_HIT_WARNING)
            return cached

        y_names = {p.y_name for p in points}
        y_name = y_names.pop() if len(y_names) == 1 else "y"
        try:
            analysis = run_full_analysis(pairs, y_name, self.anomaly_threshold)
        except ValueError as e:
            warnings.append(f"Analysis skipped: {e}")
            return None

        return await self._call(self.repository.save_compute_run, ComputeRun(
            method=FULL_ANALYSIS_METHOD,
            method_version=ENGINE_VERSION,
            params=analysis.params,
            result=analysis.to_dict(),
            deterministic_hash=analysis.deterministic_hash,
            ingestion_id=ingestion.id,
            created_by=ingestion.owner_id,
        ))

    async def _stored_result(
        self, ingestion: Ingestion, min_confidence: float, options: PipelineOptions
    ) -> PipelineResult:
        """Rebuild a result from stored artifacts of a completed ingestion.

        The compute run is looked up by the hash of the current version's
        points, and computed now when analysis is requested but was skipped
        by the stored run.
        """
        tables = await self._call(self.repository.get_extracted_tables, ingestion.id)
        points = await self._call(self.repository.get_data_points, ingestion.id)
        trusted, flagged = filter_trusted_tables(tables, min_confidence)
        warnings = [
            f"Ingestion already completed with extractor {self.extractor_version}; "
            "returning stored results."
        ]
        warnings.extend(ingestion.metadata.get("warnings", []))

        compute_run = None
        graph = None
        if len(points) >= MIN_ANALYSIS_POINTS:
            pairs = [(p.x_value, p.y_value) for p in points]
            compute_run = await self._call(
                self.repository.find_compute_run_by_hash,
                full_analysis_hash(pairs, self.anomaly_threshold),
            )
            if options.run_analysis:
                if compute_run is None:
                    logger.info(f"Ingestion {ingestion.id}: stored points were never analyzed; computing now")
                    compute_run = await self._compute(ingestion, points, warnings)
                graph = build_reasoning_graph(points)

        return PipelineResult(
            ingestion=ingestion,
            metadata=DocumentMetadata.from_dict(ingestion.metadata.get("document")),
            trusted_tables=trusted,
            flagged_tables=flagged,
            data_points=points,
            compute_run=compute_run,
            reasoning_graph=graph,
            warnings=warnings,
            reused=True,
        )
