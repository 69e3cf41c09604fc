"""Analysis service: timeout, batching and response envelopes.

Wraps IngestionPipeline runs for callers. Every request yields a response,
including failures, which carry an empty ingestion id and the error as a
warning. Batches run in fixed-size concurrency windows and one file's
failure never affects its siblings.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field

from .evidence_classifier import classify_evidence
from .models import NumericEvidenceItem
from .pipeline import IngestionPipeline, PipelineOptions, PipelineResult

logger = logging.getLogger(__name__)

METHOD_VERSION = "1.0.0"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_BATCH_CONCURRENCY = 2
MAX_NUMERIC_EVIDENCE = 15

STATUS_COMPLETED = "completed"
STATUS_PARTIAL = "partial"
STATUS_FAILED = "failed"

FEATURE_CONTEXTS = ("hybrid", "chat", "epistemic")


class AnalysisTimeoutError(TimeoutError):
    """A pipeline run did not finish within the request's timeout."""


@dataclass
class AnalysisOptions:
    min_table_confidence: float | None = None
    run_analysis: bool = True
    skip_markdown: bool = False
    timeout: float | None = None            # seconds; None uses the service default
    force_reprocess: bool = False


@dataclass
class AnalysisRequest:
    owner_id: str
    data: bytes
    file_name: str
    feature: str = "hybrid"
    options: AnalysisOptions = field(default_factory=AnalysisOptions)

    def __post_init__(self):
        if self.feature not in FEATURE_CONTEXTS:
            raise ValueError(
                f"Unknown feature context {self.feature!r}; expected one of {FEATURE_CONTEXTS}"
            )


@dataclass
class AnalysisSummary:
    table_count: int = 0
    trusted_table_count: int = 0
    data_point_count: int = 0


@dataclass
class ProvenanceReference:
    """Identifiers tracing numeric evidence back to its extraction origin."""
    ingestion_id: str
    source_table_ids: list[str]
    data_point_ids: list[str]
    compute_run_id: str | None
    method_version: str = METHOD_VERSION


@dataclass
class Observability:
    file_name: str
    duration_ms: int
    status: str
    warning_count: int


@dataclass
class AnalysisResponse:
    ingestion_id: str
    status: str
    summary: AnalysisSummary
    warnings: list[str]
    observability: Observability
    numeric_evidence: list[NumericEvidenceItem] = field(default_factory=list)
    provenance: ProvenanceReference | None = None
    compute_run_id: str | None = None
    reasoning: dict | None = None

    def to_dict(self) -> dict:
        return {
            "ingestion_id": self.ingestion_id,
            "status": self.status,
            "summary": asdict(self.summary),
            "warnings": list(self.warnings),
            "observability": asdict(self.observability),
            "numeric_evidence": [item.to_dict() for item in self.numeric_evidence],
            "provenance": asdict(self.provenance) if self.provenance else None,
            "compute_run_id": self.compute_run_id,
            "reasoning": self.reasoning,
        }


@dataclass
class AnalysisEnvelope:
    """Batch response with per-status counts."""
    results: list[AnalysisResponse]
    feature_context: str

    @property
    def pdf_count(self) -> int:
        return len(self.results)

    def count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def completed_count(self) -> int:
        return self.count(STATUS_COMPLETED)

    @property
    def partial_count(self) -> int:
        return self.count(STATUS_PARTIAL)

    @property
    def failed_count(self) -> int:
        return self.count(STATUS_FAILED)

    def to_dict(self) -> dict:
        return {
            "scientific_analysis": [r.to_dict() for r in self.results],
            "feature_context": self.feature_context,
            "request_summary": {
                "pdf_count": self.pdf_count,
                "completed_count": self.completed_count,
                "partial_count": self.partial_count,
                "failed_count": self.failed_count,
            },
        }

    def to_markdown(self) -> str:
        """Human-readable batch summary."""
        lines = [
            "# Scientific Analysis Report",
            "",
            f"Feature context: {self.feature_context}",
            f"Files: {self.pdf_count} ({self.completed_count} completed, "
            f"{self.partial_count} partial, {self.failed_count} failed)",
            "",
            "| File | Status | Tables | Trusted | Points | Warnings |",
            "| --- | --- | --- | --- | --- | --- |",
        ]
        for r in self.results:
            lines.append(
                f"| {r.observability.file_name} | {r.status} | {r.summary.table_count} "
                f"| {r.summary.trusted_table_count} | {r.summary.data_point_count} "
                f"| {len(r.warnings)} |"
            )
        for r in self.results:
            if r.warnings:
                lines.append("")
                lines.append(f"## {r.observability.file_name}")
                lines.extend(f"- {w}" for w in r.warnings)
        return "\n".join(lines)


def response_status(result: PipelineResult) -> str:
    if result.compute_run is not None:
        return STATUS_COMPLETED
    if result.data_points:
        return STATUS_PARTIAL
    return STATUS_COMPLETED


def numeric_evidence(result: PipelineResult, limit: int = MAX_NUMERIC_EVIDENCE) -> list[NumericEvidenceItem]:
    """Classified evidence items for the first ``limit`` data points."""
    items = [
        NumericEvidenceItem(
            value=point.y_value,
            source=point.source,
            context_snippet=point.context_snippet,
            x_name=point.x_name,
            y_name=point.y_name,
        )
        for point in result.data_points[:limit]
    ]
    return classify_evidence(items)


class ScientificAnalysisService:
    """Facade over the ingestion pipeline for single and batch requests."""

    def __init__(
        self,
        pipeline: IngestionPipeline,
        *,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        batch_concurrency: int = DEFAULT_BATCH_CONCURRENCY,
    ):
        self.pipeline = pipeline
        self.default_timeout = default_timeout
        self.batch_concurrency = batch_concurrency
        # Runs that outlived their timeout; kept referenced until they finish
        self._orphans: set[asyncio.Task] = set()

    async def run(self, request: AnalysisRequest) -> AnalysisResponse:
        """Analyze one document; failures become a failed response."""
        started = time.perf_counter()
        try:
            result = await self._run_with_timeout(request)
        except Exception as e:
            duration_ms = int((time.perf_counter() - started) * 1000)
            logger.error(f"Scientific analysis failed for {request.file_name}: {e}")
            return self._failure(request.file_name, str(e), duration_ms)

        duration_ms = int((time.perf_counter() - started) * 1000)
        response = self._build_response(request, result, duration_ms)
        logger.info(
            f"analysis file={request.file_name} status={response.status} "
            f"duration_ms={duration_ms} warnings={len(response.warnings)}"
        )
        return response

    async def run_batch(
        self,
        requests: list[AnalysisRequest],
        concurrency_limit: int | None = None,
    ) -> AnalysisEnvelope:
        """Analyze documents in windows of ``concurrency_limit`` at a time."""
        limit = concurrency_limit if concurrency_limit is not None else self.batch_concurrency
        if limit < 1:
            raise ValueError(f"concurrency_limit must be at least 1, got {limit}")

        results: list[AnalysisResponse] = []
        for start in range(0, len(requests), limit):
            window = requests[start:start + limit]
            outcomes = await asyncio.gather(
                *(self.run(r) for r in window), return_exceptions=True
            )
            for request, outcome in zip(window, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(f"Batch item {request.file_name} raised: {outcome}")
                    outcome = self._failure(request.file_name, str(outcome), 0)
                results.append(outcome)

        feature = requests[0].feature if requests else "hybrid"
        envelope = AnalysisEnvelope(results=results, feature_context=feature)
        logger.info(
            f"batch pdf_count={envelope.pdf_count} completed={envelope.completed_count} "
            f"partial={envelope.partial_count} failed={envelope.failed_count}"
        )
        return envelope

    async def _run_with_timeout(self, request: AnalysisRequest) -> PipelineResult:
        options = request.options
        timeout = options.timeout if options.timeout is not None else self.default_timeout
        task = asyncio.ensure_future(self.pipeline.run(
            request.data,
            request.file_name,
            request.owner_id,
            PipelineOptions(
                min_table_confidence=options.min_table_confidence,
                run_analysis=options.run_analysis,
                skip_markdown=options.skip_markdown,
                force_reprocess=options.force_reprocess,
            ),
        ))
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            self._orphans.add(task)
            task.add_done_callback(self._orphan_finished)
            raise AnalysisTimeoutError(
                f"Timeout: analysis of {request.file_name} exceeded {timeout:g}s"
            ) from None

    def _orphan_finished(self, task: asyncio.Task) -> None:
        self._orphans.discard(task)
        if task.cancelled():
            logger.debug("Timed-out pipeline run was cancelled")
        elif task.exception() is not None:
            logger.warning(f"Timed-out pipeline run failed later: {task.exception()}")
        else:
            logger.debug("Timed-out pipeline run finished after its deadline")

    def _build_response(
        self, request: AnalysisRequest, result: PipelineResult, duration_ms: int
    ) -> AnalysisResponse:
        status = response_status(result)
        compute_run_id = result.compute_run.id if result.compute_run else None
        source_table_ids = sorted({p.source_table_id for p in result.data_points if p.source_table_id})
        return AnalysisResponse(
            ingestion_id=result.ingestion.id,
            status=status,
            summary=AnalysisSummary(
                table_count=len(result.tables),
                trusted_table_count=len(result.trusted_tables),
                data_point_count=len(result.data_points),
            ),
            warnings=list(result.warnings),
            observability=Observability(
                file_name=request.file_name,
                duration_ms=duration_ms,
                status=status,
                warning_count=len(result.warnings),
            ),
            numeric_evidence=numeric_evidence(result),
            provenance=ProvenanceReference(
                ingestion_id=result.ingestion.id,
                source_table_ids=source_table_ids,
                data_point_ids=[p.id for p in result.data_points],
                compute_run_id=compute_run_id,
            ),
            compute_run_id=compute_run_id,
            reasoning=result.reasoning_graph.to_dict() if result.reasoning_graph else None,
        )

    def _failure(self, file_name: str, message: str, duration_ms: int) -> AnalysisResponse:
        warnings = [f'Scientific analysis failed for "{file_name}": {message}']
        return AnalysisResponse(
            ingestion_id="",
            status=STATUS_FAILED,
            summary=AnalysisSummary(),
            warnings=warnings,
            observability=Observability(
                file_name=file_name,
                duration_ms=duration_ms,
                status=STATUS_FAILED,
                warning_count=len(warnings),
            ),
        )
