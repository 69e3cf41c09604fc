"""MCP server exposing paper analysis tools."""
import logging
import sys
from pathlib import Path

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from .analysis_service import AnalysisOptions, AnalysisRequest, ScientificAnalysisService
from .config import Config
from .evidence_classifier import classify_evidence
from .interfaces import ScientificDataRepositoryProtocol
from .models import NumericEvidenceItem
from .pipeline import IngestionPipeline
from .repository import SQLiteRepository

logger = logging.getLogger(__name__)

MAX_BATCH_FILES = 50


def _read_pdf(pdf_path: str) -> tuple[bytes, str]:
    path = Path(pdf_path).expanduser()
    if not path.is_file():
        raise ToolError(f"File not found: {pdf_path}")
    return path.read_bytes(), path.name


def create_server(
    service: ScientificAnalysisService,
    repository: ScientificDataRepositoryProtocol,
    default_owner: str = "local",
) -> FastMCP:
    """Build the MCP server around an existing service and store."""
    mcp = FastMCP("paper-evidence")

    @mcp.tool()
    async def analyze_paper(
        pdf_path: str,
        owner_id: str | None = None,
        min_table_confidence: float | None = None,
        run_analysis: bool = True,
        skip_markdown: bool = False,
        timeout: float | None = None,
        force_reprocess: bool = False,
    ) -> dict:
        """
        Extract tables, numeric evidence and statistics from one PDF.

        Identical files are deduplicated per owner; a completed file is only
        re-extracted when the extractor has been updated or force_reprocess
        is set.

        Args:
            pdf_path: Path to a PDF on the server's filesystem
            owner_id: Owner namespace for deduplication (default: configured owner)
            min_table_confidence: Trust threshold for tables (0-1)
            run_analysis: Run regression/trend/anomaly analysis
            skip_markdown: Skip Markdown rendering (disables prose fallback)
            timeout: Seconds before the run is reported as failed
            force_reprocess: Re-extract even if already completed

        Returns:
            Analysis response with status, summary, provenance and evidence
        """
        if min_table_confidence is not None and not 0.0 <= min_table_confidence <= 1.0:
            raise ToolError("min_table_confidence must be between 0 and 1")
        data, file_name = _read_pdf(pdf_path)
        response = await service.run(AnalysisRequest(
            owner_id=owner_id or default_owner,
            data=data,
            file_name=file_name,
            options=AnalysisOptions(
                min_table_confidence=min_table_confidence,
                run_analysis=run_analysis,
                skip_markdown=skip_markdown,
                timeout=timeout,
                force_reprocess=force_reprocess,
            ),
        ))
        return response.to_dict()

    @mcp.tool()
    async def analyze_papers(
        pdf_paths: list[str],
        owner_id: str | None = None,
        concurrency: int | None = None,
        feature: str = "hybrid",
    ) -> dict:
        """
        Analyze several PDFs; one file's failure does not affect the others.

        Args:
            pdf_paths: Paths to PDFs (1-50)
            owner_id: Owner namespace for deduplication
            concurrency: Files processed at once (default: configured value)
            feature: Feature context tag: hybrid, chat or epistemic

        Returns:
            Envelope with per-file results and completed/partial/failed counts
        """
        if not 1 <= len(pdf_paths) <= MAX_BATCH_FILES:
            raise ToolError(f"pdf_paths must contain 1-{MAX_BATCH_FILES} entries")
        if concurrency is not None and concurrency < 1:
            raise ToolError("concurrency must be at least 1")
        requests = []
        for pdf_path in pdf_paths:
            data, file_name = _read_pdf(pdf_path)
            try:
                requests.append(AnalysisRequest(
                    owner_id=owner_id or default_owner,
                    data=data,
                    file_name=file_name,
                    feature=feature,
                ))
            except ValueError as e:
                raise ToolError(str(e)) from e
        envelope = await service.run_batch(requests, concurrency)
        return envelope.to_dict()

    @mcp.tool()
    def get_ingestion(ingestion_id: str) -> dict:
        """
        Get an ingestion record with its stored tables.

        Args:
            ingestion_id: Identifier returned by analyze_paper

        Returns:
            Ingestion record plus tables of its current version
        """
        ingestion = repository.get_ingestion(ingestion_id)
        if ingestion is None:
            raise ToolError(f"Ingestion not found: {ingestion_id}")
        tables = repository.get_extracted_tables(ingestion_id)
        return {
            **ingestion.to_dict(),
            "tables": [t.to_dict() for t in tables],
        }

    @mcp.tool()
    def list_ingestions(
        owner_id: str | None = None,
        status: str | None = None,
        limit: int = 50,
    ) -> list[dict]:
        """
        List ingestions for an owner, newest first.

        Args:
            owner_id: Owner namespace (default: configured owner)
            status: Optional filter: pending, processing, completed, failed
            limit: Maximum records (1-500)
        """
        limit = max(1, min(500, limit))
        records = repository.list_ingestions(owner_id or default_owner, limit, status)
        return [r.to_dict() for r in records]

    @mcp.tool()
    def get_numeric_evidence(ingestion_id: str) -> list[dict]:
        """
        Classified numeric evidence stored for an ingestion.

        Each value is labelled potential_metric, bibliographic, structural,
        citation_year or reference_index with a confidence level.

        Args:
            ingestion_id: Identifier returned by analyze_paper
        """
        if repository.get_ingestion(ingestion_id) is None:
            raise ToolError(f"Ingestion not found: {ingestion_id}")
        points = repository.get_data_points(ingestion_id)
        items = classify_evidence(
            NumericEvidenceItem(
                value=p.y_value,
                source=p.source,
                context_snippet=p.context_snippet,
                x_name=p.x_name,
                y_name=p.y_name,
            )
            for p in points
        )
        return [item.to_dict() for item in items]

    return mcp


def main() -> None:
    """Console entry point: build the stack from config and serve over stdio."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    config = Config.load()
    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Config error: {error}")
        sys.exit(1)

    repository = SQLiteRepository(config.db_path)
    pipeline = IngestionPipeline.from_config(config, repository)
    service = ScientificAnalysisService(
        pipeline,
        default_timeout=config.analysis_timeout,
        batch_concurrency=config.batch_concurrency,
    )
    try:
        create_server(service, repository, config.owner_id).run()
    finally:
        repository.close()


if __name__ == "__main__":
    main()
