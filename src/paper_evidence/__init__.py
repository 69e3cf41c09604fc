"""Scientific PDF evidence extraction and analysis."""
from .models import (
    DocumentMetadata,
    Ingestion,
    ExtractedTable,
    TableProvenance,
    ProseProvenance,
    ScientificDataPoint,
    ComputeRun,
    NumericEvidenceItem,
)
from .pipeline import IngestionPipeline, PipelineOptions, PipelineResult
from .analysis_service import (
    AnalysisRequest,
    AnalysisResponse,
    AnalysisEnvelope,
    ScientificAnalysisService,
)
from .repository import SQLiteRepository, RepositoryError

__all__ = [
    "DocumentMetadata",
    "Ingestion",
    "ExtractedTable",
    "TableProvenance",
    "ProseProvenance",
    "ScientificDataPoint",
    "ComputeRun",
    "NumericEvidenceItem",
    "IngestionPipeline",
    "PipelineOptions",
    "PipelineResult",
    "AnalysisRequest",
    "AnalysisResponse",
    "AnalysisEnvelope",
    "ScientificAnalysisService",
    "SQLiteRepository",
    "RepositoryError",
]
