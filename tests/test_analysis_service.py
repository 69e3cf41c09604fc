"""Tests for the analysis service: responses, timeouts and batches."""
from __future__ import annotations

import asyncio

import pytest
from paper_evidence.analysis_service import (
    AnalysisOptions,
    AnalysisRequest,
    ScientificAnalysisService,
)
from paper_evidence.models import DocumentMetadata, Ingestion, ScientificDataPoint, TableProvenance
from paper_evidence.pipeline import IngestionPipeline, PipelineResult


class FakePipeline:
    """Pipeline stand-in keyed on file name: bad.pdf raises, slow.pdf hangs."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls: list[str] = []

    async def run(self, data, file_name, owner_id, options=None):
        self.calls.append(file_name)
        if file_name == "bad.pdf":
            raise RuntimeError("corrupt document")
        if file_name == "slow.pdf":
            await asyncio.sleep(5)
        if self.delay:
            await asyncio.sleep(self.delay)
        ingestion = Ingestion(f"ing-{file_name}", owner_id, file_name, "h", len(data), status="completed")
        points = [
            ScientificDataPoint("x", "y", 1.0, 2.0, provenance=TableProvenance("t1")),
            ScientificDataPoint("x", "y", 2.0, 4.0, provenance=TableProvenance("t1")),
        ]
        return PipelineResult(ingestion=ingestion, metadata=DocumentMetadata(), data_points=points)


def _request(name: str, **options) -> AnalysisRequest:
    return AnalysisRequest(owner_id="alice", data=b"%PDF", file_name=name, options=AnalysisOptions(**options))


class TestSingleRun:

    def test_partial_without_compute_run(self):
        response = asyncio.run(ScientificAnalysisService(FakePipeline()).run(_request("a.pdf")))
        assert response.status == "partial"
        assert response.ingestion_id == "ing-a.pdf"
        assert response.summary.data_point_count == 2
        assert response.provenance.source_table_ids == ["t1"]
        assert response.observability.file_name == "a.pdf"
        assert response.observability.status == "partial"
        assert [item.source for item in response.numeric_evidence] == ["table", "table"]

    def test_failure_becomes_response(self):
        response = asyncio.run(ScientificAnalysisService(FakePipeline()).run(_request("bad.pdf")))
        assert response.status == "failed"
        assert response.ingestion_id == ""
        assert response.warnings == ['Scientific analysis failed for "bad.pdf": corrupt document']
        assert response.observability.warning_count == 1

    def test_timeout(self):
        service = ScientificAnalysisService(FakePipeline())
        response = asyncio.run(service.run(_request("slow.pdf", timeout=0.05)))
        assert response.status == "failed"
        assert "Timeout" in response.warnings[0]
        assert "slow.pdf" in response.warnings[0]

    def test_default_timeout_applies(self):
        service = ScientificAnalysisService(FakePipeline(), default_timeout=0.05)
        response = asyncio.run(service.run(_request("slow.pdf")))
        assert "Timeout" in response.warnings[0]

    def test_to_dict(self):
        response = asyncio.run(ScientificAnalysisService(FakePipeline()).run(_request("a.pdf")))
        data = response.to_dict()
        assert data["status"] == "partial"
        assert data["provenance"]["method_version"] == "1.0.0"
        assert data["numeric_evidence"][0]["category"] is not None

    def test_unknown_feature_rejected(self):
        with pytest.raises(ValueError):
            AnalysisRequest(owner_id="a", data=b"", file_name="f", feature="search")


class TestBatch:

    def test_failure_is_isolated(self):
        service = ScientificAnalysisService(FakePipeline())
        requests = [_request("a.pdf"), _request("bad.pdf"), _request("c.pdf")]
        envelope = asyncio.run(service.run_batch(requests))
        assert envelope.pdf_count == 3
        assert envelope.failed_count == 1
        assert envelope.partial_count == 2
        assert [r.observability.file_name for r in envelope.results] == ["a.pdf", "bad.pdf", "c.pdf"]
        assert envelope.results[1].status == "failed"

    def test_windows_respect_limit(self):
        active = 0
        peak = 0

        class CountingPipeline(FakePipeline):
            async def run(self, *args, **kwargs):
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                try:
                    return await super().run(*args, **kwargs)
                finally:
                    active -= 1

        service = ScientificAnalysisService(CountingPipeline(delay=0.01))
        requests = [_request(f"{i}.pdf") for i in range(5)]
        envelope = asyncio.run(service.run_batch(requests, concurrency_limit=2))
        assert envelope.pdf_count == 5
        assert peak == 2

    def test_invalid_limit(self):
        service = ScientificAnalysisService(FakePipeline())
        with pytest.raises(ValueError):
            asyncio.run(service.run_batch([_request("a.pdf")], concurrency_limit=0))

    def test_envelope_dict_and_markdown(self):
        service = ScientificAnalysisService(FakePipeline())
        envelope = asyncio.run(service.run_batch([_request("a.pdf"), _request("bad.pdf")]))
        data = envelope.to_dict()
        assert data["feature_context"] == "hybrid"
        assert data["request_summary"] == {
            "pdf_count": 2, "completed_count": 0, "partial_count": 1, "failed_count": 1,
        }
        md = envelope.to_markdown()
        assert "| a.pdf | partial |" in md
        assert "## bad.pdf" in md


class TestWithRealPipeline:

    def test_table_document_completes(self, repo, table_pdf):
        service = ScientificAnalysisService(IngestionPipeline(repo))
        request = AnalysisRequest(owner_id="alice", data=table_pdf, file_name="table.pdf")
        response = asyncio.run(service.run(request))
        assert response.status == "completed"
        assert response.compute_run_id
        assert response.summary.trusted_table_count == 1
        assert len(response.provenance.source_table_ids) == 1
        assert response.reasoning["edges"]

    def test_batch_with_a_bibliographic_only_file(self, repo, table_pdf, prose_pdf, wjarr_pdf):
        service = ScientificAnalysisService(IngestionPipeline(repo))
        requests = [
            AnalysisRequest(owner_id="alice", data=table_pdf, file_name="table.pdf"),
            AnalysisRequest(owner_id="alice", data=wjarr_pdf, file_name="wjarr.pdf"),
            AnalysisRequest(owner_id="alice", data=prose_pdf, file_name="prose.pdf"),
        ]
        envelope = asyncio.run(service.run_batch(requests, concurrency_limit=3))
        assert envelope.failed_count == 0
        assert envelope.completed_count == 3
        wjarr = envelope.results[1]
        assert wjarr.summary.data_point_count == 0
        assert wjarr.numeric_evidence == []

    def test_batch_with_the_same_document_twice(self, repo, table_pdf):
        service = ScientificAnalysisService(IngestionPipeline(repo))
        requests = [
            AnalysisRequest(owner_id="alice", data=table_pdf, file_name="table.pdf"),
            AnalysisRequest(owner_id="alice", data=table_pdf, file_name="table-copy.pdf"),
        ]
        envelope = asyncio.run(service.run_batch(requests, concurrency_limit=2))
        assert envelope.completed_count == 2
        first, second = envelope.results
        assert first.ingestion_id == second.ingestion_id
        assert len(repo.get_extracted_tables(first.ingestion_id)) == 1
        assert len(repo.get_data_points(first.ingestion_id)) == 4

        again = asyncio.run(service.run(requests[0]))
        assert again.summary.table_count == 1
        assert again.summary.data_point_count == 4
