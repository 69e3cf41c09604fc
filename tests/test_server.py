"""Tests for MCP server wiring."""
import pytest
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from paper_evidence.analysis_service import ScientificAnalysisService
from paper_evidence.pipeline import IngestionPipeline
from paper_evidence.server import _read_pdf, create_server


def test_create_server(repo):
    service = ScientificAnalysisService(IngestionPipeline(repo))
    mcp = create_server(service, repo)
    assert isinstance(mcp, FastMCP)
    assert mcp.name == "paper-evidence"


def test_read_pdf(tmp_path, table_pdf):
    path = tmp_path / "paper.pdf"
    path.write_bytes(table_pdf)
    data, name = _read_pdf(str(path))
    assert data == table_pdf
    assert name == "paper.pdf"


def test_read_missing_pdf(tmp_path):
    with pytest.raises(ToolError):
        _read_pdf(str(tmp_path / "missing.pdf"))
