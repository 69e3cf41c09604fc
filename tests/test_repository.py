"""Tests for the SQLite repository."""
import pytest
from paper_evidence.interfaces import ScientificDataRepositoryProtocol
from paper_evidence.models import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PROCESSING,
    ComputeRun,
    ExtractedTable,
    ProseProvenance,
    ScientificDataPoint,
    TableProvenance,
)
from paper_evidence.repository import RepositoryError, SQLiteRepository


def _table(confidence=0.9, page=1):
    return ExtractedTable(page, 0, ["Epoch", "Accuracy"], [["1", "70"], ["2", "75"]], confidence=confidence)


def _run(digest="h1", ingestion_id=None):
    return ComputeRun(
        method="full_analysis",
        method_version="1.0.0",
        params={"anomalyThreshold": 2.0},
        result={"regression": {"slope": 5.0}},
        deterministic_hash=digest,
        ingestion_id=ingestion_id,
    )


class TestIngestions:

    def test_create_is_idempotent_per_owner_and_hash(self, repo):
        first = repo.create_ingestion("alice", "a.pdf", "hash1", 100)
        again = repo.create_ingestion("alice", "renamed.pdf", "hash1", 100)
        assert again.id == first.id
        assert again.file_name == "a.pdf"
        assert len(repo.list_ingestions("alice")) == 1

    def test_owners_are_isolated(self, repo):
        a = repo.create_ingestion("alice", "a.pdf", "hash1", 100)
        b = repo.create_ingestion("bob", "a.pdf", "hash1", 100)
        assert a.id != b.id

    def test_new_ingestion_defaults(self, repo):
        ingestion = repo.create_ingestion("alice", "a.pdf", "hash1", 100, {"source": "upload"})
        assert ingestion.status == "pending"
        assert ingestion.version == 1
        assert ingestion.metadata == {"source": "upload"}

    def test_update_status_merges_metadata(self, repo):
        ingestion = repo.create_ingestion("alice", "a.pdf", "hash1", 100, {"source": "upload"})
        repo.update_ingestion_status(ingestion.id, STATUS_PROCESSING)
        updated = repo.update_ingestion_status(
            ingestion.id, STATUS_COMPLETED, page_count=7, metadata={"extractorVersion": "2.2.0"}
        )
        assert updated.status == STATUS_COMPLETED
        assert updated.page_count == 7
        assert updated.metadata == {"source": "upload", "extractorVersion": "2.2.0"}

    def test_failed_status_records_error(self, repo):
        ingestion = repo.create_ingestion("alice", "a.pdf", "hash1", 100)
        updated = repo.update_ingestion_status(ingestion.id, STATUS_FAILED, "boom")
        assert updated.error_message == "boom"

    def test_increment_version(self, repo):
        ingestion = repo.create_ingestion("alice", "a.pdf", "hash1", 100)
        updated = repo.update_ingestion_status(ingestion.id, STATUS_PROCESSING, increment_version=True)
        assert updated.version == 2

    def test_expected_status_guards_the_update(self, repo):
        ingestion = repo.create_ingestion("alice", "a.pdf", "hash1", 100)
        claimed = repo.update_ingestion_status(
            ingestion.id, STATUS_PROCESSING, expected_status="pending"
        )
        assert claimed.status == STATUS_PROCESSING
        again = repo.update_ingestion_status(
            ingestion.id, STATUS_PROCESSING, increment_version=True, expected_status="pending"
        )
        assert again is None
        assert repo.get_ingestion(ingestion.id).version == 1

    def test_satisfies_protocol(self, repo):
        assert isinstance(repo, ScientificDataRepositoryProtocol)

    def test_missing_records(self, repo):
        assert repo.get_ingestion("nope") is None
        assert repo.update_ingestion_status("nope", STATUS_PROCESSING) is None
        assert repo.get_extracted_tables("nope") == []
        assert repo.get_data_points("nope") == []

    def test_list_filters_by_status_and_limit(self, repo):
        for i in range(3):
            repo.create_ingestion("alice", f"{i}.pdf", f"hash{i}", 10)
        first = repo.list_ingestions("alice")[0]
        repo.update_ingestion_status(first.id, STATUS_PROCESSING)
        assert [i.id for i in repo.list_ingestions("alice", status=STATUS_PROCESSING)] == [first.id]
        assert len(repo.list_ingestions("alice", limit=2)) == 2


class TestArtifacts:

    def test_tables_are_versioned(self, repo):
        ingestion = repo.create_ingestion("alice", "a.pdf", "hash1", 100)
        saved = repo.save_extracted_tables(ingestion.id, 1, [_table()])
        assert saved[0].id
        assert saved[0].ingestion_id == ingestion.id

        repo.update_ingestion_status(ingestion.id, STATUS_PROCESSING, increment_version=True)
        repo.save_extracted_tables(ingestion.id, 2, [_table(0.7, page=2), _table(0.8, page=1)])

        current = repo.get_extracted_tables(ingestion.id)
        assert [t.page_number for t in current] == [1, 2]
        assert all(t.ingestion_version == 2 for t in current)
        assert len(repo.get_extracted_tables(ingestion.id, version=1)) == 1

    def test_table_round_trip(self, repo):
        ingestion = repo.create_ingestion("alice", "a.pdf", "hash1", 100)
        table = _table()
        table.qa_flags = ["moderate_empty_cells"]
        table.bbox = (72.0, 90.0, 300.0, 160.0)
        repo.save_extracted_tables(ingestion.id, 1, [table])
        loaded = repo.get_extracted_tables(ingestion.id)[0]
        assert loaded.headers == table.headers
        assert loaded.rows == table.rows
        assert loaded.qa_flags == ["moderate_empty_cells"]
        assert loaded.bbox == (72.0, 90.0, 300.0, 160.0)

    def test_data_point_provenance_round_trip(self, repo):
        ingestion = repo.create_ingestion("alice", "a.pdf", "hash1", 100)
        table = repo.save_extracted_tables(ingestion.id, 1, [_table()])[0]
        repo.save_data_points([
            ScientificDataPoint("Epoch", "Accuracy", 1.0, 70.0, provenance=TableProvenance(table.id),
                                ingestion_id=ingestion.id, metadata={"pageNumber": 1}),
            ScientificDataPoint("prose_index", "prose_metric", 1.0, 81.3,
                                provenance=ProseProvenance("strong", "accuracy 81.3%", "2.2.0"),
                                ingestion_id=ingestion.id, metadata={"family": "bare_number"}),
        ])
        table_point, prose_point = repo.get_data_points(ingestion.id)
        assert table_point.provenance == TableProvenance(table.id)
        assert table_point.metadata == {"pageNumber": 1}
        assert prose_point.provenance == ProseProvenance("strong", "accuracy 81.3%", "2.2.0")
        assert prose_point.metadata == {"family": "bare_number"}
        assert prose_point.source == "prose"

    def test_empty_saves(self, repo):
        assert repo.save_extracted_tables("x", 1, []) == []
        assert repo.save_data_points([]) == []


class TestComputeRuns:

    def test_deduplicated_by_hash(self, repo):
        first = repo.save_compute_run(_run("abc"))
        second = repo.save_compute_run(_run("abc"))
        assert first.id == second.id
        assert len(repo.get_compute_runs()) == 1

    def test_find_by_hash(self, repo):
        saved = repo.save_compute_run(_run("abc"))
        found = repo.find_compute_run_by_hash("abc")
        assert found.id == saved.id
        assert found.params == {"anomalyThreshold": 2.0}
        assert found.result["regression"]["slope"] == 5.0
        assert repo.find_compute_run_by_hash("missing") is None

    def test_filter_by_ingestion(self, repo):
        ingestion = repo.create_ingestion("alice", "a.pdf", "hash1", 100)
        repo.save_compute_run(_run("a", ingestion.id))
        repo.save_compute_run(_run("b"))
        assert [r.deterministic_hash for r in repo.get_compute_runs(ingestion.id)] == ["a"]


class TestPersistence:

    def test_file_backed_store_survives_reopen(self, tmp_path):
        path = tmp_path / "nested" / "store.sqlite"
        with SQLiteRepository(path) as repo:
            created = repo.create_ingestion("alice", "a.pdf", "hash1", 100)
        with SQLiteRepository(path) as repo:
            assert repo.get_ingestion(created.id).file_name == "a.pdf"

    def test_errors_are_wrapped(self):
        repo = SQLiteRepository()
        repo.close()
        with pytest.raises(RepositoryError):
            repo.get_ingestion("x")
