"""Tests for content and compute-run digests."""
from paper_evidence.hashing import canonical_points, compute_run_hash, content_hash


class TestContentHash:

    def test_known_digest(self):
        assert content_hash(b"") == (
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )

    def test_non_pdf_bytes_hash(self):
        """Arbitrary bytes hash like any other input."""
        assert len(content_hash(b"not a pdf")) == 64
        assert content_hash(b"a") != content_hash(b"b")


class TestComputeRunHash:

    def test_param_order_does_not_matter(self):
        points = [(1, 2.0), (2, 4.0)]
        a = compute_run_hash("full_analysis", "1.0.0", {"a": 1, "b": 2}, points)
        b = compute_run_hash("full_analysis", "1.0.0", {"b": 2, "a": 1}, points)
        assert a == b

    def test_int_and_float_points_are_equivalent(self):
        a = compute_run_hash("m", "1", {}, [(1, 2)])
        b = compute_run_hash("m", "1", {}, [(1.0, 2.0)])
        assert a == b

    def test_point_order_matters(self):
        a = compute_run_hash("m", "1", {}, [(1, 2), (3, 4)])
        b = compute_run_hash("m", "1", {}, [(3, 4), (1, 2)])
        assert a != b

    def test_method_version_changes_key(self):
        points = [(1, 2)]
        assert compute_run_hash("m", "1.0.0", {}, points) != compute_run_hash("m", "1.0.1", {}, points)

    def test_canonical_points(self):
        assert canonical_points([(1, 2), (3.5, 4)]) == [[1.0, 2.0], [3.5, 4.0]]
