"""Tests for numeric evidence classification and reporting."""
import pytest
from conftest import WJARR_LINES
from paper_evidence.evidence_classifier import (
    CATEGORY_BIBLIOGRAPHIC,
    CATEGORY_CITATION_YEAR,
    CATEGORY_POTENTIAL_METRIC,
    CATEGORY_REFERENCE_INDEX,
    CATEGORY_STRUCTURAL,
    CONFIDENCE_HIGH,
    CONFIDENCE_LOW,
    CONFIDENCE_MEDIUM,
    aggregate_evidence,
    build_evidence_report,
    classify_evidence,
    classify_numeric_evidence,
    evidence_class,
    evidence_confidence,
    format_value,
    trim_context_snippet,
)
from paper_evidence.models import NumericEvidenceItem


class TestClassification:

    @pytest.mark.parametrize("value,snippet,category", [
        (12, "as shown in [12] the accuracy improved", CATEGORY_REFERENCE_INDEX),
        (2019, "Smith et al. (2019) reported higher accuracy", CATEGORY_CITATION_YEAR),
        (2e9, "Section 4 reports two billion events processed per day.", CATEGORY_POTENTIAL_METRIC),
        (4, "Section 4 reports two billion events processed per day.", CATEGORY_STRUCTURAL),
        (3, "Processing time dropped from three hours to fifteen minutes.", CATEGORY_POTENTIAL_METRIC),
        (18, "DOI 10.1000/xyz, volume 18", CATEGORY_BIBLIOGRAPHIC),
        (5, "The framework has five components", CATEGORY_STRUCTURAL),
        (91.2, "Accuracy reached 91.2% on the held-out set", CATEGORY_POTENTIAL_METRIC),
        (42, "We then used 42 of them", CATEGORY_STRUCTURAL),
    ])
    def test_categories(self, value, snippet, category):
        assert classify_numeric_evidence(value, snippet) == category

    def test_reference_marker_beats_metric_wording(self):
        snippet = "latency fell 30% [7] compared with the baseline"
        assert classify_numeric_evidence(7, snippet) == CATEGORY_REFERENCE_INDEX

    def test_scale_phrase_beats_section_reference(self):
        snippet = "Table 2 lists three million requests handled"
        assert classify_numeric_evidence(3e6, snippet) == CATEGORY_POTENTIAL_METRIC
        assert classify_numeric_evidence(2, snippet) == CATEGORY_STRUCTURAL

    def test_journal_header(self):
        header = WJARR_LINES[0]
        assert classify_numeric_evidence(18, header) == CATEGORY_BIBLIOGRAPHIC
        assert classify_numeric_evidence(2023, header) == CATEGORY_CITATION_YEAR

    def test_missing_snippet(self):
        assert classify_numeric_evidence(3.7, None) == CATEGORY_STRUCTURAL


class TestConfidence:

    def test_non_metric_is_low(self):
        assert evidence_confidence(CATEGORY_BIBLIOGRAPHIC, "volume 18") == CONFIDENCE_LOW

    def test_percent_is_high(self):
        assert evidence_confidence(CATEGORY_POTENTIAL_METRIC, "accuracy 91.2%") == CONFIDENCE_HIGH

    def test_temporal_delta_is_high(self):
        snippet = "from three hours to fifteen minutes"
        assert evidence_confidence(CATEGORY_POTENTIAL_METRIC, snippet) == CONFIDENCE_HIGH

    def test_scale_is_medium(self):
        snippet = "two billion events processed per day"
        assert evidence_confidence(CATEGORY_POTENTIAL_METRIC, snippet) == CONFIDENCE_MEDIUM

    def test_classify_evidence_fills_items(self):
        items = classify_evidence([
            NumericEvidenceItem(value=2e9, source="prose",
                                context_snippet="Section 4 reports two billion events processed per day."),
        ])
        assert items[0].category == CATEGORY_POTENTIAL_METRIC
        assert items[0].confidence == CONFIDENCE_MEDIUM


class TestSnippets:

    def test_short_snippet_unchanged(self):
        assert trim_context_snippet("Accuracy rose to 91%.") == "Accuracy rose to 91%."

    def test_long_snippet_truncated(self):
        snippet = "Accuracy rose, " * 30
        trimmed = trim_context_snippet(snippet, max_chars=80)
        assert len(trimmed) <= 80
        assert trimmed.endswith("…")

    def test_leading_fragment_dropped(self):
        assert trim_context_snippet("ing, Accuracy rose to 91%.") == "Accuracy rose to 91%."


class TestAggregation:

    def _item(self, value, snippet, category=CATEGORY_POTENTIAL_METRIC, confidence=CONFIDENCE_MEDIUM):
        return NumericEvidenceItem(value=value, source="prose", context_snippet=snippet,
                                   category=category, confidence=confidence)

    def test_merges_by_value_and_category(self):
        rows = aggregate_evidence([
            (self._item(81.3, "accuracy was 81.3 overall"), "a.pdf"),
            (self._item(81.3, "accuracy reached 81.3%", confidence=CONFIDENCE_HIGH), "b.pdf"),
            (self._item(81.3, "Table 81.3", category=CATEGORY_STRUCTURAL, confidence=CONFIDENCE_LOW), "b.pdf"),
        ])
        assert len(rows) == 2
        metric = next(r for r in rows if r.category == CATEGORY_POTENTIAL_METRIC)
        assert metric.occurrences == 2
        assert metric.confidence == CONFIDENCE_HIGH
        assert metric.file_names == ["a.pdf", "b.pdf"]
        assert len(metric.snippets) == 2

    def test_non_finite_values_skipped(self):
        assert aggregate_evidence([(self._item(float("nan"), "x"), None)]) == []

    def test_evidence_class(self):
        metric = aggregate_evidence([(self._item(1.5, "accuracy 1.5%"), None)])
        structural = aggregate_evidence(
            [(self._item(2, "Table 2", CATEGORY_STRUCTURAL, CONFIDENCE_LOW), None)]
        )
        assert evidence_class(metric) == "metric-bearing"
        assert evidence_class(metric + structural) == "mixed"
        assert evidence_class(structural) == "bibliographic/structural only"

    def test_format_value(self):
        assert format_value(2e9) == "2,000,000,000"
        assert format_value(0.8125) == "0.8125"


class TestReport:

    def test_empty_report(self):
        report = build_evidence_report([], ["paper.pdf"])
        assert "NONE: insufficient extractable numeric evidence" in report
        assert "Evidence class: bibliographic/structural only" in report
        assert "- paper.pdf" in report

    def test_report_sections(self):
        rows = aggregate_evidence([
            (NumericEvidenceItem(value=91.2, source="prose", context_snippet="Accuracy reached 91.2% overall",
                                 category=CATEGORY_POTENTIAL_METRIC, confidence=CONFIDENCE_HIGH), "a.pdf"),
            (NumericEvidenceItem(value=18, source="prose", context_snippet="volume 18 issue 2",
                                 category=CATEGORY_BIBLIOGRAPHIC, confidence=CONFIDENCE_LOW), "a.pdf"),
        ])
        report = build_evidence_report(rows, warnings=["w1", "w2", "w3", "w4"])
        assert "### Potential metrics" in report
        assert "### Bibliographic" in report
        assert "## Claim-eligible numerics" in report
        assert "- 91.2: Accuracy reached 91.2% (high confidence)" in report
        assert "- w3" in report and "- w4" not in report
