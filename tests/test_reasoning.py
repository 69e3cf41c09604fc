"""Tests for the reasoning graph built from data points."""
import pytest
from paper_evidence.models import ScientificDataPoint
from paper_evidence.reasoning import build_reasoning_graph, edge_confidence


def _points(x_name, y_name, pairs, unit_y=None):
    return [ScientificDataPoint(x_name, y_name, float(x), float(y), unit_y=unit_y) for x, y in pairs]


@pytest.mark.parametrize("r_squared,n,expected", [
    (0.5, 40, 0.6),
    (0.95, 40, 1.0),
    (0.5, 12, 0.55),
    (0.5, 5, 0.5),
    (0.5, 3, 0.35),
    (0.05, 2, 0.0),
])
def test_edge_confidence(r_squared, n, expected):
    assert edge_confidence(r_squared, n) == pytest.approx(expected)


def test_positive_relationship():
    graph = build_reasoning_graph(_points("Epoch", "Accuracy", [(1, 70), (2, 75), (3, 80)], unit_y="%"))
    assert len(graph.edges) == 1
    edge = graph.edges[0]
    assert edge.relationship == "positive"
    assert edge.trend == "increasing"
    assert edge.confidence == pytest.approx(0.85)
    assert "Epoch positively correlates with Accuracy" in edge.claim
    names = {node.name: node for node in graph.nodes}
    assert names["Accuracy"].unit == "%"
    assert names["Accuracy"].min_value == 70.0
    assert names["Accuracy"].max_value == 80.0


def test_negative_relationship():
    graph = build_reasoning_graph(_points("Epoch", "Loss", [(1, 0.8), (2, 0.6), (3, 0.5)]))
    assert graph.edges[0].relationship == "negative"
    assert "negatively correlates" in graph.claims[0]


def test_weak_relationship():
    graph = build_reasoning_graph(_points("x", "y", [(1, 1), (2, 6), (3, 1), (4, 6), (5, 2)]))
    assert graph.edges[0].relationship == "weak"
    assert "shows no clear relationship" in graph.claims[0]


def test_groups_are_separate_and_degenerate_groups_skipped():
    points = (
        _points("Epoch", "Accuracy", [(1, 70), (2, 75), (3, 80)])
        + _points("Epoch", "Loss", [(1, 0.8)])
        + _points("Batch", "Time", [(4, 1.0), (4, 2.0)])
    )
    graph = build_reasoning_graph(points)
    assert [(e.source, e.target) for e in graph.edges] == [("Epoch", "Accuracy")]
    assert graph.summary.startswith("Analyzed 6 data points across 1 variable pair(s).")


def test_empty():
    graph = build_reasoning_graph([])
    assert graph.edges == []
    assert graph.to_dict()["claims"] == []
