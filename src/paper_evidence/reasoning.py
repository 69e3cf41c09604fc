"""Reasoning graph over extracted data points.

Each (x variable, y variable) pair with enough observations becomes an edge
carrying its fitted relationship, trend and a confidence derived from R² and
sample size. Nodes summarize the observed range of each variable.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from .compute_engine import analyze_trend, linear_regression
from .models import ScientificDataPoint

logger = logging.getLogger(__name__)

WEAK_RELATIONSHIP_R_SQUARED = 0.1
STRONG_EDGE_R_SQUARED = 0.5
LARGE_SAMPLE = 30
MEDIUM_SAMPLE = 10
SMALL_SAMPLE = 5
LARGE_SAMPLE_BONUS = 0.1
MEDIUM_SAMPLE_BONUS = 0.05
SMALL_SAMPLE_PENALTY = 0.15


@dataclass
class VariableNode:
    name: str
    unit: str | None
    observations: int
    min_value: float
    max_value: float


@dataclass
class RelationshipEdge:
    source: str
    target: str
    relationship: str        # positive | negative | weak
    slope: float
    r_squared: float
    n: int
    confidence: float
    trend: str
    claim: str


@dataclass
class ReasoningGraph:
    nodes: list[VariableNode] = field(default_factory=list)
    edges: list[RelationshipEdge] = field(default_factory=list)
    summary: str = ""

    @property
    def claims(self) -> list[str]:
        return [e.claim for e in self.edges]

    def to_dict(self) -> dict:
        return {
            "nodes": [asdict(n) for n in self.nodes],
            "edges": [asdict(e) for e in self.edges],
            "claims": self.claims,
            "summary": self.summary,
        }


def edge_confidence(r_squared: float, n: int) -> float:
    confidence = r_squared
    if n >= LARGE_SAMPLE:
        confidence += LARGE_SAMPLE_BONUS
    elif n >= MEDIUM_SAMPLE:
        confidence += MEDIUM_SAMPLE_BONUS
    elif n < SMALL_SAMPLE:
        confidence -= SMALL_SAMPLE_PENALTY
    return max(0.0, min(1.0, confidence))


def _update_node(nodes: dict[str, VariableNode], name: str, unit: str | None, values: list[float]) -> None:
    node = nodes.get(name)
    if node is None:
        nodes[name] = VariableNode(
            name=name,
            unit=unit,
            observations=len(values),
            min_value=min(values),
            max_value=max(values),
        )
        return
    node.observations += len(values)
    node.min_value = min(node.min_value, *values)
    node.max_value = max(node.max_value, *values)
    node.unit = node.unit or unit


def build_reasoning_graph(points: list[ScientificDataPoint]) -> ReasoningGraph:
    """Group points by variable pair and derive nodes, edges and claims."""
    groups: dict[tuple[str, str], list[ScientificDataPoint]] = {}
    for point in points:
        groups.setdefault((point.x_name, point.y_name), []).append(point)

    nodes: dict[str, VariableNode] = {}
    edges: list[RelationshipEdge] = []

    for (x_name, y_name), group in groups.items():
        if len(group) < 2:
            continue
        pairs = [(p.x_value, p.y_value) for p in group]
        try:
            regression = linear_regression(pairs)
            trend = analyze_trend(pairs, y_name)
        except ValueError as e:
            logger.debug(f"Skipping {x_name} -> {y_name}: {e}")
            continue

        _update_node(nodes, x_name, group[0].unit_x, [p.x_value for p in group])
        _update_node(nodes, y_name, group[0].unit_y, [p.y_value for p in group])

        if regression.r_squared < WEAK_RELATIONSHIP_R_SQUARED:
            relationship = "weak"
        else:
            relationship = "positive" if regression.slope > 0 else "negative"

        n = len(group)
        if relationship == "weak":
            claim = (
                f"{x_name} shows no clear relationship with {y_name} "
                f"(R²={regression.r_squared:.3f}, n={n})."
            )
        else:
            verb = "positively" if relationship == "positive" else "negatively"
            claim = (
                f"{x_name} {verb} correlates with {y_name} "
                f"(R²={regression.r_squared:.3f}, slope={regression.slope:.4f}, n={n})."
            )

        edges.append(RelationshipEdge(
            source=x_name,
            target=y_name,
            relationship=relationship,
            slope=regression.slope,
            r_squared=regression.r_squared,
            n=n,
            confidence=edge_confidence(regression.r_squared, n),
            trend=trend.direction,
            claim=claim,
        ))

    strong = sum(1 for e in edges if e.r_squared >= STRONG_EDGE_R_SQUARED)
    summary = (
        f"Analyzed {len(points)} data points across {len(edges)} variable pair(s). "
        f"{strong} strong relationship(s), {len(edges) - strong} weak or moderate."
    )
    return ReasoningGraph(nodes=list(nodes.values()), edges=edges, summary=summary)
