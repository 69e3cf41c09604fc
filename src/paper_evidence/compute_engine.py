"""Deterministic statistics over extracted (x, y) points.

Regression, trend and anomaly detection are pure functions of the input
points, so a run is fully identified by its deterministic hash and can be
served from the compute-run cache.
"""
from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass

import numpy as np

from .hashing import compute_run_hash

logger = logging.getLogger(__name__)

ENGINE_VERSION = "1.0.0"
FULL_ANALYSIS_METHOD = "full_analysis"

DEFAULT_ANOMALY_THRESHOLD = 2.0
EXTREME_OUTLIER_Z = 3.0
FLAT_SLOPE = 0.001
NON_MONOTONIC_R_SQUARED = 0.3
MIN_ANOMALY_POINTS = 3
POLYNOMIAL_DEGREE = 2

Point = tuple[float, float]


@dataclass
class RegressionResult:
    slope: float
    intercept: float
    r_squared: float
    standard_error: float | None
    equation: str
    n: int
    coefficients: list[float] | None = None   # polynomial only, ascending powers

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TrendResult:
    direction: str          # increasing | decreasing | flat | non_monotonic
    slope: float
    r_squared: float
    change_percent: float | None
    description: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AnomalyResult:
    index: int
    x: float
    y: float
    z_score: float
    description: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class FullAnalysis:
    regression: RegressionResult
    trend: TrendResult
    anomalies: list[AnomalyResult]
    deterministic_hash: str
    params: dict
    polynomial: RegressionResult | None = None

    def to_dict(self) -> dict:
        return {
            "regression": self.regression.to_dict(),
            "trend": self.trend.to_dict(),
            "anomalies": [a.to_dict() for a in self.anomalies],
            "polynomial": self.polynomial.to_dict() if self.polynomial else None,
            "deterministicHash": self.deterministic_hash,
        }


def _arrays(points: list[Point]) -> tuple[np.ndarray, np.ndarray]:
    x = np.array([float(p[0]) for p in points], dtype=float)
    y = np.array([float(p[1]) for p in points], dtype=float)
    return x, y


def _r_squared(y: np.ndarray, fitted: np.ndarray) -> float:
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    ss_res = float(np.sum((y - fitted) ** 2))
    if ss_tot == 0:
        return 1.0 if ss_res == 0 else 0.0
    return 1.0 - ss_res / ss_tot


# =============================================================================
# Regression
# =============================================================================

def linear_regression(points: list[Point]) -> RegressionResult:
    """Ordinary least squares fit y = slope * x + intercept.

    Raises:
        ValueError: fewer than 2 points, or all x values identical.
    """
    if len(points) < 2:
        raise ValueError("Linear regression requires at least 2 points")
    x, y = _arrays(points)
    sxx = float(np.sum((x - x.mean()) ** 2))
    if sxx == 0:
        raise ValueError("Linear regression requires at least 2 distinct x values")

    design = np.column_stack([np.ones_like(x), x])
    (intercept, slope), *_ = np.linalg.lstsq(design, y, rcond=None)
    intercept, slope = float(intercept), float(slope)
    fitted = intercept + slope * x

    n = len(points)
    standard_error = None
    if n > 2:
        mse = float(np.sum((y - fitted) ** 2)) / (n - 2)
        standard_error = math.sqrt(mse / sxx)

    return RegressionResult(
        slope=slope,
        intercept=intercept,
        r_squared=_r_squared(y, fitted),
        standard_error=standard_error,
        equation=f"y = {slope:.6f}x + {intercept:.6f}",
        n=n,
    )


def polynomial_regression(points: list[Point], degree: int = 2) -> RegressionResult:
    """Least-squares polynomial fit; slope/intercept are the linear terms.

    Raises:
        ValueError: degree < 1 or not more points than the degree.
    """
    if degree < 1:
        raise ValueError("Polynomial degree must be at least 1")
    if len(points) <= degree:
        raise ValueError(f"Polynomial regression of degree {degree} requires more than {degree} points")
    x, y = _arrays(points)
    design = np.vander(x, degree + 1, increasing=True)
    coefficients, *_ = np.linalg.lstsq(design, y, rcond=None)
    coefficients = [float(c) for c in coefficients]
    fitted = design @ np.array(coefficients)

    terms = [f"{c:.6f}x^{p}" if p > 1 else (f"{c:.6f}x" if p == 1 else f"{c:.6f}")
             for p, c in reversed(list(enumerate(coefficients)))]
    return RegressionResult(
        slope=coefficients[1],
        intercept=coefficients[0],
        r_squared=_r_squared(y, fitted),
        standard_error=None,
        equation="y = " + " + ".join(terms),
        n=len(points),
        coefficients=coefficients,
    )


# =============================================================================
# Trend and anomalies
# =============================================================================

def analyze_trend(points: list[Point], y_name: str = "y") -> TrendResult:
    """Classify the direction of y over the ordered points."""
    regression = linear_regression(points)
    if abs(regression.slope) < FLAT_SLOPE:
        direction = "flat"
    elif regression.r_squared < NON_MONOTONIC_R_SQUARED:
        direction = "non_monotonic"
    elif regression.slope > 0:
        direction = "increasing"
    else:
        direction = "decreasing"

    first_y, last_y = float(points[0][1]), float(points[-1][1])
    change_percent = None
    if first_y != 0:
        change_percent = (last_y - first_y) / abs(first_y) * 100.0

    change_text = f"{change_percent:.1f}%" if change_percent is not None else "n/a"
    description = (
        f"{y_name} {direction.replace('_', '-')} over {len(points)} observations "
        f"(R²={regression.r_squared:.3f}, Δ={change_text})."
    )
    return TrendResult(
        direction=direction,
        slope=regression.slope,
        r_squared=regression.r_squared,
        change_percent=change_percent,
        description=description,
    )


def detect_anomalies(
    points: list[Point], threshold: float = DEFAULT_ANOMALY_THRESHOLD
) -> list[AnomalyResult]:
    """Points whose y population z-score reaches the threshold."""
    if len(points) < MIN_ANOMALY_POINTS:
        return []
    _, y = _arrays(points)
    std = float(y.std())
    if std == 0:
        return []
    mean = float(y.mean())

    anomalies = []
    for i, (px, py) in enumerate(points):
        z = (float(py) - mean) / std
        if abs(z) >= threshold:
            kind = "Extreme outlier" if abs(z) >= EXTREME_OUTLIER_Z else "Outlier"
            anomalies.append(AnomalyResult(
                index=i,
                x=float(px),
                y=float(py),
                z_score=z,
                description=f"{kind} at x={float(px):g}: y={float(py):g} (z={z:.2f})",
            ))
    return anomalies


def full_analysis_params(threshold: float = DEFAULT_ANOMALY_THRESHOLD) -> dict:
    return {"anomalyThreshold": threshold}


def full_analysis_hash(points: list[Point], threshold: float = DEFAULT_ANOMALY_THRESHOLD) -> str:
    """Cache key of run_full_analysis for these points, without computing it."""
    return compute_run_hash(
        FULL_ANALYSIS_METHOD, ENGINE_VERSION, full_analysis_params(threshold), points
    )


def run_full_analysis(
    points: list[Point],
    y_name: str = "y",
    threshold: float = DEFAULT_ANOMALY_THRESHOLD,
) -> FullAnalysis:
    """Regression, trend and anomalies with the run's deterministic hash.

    A quadratic fit is added when there are more points than it has
    coefficients.
    """
    regression = linear_regression(points)
    polynomial = None
    if len(points) > POLYNOMIAL_DEGREE + 1:
        polynomial = polynomial_regression(points, POLYNOMIAL_DEGREE)
    trend = analyze_trend(points, y_name)
    anomalies = detect_anomalies(points, threshold)
    logger.debug(
        f"Full analysis over {len(points)} points: slope={regression.slope:.4f}, "
        f"{len(anomalies)} anomalies"
    )
    return FullAnalysis(
        regression=regression,
        trend=trend,
        anomalies=anomalies,
        deterministic_hash=full_analysis_hash(points, threshold),
        params=full_analysis_params(threshold),
        polynomial=polynomial,
    )
