"""Content digests for ingestion dedup and compute-run cache keys."""
from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping


def content_hash(data: bytes) -> str:
    """SHA-256 hex digest of raw document bytes.

    Format-agnostic: malformed or non-PDF bytes hash like any other input.
    """
    return hashlib.sha256(data).hexdigest()


def canonical_points(points: Iterable[tuple[float, float]]) -> list[list[float]]:
    """Normalize (x, y) pairs to float lists, preserving order."""
    return [[float(x), float(y)] for x, y in points]


def compute_run_hash(
    method: str,
    method_version: str,
    params: Mapping,
    points: Iterable[tuple[float, float]],
) -> str:
    """Cache key for a compute run.

    Hashes method, version, parameters and the ordered point list as
    canonical JSON so that equal inputs always map to the same key.
    """
    payload = {
        "method": method,
        "methodVersion": method_version,
        "params": dict(params),
        "inputData": canonical_points(points),
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
