"""
Similarity engine - bounded, symmetric score between two package records.

score = clamp( 1 / (1 + d) * t, 0, 1 )

d  Euclidean distance between the feature vectors
t  topology similarity: mean of three per-metric terms, each clamped to [0, 1]
     1 - |count_a - count_b| / 100
     1 - |clustering_a - clustering_b|
     1 - |modularity_a - modularity_b|

Dimension mismatches raise DimensionMismatch. similarity_or_zero() is the
permissive variant for callers that explicitly accept a zero score instead.
"""

from typing import Sequence

import numpy as np

from .errors import DimensionMismatch
from .schema import PackageRecord, Topology
from ..util.logging import logger

COUNT_SCALE = 100.0


def _as_array(vector: Sequence[float]) -> np.ndarray:
    return np.asarray(vector, dtype=np.float64)


def check_dimensions(a: Sequence[float], b: Sequence[float]) -> None:
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))


def vector_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Euclidean distance over the first min(len(a), len(b)) components."""
    n = min(len(a), len(b))
    diff = _as_array(a[:n]) - _as_array(b[:n])
    return float(np.linalg.norm(diff))


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return float(min(high, max(low, value)))


def topology_similarity(a: Topology, b: Topology) -> float:
    """Topology term in [0, 1]; 1.0 only when all three metrics are equal."""
    terms = [
        _clamp(1.0 - abs(a.count - b.count) / COUNT_SCALE),
        _clamp(1.0 - abs(a.clustering - b.clustering)),
        _clamp(1.0 - abs(a.modularity - b.modularity)),
    ]
    return float(np.mean(terms))


def vector_similarity(a: Sequence[float], b: Sequence[float], topo_a: Topology, topo_b: Topology) -> float:
    """Score raw vectors and topologies. Raises DimensionMismatch on unequal lengths."""
    check_dimensions(a, b)
    d = vector_distance(a, b)
    t = topology_similarity(topo_a, topo_b)
    return _clamp((1.0 / (1.0 + d)) * t)


def similarity(a: PackageRecord, b: PackageRecord) -> float:
    """Similarity between two records in [0, 1]. Symmetric and side-effect free."""
    return vector_similarity(a.feature_vector, b.feature_vector, a.topology, b.topology)


def similarity_or_zero(a: PackageRecord, b: PackageRecord) -> float:
    """Permissive similarity: a dimension mismatch is logged and scored 0.0."""
    try:
        return similarity(a, b)
    except DimensionMismatch as e:
        logger.log_similarity_error(a.key, b.key, str(e))
        return 0.0
