"""Vector and set similarity helpers.

Pure functions over numpy arrays: cosine similarity for a single pair and for
a query against a stacked matrix, Jaccard overlap for tag sets, and a linear
time-proximity score for creation timestamps.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime

import numpy as np
from numpy.typing import NDArray

SECONDS_PER_DAY = 86400.0


def cosine_similarity(a: Sequence[float] | NDArray | None, b: Sequence[float] | NDArray | None) -> float:
    """Cosine similarity of two vectors; 0.0 for missing, mismatched, or zero vectors."""
    if a is None or b is None:
        return 0.0
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    if va.shape != vb.shape or va.size == 0:
        return 0.0

    denominator = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denominator == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denominator)


def cosine_similarities(query: Sequence[float] | NDArray, matrix: NDArray) -> NDArray[np.float32]:
    """Cosine similarity of *query* against every row of *matrix*.

    Zero-norm rows score 0.0. Raises ``ValueError`` on a dimension mismatch.
    """
    if matrix.size == 0:
        return np.empty((0,), dtype=np.float32)

    q = np.asarray(query, dtype=np.float32)
    if matrix.shape[1] != q.shape[0]:
        raise ValueError(f"query dimension {q.shape[0]} does not match stored dimension {matrix.shape[1]}")

    q_norm = np.linalg.norm(q)
    if q_norm == 0:
        return np.zeros((matrix.shape[0],), dtype=np.float32)

    row_norms = np.linalg.norm(matrix, axis=1)
    safe_norms = np.where(row_norms == 0, 1.0, row_norms)
    sims = (matrix @ q) / (safe_norms * q_norm)
    return np.where(row_norms == 0, 0.0, sims).astype(np.float32)


def jaccard_similarity(tags_a: Iterable[str], tags_b: Iterable[str]) -> float:
    """|A ∩ B| / |A ∪ B|; two empty sets score 0.0."""
    set_a, set_b = set(tags_a), set(tags_b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def days_between(a: datetime, b: datetime) -> float:
    return abs((a - b).total_seconds()) / SECONDS_PER_DAY


def time_proximity(a: datetime, b: datetime, max_window_days: float) -> float:
    """``1 - days_apart / max_window_days``, floored at 0.0 outside the window."""
    if max_window_days <= 0:
        return 0.0
    days = days_between(a, b)
    if days > max_window_days:
        return 0.0
    return 1.0 - days / max_window_days
