# faceclock/recognition/embedding.py
"""
Embedding normalization and quality checks.

Every function here returns None instead of raising when an embedding is
unusable; callers decide whether that is a discarded frame or a rejected
enrollment.
"""
from typing import Optional, Sequence

import numpy as np

NORM_EPSILON = 1e-6        # below this the crop was blank/degenerate
NORM_TOLERANCE = 1e-2      # a unit vector must have norm 1 +/- this


def _as_vector(v) -> Optional[np.ndarray]:
    try:
        arr = np.asarray(v, dtype=np.float64)
    except (TypeError, ValueError):
        return None
    if arr.ndim != 1 or arr.size == 0:
        return None
    if not np.all(np.isfinite(arr)):
        return None
    return arr


def normalize(v) -> Optional[np.ndarray]:
    """
    L2-normalize a raw embedding.

    Returns None for empty, non-finite or near-zero-norm input, and when the
    result fails its own unit-norm self-check.
    """
    arr = _as_vector(v)
    if arr is None:
        return None
    norm = float(np.linalg.norm(arr))
    if not np.isfinite(norm) or norm < NORM_EPSILON:
        return None
    unit = arr / norm
    if abs(float(np.linalg.norm(unit)) - 1.0) > NORM_TOLERANCE:
        return None
    return unit.astype(np.float32)


def check_dimension(v, dim: int) -> bool:
    """True if `v` is a 1-D vector of length `dim`."""
    shape = np.shape(v)
    return len(shape) == 1 and shape[0] == dim


def average(embeddings: Sequence) -> Optional[np.ndarray]:
    """
    Element-wise mean of same-dimension finite embeddings, re-normalized.

    Returns None if the input is empty, dimensions differ, a vector is not
    finite, or the mean cancels out.
    """
    if embeddings is None or len(embeddings) == 0:
        return None
    vectors = []
    for emb in embeddings:
        arr = _as_vector(emb)
        if arr is None:
            return None
        if vectors and arr.shape != vectors[0].shape:
            return None
        vectors.append(arr)
    return normalize(np.mean(np.stack(vectors), axis=0))


def cosine_similarity(a, b) -> Optional[float]:
    """Cosine similarity clamped to [-1, 1]; None if either side is invalid."""
    na = normalize(a)
    nb = normalize(b)
    if na is None or nb is None or na.shape != nb.shape:
        return None
    return float(np.clip(np.dot(na, nb), -1.0, 1.0))


def stability(embeddings: Sequence) -> Optional[float]:
    """
    Mean pairwise cosine similarity of a capture set.

    A single sample is trivially stable (1.0). None if any sample is invalid
    or dimensions differ.
    """
    if embeddings is None or len(embeddings) == 0:
        return None
    units = []
    for emb in embeddings:
        unit = normalize(emb)
        if unit is None:
            return None
        if units and unit.shape != units[0].shape:
            return None
        units.append(unit)
    n = len(units)
    if n == 1:
        return 1.0
    m = np.stack(units).astype(np.float64)
    sims = np.clip(m @ m.T, -1.0, 1.0)
    upper = sims[np.triu_indices(n, k=1)]
    return float(np.mean(upper))
