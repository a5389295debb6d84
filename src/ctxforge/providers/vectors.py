"""Vector math shared by the reference similarity providers."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity clamped to [0, 1]; zero vectors score 0."""
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        raise ValueError(f"Vector length mismatch: {va.shape[0]} != {vb.shape[0]}")
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    sim = float(np.dot(va, vb) / denom)
    return min(1.0, max(0.0, sim))


def similarity_matrix(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """All-pairs cosine similarity in one pass, clamped to [0, 1]."""
    mat = np.asarray(vectors, dtype=float)
    if mat.size == 0:
        return np.zeros((0, 0))
    norms = np.linalg.norm(mat, axis=1)
    norms[norms == 0] = 1.0
    unit = mat / norms[:, None]
    sims = unit @ unit.T
    # Symmetrize away floating point noise so sim(a, b) == sim(b, a) exactly
    sims = (sims + sims.T) / 2.0
    return np.clip(sims, 0.0, 1.0)
