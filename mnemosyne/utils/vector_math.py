"""Vector helpers shared by the in-process vector stores.

Every backend scores with cosine similarity; these helpers keep the file and
embedded stores numerically consistent with the server store's
``1 - (a <=> b)`` expression.
"""

from collections.abc import Sequence

import numpy as np

from mnemosyne.utils.errors import ConfigurationError


def check_dimension(vector: Sequence[float], dimension: int, provider_name: str | None = None) -> None:
    """Reject vectors whose length differs from the store dimension."""
    if len(vector) != dimension:
        raise ConfigurationError(
            message=f"Embedding has {len(vector)} dimensions, store expects {dimension}",
            provider_name=provider_name,
        )


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """Return *matrix* with each row scaled to unit length.

    Zero rows stay zero so they score 0.0 against every query.
    """
    if matrix.size == 0:
        return matrix.copy()
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0.0] = 1.0
    return matrix / norms


def cosine_scores(matrix: np.ndarray, query: Sequence[float]) -> np.ndarray:
    """Cosine similarity of *query* against every row of a normalized *matrix*."""
    q = np.asarray(query, dtype=np.float64)
    norm = np.linalg.norm(q)
    if norm == 0.0 or matrix.shape[0] == 0:
        return np.zeros(matrix.shape[0], dtype=np.float64)
    return matrix @ (q / norm)


def top_k(scores: np.ndarray, k: int) -> list[int]:
    """Indices of the *k* highest scores, best first.

    Uses ``argpartition`` so only the selected slice is fully sorted.
    """
    n = scores.shape[0]
    if k <= 0 or n == 0:
        return []
    if k >= n:
        return [int(i) for i in np.argsort(-scores, kind="stable")]
    part = np.argpartition(-scores, k - 1)[:k]
    ordered = part[np.argsort(-scores[part], kind="stable")]
    return [int(i) for i in ordered]


def select_top(
    scores: np.ndarray,
    k: int,
    min_score: float | None = None,
    mask: np.ndarray | None = None,
) -> list[int]:
    """Indices of the best *k* scores allowed by *mask* and at least *min_score*.

    *mask* is a boolean array aligned with *scores*; rows where it is
    ``False`` are never returned.
    """
    if mask is not None:
        scores = np.where(mask, scores, -np.inf)
    selected: list[int] = []
    for i in top_k(scores, k):
        score = scores[i]
        if np.isneginf(score) or (min_score is not None and score < min_score):
            break
        selected.append(i)
    return selected
