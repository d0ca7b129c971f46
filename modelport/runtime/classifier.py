from __future__ import annotations
from typing import List, Sequence, Tuple

import numpy as np

from ..errors import ShapeMismatch
from ..ir.tensor import TensorBuffer


def _scores_matrix(scores, vocabulary: Sequence[str]) -> np.ndarray:
    arr = scores.numpy() if isinstance(scores, TensorBuffer) else np.asarray(scores)
    if arr.ndim != 2:
        raise ShapeMismatch(f"Scores must have shape (N, C), got {arr.shape}")
    if arr.shape[1] != len(vocabulary):
        raise ShapeMismatch(
            f"Scores have {arr.shape[1]} classes but the vocabulary has {len(vocabulary)} labels"
        )
    if arr.shape[1] == 0:
        raise ShapeMismatch("Cannot classify against an empty vocabulary")
    return arr


def rank(row: np.ndarray) -> np.ndarray:
    """Class indices ordered by descending score.

    The sort is stable, so exact ties keep their vocabulary order and the
    lowest index comes first. Scores are never cast to a lossy type:
    integer and boolean rows are ranked through their dense order.
    """
    row = np.asarray(row)
    if np.issubdtype(row.dtype, np.floating):
        return np.argsort(-row, kind="stable")
    # Negating the dense order is exact for any integer width or signedness.
    _, dense = np.unique(row, return_inverse=True)
    return np.argsort(-dense.reshape(-1).astype(np.int64), kind="stable")


def classify(scores, vocabulary: Sequence[str]) -> List[str]:
    """Maps each row of an (N, C) score tensor to its highest-scoring label."""
    arr = _scores_matrix(scores, vocabulary)
    return [vocabulary[int(rank(row)[0])] for row in arr]


def top_k(scores, vocabulary: Sequence[str], k: int = 5) -> List[List[Tuple[str, float]]]:
    """The ``k`` best (label, score) pairs per row, under the same ranking as ``classify``."""
    if k < 1:
        raise ValueError(f"k must be positive, got {k}")
    arr = _scores_matrix(scores, vocabulary)
    k = min(k, arr.shape[1])
    results = []
    for row in arr:
        order = rank(row)[:k]
        results.append([(vocabulary[int(i)], float(row[i])) for i in order])
    return results
