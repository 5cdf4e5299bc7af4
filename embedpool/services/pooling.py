"""Attention-masked mean pooling and L2 normalisation."""

from __future__ import annotations

import numpy as np

MASK_FLOOR = 1e-9
NORM_FLOOR = 1e-12


def mean_pool(hidden: np.ndarray, attention_mask: np.ndarray) -> np.ndarray:
    """Average token vectors over real (mask == 1) positions.

    ``hidden`` is ``(batch, seq, dim)`` and ``attention_mask`` is
    ``(batch, seq)``.  Rows with no real tokens come out as zeros rather than
    NaN because the token count is floored at ``MASK_FLOOR``.
    """
    mask = np.broadcast_to(attention_mask[..., np.newaxis], hidden.shape).astype(hidden.dtype)
    summed = np.sum(hidden * mask, axis=1)
    counts = np.maximum(np.sum(mask, axis=1), MASK_FLOOR)
    return summed / counts


def l2_normalize(vectors: np.ndarray) -> np.ndarray:
    """Scale each row to unit Euclidean length; all-zero rows stay zero."""
    norms = np.sqrt(np.sum(np.square(vectors), axis=1, keepdims=True))
    return vectors / np.maximum(norms, NORM_FLOOR)


def to_vectors(array: np.ndarray) -> list[list[float]]:
    return array.astype(np.float32).tolist()
