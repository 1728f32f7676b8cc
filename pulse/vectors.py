from __future__ import annotations

from collections.abc import Sequence
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from pulse.constants import EMBEDDING_MIN_CLIP


def as_array(vec: Sequence[float] | None) -> Optional[NDArray[np.float64]]:
    if vec is None or len(vec) == 0:
        return None
    arr = np.asarray(vec, dtype=np.float64)
    if not np.all(np.isfinite(arr)):
        return None
    return arr


def normalize(vec: Sequence[float]) -> list[float]:
    """L2-normalize; a (near) zero vector comes back as zeros."""
    arr = np.asarray(vec, dtype=np.float64)
    norm = float(np.linalg.norm(arr))
    if norm <= EMBEDDING_MIN_CLIP:
        return [0.0] * len(arr)
    return (arr / norm).tolist()


def norm(vec: Sequence[float]) -> float:
    return float(np.linalg.norm(np.asarray(vec, dtype=np.float64))) if len(vec) else 0.0


def is_usable(vec: Sequence[float] | None) -> bool:
    """Finite, non-empty and not (near) zero."""
    arr = as_array(vec)
    return arr is not None and float(np.linalg.norm(arr)) > EMBEDDING_MIN_CLIP


def cosine(a: Sequence[float] | None, b: Sequence[float] | None) -> Optional[float]:
    """Cosine similarity; None when undefined or the dimensions differ."""
    va, vb = as_array(a), as_array(b)
    if va is None or vb is None or len(va) != len(vb):
        return None
    na, nb = float(np.dot(va, va)), float(np.dot(vb, vb))
    if na <= EMBEDDING_MIN_CLIP or nb <= EMBEDDING_MIN_CLIP:
        return None
    return float(np.dot(va, vb) / np.sqrt(na * nb))
