"""Vector helpers shared by the similarity indexes."""

import json
import math
from collections.abc import Sequence

import numpy as np


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when the vectors differ in length or either has zero norm;
    never raises for well-formed numeric input.

    Returns:
        Similarity in [-1, 1].
    """
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    if vec_a.shape != vec_b.shape or vec_a.ndim != 1:
        return 0.0

    norm_a = float(np.linalg.norm(vec_a))
    norm_b = float(np.linalg.norm(vec_b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = float(np.dot(vec_a, vec_b)) / (norm_a * norm_b)
    return max(-1.0, min(1.0, similarity))


def parse_embedding(raw: object) -> np.ndarray | None:
    """Coerce a stored embedding into a float vector.

    Accepts numeric sequences, numpy arrays, and JSON text encoding a list of
    numbers.

    Returns:
        A 1-D float64 array, or None if the value is missing or malformed.
    """
    if raw is None:
        return None
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None

    if isinstance(raw, np.ndarray):
        values = raw
    elif isinstance(raw, (list, tuple)):
        if not raw or not all(
            isinstance(value, (int, float)) and not isinstance(value, bool)
            for value in raw
        ):
            return None
        values = np.asarray(raw, dtype=np.float64)
    else:
        return None

    if values.ndim != 1 or values.size == 0 or values.dtype.kind not in "iuf":
        return None
    vector = values.astype(np.float64, copy=False)
    if not all(math.isfinite(value) for value in vector):
        return None
    return vector
