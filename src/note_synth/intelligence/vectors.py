"""Vector math over embeddings."""

from collections.abc import Sequence

import numpy as np

DEFAULT_DIMENSION = 1536


def cosine_similarity(a: Sequence[float], b: Sequence[float], strict: bool = False) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when the vectors differ in length or either has zero magnitude.

    Raises:
        ValueError: If strict and the vectors differ in length
    """
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        if strict:
            raise ValueError(f"Vector dimensions differ: {va.size} vs {vb.size}")
        return 0.0
    if va.size == 0:
        return 0.0

    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine distance (1 - similarity) that skips non-finite components.

    Returns 1.0 when either vector has zero magnitude after filtering.
    """
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    length = min(va.size, vb.size)
    va, vb = va[:length], vb[:length]

    finite = np.isfinite(va) & np.isfinite(vb)
    va, vb = va[finite], vb[finite]

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 1.0
    return float(1.0 - np.dot(va, vb) / (norm_a * norm_b))


def centroid(vectors: Sequence[Sequence[float]], dimension: int = DEFAULT_DIMENSION) -> list[float]:
    """Mean of a set of vectors, or a zero vector when there are none."""
    if not vectors:
        return [0.0] * dimension
    return np.mean(np.asarray(vectors, dtype=float), axis=0).tolist()


def find_similar(
    query: Sequence[float],
    candidates: dict[str, Sequence[float]],
    threshold: float,
) -> list[tuple[str, float]]:
    """Rank candidates by similarity to a query vector.

    Args:
        query: Vector to compare against
        candidates: Mapping of id to vector
        threshold: Minimum similarity to include

    Returns:
        (id, similarity) pairs at or above threshold, most similar first
    """
    matches = []
    for candidate_id, vector in candidates.items():
        similarity = cosine_similarity(query, vector)
        if similarity >= threshold:
            matches.append((candidate_id, similarity))
    matches.sort(key=lambda m: m[1], reverse=True)
    return matches
