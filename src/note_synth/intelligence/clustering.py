"""Complete-linkage agglomerative clustering of task embeddings."""

import logging
from itertools import combinations

import numpy as np

from note_synth.intelligence.vectors import cosine_distance
from note_synth.models.intelligence import ClusteringResult, TaskCluster

logger = logging.getLogger(__name__)


def _distance_matrix(vectors: list[list[float]]) -> np.ndarray:
    size = len(vectors)
    matrix = np.zeros((size, size))
    for i, j in combinations(range(size), 2):
        matrix[i, j] = matrix[j, i] = cosine_distance(vectors[i], vectors[j])
    return matrix


def _agglomerate(distances: np.ndarray, max_distance: float) -> list[list[int]]:
    """Merge groups until the closest pair's complete-linkage distance exceeds max_distance."""
    groups = [[i] for i in range(distances.shape[0])]

    while len(groups) > 1:
        best: tuple[float, int, int] | None = None
        for a, b in combinations(range(len(groups)), 2):
            linkage = max(distances[i, j] for i in groups[a] for j in groups[b])
            if best is None or linkage < best[0]:
                best = (linkage, a, b)

        linkage, a, b = best
        if linkage > max_distance:
            break
        groups[a] = groups[a] + groups[b]
        del groups[b]

    return groups


def _build_cluster(indices: list[int], ids: list[str], vectors: list[list[float]]) -> TaskCluster:
    members = [vectors[i] for i in indices]
    matrix = np.asarray(members, dtype=float)
    center = np.where(np.isfinite(matrix), matrix, 0.0).mean(axis=0).tolist()

    similarities = [1.0 - cosine_distance(a, b) for a, b in combinations(members, 2)]
    average = sum(similarities) / len(similarities) if similarities else 1.0

    return TaskCluster(
        task_ids=[ids[i] for i in indices],
        centroid=center,
        average_similarity=average,
    )


def cluster_tasks(embeddings: dict[str, list[float]], threshold: float = 0.75) -> ClusteringResult:
    """Group tasks whose embeddings are mutually similar.

    Clusters are cut where the complete-linkage cosine distance exceeds
    ``1 - threshold``. Only multi-task clusters whose average pairwise
    similarity reaches ``threshold`` are kept; if none qualify, the most
    cohesive multi-task cluster is kept instead.

    Args:
        embeddings: Mapping of task id to embedding, in display order
        threshold: Similarity a cluster must reach (0-1)

    Returns:
        ClusteringResult with clusters sorted by size then similarity
    """
    ids = list(embeddings)
    if not ids:
        return ClusteringResult(clusters=[], ungrouped_task_ids=[], threshold_used=threshold)

    vectors = [embeddings[task_id] for task_id in ids]
    if len(ids) == 1:
        return ClusteringResult(
            clusters=[TaskCluster(task_ids=ids, centroid=list(vectors[0]), average_similarity=1.0)],
            ungrouped_task_ids=[],
            threshold_used=threshold,
        )

    groups = _agglomerate(_distance_matrix(vectors), 1.0 - threshold)
    candidates = [_build_cluster(group, ids, vectors) for group in groups]

    useful = [
        c for c in candidates if len(c.task_ids) > 1 and c.average_similarity >= threshold
    ]
    if not useful:
        multi = [c for c in candidates if len(c.task_ids) > 1]
        if multi:
            fallback = max(multi, key=lambda c: c.average_similarity)
            logger.info(
                f"No cluster reached {threshold}, falling back to best cluster "
                f"(size={len(fallback.task_ids)}, similarity={fallback.average_similarity:.3f})"
            )
            useful = [fallback]

    assigned = {task_id for c in useful for task_id in c.task_ids}
    useful.sort(key=lambda c: (len(c.task_ids), c.average_similarity), reverse=True)

    return ClusteringResult(
        clusters=useful,
        ungrouped_task_ids=[task_id for task_id in ids if task_id not in assigned],
        threshold_used=threshold,
    )
