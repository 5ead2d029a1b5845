# nebula/clusters.py
"""
Cluster Identifier: connected components of the neuron proximity graph.

Two neurons are linked when they are closer than the connectivity threshold;
a cluster is one component of that graph together with its aggregates.
Clusters are recomputed on every pass and never cached on the store.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components

from nebula.dynamics import proximity_pairs
from nebula.particles import ParticleStore, normalize

logger = logging.getLogger(__name__)

Array = np.ndarray


@dataclass(frozen=True)
class Cluster:
    indices:          Array
    centroid:         Array
    mean_velocity:    Array    # unweighted
    angular_momentum: float    # z component, per unit mass, about the centroid
    coherence:        float
    extents:          Array    # (2, 3): min corner, max corner

    @property
    def size(self) -> int:
        return len(self.indices)


def summarize(
    store: ParticleStore,
    indices: Array,
    coherence_cosine: float = 0.9,
) -> Cluster:
    pos = store.position[indices]
    vel = store.velocity[indices]
    mass = store.mass[indices]
    total = float(mass.sum())

    centroid = (pos * mass[:, None]).sum(axis=0) / total
    mean_velocity = vel.mean(axis=0)

    rel_pos = pos - centroid
    rel_vel = vel - mean_velocity
    lz = rel_pos[:, 0] * rel_vel[:, 1] - rel_pos[:, 1] * rel_vel[:, 0]
    angular_momentum = float((mass * lz).sum() / total)

    mean_dir = normalize(mean_velocity)
    if not mean_dir.any():
        coherence = 0.0
    else:
        cos = normalize(vel) @ mean_dir
        coherence = float(np.mean(cos > coherence_cosine))

    extents = np.vstack([pos.min(axis=0), pos.max(axis=0)])
    return Cluster(
        indices=np.asarray(indices, dtype=np.int64),
        centroid=centroid,
        mean_velocity=mean_velocity,
        angular_momentum=angular_momentum,
        coherence=coherence,
        extents=extents,
    )


class ClusterIdentifier:

    def __init__(
        self,
        threshold: float = 100.0,
        min_size: int = 2,
        coherence_cosine: float = 0.9,
    ) -> None:
        if threshold <= 0.0:
            raise ValueError("threshold must be > 0")
        if min_size < 1:
            raise ValueError("min_size must be >= 1")
        self.threshold = threshold
        self.min_size = min_size
        self.coherence_cosine = coherence_cosine

    def labels(self, store: ParticleStore) -> Array:
        """Component label per neuron (singletons get their own label)."""
        n = store.num_neurons
        if n == 0:
            return np.zeros(0, dtype=np.int64)
        i, j, _ = proximity_pairs(store.position, self.threshold)
        graph = coo_matrix((np.ones(len(i)), (i, j)), shape=(n, n))
        _, labels = connected_components(graph, directed=False)
        return labels

    def identify(self, store: ParticleStore, limit: Optional[int] = None) -> List[Cluster]:
        """Clusters of at least `min_size` members, largest first."""
        labels = self.labels(store)
        if labels.size == 0:
            return []

        counts = np.bincount(labels)
        order = np.argsort(-counts, kind="stable")
        clusters: List[Cluster] = []
        for label in order:
            if counts[label] < self.min_size:
                break
            members = np.flatnonzero(labels == label)
            clusters.append(summarize(store, members, self.coherence_cosine))
            if limit is not None and len(clusters) >= limit:
                break

        logger.debug("Identified %d clusters over %d neurons", len(clusters), store.num_neurons)
        return clusters
