# nebula/diversity.py
"""
Diversity Controller
====================
Keeps the galaxy from collapsing onto a single dominant structure.

A scalar annealing temperature starts hot and cools multiplicatively toward a
floor that is never reached exactly. Each update applies, in order:

  (a) thermal noise       temperature-scaled velocity and luminosity jitter
  (b) lateral inhibition  bright neurons dim and repel their neighbourhood
  (c) diversity pressure  over-large clusters lose luminosity and energy
  (d) perturbation        periodic velocity kicks and luminosity spikes

and finishes by clamping luminosity and speed to sane bounds.
"""
from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np
from scipy.spatial import cKDTree

from nebula.clusters import Cluster, ClusterIdentifier
from nebula.config import DiversityConfig
from nebula.particles import ParticleStore, random_unit_vectors

logger = logging.getLogger(__name__)


class DiversityController:

    def __init__(
        self,
        config: Optional[DiversityConfig] = None,
        rng: Optional[np.random.Generator] = None,
        identifier: Optional[ClusterIdentifier] = None,
    ) -> None:
        self.config = config or DiversityConfig()
        self.rng = rng if rng is not None else np.random.default_rng()
        self.identifier = identifier or ClusterIdentifier()
        self.temperature = self.config.initial_temperature
        self.iteration = 0

    def update(
        self,
        store: ParticleStore,
        dt: float,
        iteration: Optional[int] = None,
        clusters: Optional[List[Cluster]] = None,
    ) -> None:
        """
        One controller pass. `iteration` defaults to an internal counter that
        advances on every call; `clusters` defaults to a fresh identification.
        """
        if iteration is None:
            iteration = self.iteration
        self.iteration = iteration + 1

        if store.num_neurons:
            self.apply_thermal_noise(store, dt)
            self.apply_lateral_inhibition(store)
            self.apply_diversity_pressure(store, clusters)
            if iteration % self.config.perturbation_interval == 0:
                self.apply_perturbation(store)
            self.clamp(store)

        self.temperature = max(self.temperature * self.config.cooling_rate, self.config.min_temperature)

    # ── (a) ───────────────────────────────────────────────────────────────────

    def apply_thermal_noise(self, store: ParticleStore, dt: float) -> None:
        n = store.num_neurons
        t = self.temperature
        store.velocity += self.rng.uniform(-1.0, 1.0, size=(n, 3)) * (np.sqrt(t) * 0.01 * dt)
        store.luminosity *= 1.0 + self.rng.uniform(-0.1, 0.1, size=n) * t / 1000.0
        np.clip(store.luminosity, self.config.min_luminosity, self.config.max_luminosity, out=store.luminosity)

    # ── (b) ───────────────────────────────────────────────────────────────────

    def inhibition_field(self, store: ParticleStore) -> np.ndarray:
        cfg = self.config
        field = np.zeros(store.num_neurons)
        bright = np.flatnonzero(store.luminosity > cfg.bright_cutoff)
        if bright.size == 0:
            return field

        pairs = cKDTree(store.position[bright]).sparse_distance_matrix(
            cKDTree(store.position), cfg.inhibition_radius, output_type="ndarray",
        )
        source = bright[pairs["i"]]
        target = pairs["j"]
        dist = pairs["v"]
        keep = (source != target) & (dist < cfg.inhibition_radius)
        source, target, dist = source[keep], target[keep], dist[keep]

        contribution = cfg.inhibition_strength * store.luminosity[source] * np.exp(-dist / cfg.inhibition_radius)
        np.add.at(field, target, contribution)
        return field

    def apply_lateral_inhibition(self, store: ParticleStore) -> None:
        cfg = self.config
        field = self.inhibition_field(store)
        store.luminosity /= 1.0 + field

        pushed = np.flatnonzero(field > cfg.repulsion_threshold)
        if pushed.size:
            push = random_unit_vectors(self.rng, pushed.size) * (field[pushed] * cfg.repulsion_gain)[:, None]
            store.velocity[pushed] += push
            logger.debug("Lateral inhibition repelled %d neurons", pushed.size)

    # ── (c) ───────────────────────────────────────────────────────────────────

    def apply_diversity_pressure(self, store: ParticleStore, clusters: Optional[List[Cluster]] = None) -> None:
        cfg = self.config
        if clusters is None:
            clusters = self.identifier.identify(store)
        limit = store.num_neurons * cfg.max_cluster_fraction
        for cluster in clusters:
            if cluster.size > limit:
                store.luminosity[cluster.indices] *= cfg.cluster_luminosity_damping
                store.energy[cluster.indices] *= cfg.cluster_energy_damping
                logger.debug("Damped oversized cluster of %d neurons", cluster.size)

    # ── (d) ───────────────────────────────────────────────────────────────────

    def apply_perturbation(self, store: ParticleStore) -> None:
        cfg = self.config
        count = int(store.num_neurons * cfg.perturbation_fraction)
        if count == 0:
            return
        chosen = self.rng.integers(0, store.num_neurons, size=count)
        kick = self.rng.uniform(-cfg.kick_magnitude, cfg.kick_magnitude, size=(count, 3))
        np.add.at(store.velocity, chosen, kick)

        spiked = chosen[self.rng.random(count) < cfg.spike_probability]
        if spiked.size:
            low, high = cfg.spike_range
            np.multiply.at(store.luminosity, spiked, self.rng.uniform(low, high, size=spiked.size))
        logger.debug("Perturbed %d neurons (%d luminosity spikes)", count, spiked.size)

    # ──────────────────────────────────────────────────────────────────────────

    def clamp(self, store: ParticleStore) -> None:
        cfg = self.config
        np.clip(store.luminosity, cfg.min_luminosity, cfg.max_luminosity, out=store.luminosity)
        speed = np.linalg.norm(store.velocity, axis=1)
        fast = speed > cfg.max_speed
        if fast.any():
            store.velocity[fast] *= (cfg.max_speed / speed[fast])[:, None]
