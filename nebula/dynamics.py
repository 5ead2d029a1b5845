# nebula/dynamics.py
"""
Dynamics Engine
===============
Advances a ParticleStore by one frame. Phases run in a fixed order and each
completes before the next begins:

  1. gravity: sampled Newtonian forces, Euler integration
  2. photons: propagation, attenuation, deactivation, regeneration
  3. connectivity: exact proximity scan, activation, luminosity smoothing
  4. stellar: temperature drift, mass loss, spectrum/luminosity refresh
  5. bookkeeping: radial density and averages (reporting only)

Gravity is deliberately approximate: each neuron feels `sample_size` randomly
chosen partners instead of the whole population. Populations no larger than
the sample size are solved exactly.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.spatial import cKDTree

from nebula.config import GalaxyConfig
from nebula.particles import ParticleStore, normalize

logger = logging.getLogger(__name__)

Array = np.ndarray


@dataclass(frozen=True)
class EmergentStats:
    time:             float
    radial_density:   Array
    mean_temperature: float
    mean_connections: float
    mean_luminosity:  float
    active_photons:   int


def gravitational_acceleration(
    position: Array,
    mass: Array,
    partners: Optional[Array],
    g: float,
    min_distance: float,
) -> Array:
    """
    Acceleration on every neuron from its partner set.

    `partners` is an (n, k) index array; None means every other neuron.
    """
    if partners is None:
        diff = position[None, :, :] - position[:, None, :]
        partner_mass = np.broadcast_to(mass[None, :], diff.shape[:2])
    else:
        diff = position[partners] - position[:, None, :]
        partner_mass = mass[partners]

    dist = np.linalg.norm(diff, axis=-1)
    dist = np.maximum(dist, min_distance)
    direction = normalize(diff)
    # F / m_i = G * m_j / d^2 along the unit separation
    accel = g * (partner_mass / dist ** 2)[..., None] * direction
    return accel.sum(axis=1)


def total_energy(store: ParticleStore, g: float, min_distance: float = 0.1) -> float:
    """Kinetic plus pairwise gravitational potential energy (exact, O(n^2))."""
    kinetic = 0.5 * float(np.sum(store.mass * np.sum(store.velocity ** 2, axis=1)))
    n = store.num_neurons
    if n < 2:
        return kinetic
    i, j = np.triu_indices(n, k=1)
    dist = np.linalg.norm(store.position[j] - store.position[i], axis=1)
    dist = np.maximum(dist, min_distance)
    potential = -g * float(np.sum(store.mass[i] * store.mass[j] / dist))
    return kinetic + potential


class DynamicsEngine:
    """Stateless apart from its config and random generator."""

    def __init__(
        self,
        config: Optional[GalaxyConfig] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.config = config or GalaxyConfig()
        self.rng = rng if rng is not None else np.random.default_rng()

    def step(self, store: ParticleStore, dt: float) -> EmergentStats:
        store.time += dt
        self.integrate_gravity(store, dt)
        self.propagate_photons(store, dt)
        self.update_connections(store)
        self.evolve_stars(store, dt)
        stats = self.measure(store)
        logger.debug(
            "Frame t=%.4f | photons=%d mean_T=%.1f mean_conn=%.2f",
            stats.time, stats.active_photons, stats.mean_temperature, stats.mean_connections,
        )
        return stats

    def run(self, store: ParticleStore, frames: int, dt: float) -> Optional[EmergentStats]:
        stats = None
        for _ in range(frames):
            stats = self.step(store, dt)
        return stats

    # ── Phase 1: gravity ──────────────────────────────────────────────────────

    def sample_partners(self, n: int) -> Optional[Array]:
        """Uniform sample (with replacement) of other neurons; None = all."""
        k = self.config.sample_size
        if n - 1 <= k:
            return None
        idx = self.rng.integers(0, n - 1, size=(n, k))
        idx += idx >= np.arange(n)[:, None]
        return idx

    def integrate_gravity(self, store: ParticleStore, dt: float) -> None:
        n = store.num_neurons
        if n == 0:
            return
        if n > 1:
            accel = gravitational_acceleration(
                store.position,
                store.mass,
                self.sample_partners(n),
                self.config.gravitational_constant,
                self.config.min_distance,
            )
            store.velocity += accel * dt
        store.position += store.velocity * dt
        store.age += dt

    # ── Phase 2: photons ──────────────────────────────────────────────────────

    def propagate_photons(self, store: ParticleStore, dt: float) -> None:
        cfg = self.config
        if store.num_photons == 0:
            return

        store.release_bursts(self.rng)

        active = np.flatnonzero(store.photon_active)
        if active.size:
            store.photon_position[active] += store.photon_direction[active] * (cfg.speed_of_light * dt)

            if store.num_neurons:
                hits = self._interaction_counts(store, store.photon_position[active])
                store.photon_intensity[active] *= cfg.attenuation ** hits

            travelled = np.linalg.norm(store.photon_position[active], axis=1)
            dead = (store.photon_intensity[active] < cfg.min_intensity) | (travelled > cfg.max_travel_radius)
            store.photon_active[active[dead]] = False

        if store.active_photons < store.num_photons / 2 and store.num_neurons:
            inactive = np.flatnonzero(~store.photon_active)
            chosen = inactive[self.rng.random(inactive.size) < cfg.regeneration_probability]
            store.emit_photons(chosen, self.rng)
            if chosen.size:
                logger.debug("Regenerated %d photons", chosen.size)

    def _interaction_counts(self, store: ParticleStore, photon_position: Array) -> Array:
        radius = store.mass * self.config.interaction_scale
        tree = cKDTree(store.position)
        candidates = tree.query_ball_point(photon_position, r=float(radius.max()))
        hits = np.zeros(len(photon_position), dtype=np.int64)
        for p, cand in enumerate(candidates):
            if not cand:
                continue
            cand = np.asarray(cand)
            d = np.linalg.norm(store.position[cand] - photon_position[p], axis=1)
            hits[p] = int(np.count_nonzero(d < radius[cand]))
        return hits

    # ── Phase 3: connectivity ─────────────────────────────────────────────────

    def update_connections(self, store: ParticleStore) -> None:
        n = store.num_neurons
        if n == 0:
            return
        i, j, d = proximity_pairs(store.position, self.config.connection_threshold)

        connections = np.bincount(i, minlength=n) + np.bincount(j, minlength=n)
        activation = np.zeros(n)
        np.add.at(activation, i, store.luminosity[j] / (d + 1.0))
        np.add.at(activation, j, store.luminosity[i] / (d + 1.0))
        linked = connections > 0
        activation[linked] /= connections[linked]

        store.connections[:] = connections
        store.activation[:] = activation
        s = self.config.luminosity_smoothing
        store.luminosity[:] = store.luminosity * s + activation * (1.0 - s)

    # ── Phase 4: stellar evolution ────────────────────────────────────────────

    def evolve_stars(self, store: ParticleStore, dt: float) -> None:
        cfg = self.config
        n = store.num_neurons
        if n == 0:
            return
        rate = store.mass * dt * 0.001
        drift = rate * (self.rng.random(n) - 0.5) * 100.0
        store.temperature[:] = np.clip(store.temperature + drift, cfg.min_temperature, cfg.max_temperature)

        massive = store.mass > cfg.massive_threshold
        store.mass[massive] = np.maximum(store.mass[massive] - rate[massive] * 0.01, cfg.min_mass)
        store.refresh_derived()

    # ── Phase 5: bookkeeping ──────────────────────────────────────────────────

    def measure(self, store: ParticleStore) -> EmergentStats:
        cfg = self.config
        density = np.zeros(cfg.radial_bins)
        n = store.num_neurons
        if n == 0:
            return EmergentStats(store.time, density, 0.0, 0.0, 0.0, store.active_photons)

        radius = np.hypot(store.position[:, 0], store.position[:, 2])
        bins = np.minimum((radius / cfg.radial_bin_width).astype(np.int64), cfg.radial_bins - 1)
        np.add.at(density, bins, store.mass)

        mean_temperature = float(store.temperature.mean())
        store.galaxy_temperature = mean_temperature
        return EmergentStats(
            time=store.time,
            radial_density=density,
            mean_temperature=mean_temperature,
            mean_connections=float(store.connections.mean()),
            mean_luminosity=float(store.luminosity.mean()),
            active_photons=store.active_photons,
        )


def proximity_pairs(position: Array, threshold: float):
    """Unique pairs (i < j) closer than `threshold`, with their distances."""
    if len(position) < 2:
        empty = np.zeros(0, dtype=np.int64)
        return empty, empty, np.zeros(0)
    pairs = cKDTree(position).query_pairs(r=threshold, output_type="ndarray")
    if len(pairs) == 0:
        empty = np.zeros(0, dtype=np.int64)
        return empty, empty, np.zeros(0)
    i, j = pairs[:, 0], pairs[:, 1]
    d = np.linalg.norm(position[i] - position[j], axis=1)
    keep = d < threshold
    return i[keep], j[keep], d[keep]
