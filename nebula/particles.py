# nebula/particles.py
"""
Particle Store
==============
Owns every piece of dynamic physical state: a fixed-size population of
neurons and a fixed-size pool of photons, both stored as homogeneous numpy
arrays (one row per record).

Only the Dynamics Engine and the Diversity Controller mutate a store; every
other consumer goes through `export_state()` or the snapshot text format.
"""
from __future__ import annotations

import logging
from bisect import bisect_right
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from nebula.config import GalaxyConfig, SOLAR_TEMPERATURE, WIEN_CONSTANT

logger = logging.getLogger(__name__)

Array = np.ndarray

SNAPSHOT_FIELDS: Tuple[str, ...] = (
    "x", "y", "z", "vx", "vy", "vz", "mass", "luminosity", "temperature",
)

_SPECTRAL_BANDS = np.array([3500.0, 5000.0, 6000.0, 7500.0])
_EPS = 1e-12


class SpectralClass(IntEnum):
    """Color class of a neuron, from its temperature band."""
    RED    = 0
    ORANGE = 1
    YELLOW = 2
    WHITE  = 3
    BLUE   = 4


def spectral_classes(temperature: Array) -> Array:
    return np.digitize(temperature, _SPECTRAL_BANDS).astype(np.int8)


def peak_wavelength(temperature: Array) -> Array:
    """Wien's displacement law, metres."""
    return WIEN_CONSTANT / np.maximum(temperature, _EPS)


def normalize(v: Array) -> Array:
    """Row-wise unit vectors; rows shorter than 1e-12 become zero rows."""
    v = np.asarray(v, dtype=np.float64)
    norm = np.linalg.norm(v, axis=-1, keepdims=True)
    safe = np.where(norm < _EPS, 1.0, norm)
    return np.where(norm < _EPS, 0.0, v / safe)


def random_unit_vectors(rng: np.random.Generator, n: int) -> Array:
    theta = rng.random(n) * 2.0 * np.pi
    phi = np.arccos(2.0 * rng.random(n) - 1.0)
    return np.column_stack([
        np.sin(phi) * np.cos(theta),
        np.cos(phi),
        np.sin(phi) * np.sin(theta),
    ])


def map_to_sphere_point(voxel_position: Sequence[float], radius: float = 15_000.0) -> Array:
    """Map a voxel position onto the observer sphere, preserving neighbourhoods."""
    x, y, z = (float(c) for c in voxel_position)
    theta = (x / 512.0) * 2.0 * np.pi
    phi = (y / 512.0) * np.pi
    r = radius * (1.0 + (z / 256.0) * 0.1)
    return np.array([
        r * np.sin(phi) * np.cos(theta),
        r * np.sin(phi) * np.sin(theta),
        r * np.cos(phi),
    ])


@dataclass(frozen=True)
class PhotonEmission:
    wavelength: float
    energy:     float
    direction:  Optional[Tuple[float, float, float]] = None


@dataclass
class EmissionBurst:
    """A group of photons released from one origin at a given simulation time."""
    origin:         Tuple[float, float, float]
    photons:        List[PhotonEmission] = field(default_factory=list)
    injection_time: float = 0.0


@dataclass(frozen=True)
class StateExport:
    """Read-only per-neuron view handed to renderers and other consumers."""
    position:    Array
    velocity:    Array
    mass:        Array
    luminosity:  Array
    temperature: Array
    spectrum:    Array


class ParticleStore:
    """Neuron and photon arrays plus the simulation clock."""

    def __init__(self, num_neurons: int, num_photons: int) -> None:
        if num_neurons < 0 or num_photons < 0:
            raise ValueError("Population sizes must be >= 0")
        n, p = num_neurons, num_photons

        self.position    = np.zeros((n, 3))
        self.velocity    = np.zeros((n, 3))
        self.mass        = np.ones(n)
        self.luminosity  = np.ones(n)
        self.temperature = np.full(n, 2700.0)
        self.spectrum    = spectral_classes(self.temperature)
        self.age         = np.zeros(n)
        self.connections = np.zeros(n, dtype=np.int64)
        self.activation  = np.zeros(n)
        self.energy      = np.ones(n)

        self.photon_position   = np.zeros((p, 3))
        self.photon_direction  = np.zeros((p, 3))
        self.photon_wavelength = np.full(p, 550e-9)
        self.photon_intensity  = np.zeros(p)
        self.photon_active     = np.zeros(p, dtype=bool)

        self.time = 0.0
        self.galaxy_temperature = 2700.0
        self._pending: List[EmissionBurst] = []

    # ── Construction ──────────────────────────────────────────────────────────

    @classmethod
    def from_arrays(
        cls,
        position: Sequence[Sequence[float]],
        velocity: Optional[Sequence[Sequence[float]]] = None,
        mass: Optional[Sequence[float]] = None,
        temperature: Optional[Sequence[float]] = None,
        num_photons: int = 0,
    ) -> "ParticleStore":
        pos = np.asarray(position, dtype=np.float64).reshape(-1, 3)
        store = cls(len(pos), num_photons)
        store.position[:] = pos
        if velocity is not None:
            store.velocity[:] = np.asarray(velocity, dtype=np.float64).reshape(-1, 3)
        if mass is not None:
            store.mass[:] = np.asarray(mass, dtype=np.float64)
        if temperature is not None:
            store.temperature[:] = np.asarray(temperature, dtype=np.float64)
        store.refresh_derived()
        return store

    @classmethod
    def spiral_galaxy(
        cls,
        config: Optional[GalaxyConfig] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> "ParticleStore":
        """
        Thin rotating disk in the xz-plane with photons emitted from random
        neurons.

        Parameters
        ----------
        config : GalaxyConfig
            Population sizes and disk shape.
        rng : np.random.Generator
            Seeded generator for reproducible layouts.
        """
        config = config or GalaxyConfig()
        if rng is None:
            rng = np.random.default_rng()

        store = cls(config.num_neurons, config.num_photons)
        n = config.num_neurons
        if n == 0:
            logger.debug("Empty galaxy: no neurons, photons left inactive")
            return store

        angle = rng.random(n) * 2.0 * np.pi
        radius = np.abs(rng.standard_normal(n)) * config.disk_radius_scale + config.disk_inner_radius
        height = rng.standard_normal(n) * config.disk_height_scale

        store.position[:] = np.column_stack([
            radius * np.cos(angle), height, radius * np.sin(angle),
        ])

        orbital_speed = np.sqrt(config.gravitational_constant * config.central_mass / radius)
        store.velocity[:] = np.column_stack([
            -orbital_speed * np.sin(angle),
            rng.standard_normal(n) * 5.0,
            orbital_speed * np.cos(angle),
        ])

        store.mass[:] = rng.random(n) * 2.0 + 0.5
        store.temperature[:] = rng.random(n) * 5000.0 + 2000.0
        store.refresh_derived()

        store.emit_photons(np.arange(config.num_photons), rng)
        logger.debug("Spiral galaxy initialised | neurons=%d photons=%d", n, config.num_photons)
        return store

    # ── Derived quantities ────────────────────────────────────────────────────

    @property
    def num_neurons(self) -> int:
        return len(self.mass)

    @property
    def num_photons(self) -> int:
        return len(self.photon_intensity)

    @property
    def active_photons(self) -> int:
        return int(np.count_nonzero(self.photon_active))

    @property
    def pending_bursts(self) -> int:
        return len(self._pending)

    def refresh_derived(self) -> None:
        """Recompute spectrum and luminosity from mass and temperature."""
        self.spectrum = spectral_classes(self.temperature)
        self.luminosity = self.mass * self.temperature / SOLAR_TEMPERATURE

    def emit_photons(self, slots: Array, rng: np.random.Generator) -> None:
        """(Re)seed photon slots from randomly chosen source neurons."""
        slots = np.asarray(slots, dtype=np.int64)
        if slots.size == 0 or self.num_neurons == 0:
            return
        source = rng.integers(0, self.num_neurons, size=slots.size)
        self.photon_position[slots] = self.position[source]
        self.photon_direction[slots] = random_unit_vectors(rng, slots.size)
        self.photon_wavelength[slots] = peak_wavelength(self.temperature[source])
        self.photon_intensity[slots] = self.luminosity[source]
        self.photon_active[slots] = True

    # ── Emission bursts ───────────────────────────────────────────────────────

    def inject_bursts(self, bursts: Sequence[EmissionBurst]) -> None:
        self._pending.extend(bursts)
        self._pending.sort(key=lambda b: b.injection_time)

    def release_bursts(self, rng: np.random.Generator) -> int:
        """
        Move due bursts into inactive photon slots. Emissions that find no
        free slot are dropped; the pool never grows.
        """
        due = bisect_right([b.injection_time for b in self._pending], self.time)
        bursts, self._pending = self._pending[:due], self._pending[due:]

        free = np.flatnonzero(~self.photon_active)
        released = 0
        for burst in bursts:
            origin = np.asarray(burst.origin, dtype=np.float64)
            for emission in burst.photons:
                if released >= len(free):
                    break
                slot = free[released]
                if emission.direction is None:
                    direction = random_unit_vectors(rng, 1)[0]
                else:
                    direction = normalize(np.asarray(emission.direction, dtype=np.float64))
                self.photon_position[slot] = origin
                self.photon_direction[slot] = direction
                self.photon_wavelength[slot] = emission.wavelength
                self.photon_intensity[slot] = emission.energy
                self.photon_active[slot] = True
                released += 1
        if released:
            logger.debug("Released %d burst photons at t=%.4f", released, self.time)
        return released

    # ── Export ────────────────────────────────────────────────────────────────

    def export_state(self) -> StateExport:
        def frozen(a: Array) -> Array:
            out = a.copy()
            out.setflags(write=False)
            return out

        return StateExport(
            position=frozen(self.position),
            velocity=frozen(self.velocity),
            mass=frozen(self.mass),
            luminosity=frozen(self.luminosity),
            temperature=frozen(self.temperature),
            spectrum=frozen(self.spectrum),
        )

    def format_snapshot(self) -> str:
        lines = [
            "# Galaxy State",
            f"# Time: {self.time!r}",
            f"# Neurons: {self.num_neurons}",
            "# Format: " + " ".join(SNAPSHOT_FIELDS),
        ]
        table = np.column_stack([
            self.position, self.velocity, self.mass, self.luminosity, self.temperature,
        ])
        for row in table:
            lines.append(" ".join(repr(float(v)) for v in row))
        return "\n".join(lines) + "\n"

    def save_snapshot(self, path: Union[str, Path]) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.format_snapshot())
        logger.info("Galaxy state saved to %s", path)

    @classmethod
    def load_snapshot(cls, path: Union[str, Path], num_photons: int = 0) -> "ParticleStore":
        path = Path(path)
        rows = []
        sim_time = 0.0
        for line in path.read_text().splitlines():
            line = line.strip()
            if not line:
                continue
            if line.startswith("#"):
                if line.startswith("# Time:"):
                    sim_time = float(line.split(":", 1)[1])
                continue
            values = [float(v) for v in line.split()]
            if len(values) != len(SNAPSHOT_FIELDS):
                raise ValueError(f"Malformed snapshot record: {line!r}")
            rows.append(values)

        table = np.asarray(rows, dtype=np.float64).reshape(-1, len(SNAPSHOT_FIELDS))
        store = cls.from_arrays(
            position=table[:, 0:3],
            velocity=table[:, 3:6],
            mass=table[:, 6],
            temperature=table[:, 8],
            num_photons=num_photons,
        )
        store.luminosity[:] = table[:, 7]
        store.time = sim_time
        return store

    def __repr__(self) -> str:
        return (f"ParticleStore(neurons={self.num_neurons}, "
                f"photons={self.active_photons}/{self.num_photons}, t={self.time:.3f})")
