# nebula/config.py
"""
Parameter sets for the galaxy simulation and the rule engine.

Defaults reproduce the constants of the reference galaxy: physical G and c,
100-neighbour gravity sampling, 100-unit connection threshold, and the
annealing schedule of the diversity controller.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Final

GRAVITATIONAL_CONSTANT: Final[float] = 6.67430e-11
SPEED_OF_LIGHT:         Final[float] = 299792458.0
WIEN_CONSTANT:          Final[float] = 2.898e-3
SOLAR_TEMPERATURE:      Final[float] = 5778.0


@dataclass
class GalaxyConfig:
    """Particle Store sizing and Dynamics Engine constants."""
    num_neurons:          int   = 10_000
    num_photons:          int   = 5_000

    # Gravity
    gravitational_constant: float = GRAVITATIONAL_CONSTANT
    sample_size:          int   = 100     # partners per neuron; all others when N <= sample_size
    min_distance:         float = 0.1     # singularity floor

    # Light
    speed_of_light:       float = SPEED_OF_LIGHT
    interaction_scale:    float = 10.0    # interaction radius = mass * scale
    attenuation:          float = 0.9
    min_intensity:        float = 0.1
    max_travel_radius:    float = 10_000.0
    regeneration_probability: float = 0.1

    # Connectivity
    connection_threshold: float = 100.0
    luminosity_smoothing: float = 0.99

    # Stellar evolution
    min_temperature:      float = 1_000.0
    max_temperature:      float = 50_000.0
    massive_threshold:    float = 2.0
    min_mass:             float = 0.1

    # Bookkeeping
    radial_bins:          int   = 50
    radial_bin_width:     float = 20.0

    # Initial spiral disk
    disk_radius_scale:    float = 500.0
    disk_inner_radius:    float = 100.0
    disk_height_scale:    float = 50.0
    central_mass:         float = 1e12

    def __post_init__(self) -> None:
        if self.num_neurons < 0 or self.num_photons < 0:
            raise ValueError("Population sizes must be >= 0")
        if self.sample_size < 1:
            raise ValueError("sample_size must be >= 1")
        if self.min_distance <= 0.0:
            raise ValueError("min_distance must be > 0")
        if not 0.0 < self.attenuation <= 1.0:
            raise ValueError("attenuation must be in (0, 1]")
        if self.min_temperature >= self.max_temperature:
            raise ValueError("Temperature range is empty")


@dataclass
class DiversityConfig:
    initial_temperature:  float = 1_000.0
    cooling_rate:         float = 0.995
    min_temperature:      float = 10.0

    inhibition_radius:    float = 500.0
    inhibition_strength:  float = 0.5
    bright_cutoff:        float = 5.0
    repulsion_threshold:  float = 0.1
    repulsion_gain:       float = 10.0

    max_cluster_fraction: float = 0.1
    cluster_luminosity_damping: float = 0.95
    cluster_energy_damping:     float = 0.9

    perturbation_interval: int  = 100
    perturbation_fraction: float = 0.01
    kick_magnitude:       float = 100.0
    spike_probability:    float = 0.1
    spike_range:          tuple = (2.0, 5.0)

    min_luminosity:       float = 0.1
    max_luminosity:       float = 100.0
    max_speed:            float = 1e4

    def __post_init__(self) -> None:
        if not 0.0 < self.cooling_rate <= 1.0:
            raise ValueError("cooling_rate must be in (0, 1]")
        if self.min_temperature <= 0.0:
            raise ValueError("min_temperature must stay above zero")
        if self.perturbation_interval < 1:
            raise ValueError("perturbation_interval must be >= 1")
        if self.min_luminosity > self.max_luminosity:
            raise ValueError("Luminosity bounds are inverted")


@dataclass
class OracleConfig:
    cells_per_velocity:   float = 0.01    # 100 galaxy units per grid cell
    rotation_threshold:   float = 0.01
    adjustment_rate:      float = 10.0
    energy_gain:          float = 0.1
    min_cluster_size:     int   = 2
    coherence_cosine:     float = 0.9


@dataclass
class EngineConfig:
    acceptance_threshold: float = 0.5
    chain_threshold:      float = 0.7
    max_chain:            int   = 3
    pattern_threshold:    float = 0.7     # rectangles above this drive fills
    line_threshold:       float = 0.6     # lines above this get extended
    max_translation:      int   = 30

    def __post_init__(self) -> None:
        if not 0.0 <= self.acceptance_threshold <= 1.0:
            raise ValueError("acceptance_threshold must be in [0, 1]")
        if self.max_chain < 1:
            raise ValueError("max_chain must be >= 1")
