# nebula/tests/test_dynamics.py

import numpy as np
import pytest

from nebula.config import GalaxyConfig
from nebula.dynamics import DynamicsEngine, proximity_pairs, total_energy
from nebula.particles import ParticleStore

# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def unit_g():
    return GalaxyConfig(gravitational_constant=1.0)


@pytest.fixture
def two_body():
    return ParticleStore.from_arrays(
        position=[[0.0, 0.0, 0.0], [2.0, 0.0, 0.0]],
        velocity=[[0.0, 1.0, 0.0], [0.0, -1.0, 0.0]],
        mass=[1.0, 1.0],
    )


# ─────────────────────────────────────────────────────────────────────────────
# Gravity
# ─────────────────────────────────────────────────────────────────────────────

def test_two_body_energy_drift_is_small(unit_g, two_body):
    engine = DynamicsEngine(unit_g, np.random.default_rng(0))
    before = total_energy(two_body, g=1.0)
    engine.integrate_gravity(two_body, dt=0.01)
    after = total_energy(two_body, g=1.0)
    assert abs(after - before) / abs(before) < 0.01


def test_two_body_attracts(unit_g, two_body):
    engine = DynamicsEngine(unit_g, np.random.default_rng(0))
    engine.integrate_gravity(two_body, dt=0.01)
    assert two_body.velocity[0, 0] == pytest.approx(0.25 * 0.01)
    assert two_body.velocity[1, 0] == pytest.approx(-0.25 * 0.01)
    # position uses the updated velocity
    assert two_body.position[0, 0] == pytest.approx(0.25 * 0.01 * 0.01)
    assert np.allclose(two_body.age, 0.01)


def test_coincident_neurons_stay_finite(unit_g):
    store = ParticleStore.from_arrays([[1.0, 1.0, 1.0], [1.0, 1.0, 1.0], [1.05, 1.0, 1.0]])
    DynamicsEngine(unit_g, np.random.default_rng(0)).integrate_gravity(store, dt=0.1)
    assert np.isfinite(store.velocity).all()
    assert np.isfinite(store.position).all()


def test_sampled_partners_exclude_self():
    engine = DynamicsEngine(GalaxyConfig(sample_size=10), np.random.default_rng(4))
    partners = engine.sample_partners(200)
    assert partners.shape == (200, 10)
    assert (partners != np.arange(200)[:, None]).all()
    assert partners.min() >= 0 and partners.max() < 200


def test_small_population_uses_all_partners():
    engine = DynamicsEngine(GalaxyConfig(sample_size=100), np.random.default_rng(4))
    assert engine.sample_partners(101) is None
    assert engine.sample_partners(102) is not None


# ─────────────────────────────────────────────────────────────────────────────
# Photons
# ─────────────────────────────────────────────────────────────────────────────

def test_photon_attenuated_once_per_nearby_neuron():
    cfg = GalaxyConfig(speed_of_light=0.0, regeneration_probability=0.0)
    store = ParticleStore.from_arrays([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [500.0, 0.0, 0.0]], num_photons=1)
    store.photon_active[0] = True
    store.photon_intensity[0] = 1.0
    store.photon_direction[0] = [1.0, 0.0, 0.0]

    DynamicsEngine(cfg, np.random.default_rng(0)).propagate_photons(store, dt=0.01)
    assert store.photon_intensity[0] == pytest.approx(0.81)
    assert store.photon_active[0]


def test_photon_deactivates_beyond_travel_radius():
    cfg = GalaxyConfig(regeneration_probability=0.0)
    store = ParticleStore.from_arrays([[0.0, 0.0, 0.0]], num_photons=2)
    store.photon_active[:] = True
    store.photon_intensity[:] = 1.0
    store.photon_direction[:] = [0.0, 1.0, 0.0]

    DynamicsEngine(cfg, np.random.default_rng(0)).propagate_photons(store, dt=0.01)
    assert store.active_photons == 0


def test_photons_regenerate_when_population_drops():
    cfg = GalaxyConfig(regeneration_probability=1.0)
    store = ParticleStore.from_arrays([[5.0, 5.0, 5.0]], num_photons=4)
    DynamicsEngine(cfg, np.random.default_rng(0)).propagate_photons(store, dt=0.01)
    assert store.active_photons == 4
    assert np.allclose(store.photon_position, [5.0, 5.0, 5.0])
    assert np.allclose(store.photon_intensity, store.luminosity[0])


# ─────────────────────────────────────────────────────────────────────────────
# Connectivity & stellar evolution
# ─────────────────────────────────────────────────────────────────────────────

def test_connectivity_counts_and_smoothing():
    store = ParticleStore.from_arrays([[0.0, 0.0, 0.0], [50.0, 0.0, 0.0], [1000.0, 0.0, 0.0]])
    store.luminosity[:] = [2.0, 4.0, 8.0]
    DynamicsEngine(GalaxyConfig(), np.random.default_rng(0)).update_connections(store)

    assert store.connections.tolist() == [1, 1, 0]
    assert store.activation[0] == pytest.approx(4.0 / 51.0)
    assert store.activation[1] == pytest.approx(2.0 / 51.0)
    assert store.luminosity[0] == pytest.approx(0.99 * 2.0 + 0.01 * 4.0 / 51.0)
    assert store.luminosity[2] == pytest.approx(0.99 * 8.0)


def test_proximity_threshold_is_strict():
    i, j, d = proximity_pairs(np.array([[0.0, 0, 0], [100.0, 0, 0]]), 100.0)
    assert len(i) == 0


def test_stellar_evolution_clamps_and_loses_mass():
    store = ParticleStore.from_arrays(
        [[0.0, 0, 0], [0.0, 0, 0]], mass=[3.0, 1.0], temperature=[1000.0, 50000.0],
    )
    DynamicsEngine(GalaxyConfig(), np.random.default_rng(2)).evolve_stars(store, dt=1.0)
    assert ((store.temperature >= 1000.0) & (store.temperature <= 50000.0)).all()
    assert store.mass[0] == pytest.approx(3.0 - 3.0 * 0.001 * 0.01)
    assert store.mass[1] == 1.0
    assert np.allclose(store.luminosity, store.mass * store.temperature / 5778.0)


# ─────────────────────────────────────────────────────────────────────────────
# Frames
# ─────────────────────────────────────────────────────────────────────────────

def test_radial_density_bins_by_xz_radius():
    store = ParticleStore.from_arrays([[30.0, 999.0, 0.0], [0.0, 0.0, 5000.0]], mass=[2.0, 1.0])
    stats = DynamicsEngine(GalaxyConfig(), np.random.default_rng(0)).measure(store)
    assert stats.radial_density[1] == 2.0
    assert stats.radial_density[-1] == 1.0
    assert stats.radial_density.sum() == 3.0


def test_empty_store_frames_are_noops():
    store = ParticleStore(0, 0)
    stats = DynamicsEngine(GalaxyConfig(), np.random.default_rng(0)).step(store, dt=0.5)
    assert stats.active_photons == 0
    assert stats.mean_temperature == 0.0
    assert store.time == 0.5


def test_seeded_runs_are_identical():
    cfg = GalaxyConfig(num_neurons=150, num_photons=40, sample_size=20)

    def run(seed):
        rng = np.random.default_rng(seed)
        store = ParticleStore.spiral_galaxy(cfg, rng)
        DynamicsEngine(cfg, rng).run(store, frames=3, dt=0.01)
        return store

    a, b = run(11), run(11)
    assert np.array_equal(a.position, b.position)
    assert np.array_equal(a.temperature, b.temperature)
    assert np.array_equal(a.photon_active, b.photon_active)
    assert a.time == pytest.approx(0.03)
