# nebula/tests/test_particles.py

import numpy as np
import pytest

from nebula.config import GalaxyConfig, SOLAR_TEMPERATURE, WIEN_CONSTANT
from nebula.particles import (
    EmissionBurst,
    ParticleStore,
    PhotonEmission,
    SpectralClass,
    map_to_sphere_point,
    normalize,
    spectral_classes,
)


@pytest.fixture
def small_config():
    return GalaxyConfig(num_neurons=64, num_photons=32)


def test_spiral_galaxy_is_reproducible(small_config):
    a = ParticleStore.spiral_galaxy(small_config, np.random.default_rng(7))
    b = ParticleStore.spiral_galaxy(small_config, np.random.default_rng(7))
    assert np.array_equal(a.position, b.position)
    assert np.array_equal(a.velocity, b.velocity)
    assert np.array_equal(a.photon_direction, b.photon_direction)


def test_spiral_galaxy_ranges(small_config):
    store = ParticleStore.spiral_galaxy(small_config, np.random.default_rng(1))
    radius = np.hypot(store.position[:, 0], store.position[:, 2])
    assert (radius >= small_config.disk_inner_radius - 1e-9).all()
    assert ((store.mass >= 0.5) & (store.mass <= 2.5)).all()
    assert ((store.temperature >= 2000) & (store.temperature <= 7000)).all()
    assert np.allclose(store.luminosity, store.mass * store.temperature / SOLAR_TEMPERATURE)
    assert store.active_photons == small_config.num_photons
    assert np.allclose(np.linalg.norm(store.photon_direction, axis=1), 1.0)


def test_photon_wavelength_is_wien_peak_of_a_neuron(small_config):
    store = ParticleStore.spiral_galaxy(small_config, np.random.default_rng(3))
    peaks = WIEN_CONSTANT / store.temperature
    for wl in store.photon_wavelength:
        assert np.isclose(peaks, wl).any()


def test_empty_galaxy():
    store = ParticleStore.spiral_galaxy(GalaxyConfig(num_neurons=0, num_photons=5), np.random.default_rng(0))
    assert store.num_neurons == 0
    assert store.active_photons == 0


def test_spectral_bands():
    temps = np.array([3000.0, 4000.0, 5500.0, 7000.0, 9000.0])
    assert spectral_classes(temps).tolist() == [
        SpectralClass.RED, SpectralClass.ORANGE, SpectralClass.YELLOW,
        SpectralClass.WHITE, SpectralClass.BLUE,
    ]


def test_normalize_guards_zero_vectors():
    out = normalize(np.array([[3.0, 0.0, 4.0], [0.0, 0.0, 0.0], [1e-14, 0.0, 0.0]]))
    assert np.allclose(out[0], [0.6, 0.0, 0.8])
    assert not out[1].any()
    assert not out[2].any()
    assert np.isfinite(out).all()


def test_sphere_mapping():
    assert np.allclose(map_to_sphere_point((0, 0, 0)), [0.0, 0.0, 15000.0])
    p = map_to_sphere_point((0, 256, 256))
    assert np.allclose(p, [16500.0, 0.0, 0.0], atol=1e-6)


def test_bursts_fill_only_inactive_slots():
    store = ParticleStore.from_arrays([[0.0, 0.0, 0.0]], num_photons=3)
    store.photon_active[0] = True
    store.photon_intensity[0] = 42.0

    burst = EmissionBurst(
        origin=(1.0, 2.0, 3.0),
        photons=[PhotonEmission(500e-9, 2.0, (0.0, 0.0, 2.0))] * 5,
        injection_time=0.0,
    )
    store.inject_bursts([burst])
    released = store.release_bursts(np.random.default_rng(0))

    assert released == 2
    assert store.active_photons == 3
    assert store.photon_intensity[0] == 42.0
    assert np.allclose(store.photon_position[1], [1.0, 2.0, 3.0])
    assert np.allclose(store.photon_direction[2], [0.0, 0.0, 1.0])
    assert store.pending_bursts == 0


def test_bursts_wait_for_their_time():
    store = ParticleStore.from_arrays([[0.0, 0.0, 0.0]], num_photons=4)
    store.inject_bursts([
        EmissionBurst((0.0, 0.0, 0.0), [PhotonEmission(600e-9, 1.0)], injection_time=1.0),
    ])
    assert store.release_bursts(np.random.default_rng(0)) == 0
    store.time = 1.0
    assert store.release_bursts(np.random.default_rng(0)) == 1
    assert store.photon_wavelength[0] == pytest.approx(600e-9)


def test_bursts_fill_free_slots_in_order():
    store = ParticleStore.from_arrays([[0.0, 0.0, 0.0]], num_photons=5)
    store.photon_active[:] = False
    store.photon_active[1] = True
    store.inject_bursts([
        EmissionBurst((0.0, 0.0, 0.0), [PhotonEmission(wl, 1.0)] * 2, injection_time=0.0)
        for wl in (450e-9, 550e-9, 650e-9)
    ] + [EmissionBurst((0.0, 0.0, 0.0), [PhotonEmission(700e-9, 1.0)], injection_time=5.0)])

    assert store.release_bursts(np.random.default_rng(0)) == 4
    assert store.photon_active.all()
    assert np.allclose(store.photon_wavelength[[0, 2]], 450e-9)
    assert np.allclose(store.photon_wavelength[[3, 4]], 550e-9)
    # the third due burst found no room; the future one still waits
    assert store.pending_bursts == 1


def test_export_state_is_read_only_copy():
    store = ParticleStore.from_arrays([[1.0, 2.0, 3.0]])
    state = store.export_state()
    with pytest.raises(ValueError):
        state.position[0, 0] = 9.0
    store.position[0, 0] = 5.0
    assert state.position[0, 0] == 1.0


def test_snapshot_format_and_reload(tmp_path):
    store = ParticleStore.from_arrays(
        [[1.0, 2.0, 3.0], [-4.5, 0.0, 1e-3]],
        velocity=[[0.1, 0.2, 0.3], [0.0, 0.0, -1.0]],
        mass=[1.5, 2.0],
        temperature=[3000.0, 8000.0],
    )
    store.time = 0.25
    text = store.format_snapshot()
    lines = text.splitlines()
    assert "# Time: 0.25" in lines
    assert "# Neurons: 2" in lines
    assert "# Format: x y z vx vy vz mass luminosity temperature" in lines
    records = [l for l in lines if not l.startswith("#")]
    assert len(records) == 2
    assert [float(v) for v in records[0].split()][6] == 1.5

    path = tmp_path / "state.txt"
    store.save_snapshot(path)
    loaded = ParticleStore.load_snapshot(path)
    assert loaded.time == 0.25
    assert np.array_equal(loaded.position, store.position)
    assert np.array_equal(loaded.velocity, store.velocity)
    assert np.array_equal(loaded.luminosity, store.luminosity)


def test_malformed_snapshot_rejected(tmp_path):
    path = tmp_path / "bad.txt"
    path.write_text("# Time: 0\n1 2 3\n")
    with pytest.raises(ValueError):
        ParticleStore.load_snapshot(path)
