# nebula/tests/test_encoding.py

import numpy as np
import pytest

from nebula.config import WIEN_CONSTANT
from nebula.encoding import (
    COLOR_WAVELENGTHS,
    GRID_SCALE,
    Z_LAYER_SPACING,
    decode_pattern,
    encode_grid,
    grid_to_bursts,
    store_from_grids,
    wavelength_to_color,
)
from nebula.grid import Grid


@pytest.fixture
def grid():
    return Grid([
        [0, 1, 2],
        [9, 0, 5],
    ])


def test_palette_decodes_to_itself():
    for color, wavelength in COLOR_WAVELENGTHS.items():
        assert wavelength_to_color(wavelength) == color


def test_nearest_wavelength_wins():
    assert wavelength_to_color(452e-9) == 1
    assert wavelength_to_color(800e-9) == 0


def test_encode_positions_and_intensity(grid):
    pattern = encode_grid(grid, example_index=2)
    assert len(pattern) == 6
    i = int(np.flatnonzero(pattern.grid_indices == 5)[0])   # (x=2, y=1)
    assert np.allclose(pattern.positions[i], [2 * GRID_SCALE, GRID_SCALE, 2 * Z_LAYER_SPACING])
    assert pattern.wavelengths[i] == pytest.approx(480e-9)
    assert pattern.intensities[i] == pytest.approx(1.5)


def test_decode_restores_grid(grid):
    assert decode_pattern(encode_grid(grid)) == grid
    assert decode_pattern(encode_grid(grid, skip_background=True)) == grid


def test_decode_drops_out_of_range_cells(grid):
    pattern = encode_grid(grid)
    small = decode_pattern(pattern, width=2, height=1)
    assert small == Grid([[0, 1]])


def test_bursts_per_cell(grid):
    bursts = grid_to_bursts(grid, example_index=1, injection_time=0.5)
    assert len(bursts) == 6
    assert all(len(b.photons) == 10 for b in bursts)
    assert all(b.injection_time == 0.5 for b in bursts)
    assert all(b.origin[2] == Z_LAYER_SPACING for b in bursts)
    energies = sorted({b.photons[0].energy for b in bursts})
    assert energies[0] == pytest.approx(1.0)
    assert energies[-1] == pytest.approx(1.9)


def test_store_from_grids(grid):
    other = Grid([[3]])
    store = store_from_grids([grid, other], num_photons=7)
    assert store.num_neurons == 5
    assert store.num_photons == 7
    assert store.position[-1, 2] == Z_LAYER_SPACING
    assert store.temperature[-1] == pytest.approx(WIEN_CONSTANT / 550e-9)
