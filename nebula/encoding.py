# nebula/encoding.py
"""
Grid <-> galaxy encoding.

Cell (x, y) of the k-th grid sits at (x * GRID_SCALE, y * GRID_SCALE,
k * Z_LAYER_SPACING) in galaxy space; its color travels as a wavelength.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Final, List, Optional, Sequence

import numpy as np

from nebula.config import WIEN_CONSTANT
from nebula.grid import BACKGROUND, Grid
from nebula.particles import EmissionBurst, ParticleStore, PhotonEmission

GRID_SCALE:       Final[float] = 100.0
Z_LAYER_SPACING:  Final[float] = 500.0
PHOTONS_PER_CELL: Final[int]   = 10

COLOR_WAVELENGTHS: Final[Dict[int, float]] = {
    0: 700e-9,   # black  -> deep red
    1: 450e-9,   # blue
    2: 650e-9,   # red
    3: 550e-9,   # green
    4: 590e-9,   # yellow
    5: 480e-9,   # gray   -> cyan
    6: 600e-9,   # magenta -> orange
    7: 610e-9,   # orange
    8: 460e-9,   # azure
    9: 520e-9,   # maroon -> green-cyan
}

_COLORS = np.array(sorted(COLOR_WAVELENGTHS))
_WAVELENGTHS = np.array([COLOR_WAVELENGTHS[c] for c in _COLORS])


@dataclass
class NeuralPattern:
    positions:    np.ndarray   # (k, 3)
    wavelengths:  np.ndarray   # (k,)
    intensities:  np.ndarray   # (k,)
    grid_indices: np.ndarray   # (k,) row-major cell index
    width:        int
    height:       int

    def __len__(self) -> int:
        return len(self.wavelengths)


def color_to_wavelength(color: int) -> float:
    return COLOR_WAVELENGTHS[int(color)]


def wavelength_to_color(wavelength: float) -> int:
    """Nearest color in the palette; ties go to the lower color code."""
    return int(_COLORS[np.argmin(np.abs(_WAVELENGTHS - wavelength))])


def encode_grid(grid: Grid, example_index: int = 0, skip_background: bool = False) -> NeuralPattern:
    data = grid.data
    mask = (data >= 0) & np.isin(data, _COLORS)
    if skip_background:
        mask &= data != BACKGROUND
    ys, xs = np.nonzero(mask)
    colors = data[ys, xs].astype(np.int64)
    positions = np.column_stack([
        xs * GRID_SCALE,
        ys * GRID_SCALE,
        np.full(len(xs), example_index * Z_LAYER_SPACING),
    ]).astype(np.float64)
    return NeuralPattern(
        positions=positions,
        wavelengths=_WAVELENGTHS[np.searchsorted(_COLORS, colors)],
        intensities=1.0 + colors * 0.1,
        grid_indices=ys * grid.width + xs,
        width=grid.width,
        height=grid.height,
    )


def decode_pattern(pattern: NeuralPattern, width: Optional[int] = None, height: Optional[int] = None) -> Grid:
    width = pattern.width if width is None else width
    height = pattern.height if height is None else height
    out = Grid.blank(width, height, BACKGROUND)
    for pos, wavelength in zip(pattern.positions, pattern.wavelengths):
        x = int(round(pos[0] / GRID_SCALE))
        y = int(round(pos[1] / GRID_SCALE))
        out.set(x, y, wavelength_to_color(wavelength))
    return out


def grid_to_bursts(
    grid: Grid,
    example_index: int = 0,
    injection_time: float = 0.0,
    photons_per_cell: int = PHOTONS_PER_CELL,
    energy_scale: float = 1.0,
) -> List[EmissionBurst]:
    """One burst per cell; photon directions are drawn when the burst is released."""
    pattern = encode_grid(grid, example_index)
    bursts = []
    for pos, wavelength, intensity in zip(pattern.positions, pattern.wavelengths, pattern.intensities):
        emission = PhotonEmission(float(wavelength), float(intensity) * energy_scale)
        bursts.append(EmissionBurst(
            origin=tuple(float(c) for c in pos),
            photons=[emission] * photons_per_cell,
            injection_time=injection_time,
        ))
    return bursts


def encode_inputs(grids: Sequence[Grid]) -> List[NeuralPattern]:
    """Non-background cells of every grid, in the neuron order of `store_from_patterns`."""
    return [encode_grid(g, k, skip_background=True) for k, g in enumerate(grids)]


def pattern_cells(patterns: Sequence[NeuralPattern]) -> np.ndarray:
    """(n, 3) rows of (grid index, x, y), one per encoded cell."""
    rows = [
        np.column_stack([np.full(len(p), k), p.grid_indices % p.width, p.grid_indices // p.width])
        for k, p in enumerate(patterns)
        if len(p)
    ]
    if not rows:
        return np.zeros((0, 3), dtype=np.int64)
    return np.vstack(rows).astype(np.int64)


def store_from_patterns(patterns: Sequence[NeuralPattern], num_photons: int = 0) -> ParticleStore:
    """
    One neuron per encoded cell, layered in z.
    Temperature is the black-body temperature whose Wien peak is the cell's
    wavelength, so spectra and luminosities follow the colors.
    """
    positions = np.vstack([p.positions for p in patterns]) if patterns else np.zeros((0, 3))
    wavelengths = np.concatenate([p.wavelengths for p in patterns]) if patterns else np.zeros(0)
    return ParticleStore.from_arrays(
        position=positions,
        temperature=WIEN_CONSTANT / wavelengths if len(wavelengths) else None,
        num_photons=num_photons,
    )


def store_from_grids(grids: Sequence[Grid], num_photons: int = 0) -> ParticleStore:
    return store_from_patterns(encode_inputs(grids), num_photons)
