# nebula/patterns.py
"""
Pattern Detector
================
Structural analysis of a single Grid: rectangles, straight line runs, mirror
symmetry and repeated square tiles. Also extracts same-color connected
components with an orientation-invariant structural key, used by the
connectivity heuristics to pair objects of the same shape.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from itertools import groupby
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from scipy.ndimage import find_objects, label

from nebula.grid import BACKGROUND, Grid

logger = logging.getLogger(__name__)

Cell = Tuple[int, int]

RECTANGLE_CONFIDENCE: float = 0.8
LINE_CONFIDENCE:      float = 0.7
SYMMETRY_CONFIDENCE:  float = 0.9
MIN_LINE_LENGTH:      int   = 3


@dataclass
class Pattern:
    kind:       str
    cells:      List[Cell]
    color:      Optional[int]
    confidence: float
    metadata:   Dict[str, Any] = field(default_factory=dict)

    @property
    def bbox(self) -> Optional[Tuple[int, int, int, int]]:
        if not self.cells:
            return None
        xs = [c[0] for c in self.cells]
        ys = [c[1] for c in self.cells]
        return min(xs), min(ys), max(xs), max(ys)


class PatternDetector:

    def __init__(self, background: int = BACKGROUND, max_rectangles: int = 2000):
        self.background = background
        self.max_rectangles = max_rectangles

    def detect(self, grid: Grid) -> List[Pattern]:
        patterns = (
            self.rectangles(grid)
            + self.lines(grid)
            + self.symmetries(grid)
            + self.repetitions(grid)
        )
        logger.debug("Detected %d patterns in %r", len(patterns), grid)
        return patterns

    def rectangles(self, grid: Grid) -> List[Pattern]:
        """
        Every axis-aligned box (non-degenerate in both axes) whose four corners
        share one non-background color. Each box is reported once.
        """
        data = grid.data
        found: List[Pattern] = []
        for color in sorted(grid.unique_colors() - {self.background}):
            mask = data == color
            rows = np.flatnonzero(mask.any(axis=1))
            for a, y0 in enumerate(rows):
                for y1 in rows[a + 1:]:
                    cols = np.flatnonzero(mask[y0] & mask[y1])
                    for b, x0 in enumerate(cols):
                        for x1 in cols[b + 1:]:
                            x0i, y0i, x1i, y1i = int(x0), int(y0), int(x1), int(y1)
                            found.append(Pattern(
                                kind="rectangle",
                                cells=[(x0i, y0i), (x1i, y0i), (x0i, y1i), (x1i, y1i)],
                                color=int(color),
                                confidence=RECTANGLE_CONFIDENCE,
                                metadata={"bbox": (x0i, y0i, x1i, y1i)},
                            ))
                            if len(found) >= self.max_rectangles:
                                logger.debug("Rectangle scan truncated at %d", self.max_rectangles)
                                return found
        return found

    def lines(self, grid: Grid) -> List[Pattern]:
        found: List[Pattern] = []
        data = grid.data
        for y in range(grid.height):
            for x0, length, color in self._runs(data[y]):
                found.append(Pattern(
                    "horizontal_line",
                    [(x, y) for x in range(x0, x0 + length)],
                    color,
                    LINE_CONFIDENCE,
                ))
        for x in range(grid.width):
            for y0, length, color in self._runs(data[:, x]):
                found.append(Pattern(
                    "vertical_line",
                    [(x, y) for y in range(y0, y0 + length)],
                    color,
                    LINE_CONFIDENCE,
                ))
        return found

    def _runs(self, values: np.ndarray):
        start = 0
        for color, group in groupby(values.tolist()):
            length = len(list(group))
            if color != self.background and length >= MIN_LINE_LENGTH:
                yield start, length, int(color)
            start += length

    def symmetries(self, grid: Grid) -> List[Pattern]:
        if grid.width == 0 or grid.height == 0:
            return []
        everything = [(x, y) for x, y, _ in grid.cells()]
        found: List[Pattern] = []
        # horizontal axis: top half mirrors bottom half
        if grid.has_horizontal_symmetry():
            found.append(Pattern("horizontal_symmetry", everything, None, SYMMETRY_CONFIDENCE))
        if grid.has_vertical_symmetry():
            found.append(Pattern("vertical_symmetry", list(everything), None, SYMMETRY_CONFIDENCE))
        return found

    def repetitions(self, grid: Grid) -> List[Pattern]:
        """
        Square tiles of side 2 .. min(w, h) // 2 at every offset, grouped by
        content. Tiles that are entirely background are ignored.
        """
        data = grid.data
        found: List[Pattern] = []
        for size in range(2, min(grid.width, grid.height) // 2 + 1):
            groups: Dict[bytes, List[Cell]] = {}
            for y in range(grid.height - size + 1):
                for x in range(grid.width - size + 1):
                    tile = data[y:y + size, x:x + size]
                    if not (tile != self.background).any():
                        continue
                    groups.setdefault(tile.tobytes(), []).append((x, y))

            for origins in groups.values():
                if len(origins) < 2:
                    continue
                cells = sorted({
                    (ox + dx, oy + dy)
                    for ox, oy in origins
                    for dy in range(size)
                    for dx in range(size)
                })
                found.append(Pattern(
                    kind=f"repetition_{size}x{size}",
                    cells=cells,
                    color=None,
                    confidence=min(1.0, 0.6 + 0.1 * len(origins)),
                    metadata={"block_size": size, "origins": origins},
                ))
        return found


# ─────────────────────────────────────────────────────────────────────────────
# Connected components
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class Component:
    color:  int
    cells:  np.ndarray             # (k, 2) array of (x, y)
    bbox:   Tuple[int, int, int, int]
    key:    str                    # orientation-invariant shape hash

    @property
    def size(self) -> int:
        return len(self.cells)

    @property
    def center(self) -> Cell:
        cx, cy = self.cells.mean(axis=0)
        return int(cx), int(cy)


def components(grid: Grid, background: int = BACKGROUND) -> List[Component]:
    """4-connected same-color regions, ordered by color then scan position."""
    data = grid.data
    found: List[Component] = []
    for color in sorted(grid.unique_colors() - {background}):
        labeled, count = label(data == color)
        for idx, slices in enumerate(find_objects(labeled), start=1):
            if slices is None:
                continue
            local = labeled[slices] == idx
            coords = np.argwhere(local)
            rows = coords[:, 0] + slices[0].start
            cols = coords[:, 1] + slices[1].start
            found.append(Component(
                color=int(color),
                cells=np.column_stack([cols, rows]),
                bbox=(slices[1].start, slices[0].start, slices[1].stop - 1, slices[0].stop - 1),
                key=structural_key(coords),
            ))
    return found


def structural_key(coords: np.ndarray) -> str:
    canonical = canonicalize(coords)
    return hashlib.sha256(canonical.tobytes()).hexdigest()[:16]


def canonicalize(coords: np.ndarray) -> np.ndarray:
    """Smallest of the eight rotations/reflections, rows sorted."""
    coords = np.asarray(coords, dtype=np.int64)
    coords = coords - coords.min(axis=0)
    candidates = []
    for k in range(4):
        rotated = _rotate_coords(coords, k)
        candidates.append(_sorted_rows(rotated))
        candidates.append(_sorted_rows(_flip_coords(rotated)))
    return min(candidates, key=lambda c: tuple(c.flatten()))


def _rotate_coords(coords: np.ndarray, k: int) -> np.ndarray:
    for _ in range(k):
        coords = np.column_stack([coords[:, 1], -coords[:, 0]])
    return coords - coords.min(axis=0)


def _flip_coords(coords: np.ndarray) -> np.ndarray:
    coords = np.column_stack([-coords[:, 0], coords[:, 1]])
    return coords - coords.min(axis=0)


def _sorted_rows(coords: np.ndarray) -> np.ndarray:
    order = np.lexsort((coords[:, 1], coords[:, 0]))
    return np.ascontiguousarray(coords[order])
