from __future__ import annotations
from typing import Tuple, Iterable, Dict, Optional, Set, Final
import numpy as np

ArrayLike = Iterable[Iterable[int]]

INVALID_COLOR: Final[int] = -1
BACKGROUND:    Final[int] = 0


class Grid:
    """Width x height array of color codes addressed as (x, y) = (column, row)."""

    __slots__ = ("_data", "_hash", "_color_histogram", "_symmetry_cache")

    def __init__(self, data: ArrayLike):
        arr = np.asarray(data, dtype=np.int16)
        if arr.ndim != 2:
            raise ValueError("Grid must be 2D")
        self._data = arr.copy()
        self._invalidate()

    @classmethod
    def blank(cls, width: int, height: int, fill: int = BACKGROUND) -> Grid:
        if width < 0 or height < 0:
            raise ValueError("Grid dimensions must be >= 0")
        return cls(np.full((height, width), fill, dtype=np.int16))

    def _invalidate(self) -> None:
        self._hash: Optional[int] = None
        self._color_histogram: Optional[Dict[int, int]] = None
        self._symmetry_cache: Dict[str, bool] = {}

    @property
    def shape(self) -> Tuple[int, int]:
        return self._data.shape

    @property
    def data(self) -> np.ndarray:
        view = self._data.view()
        view.setflags(write=False)
        return view

    @property
    def height(self) -> int:
        return self._data.shape[0]

    @property
    def width(self) -> int:
        return self._data.shape[1]

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def get(self, x: int, y: int) -> int:
        if self.in_bounds(x, y):
            return int(self._data[y, x])
        return INVALID_COLOR

    def set(self, x: int, y: int, value: int) -> None:
        if self.in_bounds(x, y):
            self._data[y, x] = value
            self._invalidate()

    def cells(self) -> Iterable[Tuple[int, int, int]]:
        for y in range(self.height):
            for x in range(self.width):
                yield x, y, int(self._data[y, x])

    def equals(self, other: Grid) -> bool:
        return self.shape == other.shape and np.array_equal(self._data, other._data)

    def copy(self) -> Grid:
        return Grid(self._data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Grid):
            return False
        return self.equals(other)

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash((self.shape, self._data.tobytes()))
        return self._hash

    def __repr__(self) -> str:
        return f"Grid(width={self.width}, height={self.height})"

    def color_histogram(self) -> Dict[int, int]:
        if self._color_histogram is None:
            unique, counts = np.unique(self._data, return_counts=True)
            self._color_histogram = dict(zip(unique.tolist(), counts.tolist()))
        return self._color_histogram.copy()

    def unique_colors(self) -> Set[int]:
        return set(self.color_histogram().keys())

    def map_colors(self, mapping: Dict[int, int]) -> Grid:
        out = self._data.copy()
        for src, dst in mapping.items():
            out[self._data == src] = dst
        return Grid(out)

    def match_ratio(self, other: Grid) -> float:
        if self.shape != other.shape:
            return 0.0
        if self._data.size == 0:
            return 1.0
        return float(np.mean(self._data == other._data))

    def content_bbox(self, background: int = BACKGROUND) -> Optional[Tuple[int, int, int, int]]:
        """(x0, y0, x1, y1) inclusive bounds of non-background cells, or None."""
        mask = self._data != background
        rows = np.any(mask, axis=1)
        cols = np.any(mask, axis=0)
        if not rows.any():
            return None
        y0, y1 = np.where(rows)[0][[0, -1]]
        x0, x1 = np.where(cols)[0][[0, -1]]
        return int(x0), int(y0), int(x1), int(y1)

    # Horizontal symmetry: mirror across the horizontal axis (top row == bottom row).
    def has_horizontal_symmetry(self) -> bool:
        if "horizontal" not in self._symmetry_cache:
            self._symmetry_cache["horizontal"] = np.array_equal(self._data, np.flipud(self._data))
        return self._symmetry_cache["horizontal"]

    def has_vertical_symmetry(self) -> bool:
        if "vertical" not in self._symmetry_cache:
            self._symmetry_cache["vertical"] = np.array_equal(self._data, np.fliplr(self._data))
        return self._symmetry_cache["vertical"]

    def has_diagonal_symmetry(self) -> bool:
        if "diagonal" not in self._symmetry_cache:
            if self.height == self.width:
                self._symmetry_cache["diagonal"] = np.array_equal(self._data, self._data.T)
            else:
                self._symmetry_cache["diagonal"] = False
        return self._symmetry_cache["diagonal"]
