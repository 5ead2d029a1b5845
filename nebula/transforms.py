from __future__ import annotations
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import numpy as np

from nebula.grid import BACKGROUND, Grid
from nebula.patterns import Pattern, components

Cell = Tuple[int, int]

REFLECTION_AXES = ("horizontal", "vertical", "diagonal", "anti_diagonal")


def identity(grid: Grid) -> Grid:
    return grid.copy()


def translate(grid: Grid, dx: int, dy: int, fill: int = BACKGROUND) -> Grid:
    h, w = grid.shape
    out = np.full((h, w), fill, dtype=np.int16)

    ys, ye = max(0, dy), min(h, h + dy)
    xs, xe = max(0, dx), min(w, w + dx)
    if ys < ye and xs < xe:
        src_ys = max(0, -dy)
        src_xs = max(0, -dx)
        out[ys:ye, xs:xe] = grid.data[src_ys:src_ys + (ye - ys), src_xs:src_xs + (xe - xs)]
    return Grid(out)


def rotate(grid: Grid, quarter_turns: int) -> Grid:
    """Clockwise by 90 degrees per quarter turn."""
    k = quarter_turns % 4
    if k == 0:
        return grid.copy()
    return Grid(np.rot90(grid.data, k=-k))


def reflect(grid: Grid, axis: str) -> Grid:
    if axis == "horizontal":
        return Grid(np.flipud(grid.data))
    if axis == "vertical":
        return Grid(np.fliplr(grid.data))
    if axis == "diagonal":
        return Grid(grid.data.T)
    if axis == "anti_diagonal":
        return Grid(np.rot90(grid.data.T, 2))
    raise ValueError(f"Invalid axis: {axis}")


def resample(grid: Grid, width: int, height: int) -> Grid:
    """Nearest-neighbour resize; source index = dest index * old / new."""
    if width <= 0 or height <= 0:
        raise ValueError("Target dimensions must be > 0")
    if grid.width == 0 or grid.height == 0:
        raise ValueError("Cannot resample an empty grid")
    src_x = (np.arange(width) * grid.width) // width
    src_y = (np.arange(height) * grid.height) // height
    return Grid(grid.data[np.ix_(src_y, src_x)])


def scale(grid: Grid, factor: int) -> Grid:
    if factor < 1:
        raise ValueError("Scale factor must be >= 1")
    return Grid(np.repeat(np.repeat(grid.data, factor, axis=0), factor, axis=1))


def mirror(grid: Grid, axes: Iterable[str]) -> Grid:
    """
    Make the grid symmetric by copying one half over the other:
    "horizontal" copies the top half onto the bottom, "vertical" the left
    half onto the right, "diagonal" the lower triangle onto the upper
    (square grids only).
    """
    out = grid.data.copy()
    h, w = out.shape
    axes = set(axes)
    if "horizontal" in axes:
        top = out[: h // 2]
        out[h - h // 2:] = top[::-1]
    if "vertical" in axes:
        left = out[:, : w // 2]
        out[:, w - w // 2:] = left[:, ::-1]
    if "diagonal" in axes and h == w:
        lower = np.tril(out, -1)
        out = np.tril(out) + lower.T
    return Grid(out)


def bresenham(x0: int, y0: int, x1: int, y1: int) -> List[Cell]:
    cells = []
    dx, dy = abs(x1 - x0), abs(y1 - y0)
    sx = 1 if x0 < x1 else -1
    sy = 1 if y0 < y1 else -1
    err = dx - dy
    while True:
        cells.append((x0, y0))
        if x0 == x1 and y0 == y1:
            break
        e2 = 2 * err
        if e2 > -dy:
            err -= dy
            x0 += sx
        if e2 < dx:
            err += dx
            y0 += sy
    return cells


def draw_line(grid: Grid, start: Cell, end: Cell, color: int, background: Optional[int] = BACKGROUND) -> Grid:
    """Line from start to end; with `background` set only those cells are painted."""
    out = grid.copy()
    for x, y in bresenham(start[0], start[1], end[0], end[1]):
        if background is None or out.get(x, y) == background:
            out.set(x, y, color)
    return out


def color_map(grid: Grid, mapping: Dict[int, int]) -> Grid:
    return grid.map_colors(mapping)


# ─────────────────────────────────────────────────────────────────────────────
# Pattern-driven edits
# ─────────────────────────────────────────────────────────────────────────────

def is_closed_outline(grid: Grid, bbox: Tuple[int, int, int, int], color: int) -> bool:
    x0, y0, x1, y1 = bbox
    d = grid.data
    return bool(
        (d[y0, x0:x1 + 1] == color).all()
        and (d[y1, x0:x1 + 1] == color).all()
        and (d[y0:y1 + 1, x0] == color).all()
        and (d[y0:y1 + 1, x1] == color).all()
    )


def fill_rectangles(
    grid: Grid,
    rectangles: Sequence[Pattern],
    color: Optional[int] = None,
    background: int = BACKGROUND,
) -> Grid:
    """
    Fill background cells inside every closed single-color outline among
    `rectangles`. The fill uses `color`, or each outline's own color.
    """
    out = grid.data.copy()
    for rect in rectangles:
        x0, y0, x1, y1 = rect.metadata.get("bbox", rect.bbox)
        if x1 - x0 < 2 or y1 - y0 < 2:
            continue
        if not is_closed_outline(grid, (x0, y0, x1, y1), rect.color):
            continue
        inner = out[y0 + 1:y1, x0 + 1:x1]
        inner[inner == background] = rect.color if color is None else color
    return Grid(out)


def extend_lines(grid: Grid, lines: Sequence[Pattern], background: int = BACKGROUND) -> Grid:
    """Grow every line run by one cell at each end, onto background only."""
    out = grid.copy()
    for line in lines:
        (x0, y0), (x1, y1) = line.cells[0], line.cells[-1]
        if line.kind == "horizontal_line":
            ends = [(x0 - 1, y0), (x1 + 1, y1)]
        elif line.kind == "vertical_line":
            ends = [(x0, y0 - 1), (x1, y1 + 1)]
        else:
            continue
        for x, y in ends:
            if grid.get(x, y) == background:
                out.set(x, y, line.color)
    return out


def connect_components(grid: Grid, color: Optional[int] = None, background: int = BACKGROUND) -> Grid:
    """
    Join every component to its nearest component of the same color and
    shape with a line between their centres. Lines only paint background.
    """
    comps = components(grid, background)
    out = grid.copy()
    drawn = set()
    for i, a in enumerate(comps):
        peers = [
            (j, b) for j, b in enumerate(comps)
            if j != i and b.color == a.color and b.key == a.key
        ]
        if not peers:
            continue
        ax, ay = a.center
        j, b = min(peers, key=lambda p: (p[1].center[0] - ax) ** 2 + (p[1].center[1] - ay) ** 2)
        pair = (min(i, j), max(i, j))
        if pair in drawn:
            continue
        drawn.add(pair)
        out = draw_line(out, a.center, b.center, a.color if color is None else color, background)
    return out
