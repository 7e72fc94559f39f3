"""Polygon → grid cell rasterization.

Two fills share one even-odd crossing rule:

- ``scanline_fill`` walks every row and fills the spans between edge
  crossings; concave shapes and holes come out right by construction.
- ``flood_fill`` expands breadth-first from an interior seed, checking
  membership with the same crossing rule, under a step budget, a cell
  budget and a wall-clock deadline.  It raises instead of returning a
  partial footprint.

Cell (x, z) is inside when its centre (x + 0.5, z + 0.5) is inside.
"""

import logging
import math
import time
from bisect import bisect_right
from collections import deque
from typing import Optional

from shapely.errors import GEOSException
from shapely.geometry import Polygon

from .errors import RasterizationTimeout
from .models import Footprint, GenerationOptions

logger = logging.getLogger(__name__)

SCANLINE = "scanline"
FLOOD = "flood"

# Fill method per feature kind; features with holes always use scanline.
FILL_METHODS = {
    'building': FLOOD,
    'water': SCANLINE,
    'landuse': SCANLINE,
}

DEFAULT_STEP_BUDGET = 2_000_000
CLOCK_CHECK_INTERVAL = 1024


def _edges(rings) -> list:
    """Non-horizontal edges (x0, z0, x1, z1) of all rings, closed."""
    edges = []
    for ring in rings:
        n = len(ring)
        for i in range(n):
            x0, z0 = ring[i][0], ring[i][1]
            x1, z1 = ring[(i + 1) % n][0], ring[(i + 1) % n][1]
            if z0 != z1:
                edges.append((x0, z0, x1, z1))
    return edges


def _row_crossings(edges, zc: float) -> list:
    """Sorted x positions where the horizontal line z = zc crosses an edge.

    Each edge covers [min z, max z) so a shared vertex is counted once.
    """
    xs = []
    for x0, z0, x1, z1 in edges:
        if (z0 <= zc < z1) or (z1 <= zc < z0):
            xs.append(x0 + (zc - z0) * (x1 - x0) / (z1 - z0))
    xs.sort()
    return xs


def _row_range(edges, depth: int) -> range:
    if not edges:
        return range(0)
    zmin = min(min(e[1], e[3]) for e in edges)
    zmax = max(max(e[1], e[3]) for e in edges)
    return range(max(0, math.floor(zmin)), min(depth, math.ceil(zmax)))


def scanline_fill(rings, width: int, depth: int) -> set:
    """Cells whose centres lie inside ``rings`` under the even-odd rule."""
    edges = _edges(rings)
    cells = set()
    for z in _row_range(edges, depth):
        xs = _row_crossings(edges, z + 0.5)
        for a, b in zip(xs[0::2], xs[1::2]):
            start = max(0, math.ceil(a - 0.5))
            stop = min(width, math.ceil(b - 0.5))
            cells.update((x, z) for x in range(start, stop))
    return cells


def _find_seed(rings, edges, width: int, depth: int, inside) -> Optional[tuple]:
    """Interior cell to start a flood fill from."""
    try:
        point = Polygon(rings[0], rings[1:]).representative_point()
        seed = (math.floor(point.x), math.floor(point.y))
        if inside(*seed):
            return seed
        rows = [seed[1]] if 0 <= seed[1] < depth else []
    except (GEOSException, ValueError):
        rows = []

    # Fall back to the first inside cell, searching outward from the middle row
    span = _row_range(edges, depth)
    if len(span):
        mid = (span.start + span.stop) // 2
        for offset in range(len(span)):
            for z in (mid - offset, mid + offset):
                if z in span and z not in rows:
                    rows.append(z)
    for z in rows:
        xs = _row_crossings(edges, z + 0.5)
        for a, b in zip(xs[0::2], xs[1::2]):
            x = max(0, math.ceil(a - 0.5))
            if x < min(width, math.ceil(b - 0.5)) and inside(x, z):
                return x, z
    return None


def flood_fill(rings, width: int, depth: int, seed=None, max_cells: Optional[int] = None,
               step_budget: int = DEFAULT_STEP_BUDGET, timeout_s: Optional[float] = None,
               clock=time.monotonic) -> set:
    """Breadth-first fill of the 4-connected region containing ``seed``.

    Raises RasterizationTimeout when ``step_budget`` expansions, ``max_cells``
    filled cells or ``timeout_s`` seconds (polled every 1024 steps on
    ``clock``) are exceeded.  Returns an empty set when no interior cell
    exists.
    """
    edges = _edges(rings)
    crossings = {}

    def inside(x, z):
        if not (0 <= x < width and 0 <= z < depth):
            return False
        xs = crossings.get(z)
        if xs is None:
            xs = crossings[z] = _row_crossings(edges, z + 0.5)
        return bisect_right(xs, x + 0.5) % 2 == 1

    if seed is None:
        seed = _find_seed(rings, edges, width, depth, inside)
        if seed is None:
            return set()
    elif not inside(*seed):
        return set()

    deadline = clock() + timeout_s if timeout_s else None
    visited = {seed}
    queue = deque([seed])
    steps = 0
    while queue:
        steps += 1
        if steps > step_budget:
            raise RasterizationTimeout(f"Flood fill exceeded {step_budget} steps")
        if deadline is not None and steps % CLOCK_CHECK_INTERVAL == 0 and clock() > deadline:
            raise RasterizationTimeout(f"Flood fill exceeded {timeout_s}s")

        x, z = queue.popleft()
        for nx, nz in ((x + 1, z), (x - 1, z), (x, z + 1), (x, z - 1)):
            if (nx, nz) in visited or not inside(nx, nz):
                continue
            visited.add((nx, nz))
            if max_cells is not None and len(visited) > max_cells:
                raise RasterizationTimeout(f"Flood fill exceeded {max_cells} cells")
            queue.append((nx, nz))
    return visited


class FootprintRasterizer:
    """Rasterizes projected polygons into Footprints for one grid."""

    def __init__(self, options: GenerationOptions, width: int, depth: int):
        self.options = options
        self.width = width
        self.depth = depth

    def method_for(self, kind: str, rings) -> str:
        if len(rings) > 1:
            return SCANLINE
        return FILL_METHODS.get(kind, SCANLINE)

    def rasterize(self, kind: str, rings) -> Optional[Footprint]:
        """Footprint for ``rings`` (grid units), or None below the minimum area.

        RasterizationTimeout from the flood fill propagates to the caller.
        """
        if self.method_for(kind, rings) == FLOOD:
            cells = flood_fill(rings, self.width, self.depth,
                               max_cells=self.width * self.depth,
                               step_budget=self.options.fill_step_budget,
                               timeout_s=self.options.flood_fill_timeout_s)
        else:
            cells = scanline_fill(rings, self.width, self.depth)

        if len(cells) < self.options.min_footprint_area:
            logger.debug(f"Dropping {kind} footprint of {len(cells)} cells")
            return None
        return Footprint(frozenset(cells))
