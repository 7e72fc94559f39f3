"""Terrain shaping: smoothing, sea-level detection, block heights and water."""

import logging
from dataclasses import dataclass, replace
from typing import Optional

import numpy as np
from scipy import ndimage

from .constants import Block, MAX_Y, TERRAIN_HEIGHT_BUFFER
from .elevation import ElevationGrid
from .models import GenerationOptions

logger = logging.getLogger(__name__)

SEA_DATUM = 0.0
SEA_TOLERANCE = 0.5
GAUSSIAN_TRUNCATE = 3.0
TOPSOIL_DEPTH = 3


# ── Grid operations ──────────────────────────────────────────────────────

def smooth(heights: np.ndarray, sigma: float) -> np.ndarray:
    """Separable Gaussian blur with clamped edges; ``sigma`` in cells."""
    if sigma <= 0:
        return np.array(heights, dtype=np.float64, copy=True)
    out = ndimage.gaussian_filter1d(np.asarray(heights, dtype=np.float64), sigma,
                                    axis=0, mode='nearest', truncate=GAUSSIAN_TRUNCATE)
    return ndimage.gaussian_filter1d(out, sigma, axis=1, mode='nearest',
                                     truncate=GAUSSIAN_TRUNCATE)


def _largest_region(mask: np.ndarray) -> int:
    labels, count = ndimage.label(mask)
    if count == 0:
        return 0
    return int(np.bincount(labels.ravel())[1:].max())


def detect_sea_level(heights: np.ndarray, min_area: int,
                     datum: float = SEA_DATUM,
                     tolerance: float = SEA_TOLERANCE) -> Optional[float]:
    """Lowest elevation whose sub-threshold region reaches ``min_area`` cells.

    Only elevations at or below ``datum + tolerance`` are candidates.  The
    region size grows monotonically with the threshold, so the candidates are
    binary searched.  Returns None for a grid without relief, or when no
    4-connected low region is large enough (isolated pits).
    """
    if heights.size == 0:
        return None
    lowest = float(np.min(heights))
    if float(np.max(heights)) - lowest <= 0:
        return None

    candidates = np.unique(heights[heights <= datum + tolerance])
    if candidates.size == 0:
        return None
    if _largest_region(heights <= candidates[-1]) < min_area:
        return None

    lo, hi = 0, candidates.size - 1
    while lo < hi:
        mid = (lo + hi) // 2
        if _largest_region(heights <= candidates[mid]) >= min_area:
            hi = mid
        else:
            lo = mid + 1
    return float(candidates[lo])


def _vertical_mapping(heights: np.ndarray, ground_level: int,
                      scale: float, max_y: int) -> tuple:
    """(minimum elevation, blocks per metre) used to convert heights to Y."""
    ceiling = max_y - TERRAIN_HEIGHT_BUFFER
    available = ceiling - ground_level
    if available < 0:
        raise ValueError(f"ground_level {ground_level} leaves no room below Y {ceiling}")
    min_h = float(np.min(heights))
    relief = (float(np.max(heights)) - min_h) * scale
    factor = scale
    if relief > available:
        factor = scale * available / relief
        logger.info(f"Compressing {relief:.0f} blocks of relief into {available}")
    return min_h, factor


def to_block_heights(heights: np.ndarray, ground_level: int, scale: float,
                     max_y: int = MAX_Y) -> np.ndarray:
    """Convert metres to integer surface Y, lowest cell at ``ground_level``."""
    min_h, factor = _vertical_mapping(heights, ground_level, scale, max_y)
    return ground_level + np.rint((heights - min_h) * factor).astype(np.int64)


# ── Surface ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TerrainSurface:
    """Smoothed heights and their block rendering.

    ``block_heights`` is the Y of the top solid block per cell; where
    ``water`` is set, the column is water from just above the seabed up to
    ``sea_level_y``.
    """
    heights: np.ndarray
    block_heights: np.ndarray
    water: np.ndarray
    sea_level: Optional[float]
    sea_level_y: Optional[int]
    ground_level: int

    @property
    def width(self) -> int:
        return int(self.heights.shape[1])

    @property
    def depth(self) -> int:
        return int(self.heights.shape[0])

    def surface_y(self, x: int, z: int) -> int:
        return int(self.block_heights[z, x])

    def is_water(self, x: int, z: int) -> bool:
        return bool(self.water[z, x])

    def water_range(self, x: int, z: int) -> range:
        if not self.water[z, x]:
            return range(0)
        floor_y = int(self.block_heights[z, x])
        # the ground_level block stays solid under the water
        bottom_y = max(min(floor_y + 1, self.sea_level_y), self.ground_level + 1)
        return range(bottom_y, self.sea_level_y + 1)

    def column(self, x: int, z: int, top: Block = Block.GRASS_BLOCK):
        """Yield (y, block) for one terrain column, bottom up."""
        water = self.water_range(x, z)
        top_y = (water.start - 1) if water else int(self.block_heights[z, x])
        if water:
            top = Block.SAND
        for y in range(self.ground_level, top_y + 1):
            if y == top_y:
                yield y, top
            elif y > top_y - TOPSOIL_DEPTH:
                yield y, Block.DIRT
            else:
                yield y, Block.STONE
        for y in water:
            yield y, Block.WATER


def fill_water(surface: TerrainSurface) -> TerrainSurface:
    """Mark every cell at or below sea level as water.

    Depends only on the smoothed heights, so applying it twice is a no-op.
    """
    if surface.sea_level is None:
        water = np.zeros(surface.heights.shape, dtype=bool)
    else:
        water = surface.heights <= surface.sea_level
    return replace(surface, water=water)


class TerrainProcessor:
    """Turns a raw ElevationGrid into the TerrainSurface features stand on."""

    def __init__(self, options: GenerationOptions):
        self.options = options

    def process(self, grid: ElevationGrid) -> TerrainSurface:
        opts = self.options
        heights = smooth(grid.heights, opts.smoothing_sigma * opts.scale)
        sea_level = detect_sea_level(heights, opts.min_sea_area)

        min_h, factor = _vertical_mapping(heights, opts.ground_level, opts.scale, MAX_Y)
        block_heights = opts.ground_level + np.rint((heights - min_h) * factor).astype(np.int64)
        sea_level_y = None
        if sea_level is not None:
            sea_level_y = max(opts.ground_level + int(round((sea_level - min_h) * factor)),
                              opts.ground_level + 1)

        surface = fill_water(TerrainSurface(
            heights=heights,
            block_heights=block_heights,
            water=np.zeros(heights.shape, dtype=bool),
            sea_level=sea_level,
            sea_level_y=sea_level_y,
            ground_level=opts.ground_level,
        ))
        if sea_level is None:
            logger.info("No sea detected")
        else:
            logger.info(f"Sea level {sea_level:.2f} m (Y={sea_level_y}), "
                        f"{int(surface.water.sum())} water cells")
        return surface
