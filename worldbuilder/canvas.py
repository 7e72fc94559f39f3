"""Voxel canvas partitioned into tile arenas, and footprint ownership."""

import logging
import threading
from collections import Counter, defaultdict
from typing import Optional

import numpy as np

from .constants import Block, TILE_SIZE
from .errors import OverlapConflict
from .models import Footprint
from .terrain import TerrainSurface

logger = logging.getLogger(__name__)


# ── Footprint ownership ──────────────────────────────────────────────────

class ClaimRegistry:
    """First committed footprint owns its cells.

    Buildings may not touch water, whether it comes from a water feature or
    from the terrain's sea fill.  Any other overlap clips the later feature;
    if what remains is below the minimum area the feature is rejected.
    """

    def __init__(self, min_area: int, water_mask: Optional[np.ndarray] = None):
        self.min_area = min_area
        self.water_mask = water_mask
        self._owners = {}

    def owner(self, cell) -> Optional[tuple]:
        """(feature_id, kind) owning ``cell``, if any."""
        return self._owners.get(cell)

    def _terrain_water(self, cells) -> set:
        if self.water_mask is None or not self.water_mask.any():
            return set()
        return {(x, z) for x, z in cells if self.water_mask[z, x]}

    def commit(self, feature_id: str, kind: str, footprint: Footprint) -> Footprint:
        cells = footprint.cells
        if kind == 'building':
            if self._terrain_water(cells):
                raise OverlapConflict(f"Building {feature_id} overlaps sea water")
            for cell in cells:
                owner = self._owners.get(cell)
                if owner is not None and owner[1] == 'water':
                    raise OverlapConflict(
                        f"Building {feature_id} overlaps water feature {owner[0]}")

        blocked = set(c for c in cells if c in self._owners)
        if kind != 'water':
            blocked |= self._terrain_water(cells)
        if blocked:
            clipped = footprint.clipped(blocked)
            if clipped.area < self.min_area:
                raise OverlapConflict(
                    f"{kind} {feature_id} keeps {clipped.area} cells after clipping")
            logger.debug(f"Clipped {len(blocked)} overlapping cells from {feature_id}")
            footprint = clipped

        for cell in footprint.cells:
            self._owners[cell] = (feature_id, kind)
        return footprint


# ── Canvas ──────────────────────────────────────────────────────────────

class _TileArena:
    __slots__ = ('lock', 'blocks')

    def __init__(self):
        self.lock = threading.Lock()
        self.blocks = {}


class VoxelCanvas:
    """Sparse (x, y, z) → Block mapping over the terrain surface.

    Writes are grouped by the 16×16 column tile they fall in; each tile has
    its own arena and lock so workers stamping different areas never
    contend.  ``finalize()`` merges the arenas and freezes the canvas.
    Terrain columns are produced on demand from the surface and are
    overridden by stamped blocks.
    """

    def __init__(self, width: int, depth: int, surface: Optional[TerrainSurface] = None,
                 tile_size: int = TILE_SIZE):
        self.width = width
        self.depth = depth
        self.surface = surface
        self.tile_size = tile_size
        self._arenas = {}
        self._arenas_lock = threading.Lock()
        self._surface_blocks = {}
        self._surface_lock = threading.Lock()
        self._blocks = None

    @property
    def finalized(self) -> bool:
        return self._blocks is not None

    @property
    def tiles(self) -> list:
        """Keys of the tile arenas that have received writes."""
        return sorted(self._arenas)

    def tile_of(self, x: int, z: int) -> tuple:
        return x // self.tile_size, z // self.tile_size

    def _arena(self, tile) -> _TileArena:
        arena = self._arenas.get(tile)
        if arena is None:
            with self._arenas_lock:
                arena = self._arenas.setdefault(tile, _TileArena())
        return arena

    def _check_writable(self):
        if self.finalized:
            raise RuntimeError("Canvas has been finalized")

    def stamp(self, blocks) -> int:
        """Write ((x, y, z), Block) pairs; returns the number written."""
        self._check_writable()
        by_tile = defaultdict(list)
        for (x, y, z), block in blocks:
            if not (0 <= x < self.width and 0 <= z < self.depth):
                raise ValueError(f"Block ({x}, {y}, {z}) is outside the "
                                 f"{self.width}x{self.depth} canvas")
            by_tile[self.tile_of(x, z)].append(((x, y, z), block))

        written = 0
        for tile, items in by_tile.items():
            arena = self._arena(tile)
            with arena.lock:
                arena.blocks.update(items)
            written += len(items)
        return written

    def set_block(self, x: int, y: int, z: int, block: Block) -> None:
        self.stamp([((x, y, z), block)])

    def set_surface(self, cells, block: Block) -> None:
        """Replace the top terrain block of ``cells`` (land use, water areas)."""
        self._check_writable()
        with self._surface_lock:
            for cell in cells:
                self._surface_blocks[cell] = block

    def surface_block(self, x: int, z: int) -> Block:
        return self._surface_blocks.get((x, z), Block.GRASS_BLOCK)

    def finalize(self) -> "VoxelCanvas":
        if self.finalized:
            return self
        merged = {}
        for tile in sorted(self._arenas):
            merged.update(self._arenas[tile].blocks)
        self._blocks = merged
        logger.info(f"Canvas finalized: {len(merged)} stamped blocks "
                    f"in {len(self._arenas)} tiles")
        return self

    def stamped(self) -> dict:
        """Explicitly written blocks (terrain excluded)."""
        if self.finalized:
            return self._blocks
        merged = {}
        for arena in self._arenas.values():
            with arena.lock:
                merged.update(arena.blocks)
        return merged

    def _terrain_column(self, x: int, z: int):
        if self.surface is None:
            return iter(())
        return self.surface.column(x, z, self.surface_block(x, z))

    def get(self, x: int, y: int, z: int) -> Optional[Block]:
        block = self.stamped().get((x, y, z))
        if block is not None:
            return block
        for ty, terrain_block in self._terrain_column(x, z):
            if ty == y:
                return terrain_block
        return None

    def __iter__(self):
        stamped = self.stamped()
        for z in range(self.depth):
            for x in range(self.width):
                for y, block in self._terrain_column(x, z):
                    if (x, y, z) not in stamped:
                        yield (x, y, z), block
        yield from stamped.items()

    def histogram(self) -> Counter:
        return Counter(block for _, block in self)
