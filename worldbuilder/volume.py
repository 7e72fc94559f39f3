"""Footprint + attributes → block volume on the terrain surface."""

import logging

import numpy as np
from scipy import ndimage

from .constants import (Block, FLOOR_BLOCK, MAX_Y, ROOF_BLOCKS, WALL_BLOCKS,
                        WINDOW_BLOCK)
from .errors import OverlapConflict
from .models import BuildingAttributes, Footprint, GenerationOptions
from .terrain import TerrainSurface

logger = logging.getLogger(__name__)

# Windows need at least this many layers per level
MIN_WINDOW_LEVEL_HEIGHT = 3


def _footprint_mask(footprint: Footprint):
    """Boolean mask of the footprint with a one-cell border, plus its offset."""
    min_x, min_z, max_x, max_z = footprint.bounds
    mask = np.zeros((max_z - min_z + 3, max_x - min_x + 3), dtype=bool)
    for x, z in footprint.cells:
        mask[z - min_z + 1, x - min_x + 1] = True
    return mask, min_x - 1, min_z - 1


def roof_profile(footprint: Footprint, style: str, max_rise: int) -> dict:
    """Roof thickness per cell: 1 for flat, stepped hip rise for pitched."""
    if style == "flat":
        return {cell: 1 for cell in footprint.cells}
    mask, off_x, off_z = _footprint_mask(footprint)
    distance = ndimage.distance_transform_cdt(mask, metric='chessboard')
    return {
        (x, z): int(min(distance[z - off_z, x - off_x], max_rise))
        for x, z in footprint.cells
    }


class VolumeGenerator:
    """Stamps ground, walls, floors, interior and roof for one building."""

    def __init__(self, options: GenerationOptions, surface: TerrainSurface):
        self.options = options
        self.surface = surface

    def base_y(self, footprint: Footprint) -> int:
        x, z = footprint.representative_cell()
        return self.surface.surface_y(x, z)

    def generate(self, footprint: Footprint, attrs: BuildingAttributes,
                 feature_id: str = "") -> list:
        """Return ((x, y, z), Block) pairs for the building volume.

        Raises OverlapConflict when any footprint cell is water.
        """
        if any(self.surface.is_water(x, z) for x, z in footprint.cells):
            raise OverlapConflict(f"Building {feature_id} stands in water")

        opts = self.options
        base = self.base_y(footprint)
        level_height = opts.level_height
        levels = attrs.levels.value
        wall_top = base + levels * level_height
        wall_block = WALL_BLOCKS[attrs.wall_material.value]
        windows = opts.interior_enabled and level_height >= MIN_WINDOW_LEVEL_HEIGHT
        window_layer = level_height // 2
        edges = footprint.edge_cells()

        blocks = []
        for x, z in sorted(footprint.cells):
            # Foundation down to the local terrain so slopes have no gaps
            ground = min(self.surface.surface_y(x, z) + 1, base)
            for y in range(ground, base + 1):
                blocks.append(((x, y, z), Block.FOUNDATION))

            is_edge = (x, z) in edges
            for y in range(base + 1, min(wall_top, MAX_Y) + 1):
                level, layer = divmod(y - base - 1, level_height)
                if is_edge:
                    if windows and layer == window_layer and (x + z) % 2 == 0:
                        blocks.append(((x, y, z), WINDOW_BLOCK))
                    else:
                        blocks.append(((x, y, z), wall_block))
                elif not opts.interior_enabled:
                    blocks.append(((x, y, z), wall_block))
                elif layer == 0 and level > 0:
                    blocks.append(((x, y, z), FLOOR_BLOCK))
                else:
                    blocks.append(((x, y, z), Block.AIR))

        if opts.roof_enabled:
            blocks.extend(self._roof(footprint, attrs, wall_top + 1))

        logger.debug(f"Building {feature_id}: {footprint.area} cells, {levels} levels "
                     f"at Y={base}, {len(blocks)} blocks")
        return blocks

    def _roof(self, footprint: Footprint, attrs: BuildingAttributes, roof_base: int) -> list:
        roof_block = ROOF_BLOCKS[attrs.roof_material.value]
        profile = roof_profile(footprint, self.options.roof_style,
                               max_rise=2 * self.options.level_height)
        blocks = []
        for (x, z), rise in sorted(profile.items()):
            for y in range(roof_base, min(roof_base + rise, MAX_Y + 1)):
                blocks.append(((x, y, z), roof_block))
        return blocks
