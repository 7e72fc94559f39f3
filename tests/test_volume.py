import numpy as np
import pytest

from worldbuilder.constants import (FLOOR_BLOCK, ROOF_BLOCKS, WALL_BLOCKS, WINDOW_BLOCK, Block,
                                    BuildingUse, RoofMaterial, WallMaterial)
from worldbuilder.elevation import ElevationGrid
from worldbuilder.errors import OverlapConflict
from worldbuilder.models import BuildingAttributes, Footprint, Provenance, Sourced
from worldbuilder.terrain import TerrainProcessor
from worldbuilder.volume import VolumeGenerator, roof_profile

WALL = WALL_BLOCKS[WallMaterial.BRICK]
ROOF = ROOF_BLOCKS[RoofMaterial.SLATE]


def _attrs(levels=3) -> BuildingAttributes:
    return BuildingAttributes(
        levels=Sourced(levels, Provenance.TAG),
        wall_material=Sourced(WallMaterial.BRICK, Provenance.TAG),
        roof_material=Sourced(RoofMaterial.SLATE, Provenance.TAG),
        use=Sourced(BuildingUse.HOUSE, Provenance.TAG),
    )


def _footprint(x0=20, z0=20, size=10) -> Footprint:
    return Footprint(frozenset((x, z) for x in range(x0, x0 + size)
                               for z in range(z0, z0 + size)))


def _blocks(generator, footprint, attrs=None) -> dict:
    return dict(generator.generate(footprint, attrs or _attrs(), "b1"))


def test_walls_span_levels_times_level_height(options, flat_surface) -> None:
    generator = VolumeGenerator(options, flat_surface)
    blocks = _blocks(generator, _footprint())
    base = options.ground_level
    top = base + 3 * options.level_height

    column = [blocks[(21, y, 20)] for y in range(base + 1, top + 1)]
    assert all(b in (WALL, WINDOW_BLOCK) for b in column)
    assert WALL in column
    assert blocks[(21, top + 1, 20)] == ROOF
    assert blocks[(21, base, 20)] == Block.FOUNDATION
    assert max(y for (_, y, _) in blocks) == top + 1


def test_interior_has_floors_and_air(options, flat_surface) -> None:
    generator = VolumeGenerator(options, flat_surface)
    blocks = _blocks(generator, _footprint())
    base = options.ground_level
    lh = options.level_height
    interior = [blocks[(25, y, 25)] for y in range(base + 1, base + 3 * lh + 1)]
    floors = [base + 1 + i for i, b in enumerate(interior) if b == FLOOR_BLOCK]
    assert floors == [base + 1 + lh, base + 1 + 2 * lh]
    assert interior.count(Block.AIR) == 3 * lh - 2
    assert any(b == WINDOW_BLOCK for b in blocks.values())


def test_interior_disabled_is_solid(options, flat_surface) -> None:
    opts = options.with_changes(interior_enabled=False)
    blocks = _blocks(VolumeGenerator(opts, flat_surface), _footprint())
    base = opts.ground_level
    assert {blocks[(25, y, 25)] for y in range(base + 1, base + 13)} == {WALL}
    assert WINDOW_BLOCK not in blocks.values()
    assert Block.AIR not in blocks.values()


def test_roof_disabled(options, flat_surface) -> None:
    opts = options.with_changes(roof_enabled=False)
    blocks = _blocks(VolumeGenerator(opts, flat_surface), _footprint())
    assert ROOF not in blocks.values()
    assert max(y for (_, y, _) in blocks) == opts.ground_level + 3 * opts.level_height


def test_pitched_roof_rises_toward_the_middle() -> None:
    profile = roof_profile(_footprint(size=9), "pitched", max_rise=8)
    assert profile[(20, 20)] == 1
    assert profile[(24, 24)] == 5
    assert profile[(21, 24)] == 2
    flat = roof_profile(_footprint(size=9), "flat", max_rise=8)
    assert set(flat.values()) == {1}
    capped = roof_profile(_footprint(size=9), "pitched", max_rise=3)
    assert max(capped.values()) == 3


def test_pitched_roof_blocks(options, flat_surface) -> None:
    opts = options.with_changes(roof_style="pitched")
    blocks = _blocks(VolumeGenerator(opts, flat_surface), _footprint())
    roof_base = opts.ground_level + 3 * opts.level_height + 1
    assert blocks[(20, roof_base, 20)] == ROOF
    assert (20, roof_base + 1, 20) not in blocks
    assert blocks[(24, roof_base + 4, 24)] == ROOF


def test_base_follows_terrain_at_representative_cell(options, mapper) -> None:
    heights = np.tile(np.arange(mapper.width, dtype=np.float64), (mapper.depth, 1))
    opts = options.with_changes(smoothing_sigma=0.0)
    surface = TerrainProcessor(opts).process(
        ElevationGrid(heights=heights, origin=(0.0, 0.0), cell_size=1.0))
    fp = _footprint()
    generator = VolumeGenerator(opts, surface)
    rx, rz = fp.representative_cell()
    assert generator.base_y(fp) == surface.surface_y(rx, rz)

    blocks = _blocks(generator, fp)
    base = generator.base_y(fp)
    # downhill side is filled with foundation down to the terrain
    low_x = 20
    for y in range(surface.surface_y(low_x, 20) + 1, base + 1):
        assert blocks[(low_x, y, 20)] == Block.FOUNDATION


def test_building_in_water_rejected(options, mapper) -> None:
    heights = np.full(mapper.shape, 10.0)
    heights[:, :30] = -2.0
    opts = options.with_changes(smoothing_sigma=0.0)
    surface = TerrainProcessor(opts).process(
        ElevationGrid(heights=heights, origin=(0.0, 0.0), cell_size=1.0))
    with pytest.raises(OverlapConflict):
        VolumeGenerator(opts, surface).generate(_footprint(), _attrs(), "b1")
