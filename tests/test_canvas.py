import threading

import numpy as np
import pytest

from worldbuilder.canvas import ClaimRegistry, VoxelCanvas
from worldbuilder.constants import Block
from worldbuilder.errors import OverlapConflict
from worldbuilder.models import Footprint


def _fp(x0, z0, x1, z1) -> Footprint:
    return Footprint(frozenset((x, z) for x in range(x0, x1) for z in range(z0, z1)))


def test_writes_are_partitioned_by_tile() -> None:
    canvas = VoxelCanvas(64, 64)
    canvas.stamp([((1, 0, 1), Block.STONE), ((17, 0, 1), Block.STONE),
                  ((40, 5, 40), Block.BRICKS)])
    assert canvas.tiles == [(0, 0), (1, 0), (2, 2)]
    assert canvas.tile_of(15, 16) == (0, 1)


def test_concurrent_stamps_all_land() -> None:
    canvas = VoxelCanvas(64, 64)

    def worker(offset):
        canvas.stamp([((x, offset, z), Block.BRICKS) for x in range(64) for z in range(64)])

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    canvas.finalize()
    assert len(canvas.stamped()) == 4 * 64 * 64


def test_finalize_freezes_canvas() -> None:
    canvas = VoxelCanvas(16, 16)
    canvas.set_block(1, 2, 3, Block.GLASS)
    canvas.finalize()
    assert canvas.finalized
    assert canvas.get(1, 2, 3) == Block.GLASS
    with pytest.raises(RuntimeError):
        canvas.set_block(0, 0, 0, Block.STONE)
    with pytest.raises(RuntimeError):
        canvas.set_surface([(0, 0)], Block.SAND)


def test_out_of_grid_write_rejected() -> None:
    canvas = VoxelCanvas(16, 16)
    with pytest.raises(ValueError):
        canvas.set_block(16, 0, 0, Block.STONE)


def test_terrain_columns_and_overrides(flat_surface, mapper) -> None:
    canvas = VoxelCanvas(mapper.width, mapper.depth, flat_surface)
    ground = flat_surface.surface_y(0, 0)
    canvas.set_surface([(3, 3)], Block.SAND)
    canvas.set_block(4, ground, 4, Block.FOUNDATION)
    canvas.finalize()

    assert canvas.get(0, ground, 0) == Block.GRASS_BLOCK
    assert canvas.get(3, ground, 3) == Block.SAND
    assert canvas.get(4, ground, 4) == Block.FOUNDATION
    assert canvas.get(0, ground + 1, 0) is None

    positions = [pos for pos, _ in canvas]
    assert len(positions) == len(set(positions))
    histogram = canvas.histogram()
    assert histogram[Block.SAND] == 1
    assert histogram[Block.FOUNDATION] == 1
    assert histogram[Block.GRASS_BLOCK] == mapper.width * mapper.depth - 2


def test_first_claim_wins_and_later_is_clipped() -> None:
    claims = ClaimRegistry(min_area=16)
    first = claims.commit("a", "building", _fp(0, 0, 10, 10))
    second = claims.commit("b", "building", _fp(5, 0, 15, 10))
    assert first.area == 100
    assert second.area == 50
    assert claims.owner((6, 5)) == ("a", "building")
    assert claims.owner((12, 5)) == ("b", "building")


def test_clipped_below_minimum_rejected() -> None:
    claims = ClaimRegistry(min_area=16)
    claims.commit("a", "landuse", _fp(0, 0, 10, 10))
    with pytest.raises(OverlapConflict):
        claims.commit("b", "landuse", _fp(0, 0, 11, 10))


def test_buildings_never_overlap_water() -> None:
    claims = ClaimRegistry(min_area=16)
    claims.commit("lake", "water", _fp(0, 0, 10, 10))
    with pytest.raises(OverlapConflict):
        claims.commit("house", "building", _fp(8, 8, 14, 14))
    assert claims.owner((12, 12)) is None


def test_sea_water_rejects_buildings_and_clips_landuse() -> None:
    water = np.zeros((20, 20), dtype=bool)
    water[:, :5] = True
    claims = ClaimRegistry(min_area=16, water_mask=water)
    with pytest.raises(OverlapConflict):
        claims.commit("house", "building", _fp(3, 0, 9, 6))
    park = claims.commit("park", "landuse", _fp(0, 0, 10, 10))
    assert park.area == 50
    lake = claims.commit("lake", "water", _fp(0, 10, 10, 20))
    assert lake.area == 100
