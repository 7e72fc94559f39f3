import numpy as np
import pytest

from worldbuilder.coordinates import CoordinateMapper
from worldbuilder.elevation import ElevationGrid
from worldbuilder.models import BoundingBox, Feature, GenerationOptions
from worldbuilder.terrain import TerrainProcessor


@pytest.fixture
def small_bbox() -> BoundingBox:
    # Roughly 50 m x 55 m in central Copenhagen
    return BoundingBox(north=55.6765, south=55.6760, east=12.5688, west=12.5680)


@pytest.fixture
def options(small_bbox) -> GenerationOptions:
    return GenerationOptions(bbox=small_bbox, max_workers=2, fetch_concurrency=2)


@pytest.fixture
def mapper(small_bbox) -> CoordinateMapper:
    return CoordinateMapper(small_bbox, 1.0)


@pytest.fixture
def flat_surface(options, mapper):
    grid = ElevationGrid(heights=np.zeros(mapper.shape), origin=(0.0, 0.0), cell_size=1.0)
    return TerrainProcessor(options).process(grid)


@pytest.fixture
def make_feature(mapper):
    """Build a WGS84 Feature from rings given in local grid coordinates."""
    def _make(feature_id, kind, local_rings, tags=None):
        rings = []
        for ring in local_rings:
            geo = [mapper.to_geo(x, z) for x, z in ring]
            rings.append([(lon, lat) for lat, lon in geo])
        return Feature(feature_id=feature_id, kind=kind, rings=rings, tags=tags or {})
    return _make


def square(x0, z0, x1, z1) -> list:
    return [(x0, z0), (x1, z0), (x1, z1), (x0, z1), (x0, z0)]


@pytest.fixture
def square_ring():
    return square
