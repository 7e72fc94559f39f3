"""Projection of feature geometry into local grid units."""

import logging

import numpy as np
from shapely.geometry import Polygon

from .coordinates import CoordinateMapper
from .models import Feature

logger = logging.getLogger(__name__)


# ── Coordinate transforms ───────────────────────────────────────────────

def transform_ring(coords, mapper: CoordinateMapper):
    """Project a ring of (lon, lat) tuples to (x, z) grid coordinates.

    Returns None for rings with fewer than three points or with
    coordinates that do not project to finite values.
    """
    if len(coords) < 3:
        return None
    lons = [c[0] for c in coords]
    lats = [c[1] for c in coords]
    xs, zs = mapper.project_points(lons, lats)
    if not (np.isfinite(xs).all() and np.isfinite(zs).all()):
        return None
    return list(zip(xs.tolist(), zs.tolist()))


def transform_polygon(rings, mapper: CoordinateMapper):
    """Project outer ring + holes into a shapely Polygon in grid units.

    The polygon is not required to be valid; rasterization applies the
    even-odd rule to whatever rings it is given.
    """
    if not rings:
        return None
    exterior = transform_ring(rings[0], mapper)
    if exterior is None:
        return None

    holes = []
    for ring in rings[1:]:
        hole = transform_ring(ring, mapper)
        if hole is not None:
            holes.append(hole)

    polygon = Polygon(exterior, holes)
    if polygon.is_empty or polygon.area <= 0:
        return None
    return polygon


def project_feature(feature: Feature, mapper: CoordinateMapper):
    """Feature in WGS84 → polygon in grid units, or None if unusable."""
    polygon = transform_polygon(feature.rings, mapper)
    if polygon is None:
        logger.debug(f"Feature {feature.feature_id} has no usable geometry")
    return polygon


def polygon_rings(polygon: Polygon) -> list:
    """Rings of a polygon as (x, z) lists, exterior first."""
    return [list(polygon.exterior.coords)] + [list(r.coords) for r in polygon.interiors]
