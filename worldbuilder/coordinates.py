"""Geographic ↔ local voxel grid mapping."""

import math
import logging

import numpy as np
from pyproj import Transformer
from rasterio.crs import CRS
from rasterio.transform import from_origin

from .errors import InvalidBoundsError
from .models import BoundingBox

logger = logging.getLogger(__name__)

DEFAULT_MAX_CELLS = 64_000_000


def utm_epsg_for(lat: float, lon: float) -> int:
    """EPSG code of the WGS84 UTM zone containing (lat, lon)."""
    utm_zone = min(int((lon + 180) / 6) + 1, 60)
    return 32600 + utm_zone if lat >= 0 else 32700 + utm_zone


class CoordinateMapper:
    """Projects WGS84 points onto a local integer grid at ``scale`` blocks/m.

    The grid origin is the north-west extreme of the projected bounding box;
    ``x`` grows east and ``z`` grows south.  Cell (x, z) covers
    [x, x+1) × [z, z+1) in local units.
    """

    def __init__(self, bbox: BoundingBox, scale: float,
                 max_cells: int = DEFAULT_MAX_CELLS):
        bbox.validate()
        if not (scale > 0 and math.isfinite(scale)):
            raise InvalidBoundsError(f"Scale must be positive, got {scale}")

        self.bbox = bbox
        self.scale = float(scale)
        center_lat, center_lon = bbox.center
        self.epsg = utm_epsg_for(center_lat, center_lon)
        self._forward = Transformer.from_crs(
            "EPSG:4326", f"EPSG:{self.epsg}", always_xy=True)
        self._inverse = Transformer.from_crs(
            f"EPSG:{self.epsg}", "EPSG:4326", always_xy=True)

        lons = [bbox.west, bbox.west, bbox.east, bbox.east]
        lats = [bbox.south, bbox.north, bbox.south, bbox.north]
        es, ns = self._forward.transform(lons, lats)
        self.origin_e = float(min(es))
        self.origin_n = float(max(ns))
        self.width = int(math.floor((max(es) - min(es)) * self.scale))
        self.depth = int(math.floor((max(ns) - min(ns)) * self.scale))

        if self.width < 1 or self.depth < 1:
            raise InvalidBoundsError(
                f"Bounding box is smaller than one cell at scale {scale}")
        if self.width * self.depth > max_cells:
            raise InvalidBoundsError(
                f"Grid {self.width}x{self.depth} exceeds the {max_cells} cell limit")

        logger.info(f"Using UTM EPSG:{self.epsg}, grid {self.width}x{self.depth} "
                    f"cells at {self.scale} blocks/m")

    @property
    def shape(self) -> tuple:
        """Array shape (depth, width) of grids over this mapping."""
        return self.depth, self.width

    @property
    def cell_size(self) -> float:
        """Cell edge length in metres."""
        return 1.0 / self.scale

    @property
    def crs(self) -> CRS:
        return CRS.from_epsg(self.epsg)

    @property
    def grid_transform(self):
        """Affine transform from (col, row) = (x, z) to projected metres."""
        return from_origin(self.origin_e, self.origin_n,
                           self.cell_size, self.cell_size)

    def to_local(self, lat: float, lon: float) -> tuple:
        e, n = self._forward.transform(lon, lat)
        return (e - self.origin_e) * self.scale, (self.origin_n - n) * self.scale

    def to_cell(self, lat: float, lon: float) -> tuple:
        x, z = self.to_local(lat, lon)
        return int(math.floor(x)), int(math.floor(z))

    def to_geo(self, x: float, z: float) -> tuple:
        e = self.origin_e + x / self.scale
        n = self.origin_n - z / self.scale
        lon, lat = self._inverse.transform(e, n)
        return lat, lon

    def project_points(self, lons, lats):
        """Vectorised forward mapping; returns (xs, zs) numpy arrays."""
        es, ns = self._forward.transform(np.asarray(lons, dtype=np.float64),
                                         np.asarray(lats, dtype=np.float64))
        xs = (np.asarray(es) - self.origin_e) * self.scale
        zs = (self.origin_n - np.asarray(ns)) * self.scale
        return xs, zs

    def in_grid(self, x: int, z: int) -> bool:
        return 0 <= x < self.width and 0 <= z < self.depth
