"""Elevation grid acquisition from remote DEM sources.

Provides:
1. Copernicus GLO-30 / GLO-90 baseline tiles (no credential)
2. Danish height model (DHM) WCS coverage at high resolution (token)
3. Concurrent, retried tile fetching and merging onto the voxel grid
4. Void filling by interpolation from neighbouring samples
"""

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from functools import partial
from typing import Optional

import numpy as np
import rasterio
import requests
from pyproj import Transformer
from rasterio.crs import CRS
from rasterio.errors import RasterioError
from rasterio.io import MemoryFile
from rasterio.transform import from_bounds
from rasterio.warp import reproject, Resampling
from scipy.interpolate import griddata
from scipy.spatial import QhullError

from .coordinates import CoordinateMapper
from .errors import RemoteFetchError, RunReport, TerrainUnavailableError
from .models import GenerationOptions, PathManager
from .retry import RetryPolicy, call_with_retry, check_response

logger = logging.getLogger(__name__)

# ── Copernicus DEM configuration ─────────────────────────────────

# GLO-30 (30m), res_code 10 in Copernicus naming
_GLO30_BASE_URL = "https://copernicus-dem-30m.s3.eu-central-1.amazonaws.com"
_GLO30_RES_CODE = 10

# GLO-90 (90m) fallback for countries excluded from GLO-30
_GLO90_BASE_URL = "https://copernicus-dem-90m.s3.eu-central-1.amazonaws.com"
_GLO90_RES_CODE = 30

# ── DHM (Danmarks Højdemodel) WCS configuration ──────────────────

_DHM_WCS_URL = "https://api.dataforsyningen.dk/dhm_wcs_DAF"
_DHM_CRS = "EPSG:25832"
_DHM_MAX_PIXELS = 2048
_DHM_NODATA_CEILING = -9999.0

# Fraction of cells that must carry data for a source to be usable
_MIN_COVERAGE = 0.02


@dataclass(frozen=True)
class ElevationTile:
    """One source-native request unit.

    ``bounds`` are (minx, miny, maxx, maxy) in the source CRS; ``width`` and
    ``height`` are the requested pixel counts for services that resample
    server-side (0 when the source serves fixed tiles).
    """
    key: str
    bounds: tuple
    width: int = 0
    height: int = 0


@dataclass
class TileRaster:
    data: np.ndarray
    transform: object
    crs: CRS
    nodata: Optional[float] = None


@dataclass
class ElevationGrid:
    """Real-valued height samples (metres) over the voxel grid.

    ``heights`` has shape (depth, width); row 0 is the northern edge.
    NaN marks "no data" and only appears before void filling.
    """
    heights: np.ndarray
    origin: tuple
    cell_size: float
    source: str = "flat"
    failed_tiles: list = field(default_factory=list)

    @property
    def width(self) -> int:
        return int(self.heights.shape[1])

    @property
    def depth(self) -> int:
        return int(self.heights.shape[0])

    @classmethod
    def flat(cls, mapper: CoordinateMapper, value: float = 0.0) -> "ElevationGrid":
        heights = np.full(mapper.shape, float(value), dtype=np.float64)
        return cls(heights=heights, origin=mapper.to_geo(0.0, 0.0),
                   cell_size=mapper.cell_size, source="flat")

    def sample(self, x: float, z: float) -> float:
        """Bilinear interpolation at local grid coordinates, clamped to edges."""
        h = self.heights
        if self.width == 1 and self.depth == 1:
            return float(h[0, 0])
        fx = min(max(x - 0.5, 0.0), self.width - 1.0)
        fz = min(max(z - 0.5, 0.0), self.depth - 1.0)
        ix = min(int(fx), max(self.width - 2, 0))
        iz = min(int(fz), max(self.depth - 2, 0))
        ix1 = min(ix + 1, self.width - 1)
        iz1 = min(iz + 1, self.depth - 1)
        tx = fx - ix
        tz = fz - iz
        return float(h[iz, ix] * (1 - tx) * (1 - tz) +
                     h[iz, ix1] * tx * (1 - tz) +
                     h[iz1, ix] * (1 - tx) * tz +
                     h[iz1, ix1] * tx * tz)


# ── Sources ─────────────────────────────────────────────────────────

class ElevationSource:
    """A remote DEM split into independently fetchable tiles."""

    name = "source"
    requires_credential = False

    def tiles(self, mapper: CoordinateMapper) -> list:
        raise NotImplementedError

    def fetch(self, tile: ElevationTile) -> TileRaster:
        raise NotImplementedError


def _tile_name(lat_floor: int, lon_floor: int, res_code: int) -> str:
    """Build Copernicus DEM tile name from lower-left integer lat/lon."""
    ns = "N" if lat_floor >= 0 else "S"
    ew = "E" if lon_floor >= 0 else "W"
    lat_str = f"{ns}{abs(lat_floor):02d}_00"
    lon_str = f"{ew}{abs(lon_floor):03d}_00"
    return f"Copernicus_DSM_COG_{res_code}_{lat_str}_{lon_str}_DEM"


def _tiles_for_bbox(south: float, north: float,
                    west: float, east: float) -> list:
    """Return list of (lat_floor, lon_floor) for all 1x1° tiles covering bbox."""
    lat_min = math.floor(south)
    lat_max = math.floor(math.nextafter(north, -math.inf))
    lon_min = math.floor(west)
    lon_max = math.floor(math.nextafter(east, -math.inf))
    tiles = []
    for lat in range(lat_min, lat_max + 1):
        for lon in range(lon_min, lon_max + 1):
            tiles.append((lat, lon))
    return tiles


class CopernicusSource(ElevationSource):
    """Copernicus DEM 1x1° COG tiles; GLO-30 first, GLO-90 per-tile fallback.

    A tile missing from both datasets is open ocean and is served as a
    zero-elevation raster.
    """

    name = "copernicus"

    def __init__(self, session: Optional[requests.Session] = None,
                 timeout: float = 120.0):
        self.session = session or requests.Session()
        self.timeout = timeout

    def tiles(self, mapper: CoordinateMapper) -> list:
        bbox = mapper.bbox
        return [
            ElevationTile(key=f"{lat:+03d}{lon:+04d}",
                          bounds=(lon, lat, lon + 1, lat + 1))
            for lat, lon in _tiles_for_bbox(bbox.south, bbox.north,
                                            bbox.west, bbox.east)
        ]

    def fetch(self, tile: ElevationTile) -> TileRaster:
        lon_floor, lat_floor = int(tile.bounds[0]), int(tile.bounds[1])
        path = self._download_tile(lat_floor, lon_floor)
        if path is None:
            logger.info(f"No Copernicus tile at ({lat_floor}, {lon_floor}), treating as ocean")
            return TileRaster(
                data=np.zeros((2, 2), dtype=np.float64),
                transform=from_bounds(*tile.bounds, 2, 2),
                crs=CRS.from_epsg(4326), nodata=None)
        try:
            with rasterio.open(str(path)) as src:
                return TileRaster(data=src.read(1).astype(np.float64),
                                  transform=src.transform, crs=src.crs,
                                  nodata=src.nodata)
        except RasterioError as e:
            path.unlink(missing_ok=True)
            raise RemoteFetchError(f"Unreadable DEM tile {path.name}: {e}")

    def _download_tile(self, lat_floor: int, lon_floor: int):
        """Download and cache a Copernicus DEM tile.

        Returns the local .tif path, or None if neither dataset has the tile.
        """
        for base_url, res_code, label in [
            (_GLO30_BASE_URL, _GLO30_RES_CODE, "GLO-30"),
            (_GLO90_BASE_URL, _GLO90_RES_CODE, "GLO-90"),
        ]:
            name = _tile_name(lat_floor, lon_floor, res_code)
            local_path = PathManager.get_dem_path(f"{name}.tif")
            if local_path.exists() and local_path.stat().st_size > 0:
                return local_path

            url = f"{base_url}/{name}/{name}.tif"
            logger.info(f"Downloading {label} tile: {name}")
            response = self.session.get(url, stream=True, timeout=self.timeout)
            try:
                if response.status_code == 404:
                    logger.debug(f"{label} tile not found (404): {name}")
                    continue
                check_response(response, f"{label} {name}")
                tmp_path = local_path.with_suffix(".part")
                with open(tmp_path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=1024 * 1024):
                        if chunk:
                            f.write(chunk)
                tmp_path.replace(local_path)
            finally:
                response.close()
            size_mb = local_path.stat().st_size / 1024 / 1024
            logger.info(f"Cached {label} tile: {local_path.name} ({size_mb:.1f} MB)")
            return local_path
        return None


class DhmWcsSource(ElevationSource):
    """Danish terrain model via the Dataforsyningen WCS (EPSG:25832).

    The requested area is cut into windows of at most 2048×2048 pixels at
    the target grid resolution.
    """

    name = "dhm"
    requires_credential = True

    def __init__(self, token: str, session: Optional[requests.Session] = None,
                 timeout: float = 120.0, coverage: str = "dhm_terraen"):
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout
        self.coverage = coverage
        self._to_utm32 = Transformer.from_crs("EPSG:4326", _DHM_CRS, always_xy=True)

    def tiles(self, mapper: CoordinateMapper) -> list:
        bbox = mapper.bbox
        es, ns = self._to_utm32.transform(
            [bbox.west, bbox.west, bbox.east, bbox.east],
            [bbox.south, bbox.north, bbox.south, bbox.north])
        min_e, max_e, min_n, max_n = min(es), max(es), min(ns), max(ns)

        nx = math.ceil(mapper.width / _DHM_MAX_PIXELS)
        nz = math.ceil(mapper.depth / _DHM_MAX_PIXELS)
        step_e = (max_e - min_e) / nx
        step_n = (max_n - min_n) / nz
        tiles = []
        for j in range(nz):
            for i in range(nx):
                px_w = min(_DHM_MAX_PIXELS, mapper.width - i * _DHM_MAX_PIXELS)
                px_h = min(_DHM_MAX_PIXELS, mapper.depth - j * _DHM_MAX_PIXELS)
                bounds = (min_e + i * step_e, max_n - (j + 1) * step_n,
                          min_e + (i + 1) * step_e, max_n - j * step_n)
                tiles.append(ElevationTile(key=f"{j}_{i}", bounds=bounds,
                                           width=max(px_w, 2), height=max(px_h, 2)))
        return tiles

    def fetch(self, tile: ElevationTile) -> TileRaster:
        min_e, min_n, max_e, max_n = tile.bounds
        params = {
            "SERVICE": "WCS", "REQUEST": "GetCoverage", "VERSION": "1.0.0",
            "COVERAGE": self.coverage,
            "CRS": _DHM_CRS, "RESPONSE_CRS": _DHM_CRS,
            "BBOX": f"{min_e},{min_n},{max_e},{max_n}",
            "WIDTH": tile.width, "HEIGHT": tile.height,
            "FORMAT": "GTiff",
            "token": self.token,
        }
        response = self.session.get(_DHM_WCS_URL, params=params, timeout=self.timeout)
        check_response(response, f"DHM WCS tile {tile.key}")

        content_type = response.headers.get("content-type", "")
        body = response.content
        if "xml" in content_type or body[:1] == b"<":
            text = body[:500].decode("utf-8", errors="replace")
            raise RemoteFetchError(f"DHM WCS returned error: {text}", retryable=False)

        try:
            with MemoryFile(body) as memfile:
                with memfile.open() as src:
                    data = src.read(1).astype(np.float64)
                    transform = src.transform
                    crs = src.crs or CRS.from_string(_DHM_CRS)
                    nodata = src.nodata
        except RasterioError as e:
            raise RemoteFetchError(f"Failed to decode DHM GeoTIFF: {e}", retryable=False)

        # DHM marks open water as nodata
        data[data <= _DHM_NODATA_CEILING] = 0.0
        return TileRaster(data=data, transform=transform, crs=crs, nodata=nodata)


# ── Merging ─────────────────────────────────────────────────────────

def merge_raster(heights: np.ndarray, raster: TileRaster,
                 mapper: CoordinateMapper, resampling: str = "bilinear") -> int:
    """Resample ``raster`` onto the grid, filling cells that are still NaN.

    Returns the number of cells this raster contributed.
    """
    src = np.asarray(raster.data, dtype=np.float64)
    if raster.nodata is not None and not np.isnan(raster.nodata):
        src = np.where(src == raster.nodata, np.nan, src)

    dest = np.full(heights.shape, np.nan, dtype=np.float64)
    reproject(
        source=src,
        destination=dest,
        src_transform=raster.transform,
        src_crs=raster.crs,
        src_nodata=np.nan,
        dst_transform=mapper.grid_transform,
        dst_crs=mapper.crs,
        dst_nodata=np.nan,
        resampling=Resampling.nearest if resampling == "nearest" else Resampling.bilinear,
    )
    fill = np.isnan(heights) & ~np.isnan(dest)
    heights[fill] = dest[fill]
    return int(fill.sum())


def fill_voids(heights: np.ndarray) -> int:
    """Fill NaN cells in place from valid neighbours.

    Linear interpolation inside the convex hull of valid samples, nearest
    neighbour outside it or when the samples cannot be triangulated.
    Returns the number of filled cells.
    """
    valid_mask = ~np.isnan(heights)
    void_mask = ~valid_mask
    n_voids = int(void_mask.sum())
    if n_voids == 0:
        return 0

    vy, vx = np.where(valid_mask)
    valid_pts = np.column_stack([vx, vy])
    valid_vals = heights[valid_mask]
    ty, tx = np.where(void_mask)
    target_pts = np.column_stack([tx, ty])

    try:
        filled = griddata(valid_pts, valid_vals, target_pts, method='linear')
    except (QhullError, ValueError):
        filled = np.full(len(target_pts), np.nan)

    nan_mask = np.isnan(filled)
    if nan_mask.any():
        filled[nan_mask] = griddata(valid_pts, valid_vals, target_pts[nan_mask],
                                    method='nearest')

    heights[void_mask] = filled
    logger.info(f"Filled {n_voids} elevation voids by interpolation")
    return n_voids


class ElevationProvider:
    """Builds the ElevationGrid for a run.

    Sources are tried in order (high-resolution first when a credential is
    configured, then the baseline); a source that yields too little data is
    skipped in favour of the next one.
    """

    def __init__(self, options: GenerationOptions, sources=None,
                 retry_policy: Optional[RetryPolicy] = None, sleep=time.sleep):
        self.options = options
        self.sources = list(sources) if sources is not None else self._default_sources()
        self.retry_policy = retry_policy or RetryPolicy()
        self.sleep = sleep

    def _default_sources(self) -> list:
        sources = []
        if self.options.elevation_credential:
            sources.append(DhmWcsSource(self.options.elevation_credential))
        sources.append(CopernicusSource())
        return sources

    def get_grid(self, mapper: CoordinateMapper, report: RunReport) -> ElevationGrid:
        if not self.options.terrain_enabled:
            report.elevation_source = "flat"
            return ElevationGrid.flat(mapper)

        for source in self.sources:
            grid = self._grid_from_source(source, mapper, report)
            if grid is not None:
                report.elevation_source = source.name
                return grid
            logger.warning(f"Elevation source '{source.name}' unavailable, "
                           f"trying next source")

        raise TerrainUnavailableError(
            "Terrain is enabled but no elevation source returned usable data")

    def _grid_from_source(self, source: ElevationSource, mapper: CoordinateMapper,
                          report: RunReport) -> Optional[ElevationGrid]:
        tiles = source.tiles(mapper)
        logger.info(f"Fetching {len(tiles)} {source.name} tile(s)")

        rasters = {}
        failed = []
        workers = max(1, min(self.options.fetch_concurrency, len(tiles) or 1))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(call_with_retry, partial(source.fetch, tile),
                                self.retry_policy,
                                describe=f"{source.name} tile {tile.key}",
                                sleep=self.sleep): tile
                for tile in tiles
            }
            for future in as_completed(futures):
                tile = futures[future]
                try:
                    rasters[tile.key] = future.result()
                    report.count('tiles_fetched')
                except RemoteFetchError as e:
                    report.record(e, f"{source.name} tile {tile.key}")
                    report.count('tiles_failed')
                    failed.append(tile.key)

        heights = np.full(mapper.shape, np.nan, dtype=np.float64)
        # Merge in tile order so overlaps resolve the same way every run
        for tile in tiles:
            if tile.key in rasters:
                merge_raster(heights, rasters[tile.key], mapper,
                             self.options.resampling)

        total_cells = heights.size
        valid = int((~np.isnan(heights)).sum())
        if valid < max(min(4, total_cells), total_cells * _MIN_COVERAGE):
            logger.warning(f"{source.name} data insufficient for this area "
                           f"({valid}/{total_cells} valid)")
            return None

        fill_voids(heights)
        logger.info(f"Elevation grid from {source.name}: {mapper.width}x{mapper.depth}, "
                    f"range {np.min(heights):.1f}..{np.max(heights):.1f} m"
                    + (f", {len(failed)} tile(s) interpolated" if failed else ""))
        return ElevationGrid(heights=heights, origin=mapper.to_geo(0.0, 0.0),
                             cell_size=mapper.cell_size, source=source.name,
                             failed_tiles=sorted(failed))
