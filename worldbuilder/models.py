"""Data classes shared across the pipeline."""

import math
import os
import pathlib
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

from .constants import (BBR_API_KEY_ENV, DHM_TOKEN_ENV, DEFAULT_GROUND_LEVEL,
                        DEM_CACHE_DIR)
from .errors import InvalidBoundsError


class PathManager:
    """Manage cache paths relative to the worldbuilder directory."""

    @staticmethod
    def get_dem_path(filename: str) -> pathlib.Path:
        """Get the cached DEM tile path, creating the directory on demand."""
        DEM_CACHE_DIR.mkdir(parents=True, exist_ok=True)
        return DEM_CACHE_DIR / filename


@dataclass
class BoundingBox:
    north: float
    south: float
    east: float
    west: float

    @classmethod
    def from_string(cls, text: str) -> "BoundingBox":
        """Parse ``"min_lat,min_lng,max_lat,max_lng"``."""
        try:
            south, west, north, east = (float(p) for p in text.split(","))
        except ValueError:
            raise InvalidBoundsError(
                f"Expected 'min_lat,min_lng,max_lat,max_lng', got {text!r}")
        bbox = cls(north=north, south=south, east=east, west=west)
        bbox.validate()
        return bbox

    def validate(self) -> None:
        """Raise InvalidBoundsError unless min < max on both axes."""
        values = (self.north, self.south, self.east, self.west)
        if not all(math.isfinite(v) for v in values):
            raise InvalidBoundsError(f"Non-finite bounding box: {self}")
        if not (-90.0 <= self.south and self.north <= 90.0):
            raise InvalidBoundsError(f"Latitude out of range: {self}")
        if not (-180.0 <= self.west and self.east <= 180.0):
            raise InvalidBoundsError(f"Longitude out of range: {self}")
        if self.south >= self.north or self.west >= self.east:
            raise InvalidBoundsError(f"Degenerate bounding box: {self}")

    @property
    def center(self) -> tuple:
        return (self.north + self.south) / 2, (self.east + self.west) / 2


@dataclass
class Feature:
    """One vector feature in normalized form.

    ``rings`` holds (lon, lat) tuples; ring 0 is the outer boundary, the
    remaining rings are holes.  ``kind`` is one of ``building``, ``water``
    or ``landuse``.
    """
    feature_id: str
    kind: str
    rings: list
    tags: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Footprint:
    """Set of (x, z) grid cells covered by a rasterized polygon."""
    cells: frozenset

    @property
    def area(self) -> int:
        return len(self.cells)

    @property
    def bounds(self) -> tuple:
        xs = [c[0] for c in self.cells]
        zs = [c[1] for c in self.cells]
        return min(xs), min(zs), max(xs), max(zs)

    def centroid(self) -> tuple:
        n = len(self.cells)
        sx = sum(c[0] for c in self.cells)
        sz = sum(c[1] for c in self.cells)
        return sx / n + 0.5, sz / n + 0.5

    def representative_cell(self) -> tuple:
        """Footprint cell closest to the centroid (stable on ties)."""
        cx, cz = self.centroid()
        return min(sorted(self.cells),
                   key=lambda c: (c[0] + 0.5 - cx) ** 2 + (c[1] + 0.5 - cz) ** 2)

    def edge_cells(self) -> frozenset:
        """Cells with at least one 4-neighbour outside the footprint."""
        cells = self.cells
        return frozenset(
            (x, z) for x, z in cells
            if (x - 1, z) not in cells or (x + 1, z) not in cells
            or (x, z - 1) not in cells or (x, z + 1) not in cells)

    def clipped(self, claimed) -> "Footprint":
        return Footprint(frozenset(c for c in self.cells if c not in claimed))


class Provenance(str, Enum):
    TAG = "tag"
    REGISTRY = "registry"
    DEFAULT = "default"


@dataclass(frozen=True)
class Sourced:
    """An attribute value tagged with the source that produced it."""
    value: Any
    provenance: Provenance


@dataclass(frozen=True)
class BuildingAttributes:
    levels: Sourced
    wall_material: Sourced
    roof_material: Sourced
    use: Sourced

    def provenance(self) -> dict:
        return {
            'levels': self.levels.provenance,
            'wall_material': self.wall_material.provenance,
            'roof_material': self.roof_material.provenance,
            'use': self.use.provenance,
        }


@dataclass
class GenerationOptions:
    """Configuration surface consumed by the generation core.

    Credentials are opaque strings handed to the remote sources; they are
    never logged.
    """
    bbox: BoundingBox
    scale: float = 1.0
    ground_level: int = DEFAULT_GROUND_LEVEL
    terrain_enabled: bool = False
    interior_enabled: bool = True
    roof_enabled: bool = True
    enrichment_enabled: bool = False
    registry_credential: Optional[str] = field(default=None, repr=False)
    elevation_credential: Optional[str] = field(default=None, repr=False)
    flood_fill_timeout_s: float = 20.0
    # tuning
    level_height: int = 4
    roof_style: str = "flat"
    min_footprint_area: int = 16
    fill_step_budget: int = 2_000_000
    max_workers: int = 4
    fetch_concurrency: int = 4
    smoothing_sigma: float = 1.0
    min_sea_area: int = 400
    max_grid_cells: int = 64_000_000
    resampling: str = "bilinear"

    def __post_init__(self):
        if not (self.scale > 0 and math.isfinite(self.scale)):
            raise ValueError(f"scale must be a positive number, got {self.scale}")
        if self.level_height < 1:
            raise ValueError("level_height must be >= 1")
        if self.roof_style not in ("flat", "pitched"):
            raise ValueError(f"Unknown roof style: {self.roof_style}")
        if self.resampling not in ("bilinear", "nearest"):
            raise ValueError(f"Unknown resampling method: {self.resampling}")
        if self.min_footprint_area < 1:
            raise ValueError("min_footprint_area must be >= 1")

    @classmethod
    def from_env(cls, bbox: BoundingBox, **overrides) -> "GenerationOptions":
        """Build options, taking credentials from the environment / .env."""
        overrides.setdefault('registry_credential', os.environ.get(BBR_API_KEY_ENV) or None)
        overrides.setdefault('elevation_credential', os.environ.get(DHM_TOKEN_ENV) or None)
        return cls(bbox=bbox, **overrides)

    def with_changes(self, **changes) -> "GenerationOptions":
        return replace(self, **changes)
