"""Authoritative building registry lookups (Danish BBR).

Registry records are indexed by their point coordinate; a footprint is
matched to the nearest record within ``MATCH_RADIUS_M`` metres.
"""

import datetime
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional

import numpy as np
import requests
from pyproj import Transformer
from scipy.spatial import cKDTree

from .constants import BuildingUse, RoofMaterial, WallMaterial
from .errors import RemoteFetchError
from .models import BoundingBox
from .retry import RetryPolicy, call_with_retry, check_response

logger = logging.getLogger(__name__)

BBR_GRAPHQL_URL = "https://graphql.datafordeler.dk/BBR/v1"
BBR_CRS = "EPSG:25832"
PAGE_SIZE = 500
MAX_PAGES = 100
MATCH_RADIUS_M = 30.0

# ── Code tables ─────────────────────────────────────────────────────────

WALL_CODES = {
    1: WallMaterial.BRICK,
    2: WallMaterial.LIGHTWEIGHT_CONCRETE,
    3: WallMaterial.FIBRE_CEMENT,
    4: WallMaterial.TIMBER_FRAMING,
    5: WallMaterial.WOOD,
    6: WallMaterial.CONCRETE,
    7: WallMaterial.STONE,
    8: WallMaterial.METAL,
    10: WallMaterial.GLASS,
    11: WallMaterial.SAND_LIME_BRICK,
    12: WallMaterial.PLASTER,
}

ROOF_CODES = {
    1: RoofMaterial.TAR_PAPER,
    2: RoofMaterial.TAR_PAPER,
    3: RoofMaterial.FIBRE_CEMENT,
    4: RoofMaterial.ROOF_TILES,
    5: RoofMaterial.ROOF_TILES,
    6: RoofMaterial.METAL,
    7: RoofMaterial.THATCH,
    10: RoofMaterial.GLASS,
    11: RoofMaterial.PLASTIC,
    12: RoofMaterial.SLATE,
    20: RoofMaterial.GRASS,
}

# (first code, last code, use), inclusive
USE_CODE_RANGES = [
    (110, 110, BuildingUse.HOUSE),
    (120, 120, BuildingUse.HOUSE),
    (121, 121, BuildingUse.SEMIDETACHED_HOUSE),
    (130, 132, BuildingUse.APARTMENTS),
    (140, 140, BuildingUse.APARTMENTS),
    (150, 150, BuildingUse.RESIDENTIAL),
    (160, 160, BuildingUse.RESIDENTIAL),
    (185, 190, BuildingUse.RESIDENTIAL),
    (310, 319, BuildingUse.COMMERCIAL),
    (320, 329, BuildingUse.OFFICE),
    (330, 339, BuildingUse.HOTEL),
    (340, 349, BuildingUse.COMMERCIAL),
    (350, 359, BuildingUse.RETAIL),
    (360, 379, BuildingUse.COMMERCIAL),
    (390, 399, BuildingUse.COMMERCIAL),
    (410, 429, BuildingUse.INDUSTRIAL),
    (430, 439, BuildingUse.WAREHOUSE),
    (440, 449, BuildingUse.INDUSTRIAL),
    (510, 519, BuildingUse.SCHOOL),
    (520, 529, BuildingUse.UNIVERSITY),
    (530, 539, BuildingUse.HOSPITAL),
    (540, 549, BuildingUse.PUBLIC),
    (550, 559, BuildingUse.SCHOOL),
    (585, 585, BuildingUse.CHURCH),
    (590, 599, BuildingUse.PUBLIC),
    (610, 629, BuildingUse.PUBLIC),
    (710, 729, BuildingUse.INDUSTRIAL),
    (910, 919, BuildingUse.FARM),
    (920, 929, BuildingUse.FARM_AUXILIARY),
    (930, 930, BuildingUse.SHED),
    (940, 940, BuildingUse.GARAGE),
    (950, 950, BuildingUse.SHED),
]

_POINT_RE = re.compile(r"POINT\s*\(\s*([-+0-9.eE]+)\s+([-+0-9.eE]+)\s*\)")


def _parse_code(value) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return -1


def wall_from_code(value) -> Optional[WallMaterial]:
    """BBR outer-wall code → WallMaterial; unrecognised codes are UNKNOWN."""
    code = _parse_code(value)
    if code is None:
        return None
    return WALL_CODES.get(code, WallMaterial.UNKNOWN)


def roof_from_code(value) -> Optional[RoofMaterial]:
    code = _parse_code(value)
    if code is None:
        return None
    return ROOF_CODES.get(code, RoofMaterial.UNKNOWN)


def use_from_code(value) -> Optional[BuildingUse]:
    code = _parse_code(value)
    if code is None:
        return None
    for first, last, use in USE_CODE_RANGES:
        if first <= code <= last:
            return use
    return BuildingUse.UNKNOWN


def parse_point_wkt(text: Optional[str]) -> Optional[tuple]:
    """``"POINT (e n)"`` → (e, n)."""
    if not text:
        return None
    match = _POINT_RE.search(text)
    if match is None:
        return None
    return float(match.group(1)), float(match.group(2))


@dataclass(frozen=True)
class RegistryRecord:
    """One registry building, located in the registry's projected CRS."""
    easting: float
    northing: float
    levels: Optional[int] = None
    wall_material: Optional[WallMaterial] = None
    roof_material: Optional[RoofMaterial] = None
    use: Optional[BuildingUse] = None


class BuildingRegistry:
    """Nearest-record lookup over a set of registry records."""

    def __init__(self, records=(), crs: str = BBR_CRS,
                 max_distance_m: float = MATCH_RADIUS_M):
        self.crs = crs
        self.max_distance_m = max_distance_m
        self._to_crs = Transformer.from_crs("EPSG:4326", crs, always_xy=True)
        self._index(list(records))

    def _index(self, records: list) -> None:
        self.records = records
        if records:
            points = np.array([[r.easting, r.northing] for r in records], dtype=np.float64)
            self._tree = cKDTree(points)
        else:
            self._tree = None

    def __len__(self) -> int:
        return len(self.records)

    def prefetch(self, bbox: BoundingBox) -> int:
        """Load records for ``bbox``; in-memory registries already have them."""
        return len(self.records)

    def lookup(self, lat: float, lon: float) -> Optional[RegistryRecord]:
        if self._tree is None:
            return None
        e, n = self._to_crs.transform(lon, lat)
        distance, idx = self._tree.query([e, n], distance_upper_bound=self.max_distance_m)
        if not np.isfinite(distance):
            return None
        return self.records[int(idx)]


class StaticRegistry(BuildingRegistry):
    """In-memory registry for offline runs and tests."""


class BbrRegistry(BuildingRegistry):
    """BBR building registry via the Datafordeler GraphQL service.

    ``prefetch(bbox)`` loads every current building inside the box before
    lookups are made.
    """

    def __init__(self, api_key: str, session: Optional[requests.Session] = None,
                 retry_policy: Optional[RetryPolicy] = None, timeout: float = 120.0,
                 sleep=time.sleep):
        super().__init__([], crs=BBR_CRS)
        self.api_key = api_key
        self.session = session or requests.Session()
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.sleep = sleep

    def build_query(self, bbox: BoundingBox, cursor: Optional[str] = None,
                    when: Optional[datetime.date] = None) -> str:
        """GraphQL query for current buildings inside ``bbox``."""
        min_e, min_n = self._to_crs.transform(bbox.west, bbox.south)
        max_e, max_n = self._to_crs.transform(bbox.east, bbox.north)
        min_e, min_n, max_e, max_n = (int(v) for v in (min_e, min_n, max_e, max_n))
        now = (when or datetime.datetime.now(datetime.timezone.utc).date())
        now = now.strftime("%Y-%m-%dT00:00:00Z")
        after = f', after: "{cursor}"' if cursor else ""
        polygon = (f"POLYGON(({min_e} {min_n}, {max_e} {min_n}, {max_e} {max_n}, "
                   f"{min_e} {max_n}, {min_e} {min_n}))")
        return (
            "{\n"
            "  BBR_Bygning(\n"
            f"    first: {PAGE_SIZE}{after}\n"
            f'    registreringstid: "{now}"\n'
            f'    virkningstid: "{now}"\n'
            "    where: {\n"
            '      status: { eq: "6" }\n'
            "      byg404Koordinat: {\n"
            f'        within: {{ wkt: "{polygon}", crs: 25832 }}\n'
            "      }\n"
            "    }\n"
            "  ) {\n"
            "    pageInfo { hasNextPage endCursor }\n"
            "    nodes {\n"
            "      byg021BygningensAnvendelse\n"
            "      byg032YdervaeggensMateriale\n"
            "      byg033Tagdaekningsmateriale\n"
            "      byg054AntalEtager\n"
            "      byg404Koordinat { wkt }\n"
            "    }\n"
            "  }\n"
            "}"
        )

    def _post(self, query: str) -> dict:
        response = self.session.post(BBR_GRAPHQL_URL, params={'apiKey': self.api_key},
                                     json={'query': query}, timeout=self.timeout)
        check_response(response, "BBR GraphQL")
        try:
            body = response.json()
        except ValueError:
            raise RemoteFetchError("BBR GraphQL returned a non-JSON body", retryable=False)
        if body.get('errors'):
            messages = "; ".join(str(e.get('message', e)) for e in body['errors'])
            raise RemoteFetchError(f"BBR GraphQL errors: {messages}", retryable=False)
        result = (body.get('data') or {}).get('BBR_Bygning')
        if result is None:
            raise RemoteFetchError("BBR GraphQL returned no data", retryable=False)
        return result

    @staticmethod
    def record_from_node(node: dict) -> Optional[RegistryRecord]:
        point = parse_point_wkt((node.get('byg404Koordinat') or {}).get('wkt'))
        if point is None:
            return None
        levels = node.get('byg054AntalEtager')
        return RegistryRecord(
            easting=point[0],
            northing=point[1],
            levels=int(levels) if isinstance(levels, int) and levels > 0 else None,
            wall_material=wall_from_code(node.get('byg032YdervaeggensMateriale')),
            roof_material=roof_from_code(node.get('byg033Tagdaekningsmateriale')),
            use=use_from_code(node.get('byg021BygningensAnvendelse')),
        )

    def prefetch(self, bbox: BoundingBox) -> int:
        """Fetch all pages for ``bbox``; raises RemoteFetchError on failure."""
        records = []
        cursor = None
        for page in range(1, MAX_PAGES + 1):
            query = self.build_query(bbox, cursor)
            result = call_with_retry(lambda: self._post(query), self.retry_policy,
                                     describe=f"BBR page {page}", sleep=self.sleep)
            for node in result.get('nodes') or []:
                record = self.record_from_node(node)
                if record is not None:
                    records.append(record)
            info = result.get('pageInfo') or {}
            cursor = info.get('endCursor')
            if not info.get('hasNextPage') or not cursor:
                break
        else:
            logger.warning(f"BBR pagination stopped at {MAX_PAGES} pages")

        self._index(records)
        logger.info(f"Loaded {len(records)} BBR buildings")
        return len(records)
