"""OSM vector features: download through osmnx and normalize to Features."""

import logging
from typing import Optional

import geopandas as gpd
import osmnx as ox
from osmnx._errors import InsufficientResponseError
import pandas as pd
from shapely.geometry import MultiPolygon, Polygon

from .constants import LANDUSE_SURFACES, WATER_TAGS, Block
from .models import BoundingBox, Feature

logger = logging.getLogger(__name__)

BUILDING = "building"
WATER = "water"
LANDUSE = "landuse"

# Commit order for overlapping footprints; lower wins
KIND_PRIORITY = {WATER: 0, BUILDING: 1, LANDUSE: 2}

# Combine all feature tags into ONE Overpass request
COMBINED_TAGS = {
    'building': True,
    'building:part': True,
    'natural': ['water', 'bay', 'wood', 'sand', 'beach', 'bare_rock',
                'wetland', 'glacier'],
    'waterway': ['riverbank', 'dock', 'canal'],
    'water': True,
    'landuse': ['grass', 'meadow', 'farmland', 'forest', 'reservoir', 'basin'],
    'leisure': ['park', 'pitch'],
    'amenity': 'parking',
}


def _is_set(value) -> bool:
    return value is not None and str(value).lower() != 'no'


def classify_tags(tags: dict) -> Optional[str]:
    """Feature kind for a tag set, or None if it is not rendered."""
    if _is_set(tags.get('building')) or _is_set(tags.get('building:part')):
        return BUILDING
    for key, value in tags.items():
        if (key, value) in WATER_TAGS or (key, None) in WATER_TAGS:
            return WATER
    for key, value in tags.items():
        if (key, value) in LANDUSE_SURFACES:
            return LANDUSE
    return None


def surface_block_for(tags: dict) -> Optional[Block]:
    """Surface block of a land-use area."""
    for key, value in tags.items():
        block = LANDUSE_SURFACES.get((key, value))
        if block is not None:
            return block
    return None


def _row_tags(row: pd.Series) -> dict:
    tags = {}
    for key, value in row.items():
        if key == 'geometry':
            continue
        if pd.api.types.is_scalar(value) and pd.isna(value):
            continue
        tags[key] = value
    return tags


def _feature_id(index) -> str:
    if isinstance(index, tuple):
        return "/".join(str(part) for part in index)
    return str(index)


def _polygon_rings(polygon: Polygon) -> list:
    return ([list(polygon.exterior.coords)] +
            [list(interior.coords) for interior in polygon.interiors])


def features_from_geodataframe(gdf: gpd.GeoDataFrame) -> list:
    """Convert osmnx feature rows into Features, keeping input order.

    Only Polygon and MultiPolygon rows are used; a MultiPolygon yields one
    Feature per part.
    """
    features = []
    skipped = 0
    for index, row in gdf.iterrows():
        geom = row.get('geometry')
        tags = _row_tags(row)
        kind = classify_tags(tags)
        if kind is None or geom is None or geom.is_empty:
            skipped += 1
            continue

        base_id = _feature_id(index)
        if isinstance(geom, Polygon):
            features.append(Feature(base_id, kind, _polygon_rings(geom), tags))
        elif isinstance(geom, MultiPolygon):
            for i, part in enumerate(geom.geoms):
                features.append(Feature(f"{base_id}#{i}", kind, _polygon_rings(part), tags))
        else:
            skipped += 1

    logger.info(f"Normalized {len(features)} features ({skipped} rows skipped)")
    return features


def download_features(bbox: BoundingBox) -> list:
    """Download and normalize the OSM features inside ``bbox``."""
    logger.info("Downloading OSM data...")
    bbox_tuple = (bbox.west, bbox.south, bbox.east, bbox.north)
    try:
        gdf = ox.features_from_bbox(bbox=bbox_tuple, tags=COMBINED_TAGS)
    except InsufficientResponseError:
        logger.info("No OSM features in the bounding box")
        return []
    logger.info(f"Combined query returned {len(gdf)} features total")
    return features_from_geodataframe(gdf)
