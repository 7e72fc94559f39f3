import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.geometry import MultiPolygon, Point, Polygon

from worldbuilder import osm_data
from worldbuilder.constants import Block
from worldbuilder.models import BoundingBox


def test_classify_tags() -> None:
    assert osm_data.classify_tags({"building": "yes"}) == "building"
    assert osm_data.classify_tags({"building:part": "roof"}) == "building"
    assert osm_data.classify_tags({"building": "no", "landuse": "grass"}) == "landuse"
    assert osm_data.classify_tags({"natural": "water"}) == "water"
    assert osm_data.classify_tags({"water": "pond"}) == "water"
    assert osm_data.classify_tags({"landuse": "reservoir"}) == "water"
    assert osm_data.classify_tags({"leisure": "park"}) == "landuse"
    assert osm_data.classify_tags({"highway": "primary"}) is None


def test_surface_block_for() -> None:
    assert osm_data.surface_block_for({"natural": "beach"}) == Block.SAND
    assert osm_data.surface_block_for({"landuse": "farmland"}) == Block.FARMLAND
    assert osm_data.surface_block_for({"highway": "primary"}) is None


def _gdf() -> gpd.GeoDataFrame:
    square = Polygon([(12.0, 55.0), (12.001, 55.0), (12.001, 55.001), (12.0, 55.001)])
    holed = Polygon(
        [(12.0, 55.0), (12.01, 55.0), (12.01, 55.01), (12.0, 55.01)],
        [[(12.002, 55.002), (12.004, 55.002), (12.004, 55.004), (12.002, 55.004)]],
    )
    multi = MultiPolygon([square, Polygon([(12.1, 55.1), (12.2, 55.1), (12.2, 55.2)])])
    index = pd.MultiIndex.from_tuples(
        [("way", 1), ("relation", 2), ("way", 3), ("node", 4), ("way", 5)],
        names=["element", "id"])
    return gpd.GeoDataFrame({
        "building": ["house", None, None, None, "yes"],
        "natural": [None, "water", None, "tree", None],
        "landuse": [None, None, "grass", None, None],
        "building:levels": ["3", None, None, None, np.nan],
        "geometry": [square, holed, multi, Point(12.0, 55.0), square],
    }, index=index, crs="EPSG:4326")


def test_features_from_geodataframe() -> None:
    features = osm_data.features_from_geodataframe(_gdf())
    assert [f.feature_id for f in features] == [
        "way/1", "relation/2", "way/3#0", "way/3#1", "way/5"]
    assert [f.kind for f in features] == [
        "building", "water", "landuse", "landuse", "building"]

    house = features[0]
    assert house.tags == {"building": "house", "building:levels": "3"}
    assert len(house.rings) == 1
    assert house.rings[0][0] == (12.0, 55.0)

    lake = features[1]
    assert len(lake.rings) == 2
    assert features[4].tags == {"building": "yes"}


def test_download_features_uses_combined_query(monkeypatch) -> None:
    calls = []

    def fake_features_from_bbox(bbox, tags):
        calls.append((bbox, tags))
        return _gdf()

    monkeypatch.setattr(osm_data.ox, "features_from_bbox", fake_features_from_bbox)
    bbox = BoundingBox(north=55.2, south=55.0, east=12.2, west=12.0)
    features = osm_data.download_features(bbox)
    assert len(features) == 5
    assert calls[0][0] == (12.0, 55.0, 12.2, 55.2)
    assert calls[0][1] is osm_data.COMBINED_TAGS
