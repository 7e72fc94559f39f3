import datetime

import pytest
from pyproj import Transformer

from worldbuilder.constants import BuildingUse, RoofMaterial, WallMaterial
from worldbuilder.errors import RemoteFetchError
from worldbuilder.models import BoundingBox
from worldbuilder.registry import (BbrRegistry, RegistryRecord, StaticRegistry,
                                   parse_point_wkt, roof_from_code, use_from_code,
                                   wall_from_code)
from worldbuilder.retry import RetryPolicy

BBOX = BoundingBox(north=55.6765, south=55.6760, east=12.5688, west=12.5680)
TO_UTM32 = Transformer.from_crs("EPSG:4326", "EPSG:25832", always_xy=True)


@pytest.mark.parametrize("code,expected", [
    ("1", WallMaterial.BRICK), ("4", WallMaterial.TIMBER_FRAMING),
    ("12", WallMaterial.PLASTER), ("99", WallMaterial.UNKNOWN),
    ("n/a", WallMaterial.UNKNOWN), (None, None),
])
def test_wall_codes(code, expected) -> None:
    assert wall_from_code(code) == expected


def test_roof_codes() -> None:
    assert roof_from_code("1") == RoofMaterial.TAR_PAPER
    assert roof_from_code("4") == RoofMaterial.ROOF_TILES
    assert roof_from_code("5") == RoofMaterial.ROOF_TILES
    assert roof_from_code("20") == RoofMaterial.GRASS
    assert roof_from_code("13") == RoofMaterial.UNKNOWN


@pytest.mark.parametrize("code,expected", [
    ("120", BuildingUse.HOUSE), ("121", BuildingUse.SEMIDETACHED_HOUSE),
    ("131", BuildingUse.APARTMENTS), ("140", BuildingUse.APARTMENTS),
    ("310", BuildingUse.COMMERCIAL), ("320", BuildingUse.OFFICE),
    ("330", BuildingUse.HOTEL), ("345", BuildingUse.COMMERCIAL),
    ("350", BuildingUse.RETAIL), ("420", BuildingUse.INDUSTRIAL),
    ("430", BuildingUse.WAREHOUSE), ("440", BuildingUse.INDUSTRIAL),
    ("510", BuildingUse.SCHOOL), ("520", BuildingUse.UNIVERSITY),
    ("530", BuildingUse.HOSPITAL), ("540", BuildingUse.PUBLIC),
    ("550", BuildingUse.SCHOOL), ("585", BuildingUse.CHURCH),
    ("590", BuildingUse.PUBLIC), ("920", BuildingUse.FARM_AUXILIARY),
    ("940", BuildingUse.GARAGE), ("122", BuildingUse.UNKNOWN),
    ("385", BuildingUse.UNKNOWN), ("999", BuildingUse.UNKNOWN),
])
def test_use_codes(code, expected) -> None:
    assert use_from_code(code) == expected


def test_parse_point_wkt() -> None:
    assert parse_point_wkt("POINT (723000.5 6175000.25)") == (723000.5, 6175000.25)
    assert parse_point_wkt("POINT(1 2)") == (1.0, 2.0)
    assert parse_point_wkt("LINESTRING (1 2, 3 4)") is None
    assert parse_point_wkt(None) is None


def test_nearest_record_within_radius() -> None:
    lat, lon = 55.67625, 12.5684
    e, n = TO_UTM32.transform(lon, lat)
    near = RegistryRecord(e + 10.0, n, levels=4)
    far = RegistryRecord(e + 200.0, n, levels=9)
    registry = StaticRegistry([far, near])
    assert registry.lookup(lat, lon) is near
    assert StaticRegistry([far]).lookup(lat, lon) is None
    assert StaticRegistry([]).lookup(lat, lon) is None
    assert len(registry) == 2


class _Response:
    def __init__(self, body, status_code=200):
        self.body = body
        self.status_code = status_code
        self.text = str(body)

    def json(self):
        return self.body


class _Session:
    def __init__(self, bodies):
        self.bodies = list(bodies)
        self.calls = []

    def post(self, url, params=None, json=None, timeout=None):
        self.calls.append((url, params, json["query"]))
        return _Response(self.bodies.pop(0))


def _node(e, n, use="120", wall="1", roof="5", levels=2):
    return {
        "byg021BygningensAnvendelse": use,
        "byg032YdervaeggensMateriale": wall,
        "byg033Tagdaekningsmateriale": roof,
        "byg054AntalEtager": levels,
        "byg404Koordinat": {"wkt": f"POINT ({e} {n})"},
    }


def _page(nodes, cursor=None):
    return {"data": {"BBR_Bygning": {
        "pageInfo": {"hasNextPage": cursor is not None, "endCursor": cursor},
        "nodes": nodes,
    }}}


def test_prefetch_follows_pagination() -> None:
    e, n = TO_UTM32.transform(12.5684, 55.67625)
    session = _Session([
        _page([_node(e, n), _node(e + 5, n, levels=None)], cursor="abc"),
        _page([_node(e + 500, n, use="940"), {"byg404Koordinat": None}]),
    ])
    registry = BbrRegistry("key", session=session, sleep=lambda s: None)
    assert registry.prefetch(BBOX) == 3

    assert len(session.calls) == 2
    url, params, first_query = session.calls[0]
    assert params == {"apiKey": "key"}
    assert "after:" not in first_query
    assert 'after: "abc"' in session.calls[1][2]

    record = registry.lookup(55.67625, 12.5684)
    assert record.use == BuildingUse.HOUSE
    assert record.wall_material == WallMaterial.BRICK
    assert record.levels == 2


def test_graphql_errors_are_not_retried() -> None:
    session = _Session([{"errors": [{"message": "bad filter"}]}] * 3)
    registry = BbrRegistry("key", session=session,
                           retry_policy=RetryPolicy(max_attempts=3), sleep=lambda s: None)
    with pytest.raises(RemoteFetchError, match="bad filter"):
        registry.prefetch(BBOX)
    assert len(session.calls) == 1


def test_query_filters() -> None:
    registry = BbrRegistry("key", session=_Session([]))
    query = registry.build_query(BBOX, when=datetime.date(2024, 3, 5))
    assert 'registreringstid: "2024-03-05T00:00:00Z"' in query
    assert 'virkningstid: "2024-03-05T00:00:00Z"' in query
    assert 'status: { eq: "6" }' in query
    assert "crs: 25832" in query
    assert "first: 500" in query
    assert "byg404Koordinat { wkt }" in query
