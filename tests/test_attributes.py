import pytest

from worldbuilder.attributes import (AttributeResolver, parse_height_levels, parse_levels,
                                     parse_roof_material, parse_use, parse_wall_material)
from worldbuilder.constants import (DEFAULT_LEVELS, DEFAULT_ROOF, DEFAULT_WALL, BuildingUse,
                                    RoofMaterial, WallMaterial)
from worldbuilder.errors import AttributeValidationError, RunReport
from worldbuilder.models import Provenance
from worldbuilder.registry import RegistryRecord

RECORD = RegistryRecord(easting=0.0, northing=0.0, levels=3,
                        wall_material=WallMaterial.WOOD,
                        roof_material=RoofMaterial.THATCH,
                        use=BuildingUse.FARM)


@pytest.fixture
def resolver(options):
    return AttributeResolver(options.with_changes(enrichment_enabled=True))


def test_tag_beats_registry_beats_default(resolver) -> None:
    tagged = resolver.resolve({"building:levels": "5", "building:material": "brick"}, RECORD)
    assert tagged.levels.value == 5
    assert tagged.levels.provenance == Provenance.TAG
    assert tagged.wall_material.value == WallMaterial.BRICK

    untagged = resolver.resolve({}, RECORD)
    assert untagged.levels.value == 3
    assert untagged.levels.provenance == Provenance.REGISTRY
    assert untagged.roof_material.value == RoofMaterial.THATCH

    bare = resolver.resolve({})
    assert bare.levels.value == DEFAULT_LEVELS
    assert bare.wall_material.value == DEFAULT_WALL
    assert bare.roof_material.value == DEFAULT_ROOF
    assert set(bare.provenance().values()) == {Provenance.DEFAULT}


def test_registry_ignored_without_enrichment(options) -> None:
    resolved = AttributeResolver(options).resolve({}, RECORD)
    assert resolved.levels.provenance == Provenance.DEFAULT
    assert resolved.use.value == BuildingUse.GENERIC


@pytest.mark.parametrize("value", ["abc", "0", "-2", "2.5", ""])
def test_malformed_levels_treated_as_absent(resolver, value) -> None:
    report = RunReport()
    resolved = resolver.resolve({"building:levels": value}, RECORD, report)
    assert resolved.levels.value == 3
    assert resolved.levels.provenance == Provenance.REGISTRY
    assert report.errors["attribute_validation"] == 1


def test_integral_float_levels_accepted() -> None:
    assert parse_levels("3.0") == 3
    assert parse_levels(7) == 7
    with pytest.raises(AttributeValidationError):
        parse_levels("three")


def test_levels_from_height_tag(resolver) -> None:
    assert parse_height_levels("12 m") == 4
    assert parse_height_levels("1") == 1
    resolved = resolver.resolve({"height": "9"})
    assert resolved.levels.value == 3
    assert resolved.levels.provenance == Provenance.TAG
    explicit = resolver.resolve({"height": "30", "building:levels": "2"})
    assert explicit.levels.value == 2


def test_material_normalization() -> None:
    assert parse_wall_material("Bricks") == WallMaterial.BRICK
    assert parse_wall_material("render") == WallMaterial.PLASTER
    assert parse_wall_material("timber framing") == WallMaterial.TIMBER_FRAMING
    assert parse_roof_material("roof_tiles") == RoofMaterial.ROOF_TILES
    assert parse_roof_material("copper") == RoofMaterial.METAL
    with pytest.raises(AttributeValidationError):
        parse_wall_material("unobtainium")


def test_unknown_material_tag_falls_back(resolver) -> None:
    report = RunReport()
    resolved = resolver.resolve({"roof:material": "unobtainium"}, RECORD, report)
    assert resolved.roof_material.value == RoofMaterial.THATCH
    assert report.errors["attribute_validation"] == 1


def test_use_tag_and_unspecified_building(resolver) -> None:
    assert parse_use("yes") is None
    assert parse_use("apartments") == BuildingUse.APARTMENTS
    assert parse_use("detached") == BuildingUse.HOUSE

    assert resolver.resolve({"building": "yes"}, RECORD).use.provenance == Provenance.REGISTRY
    church = resolver.resolve({"building": "church"})
    assert church.use.value == BuildingUse.CHURCH
    assert church.wall_material.value == WallMaterial.STONE
    assert church.wall_material.provenance == Provenance.DEFAULT


def test_defaults_follow_use(resolver) -> None:
    apartments = resolver.resolve({"building": "apartments"})
    assert apartments.levels.value == 4
    assert apartments.levels.provenance == Provenance.DEFAULT
    shed = resolver.resolve({}, RegistryRecord(0.0, 0.0, use=BuildingUse.SHED))
    assert shed.levels.value == 1
    assert shed.wall_material.value == WallMaterial.WOOD


def test_unknown_registry_values_are_kept(resolver) -> None:
    record = RegistryRecord(0.0, 0.0, wall_material=WallMaterial.UNKNOWN,
                            use=BuildingUse.UNKNOWN)
    resolved = resolver.resolve({}, record)
    assert resolved.wall_material.value == WallMaterial.UNKNOWN
    assert resolved.wall_material.provenance == Provenance.REGISTRY
    assert resolved.levels.value == DEFAULT_LEVELS
