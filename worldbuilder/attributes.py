"""Building attribute resolution: tags, registry and typed defaults."""

import logging
import re
from typing import Optional

from .constants import (BUILDING_USE_ALIASES, DEFAULT_LEVELS, DEFAULT_LEVELS_BY_USE,
                        DEFAULT_ROOF, DEFAULT_ROOF_BY_USE, DEFAULT_USE, DEFAULT_WALL,
                        DEFAULT_WALL_BY_USE, ROOF_MATERIAL_ALIASES, WALL_MATERIAL_ALIASES,
                        BuildingUse, RoofMaterial, WallMaterial)
from .errors import AttributeValidationError, RunReport
from .models import BuildingAttributes, GenerationOptions, Provenance, Sourced
from .registry import RegistryRecord

logger = logging.getLogger(__name__)

METRES_PER_LEVEL = 3.0
MAX_LEVELS = 200

_HEIGHT_RE = re.compile(r"^\s*([0-9]+(?:\.[0-9]+)?)\s*(m)?\s*$")

# Building values that say "this is a building" and nothing about its use
_UNSPECIFIED_USE = {'yes', 'building'}


# ── Tag parsing ─────────────────────────────────────────────────────────

def _normalize(value: str) -> str:
    return str(value).strip().lower().replace(' ', '_').replace('-', '_')


def parse_levels(value) -> int:
    """Positive integer level count; integral floats like "3.0" are accepted."""
    try:
        number = float(str(value).strip())
    except ValueError:
        raise AttributeValidationError('levels', value, "not a number")
    if not number.is_integer():
        raise AttributeValidationError('levels', value, "not an integer")
    levels = int(number)
    if levels < 1 or levels > MAX_LEVELS:
        raise AttributeValidationError('levels', value, f"outside 1..{MAX_LEVELS}")
    return levels


def parse_height_levels(value) -> int:
    """Level count estimated from a ``height`` tag in metres."""
    match = _HEIGHT_RE.match(str(value))
    if match is None:
        raise AttributeValidationError('height', value, "not a height in metres")
    height = float(match.group(1))
    if height <= 0:
        raise AttributeValidationError('height', value, "not positive")
    return min(MAX_LEVELS, max(1, round(height / METRES_PER_LEVEL)))


def _parse_enum(field_name, value, enum_cls, aliases):
    key = _normalize(value)
    if key in aliases:
        return aliases[key]
    try:
        return enum_cls(key)
    except ValueError:
        raise AttributeValidationError(field_name, value, "not a known value")


def parse_wall_material(value) -> WallMaterial:
    return _parse_enum('wall_material', value, WallMaterial, WALL_MATERIAL_ALIASES)


def parse_roof_material(value) -> RoofMaterial:
    return _parse_enum('roof_material', value, RoofMaterial, ROOF_MATERIAL_ALIASES)


def parse_use(value) -> Optional[BuildingUse]:
    """Building use from the ``building`` tag; None when it is unspecified."""
    if _normalize(value) in _UNSPECIFIED_USE:
        return None
    use = _parse_enum('use', value, BuildingUse, BUILDING_USE_ALIASES)
    return None if use == BuildingUse.GENERIC else use


class AttributeResolver:
    """Merges tag values, registry values and defaults per field.

    Precedence: a well-formed tag wins, then the registry record (only when
    enrichment is enabled), then the default for the building's use.
    Malformed tags are counted in the run report and treated as absent.
    """

    def __init__(self, options: GenerationOptions):
        self.options = options

    def _tag(self, parser, tags: dict, keys, report: Optional[RunReport]):
        for key in keys:
            if key not in tags or tags[key] is None:
                continue
            try:
                value = parser(tags[key])
            except AttributeValidationError as e:
                if report is not None:
                    report.record(e, f"tag {key}")
                else:
                    logger.debug(f"Ignoring tag {key}: {e}")
                continue
            if value is not None:
                return value
        return None

    @staticmethod
    def _pick(tag_value, registry_value, default) -> Sourced:
        if tag_value is not None:
            return Sourced(tag_value, Provenance.TAG)
        if registry_value is not None:
            return Sourced(registry_value, Provenance.REGISTRY)
        return Sourced(default, Provenance.DEFAULT)

    def resolve(self, tags: dict, record: Optional[RegistryRecord] = None,
                report: Optional[RunReport] = None) -> BuildingAttributes:
        if not self.options.enrichment_enabled:
            record = None

        tag_use = self._tag(parse_use, tags, ('building', 'building:part'), report)
        tag_levels = self._tag(parse_levels, tags, ('building:levels',), report)
        if tag_levels is None:
            tag_levels = self._tag(parse_height_levels, tags, ('height',), report)
        tag_wall = self._tag(parse_wall_material, tags,
                             ('building:material', 'building:facade:material'), report)
        tag_roof = self._tag(parse_roof_material, tags, ('roof:material',), report)

        use = self._pick(tag_use, record.use if record else None, DEFAULT_USE)
        return BuildingAttributes(
            levels=self._pick(tag_levels, record.levels if record else None,
                              DEFAULT_LEVELS_BY_USE.get(use.value, DEFAULT_LEVELS)),
            wall_material=self._pick(tag_wall, record.wall_material if record else None,
                                     DEFAULT_WALL_BY_USE.get(use.value, DEFAULT_WALL)),
            roof_material=self._pick(tag_roof, record.roof_material if record else None,
                                     DEFAULT_ROOF_BY_USE.get(use.value, DEFAULT_ROOF)),
            use=use,
        )
