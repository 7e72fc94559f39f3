"""Configuration constants, paths, block palette and tag taxonomies."""

import os
import pathlib
import logging
from enum import Enum

from dotenv import load_dotenv

# ── Block types ─────────────────────────────────────────────────────────
# Abstract block tags written to the voxel canvas.  Values follow the
# Java-edition identifiers so serializers can map them 1:1.


class Block(str, Enum):
    AIR = "air"
    GRASS_BLOCK = "grass_block"
    DIRT = "dirt"
    STONE = "stone"
    SAND = "sand"
    WATER = "water"
    FARMLAND = "farmland"
    PODZOL = "podzol"
    MUD = "mud"
    PACKED_ICE = "packed_ice"
    SMOOTH_STONE = "smooth_stone"
    GREEN_CONCRETE = "green_concrete"
    # walls
    BRICKS = "bricks"
    STONE_BRICKS = "stone_bricks"
    LIGHT_GRAY_CONCRETE = "light_gray_concrete"
    GRAY_CONCRETE = "gray_concrete"
    WHITE_CONCRETE = "white_concrete"
    BLACK_CONCRETE = "black_concrete"
    ANDESITE = "andesite"
    YELLOW_TERRACOTTA = "yellow_terracotta"
    WHITE_TERRACOTTA = "white_terracotta"
    RED_TERRACOTTA = "red_terracotta"
    SPRUCE_PLANKS = "spruce_planks"
    OAK_PLANKS = "oak_planks"
    IRON_BLOCK = "iron_block"
    GLASS = "glass"
    LIGHT_BLUE_STAINED_GLASS = "light_blue_stained_glass"
    # roofs
    HAY_BLOCK = "hay_block"
    DEEPSLATE_TILES = "deepslate_tiles"
    MOSS_BLOCK = "moss_block"
    # structure
    FOUNDATION = "polished_andesite"


# ── Building taxonomy ───────────────────────────────────────────────────

class WallMaterial(str, Enum):
    BRICK = "brick"
    CONCRETE = "concrete"
    LIGHTWEIGHT_CONCRETE = "lightweight_concrete"
    FIBRE_CEMENT = "fibre_cement"
    TIMBER_FRAMING = "timber_framing"
    WOOD = "wood"
    STONE = "stone"
    METAL = "metal"
    GLASS = "glass"
    SAND_LIME_BRICK = "sand_lime_brick"
    PLASTER = "plaster"
    UNKNOWN = "unknown"


class RoofMaterial(str, Enum):
    ROOF_TILES = "roof_tiles"
    TAR_PAPER = "tar_paper"
    FIBRE_CEMENT = "fibre_cement"
    CONCRETE = "concrete"
    METAL = "metal"
    THATCH = "thatch"
    GLASS = "glass"
    PLASTIC = "plastic"
    SLATE = "slate"
    GRASS = "grass"
    UNKNOWN = "unknown"


class BuildingUse(str, Enum):
    HOUSE = "house"
    SEMIDETACHED_HOUSE = "semidetached_house"
    APARTMENTS = "apartments"
    RESIDENTIAL = "residential"
    COMMERCIAL = "commercial"
    OFFICE = "office"
    HOTEL = "hotel"
    RETAIL = "retail"
    INDUSTRIAL = "industrial"
    WAREHOUSE = "warehouse"
    SCHOOL = "school"
    UNIVERSITY = "university"
    HOSPITAL = "hospital"
    PUBLIC = "public"
    CHURCH = "church"
    FARM = "farm"
    FARM_AUXILIARY = "farm_auxiliary"
    SHED = "shed"
    GARAGE = "garage"
    GENERIC = "generic"
    UNKNOWN = "unknown"


# OSM tag values that are spelled differently from the taxonomy.
WALL_MATERIAL_ALIASES = {
    'bricks': WallMaterial.BRICK,
    'reinforced_concrete': WallMaterial.CONCRETE,
    'cement_block': WallMaterial.LIGHTWEIGHT_CONCRETE,
    'timber': WallMaterial.WOOD,
    'sandstone': WallMaterial.STONE,
    'limestone': WallMaterial.STONE,
    'granite': WallMaterial.STONE,
    'steel': WallMaterial.METAL,
    'mirror': WallMaterial.GLASS,
    'render': WallMaterial.PLASTER,
    'stucco': WallMaterial.PLASTER,
}

ROOF_MATERIAL_ALIASES = {
    'tile': RoofMaterial.ROOF_TILES,
    'tiles': RoofMaterial.ROOF_TILES,
    'clay': RoofMaterial.ROOF_TILES,
    'asphalt': RoofMaterial.TAR_PAPER,
    'asphalt_shingle': RoofMaterial.TAR_PAPER,
    'eternit': RoofMaterial.FIBRE_CEMENT,
    'copper': RoofMaterial.METAL,
    'zinc': RoofMaterial.METAL,
    'steel': RoofMaterial.METAL,
    'stone': RoofMaterial.SLATE,
    'pvc': RoofMaterial.PLASTIC,
}

BUILDING_USE_ALIASES = {
    'yes': BuildingUse.GENERIC,
    'building': BuildingUse.GENERIC,
    'detached': BuildingUse.HOUSE,
    'bungalow': BuildingUse.HOUSE,
    'farmhouse': BuildingUse.HOUSE,
    'terrace': BuildingUse.RESIDENTIAL,
    'dormitory': BuildingUse.RESIDENTIAL,
    'retail': BuildingUse.RETAIL,
    'supermarket': BuildingUse.RETAIL,
    'kiosk': BuildingUse.RETAIL,
    'factory': BuildingUse.INDUSTRIAL,
    'manufacture': BuildingUse.INDUSTRIAL,
    'kindergarten': BuildingUse.SCHOOL,
    'college': BuildingUse.UNIVERSITY,
    'clinic': BuildingUse.HOSPITAL,
    'civic': BuildingUse.PUBLIC,
    'government': BuildingUse.PUBLIC,
    'cathedral': BuildingUse.CHURCH,
    'chapel': BuildingUse.CHURCH,
    'barn': BuildingUse.FARM_AUXILIARY,
    'cowshed': BuildingUse.FARM_AUXILIARY,
    'stable': BuildingUse.FARM_AUXILIARY,
    'greenhouse': BuildingUse.FARM_AUXILIARY,
    'hut': BuildingUse.SHED,
    'garages': BuildingUse.GARAGE,
    'carport': BuildingUse.GARAGE,
}

# ── Typed defaults ──────────────────────────────────────────────────────

DEFAULT_LEVELS = 2
DEFAULT_LEVELS_BY_USE = {
    BuildingUse.APARTMENTS: 4,
    BuildingUse.RESIDENTIAL: 3,
    BuildingUse.COMMERCIAL: 3,
    BuildingUse.OFFICE: 4,
    BuildingUse.HOTEL: 5,
    BuildingUse.RETAIL: 1,
    BuildingUse.INDUSTRIAL: 1,
    BuildingUse.WAREHOUSE: 1,
    BuildingUse.UNIVERSITY: 3,
    BuildingUse.HOSPITAL: 4,
    BuildingUse.CHURCH: 1,
    BuildingUse.FARM_AUXILIARY: 1,
    BuildingUse.SHED: 1,
    BuildingUse.GARAGE: 1,
}

DEFAULT_WALL = WallMaterial.CONCRETE
DEFAULT_WALL_BY_USE = {
    BuildingUse.HOUSE: WallMaterial.BRICK,
    BuildingUse.SEMIDETACHED_HOUSE: WallMaterial.BRICK,
    BuildingUse.FARM: WallMaterial.BRICK,
    BuildingUse.CHURCH: WallMaterial.STONE,
    BuildingUse.INDUSTRIAL: WallMaterial.METAL,
    BuildingUse.WAREHOUSE: WallMaterial.METAL,
    BuildingUse.FARM_AUXILIARY: WallMaterial.WOOD,
    BuildingUse.SHED: WallMaterial.WOOD,
}

DEFAULT_ROOF = RoofMaterial.TAR_PAPER
DEFAULT_ROOF_BY_USE = {
    BuildingUse.HOUSE: RoofMaterial.ROOF_TILES,
    BuildingUse.SEMIDETACHED_HOUSE: RoofMaterial.ROOF_TILES,
    BuildingUse.FARM: RoofMaterial.ROOF_TILES,
    BuildingUse.CHURCH: RoofMaterial.SLATE,
    BuildingUse.INDUSTRIAL: RoofMaterial.METAL,
    BuildingUse.WAREHOUSE: RoofMaterial.METAL,
    BuildingUse.FARM_AUXILIARY: RoofMaterial.METAL,
    BuildingUse.SHED: RoofMaterial.METAL,
}

DEFAULT_USE = BuildingUse.GENERIC

# ── Block palettes ──────────────────────────────────────────────────────

WALL_BLOCKS = {
    WallMaterial.BRICK: Block.BRICKS,
    WallMaterial.CONCRETE: Block.LIGHT_GRAY_CONCRETE,
    WallMaterial.LIGHTWEIGHT_CONCRETE: Block.SMOOTH_STONE,
    WallMaterial.FIBRE_CEMENT: Block.ANDESITE,
    WallMaterial.TIMBER_FRAMING: Block.YELLOW_TERRACOTTA,
    WallMaterial.WOOD: Block.SPRUCE_PLANKS,
    WallMaterial.STONE: Block.STONE_BRICKS,
    WallMaterial.METAL: Block.IRON_BLOCK,
    WallMaterial.GLASS: Block.LIGHT_BLUE_STAINED_GLASS,
    WallMaterial.SAND_LIME_BRICK: Block.WHITE_TERRACOTTA,
    WallMaterial.PLASTER: Block.WHITE_CONCRETE,
    WallMaterial.UNKNOWN: Block.STONE_BRICKS,
}

ROOF_BLOCKS = {
    RoofMaterial.ROOF_TILES: Block.RED_TERRACOTTA,
    RoofMaterial.TAR_PAPER: Block.BLACK_CONCRETE,
    RoofMaterial.FIBRE_CEMENT: Block.GRAY_CONCRETE,
    RoofMaterial.CONCRETE: Block.LIGHT_GRAY_CONCRETE,
    RoofMaterial.METAL: Block.IRON_BLOCK,
    RoofMaterial.THATCH: Block.HAY_BLOCK,
    RoofMaterial.GLASS: Block.GLASS,
    RoofMaterial.PLASTIC: Block.WHITE_CONCRETE,
    RoofMaterial.SLATE: Block.DEEPSLATE_TILES,
    RoofMaterial.GRASS: Block.MOSS_BLOCK,
    RoofMaterial.UNKNOWN: Block.STONE_BRICKS,
}

FLOOR_BLOCK = Block.OAK_PLANKS
WINDOW_BLOCK = Block.GLASS

# ── Vector feature classification ───────────────────────────────────────
# (key, value) pairs; value None matches any value of the key.

WATER_TAGS = {
    ('natural', 'water'), ('natural', 'bay'),
    ('waterway', 'riverbank'), ('waterway', 'dock'), ('waterway', 'canal'),
    ('landuse', 'reservoir'), ('landuse', 'basin'),
    ('water', None),
}

LANDUSE_SURFACES = {
    ('landuse', 'grass'): Block.GRASS_BLOCK,
    ('landuse', 'meadow'): Block.GRASS_BLOCK,
    ('landuse', 'farmland'): Block.FARMLAND,
    ('landuse', 'forest'): Block.PODZOL,
    ('natural', 'wood'): Block.PODZOL,
    ('natural', 'sand'): Block.SAND,
    ('natural', 'beach'): Block.SAND,
    ('natural', 'bare_rock'): Block.STONE,
    ('natural', 'wetland'): Block.MUD,
    ('natural', 'glacier'): Block.PACKED_ICE,
    ('leisure', 'park'): Block.GRASS_BLOCK,
    ('leisure', 'pitch'): Block.GREEN_CONCRETE,
    ('amenity', 'parking'): Block.SMOOTH_STONE,
}

# ── World limits ────────────────────────────────────────────────────────

DEFAULT_GROUND_LEVEL = -62
MAX_Y = 319
TERRAIN_HEIGHT_BUFFER = 15
TILE_SIZE = 16  # canvas arena edge length in cells

# Load environment variables
load_dotenv()

BBR_API_KEY_ENV = "WORLDBUILDER_BBR_API_KEY"
DHM_TOKEN_ENV = "WORLDBUILDER_DHM_TOKEN"

# Configure base paths
BASE_DIR = pathlib.Path(__file__).parent.parent.absolute()
CACHE_DIR = pathlib.Path(os.environ.get("WORLDBUILDER_CACHE_DIR", BASE_DIR / "cache"))
DEM_CACHE_DIR = CACHE_DIR / "dem"

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)
