"""WorldBuilder package: voxel world generation from OpenStreetMap data.

Import constants FIRST so .env values and logging are configured before
any other module reads them.
"""

from worldbuilder import constants as _constants  # noqa: F401

from worldbuilder.builder import BuildResult, WorldBuilder
from worldbuilder.models import BoundingBox, GenerationOptions
