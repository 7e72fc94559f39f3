"""Generation pipeline: bounding box → populated VoxelCanvas."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Optional

from tqdm import tqdm

from .attributes import AttributeResolver
from .canvas import ClaimRegistry, VoxelCanvas
from .constants import Block
from .coordinates import CoordinateMapper
from .elevation import ElevationProvider
from .errors import OverlapConflict, RemoteFetchError, RunReport, WorldBuilderError
from .geometry import polygon_rings, project_feature
from .models import BuildingAttributes, Feature, Footprint, GenerationOptions
from .osm_data import BUILDING, KIND_PRIORITY, LANDUSE, WATER, download_features, surface_block_for
from .rasterize import FootprintRasterizer
from .registry import BbrRegistry, BuildingRegistry, RegistryRecord
from .terrain import TerrainProcessor, TerrainSurface
from .volume import VolumeGenerator

logger = logging.getLogger(__name__)


def _registry_error(exc: Exception) -> WorldBuilderError:
    if isinstance(exc, WorldBuilderError):
        return exc
    return RemoteFetchError(f"building registry failed: {exc}", retryable=False)


@dataclass
class BuildResult:
    canvas: VoxelCanvas
    surface: TerrainSurface
    report: RunReport
    mapper: CoordinateMapper
    buildings: dict = field(default_factory=dict)


@dataclass
class _Prepared:
    """A feature after rasterization and attribute resolution."""
    index: int
    feature: Feature
    footprint: Footprint
    attributes: Optional[BuildingAttributes] = None


class WorldBuilder:
    """Runs one generation for ``options.bbox``.

    Fatal errors (invalid bounds, missing terrain) propagate; everything a
    single feature can go wrong with is recorded in the run report and the
    feature is skipped.
    """

    def __init__(self, options: GenerationOptions,
                 elevation_provider: Optional[ElevationProvider] = None,
                 registry: Optional[BuildingRegistry] = None,
                 feature_source=None):
        self.options = options
        self.elevation_provider = elevation_provider or ElevationProvider(options)
        self.registry = registry
        self.feature_source = feature_source or download_features

    def build(self, features=None, progress_callback=None) -> BuildResult:
        """Build the canvas; ``features`` defaults to an OSM download."""
        def _progress(pct, msg):
            if progress_callback:
                progress_callback(pct, msg)

        opts = self.options
        t0 = time.perf_counter()
        opts.bbox.validate()
        logger.info(f"Bounding box: N={opts.bbox.north}, S={opts.bbox.south}, "
                    f"E={opts.bbox.east}, W={opts.bbox.west}")
        mapper = CoordinateMapper(opts.bbox, opts.scale, max_cells=opts.max_grid_cells)
        report = RunReport()

        _progress(5, "Fetching elevation...")
        grid = self.elevation_provider.get_grid(mapper, report)
        _progress(20, "Shaping terrain...")
        surface = TerrainProcessor(opts).process(grid)

        registry = self._prepare_registry(report)

        if features is None:
            _progress(30, "Downloading features...")
            features = self.feature_source(opts.bbox)
        features = list(features)
        report.features_seen = len(features)

        _progress(40, "Rasterizing footprints...")
        prepared = self._prepare_all(features, mapper, registry, report)

        _progress(65, "Resolving overlaps...")
        committed = self._commit(prepared, surface, report)

        _progress(75, "Generating structures...")
        canvas = VoxelCanvas(mapper.width, mapper.depth, surface)
        buildings = self._emit(committed, canvas, surface, report)
        canvas.finalize()

        _progress(100, "Done")
        logger.info(f"Build finished in {time.perf_counter() - t0:.1f}s: "
                    f"{report.features_emitted} emitted, "
                    f"{report.features_dropped} dropped")
        return BuildResult(canvas=canvas, surface=surface, report=report,
                           mapper=mapper, buildings=buildings)

    # ── Steps ────────────────────────────────────────────────────────────

    def _prepare_registry(self, report: RunReport) -> Optional[BuildingRegistry]:
        opts = self.options
        if not opts.enrichment_enabled:
            return None
        registry = self.registry
        if registry is None:
            if not opts.registry_credential:
                logger.warning("Enrichment enabled but no registry credential configured")
                return None
            registry = BbrRegistry(opts.registry_credential)
        try:
            registry.prefetch(opts.bbox)
        except Exception as e:
            report.record(_registry_error(e), "building registry")
            return None
        return registry

    @staticmethod
    def _lookup(registry: BuildingRegistry, lat: float, lon: float,
                feature_id: str, report: RunReport) -> Optional[RegistryRecord]:
        """Registry record near (lat, lon); failures fall back to no record."""
        try:
            return registry.lookup(lat, lon)
        except Exception as e:
            report.record(_registry_error(e), f"registry lookup for {feature_id}")
            return None

    def _prepare_one(self, index: int, feature: Feature, mapper: CoordinateMapper,
                     rasterizer: FootprintRasterizer, resolver: AttributeResolver,
                     registry: Optional[BuildingRegistry],
                     report: RunReport) -> Optional[_Prepared]:
        if feature.kind not in KIND_PRIORITY:
            logger.debug(f"Skipping feature {feature.feature_id} of kind {feature.kind}")
            return None
        polygon = project_feature(feature, mapper)
        if polygon is None:
            return None
        footprint = rasterizer.rasterize(feature.kind, polygon_rings(polygon))
        if footprint is None:
            return None

        attributes = None
        if feature.kind == BUILDING:
            record = None
            if registry is not None:
                lat, lon = mapper.to_geo(*footprint.centroid())
                record = self._lookup(registry, lat, lon, feature.feature_id, report)
            attributes = resolver.resolve(feature.tags, record, report)
        return _Prepared(index, feature, footprint, attributes)

    def _prepare_all(self, features: list, mapper: CoordinateMapper,
                     registry: Optional[BuildingRegistry], report: RunReport) -> list:
        rasterizer = FootprintRasterizer(self.options, mapper.width, mapper.depth)
        resolver = AttributeResolver(self.options)
        prepared = []
        with ThreadPoolExecutor(max_workers=max(1, self.options.max_workers)) as executor:
            futures = {
                executor.submit(self._prepare_one, i, feature, mapper, rasterizer,
                                resolver, registry, report): feature
                for i, feature in enumerate(features)
            }
            for future in tqdm(as_completed(futures), total=len(futures), desc="Footprints"):
                feature = futures[future]
                try:
                    result = future.result()
                except WorldBuilderError as e:
                    report.record(e, f"{feature.kind} {feature.feature_id}")
                    result = None
                if result is None:
                    report.count('features_dropped')
                else:
                    prepared.append(result)
        return prepared

    def _commit(self, prepared: list, surface: TerrainSurface, report: RunReport) -> list:
        """Claim cells in priority order, then input order within a priority."""
        claims = ClaimRegistry(self.options.min_footprint_area, surface.water)
        committed = []
        for item in sorted(prepared, key=lambda p: (KIND_PRIORITY[p.feature.kind], p.index)):
            try:
                item.footprint = claims.commit(item.feature.feature_id, item.feature.kind,
                                               item.footprint)
            except OverlapConflict as e:
                report.record(e)
                report.count('features_dropped')
                continue
            committed.append(item)
        return committed

    def _emit(self, committed: list, canvas: VoxelCanvas, surface: TerrainSurface,
              report: RunReport) -> dict:
        buildings = []
        for item in committed:
            kind = item.feature.kind
            if kind == WATER:
                canvas.set_surface(item.footprint.cells, Block.WATER)
                report.count('features_emitted')
            elif kind == LANDUSE:
                block = surface_block_for(item.feature.tags)
                if block is not None:
                    canvas.set_surface(item.footprint.cells, block)
                report.count('features_emitted')
            else:
                buildings.append(item)

        generator = VolumeGenerator(self.options, surface)
        emitted = {}

        def _stamp(item):
            blocks = generator.generate(item.footprint, item.attributes,
                                        item.feature.feature_id)
            canvas.stamp(blocks)

        with ThreadPoolExecutor(max_workers=max(1, self.options.max_workers)) as executor:
            futures = {executor.submit(_stamp, item): item for item in buildings}
            for future in tqdm(as_completed(futures), total=len(futures), desc="Buildings"):
                item = futures[future]
                try:
                    future.result()
                except WorldBuilderError as e:
                    report.record(e, f"building {item.feature.feature_id}")
                    report.count('features_dropped')
                    continue
                emitted[item.feature.feature_id] = item.attributes
                report.count('features_emitted')
        return emitted
