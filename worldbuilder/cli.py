"""Click CLI commands for WorldBuilder."""

import logging

import click

from .builder import WorldBuilder
from .errors import WorldBuilderError
from .models import BoundingBox, GenerationOptions

logger = logging.getLogger(__name__)


@click.group()
def cli():
    """WorldBuilder CLI for generating voxel worlds from OpenStreetMap data."""
    pass


@cli.command()
@click.argument('north', type=float)
@click.argument('south', type=float)
@click.argument('east', type=float)
@click.argument('west', type=float)
@click.option('--scale', '-s', default=1.0, help='Blocks per metre')
@click.option('--ground-level', default=None, type=int, help='Y of the lowest terrain surface')
@click.option('--terrain/--no-terrain', default=False, help='Use real elevation data')
@click.option('--interior/--no-interior', default=True, help='Hollow buildings with floors')
@click.option('--roof/--no-roof', default=True, help='Generate roofs')
@click.option('--roof-style', type=click.Choice(['flat', 'pitched']), default='flat')
@click.option('--enrich/--no-enrich', default=False,
              help='Enrich buildings from the building registry')
@click.option('--flood-fill-timeout', default=20.0, help='Seconds per flood fill')
@click.option('--workers', default=4, help='Feature worker threads')
@click.option('--top', default=15, help='Block types to list in the histogram')
def build_bbox(north: float, south: float, east: float, west: float, scale: float,
               ground_level, terrain: bool, interior: bool, roof: bool, roof_style: str,
               enrich: bool, flood_fill_timeout: float, workers: int, top: int):
    """Generate a voxel canvas for a bounding box and print its summary."""
    overrides = dict(scale=scale, terrain_enabled=terrain, interior_enabled=interior,
                     roof_enabled=roof, roof_style=roof_style, enrichment_enabled=enrich,
                     flood_fill_timeout_s=flood_fill_timeout, max_workers=workers)
    if ground_level is not None:
        overrides['ground_level'] = ground_level

    try:
        bbox = BoundingBox(north=north, south=south, east=east, west=west)
        options = GenerationOptions.from_env(bbox, **overrides)
        result = WorldBuilder(options).build(progress_callback=_progress)
    except (WorldBuilderError, ValueError) as e:
        logger.error(f"Error building world: {e}")
        raise click.ClickException(str(e))

    summary = result.report.summary()
    click.echo(f"\n{'='*50}")
    click.echo(f"Grid: {result.mapper.width}x{result.mapper.depth} cells "
               f"(elevation: {summary['elevation_source']})")
    click.echo(f"Features: {summary['features_seen']} seen, "
               f"{summary['features_emitted']} emitted, "
               f"{summary['features_dropped']} dropped")
    if summary['errors']:
        click.echo("Recovered errors:")
        for kind, count in sorted(summary['errors'].items()):
            click.echo(f"  {kind}: {count}")
    click.echo("Blocks:")
    for block, count in result.canvas.histogram().most_common(top):
        click.echo(f"  {block.value:<28} {count}")
    click.echo(f"{'='*50}")


def _progress(pct, msg):
    click.echo(f"[{pct:3.0f}%] {msg}")
