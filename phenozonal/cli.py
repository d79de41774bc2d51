import sys
from pathlib import Path
from typing import Tuple

import click
from pydantic import ValidationError

from phenozonal.config import config
from phenozonal.core.schemas.aoi import AreaOfInterest
from phenozonal.exceptions import DataUnavailable, PhenoZonalError, RunCancelled
from phenozonal.pipeline import PhenologyPipeline, PipelineConfig
from phenozonal.processing.raster_store import RasterSourceConfig, RasterStore
from phenozonal.processing.zones import ZoneClassifier, describe_thresholds

# Usage / configuration errors
CONFIG_ERROR_EXIT_CODE = 2


def _parse_source(value: str) -> Tuple[str, str]:
    label, sep, directory = value.partition("=")
    if not sep or not label or not directory:
        raise click.BadParameter(
            f"expected SATELLITE=DIRECTORY, got '{value}'", param_hint="--source"
        )
    return label, directory


def _fail(error: Exception, exit_code: int) -> None:
    click.echo(str(error), err=True)
    sys.exit(exit_code)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose):
    """Elevation-zoned vegetation index time series exports."""
    if verbose:
        config.LOG_LEVEL = "DEBUG"


@cli.command()
@click.option("--aoi", "aoi_path", required=True, type=click.Path(exists=True), help="AOI vector file")
@click.option("--elevation", required=True, type=click.Path(exists=True), help="Elevation GeoTIFF")
@click.option(
    "--source",
    "sources",
    multiple=True,
    required=True,
    help="SATELLITE=DIRECTORY of dated GeoTIFFs, e.g. Terra=data/mod13q1",
)
@click.option("--start", "start_date", required=True, type=click.DateTime(["%Y-%m-%d"]))
@click.option(
    "--end",
    "end_date",
    required=True,
    type=click.DateTime(["%Y-%m-%d"]),
    help="End of the window, exclusive: images dated on this day are not used",
)
@click.option("--sample-count", default=1000, show_default=True, type=int)
@click.option("--percentiles", nargs=2, default=(33.0, 67.0), show_default=True, type=float)
@click.option("--target-scale", default=250.0, show_default=True, type=float, help="Zone grid size in meters")
@click.option("--seed", default=42, show_default=True, type=int)
@click.option("--quality-threshold", default=1, show_default=True, type=int, help="Highest QA value kept")
@click.option("--value-band", default="EVI", show_default=True)
@click.option("--qa-band", default="SummaryQA", show_default=True)
@click.option("--scale-factor", default=0.0001, show_default=True, type=float)
@click.option("--output-dir", type=click.Path(file_okay=False), default=None, help="Defaults to OUTPUT_DIR")
@click.option("--workers", "n_workers", default=None, type=int, help="Defaults to N_WORKERS")
@click.option("--max-samples", default=None, type=int, help="Defaults to MAX_SAMPLES")
@click.option("--best-effort/--no-best-effort", default=None, help="Defaults to BEST_EFFORT")
@click.option("--tile-scale", default=None, type=int, help="Defaults to TILE_SCALE")
@click.option("--doy-one-based", is_flag=True, help="Report day of year from 1 (default: 1 January = 0)")
@click.option("--zone-raster/--no-zone-raster", default=True, show_default=True)
def run(
    aoi_path,
    elevation,
    sources,
    start_date,
    end_date,
    sample_count,
    percentiles,
    target_scale,
    seed,
    quality_threshold,
    value_band,
    qa_band,
    scale_factor,
    output_dir,
    n_workers,
    max_samples,
    best_effort,
    tile_scale,
    doy_one_based,
    zone_raster,
):
    """Write points.csv and zones.csv for the AOI."""
    overrides = {
        "output_dir": output_dir,
        "n_workers": n_workers,
        "max_samples": max_samples,
        "best_effort": best_effort,
        "tile_scale": tile_scale,
    }
    try:
        pipeline_config = PipelineConfig(
            start_date=start_date.date(),
            end_date=end_date.date(),
            sample_count=sample_count,
            percentiles=percentiles,
            target_scale=target_scale,
            seed=seed,
            quality_keep_threshold=quality_threshold,
            doy_one_based=doy_one_based,
            write_zone_raster=zone_raster,
            **{k: v for k, v in overrides.items() if v is not None},
        )
        pipeline = PhenologyPipeline(pipeline_config)
        for label, directory in map(_parse_source, sources):
            pipeline.register_source(
                RasterSourceConfig(
                    source_id=label.lower(),
                    directory=directory,
                    value_band=value_band,
                    qa_band=qa_band or None,
                    scale_factor=scale_factor,
                ),
                satellite=label,
            )
        aoi = AreaOfInterest.from_file(aoi_path)
        result = pipeline.run(aoi, elevation)
    except PhenoZonalError as e:
        _fail(e, e.exit_code)
    except (ValidationError, ValueError, FileNotFoundError) as e:
        _fail(e, CONFIG_ERROR_EXIT_CODE)

    if result.points_rows is not None:
        click.echo(f"points: {result.points_rows} rows")
    if result.zones_rows is not None:
        click.echo(f"zones: {result.zones_rows} rows")
    for name, message in result.failures.items():
        click.echo(f"{name} export failed: {message}", err=True)
    if result.zone_raster:
        click.echo(f"zone raster: {result.zone_raster}")
    if result.cancelled:
        sys.exit(RunCancelled.exit_code)
    if result.failures:
        sys.exit(DataUnavailable.exit_code)


@cli.command()
@click.option("--aoi", "aoi_path", required=True, type=click.Path(exists=True))
@click.option("--elevation", required=True, type=click.Path(exists=True))
@click.option("--percentiles", nargs=2, default=(33.0, 67.0), show_default=True, type=float)
@click.option("--target-scale", default=None, type=float, help="Resample zones to this size in meters")
@click.option("--output", type=click.Path(dir_okay=False), default=None, help="Write the zone GeoTIFF here")
def zones(aoi_path, elevation, percentiles, target_scale, output):
    """Print elevation thresholds and optionally write the zone raster."""
    try:
        store = RasterStore()
        aoi = AreaOfInterest.from_file(aoi_path)
        layer = store.load_layer(elevation, aoi, name="elevation")
        zone_map = ZoneClassifier(store).classify(
            layer, aoi, percentiles=percentiles, target_scale=target_scale
        )
        if output:
            store.write_layer(zone_map.layer, Path(output))
    except PhenoZonalError as e:
        _fail(e, e.exit_code)
    except (ValidationError, ValueError, FileNotFoundError) as e:
        _fail(e, CONFIG_ERROR_EXIT_CODE)

    click.echo(describe_thresholds(zone_map.thresholds, zone_map.percentiles))


def main():
    cli()


if __name__ == "__main__":
    main()
