import datetime as dt
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from phenozonal.config import config as global_config
from phenozonal.core.io.data_store import DataStore
from phenozonal.core.io.exporter import POINTS_COLUMNS, ZONES_COLUMNS, TableExporter
from phenozonal.core.io.local_data_store import LocalDataStore
from phenozonal.core.schemas.aoi import AreaOfInterest
from phenozonal.core.schemas.raster import ZoneMap
from phenozonal.core.schemas.records import SamplePoint
from phenozonal.exceptions import DataUnavailable, RunCancelled
from phenozonal.generators.sampler import SpatialSampler
from phenozonal.generators.zonal import ZonalAggregator
from phenozonal.handlers.collection import CollectionFuser
from phenozonal.processing.raster_store import RasterSourceConfig, RasterStore
from phenozonal.processing.utils import CancellationToken
from phenozonal.processing.zones import (
    ZoneClassifier,
    describe_thresholds,
    validate_percentiles,
)


class PipelineConfig(BaseModel):
    """Per-run parameters of the phenology export."""

    start_date: dt.date
    end_date: dt.date = Field(..., description="First day after the window (exclusive)")
    sample_count: int = Field(1000, gt=0)
    percentiles: Tuple[float, ...] = (33.0, 67.0)
    target_scale: float = Field(250.0, gt=0, description="Zone grid size in meters")
    seed: int = 42
    quality_keep_threshold: int = Field(
        1, description="Highest QA value kept (MODIS SummaryQA: 0 good, 1 marginal)"
    )
    n_workers: int = Field(default_factory=lambda: global_config.N_WORKERS, ge=1)
    max_samples: int = Field(default_factory=lambda: global_config.MAX_SAMPLES, gt=0)
    best_effort: bool = Field(default_factory=lambda: global_config.BEST_EFFORT)
    tile_scale: int = Field(default_factory=lambda: global_config.TILE_SCALE, ge=1, le=16)
    output_dir: Path = Field(default_factory=lambda: global_config.OUTPUT_DIR)
    doy_one_based: bool = Field(
        False, description="Report day of year from 1 instead of 0 (1 January = 0)"
    )
    write_zone_raster: bool = True

    points_file: str = "points.csv"
    zones_file: str = "zones.csv"
    zone_raster_file: str = "zones.tif"

    @field_validator("percentiles")
    @classmethod
    def check_percentiles(cls, value):
        return tuple(validate_percentiles(value))

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date >= self.end_date:
            raise ValueError(
                f"start_date {self.start_date} must be before end_date {self.end_date}"
            )
        return self

    @property
    def date_range(self) -> Tuple[dt.date, dt.date]:
        return (self.start_date, self.end_date)

    @property
    def doy_origin(self) -> int:
        return 1 if self.doy_one_based else 0


class PipelineContext(BaseModel):
    """Read-only state shared by both exports of one run."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    config: PipelineConfig
    aoi: AreaOfInterest
    zone_map: ZoneMap
    points: Tuple[SamplePoint, ...]


class PipelineResult(BaseModel):
    points_rows: Optional[int] = None
    zones_rows: Optional[int] = None
    skipped_images: int = 0
    thresholds: List[float] = []
    observations: Dict[str, int] = {}
    failures: Dict[str, str] = {}
    zone_raster: Optional[str] = None
    cancelled: bool = False


class PhenologyPipeline:
    """
    Elevation-zoned vegetation index export.

    Splits the AOI into elevation percentile zones, draws a fixed set of
    sample points, fuses the registered satellite collections into one
    quality-screened series and writes two tables: per-point values
    (`points.csv`) and per-zone statistics (`zones.csv`).
    """

    def __init__(
        self,
        config: PipelineConfig,
        data_store: Optional[DataStore] = None,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self.config = config
        self.data_store = data_store or LocalDataStore()
        self.cancel_token = cancel_token or CancellationToken()
        self.logger = global_config.get_logger(self.__class__.__name__)
        self.store = RasterStore(
            data_store=self.data_store,
            max_samples=config.max_samples,
            best_effort=config.best_effort,
            tile_scale=config.tile_scale,
        )
        self.exporter = TableExporter(self.data_store)
        self._satellites: List[Tuple[str, str]] = []

    def register_source(self, source: RasterSourceConfig, satellite: str) -> None:
        self.store.register_source(source)
        self._satellites.append((source.source_id, satellite))

    def _output_path(self, name: str) -> str:
        return str(Path(self.config.output_dir) / name)

    def prepare(
        self, aoi: AreaOfInterest, elevation_path: str
    ) -> PipelineContext:
        """Compute the zone map and sample points shared by both exports."""
        self.logger.info(f"AOI area (km²): {aoi.area_m2 / 1e6:.2f}")

        elevation = self.store.load_layer(elevation_path, aoi, name="elevation")
        zone_map = ZoneClassifier(self.store).classify(
            elevation,
            aoi,
            percentiles=self.config.percentiles,
            target_scale=self.config.target_scale,
        )
        points = SpatialSampler(seed=self.config.seed).draw_sample(
            aoi, self.config.sample_count
        )
        return PipelineContext(
            config=self.config, aoi=aoi, zone_map=zone_map, points=tuple(points)
        )

    def _fuser(self) -> CollectionFuser:
        return CollectionFuser(
            self.store,
            self._satellites,
            quality_threshold=self.config.quality_keep_threshold,
            doy_origin=self.config.doy_origin,
        )

    def _complete(self, records: Iterable, name: str) -> Iterator:
        """Pass `records` through, raising RunCancelled if the token fired before the last one."""
        if self.cancel_token.cancelled:
            raise RunCancelled(f"{name} export cancelled before it started")
        yield from records
        if self.cancel_token.cancelled:
            raise RunCancelled(f"{name} export cancelled before all images were read")

    def export_points(
        self, context: PipelineContext, fuser: CollectionFuser
    ) -> int:
        sampler = SpatialSampler(seed=context.config.seed)
        records = sampler.extract(
            context.points,
            fuser.merge(context.aoi, context.config.date_range),
            zone_map=context.zone_map,
            n_workers=context.config.n_workers,
            cancel_token=self.cancel_token,
        )
        return self.exporter.write_csv(
            self._complete(records, "points"),
            self._output_path(context.config.points_file),
            POINTS_COLUMNS,
            sort_by=["date", "satellite", "point_id"],
        )

    def export_zones(
        self, context: PipelineContext, fuser: CollectionFuser
    ) -> int:
        aggregator = ZonalAggregator(context.zone_map, store=self.store)
        records = aggregator.aggregate(
            fuser.merge(context.aoi, context.config.date_range),
            n_workers=context.config.n_workers,
            cancel_token=self.cancel_token,
        )
        return self.exporter.write_csv(
            self._complete(records, "zones"),
            self._output_path(context.config.zones_file),
            ZONES_COLUMNS,
            sort_by=["date", "satellite", "zone_id"],
        )

    def run(self, aoi: AreaOfInterest, elevation_path: str) -> PipelineResult:
        """
        Run both exports.

        A sub-export whose collections hold no data in the window is reported
        in `failures` and the other one still runs. If both fail the first
        error is raised. A cancelled export writes no table: it is recorded in
        `failures`, `cancelled` is set and the remaining exports are skipped.
        """
        if not self._satellites:
            raise ValueError("No raster source registered")

        context = self.prepare(aoi, elevation_path)
        result = PipelineResult(thresholds=context.zone_map.thresholds)

        if self.config.write_zone_raster:
            result.zone_raster = self._output_path(self.config.zone_raster_file)
            self.store.write_layer(context.zone_map.layer, result.zone_raster)

        errors: List[DataUnavailable] = []
        summary_fuser = None
        for name, export in (
            ("points", self.export_points),
            ("zones", self.export_zones),
        ):
            fuser = self._fuser()
            try:
                rows = export(context, fuser)
            except RunCancelled as e:
                self.logger.warning(str(e))
                result.failures[name] = str(e)
                result.cancelled = True
                break
            except DataUnavailable as e:
                self.logger.error(f"{name} export failed: {e}")
                result.failures[name] = str(e)
                errors.append(e)
                continue
            setattr(result, f"{name}_rows", rows)
            summary_fuser = summary_fuser or fuser
            result.skipped_images = max(result.skipped_images, fuser.skipped)

        if len(errors) == 2:
            raise errors[0]

        if summary_fuser is not None and not result.cancelled:
            result.observations = self._log_summary(context, summary_fuser)
        return result

    def _log_summary(
        self, context: PipelineContext, fuser: CollectionFuser
    ) -> Dict[str, int]:
        summary = fuser.observation_summary()
        totals = {
            satellite: int(summary[satellite].sum()) if not summary.empty else 0
            for _, satellite in self._satellites
        }
        totals["combined"] = sum(totals.values())

        self.logger.info("=== PHENOLOGY DATA SUMMARY ===")
        for label, count in totals.items():
            self.logger.info(f"{label} observations: {count}")
        self.logger.info(
            "Elevation bands: "
            + describe_thresholds(context.zone_map.thresholds, context.zone_map.percentiles)
        )
        if not summary.empty:
            self.logger.info("Annual data summary:\n" + summary.to_string(index=False))
        if fuser.skipped:
            self.logger.warning(f"Skipped images: {fuser.skipped}")
        return totals
