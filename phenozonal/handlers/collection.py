import heapq
from collections import Counter
from typing import Iterator, List, Optional, Sequence, Tuple

import pandas as pd

from phenozonal.config import config as global_config
from phenozonal.core.schemas.aoi import AreaOfInterest
from phenozonal.core.schemas.raster import RasterImage, TimestampedRaster
from phenozonal.exceptions import DataUnavailable, ScaleFactorMissing
from phenozonal.processing.quality import QualityMask
from phenozonal.processing.raster_store import DateRange, RasterSourceConfig, RasterStore

# 16-day composites per year
PERIODS_PER_YEAR = 23


class CollectionFuser:
    """
    Merges several dated raster sources into one time-ordered series.

    Each source is given as ``(source_id, satellite_label)``; the ids must be
    registered on the RasterStore. The merged series is ordered by
    (date, satellite label) and pulled lazily, one image at a time per source.

    Attributes:
        skipped: Images dropped because a declared band was missing.
        observations: Delivered rasters per (satellite, year).
        unavailable: Sources that had no image in the query window.
    """

    def __init__(
        self,
        store: RasterStore,
        sources: Sequence[Tuple[str, str]],
        quality_mask: Optional[QualityMask] = None,
        quality_threshold: float = 1,
        doy_origin: int = 0,
    ):
        if not sources:
            raise ValueError("At least one (source_id, satellite) pair is required")
        self.store = store
        self.sources = list(sources)
        self.quality_mask = quality_mask or QualityMask.from_threshold(quality_threshold)
        self.doy_origin = doy_origin
        self.logger = global_config.get_logger(self.__class__.__name__)
        self._reset()

    def _reset(self):
        self.skipped = 0
        self.observations: Counter = Counter()
        self.unavailable: List[str] = []

    def merge(
        self, aoi: AreaOfInterest, date_range: Optional[DateRange] = None
    ) -> Iterator[TimestampedRaster]:
        """
        Lazily yield the fused series.

        Raises:
            DataUnavailable: If none of the sources has an image in the window.
        """
        self._reset()
        streams = [
            self._stream(source_id, satellite, aoi, date_range)
            for source_id, satellite in self.sources
        ]
        yield from heapq.merge(*streams, key=lambda raster: raster.sort_key)

        if len(self.unavailable) == len(self.sources):
            raise DataUnavailable(
                f"None of the sources {[s for s, _ in self.sources]} has data in the window",
                parameter="date_range",
                value=date_range,
            )
        if self.skipped:
            self.logger.warning(f"Skipped {self.skipped} image(s) with missing bands")

    def _stream(
        self,
        source_id: str,
        satellite: str,
        aoi: AreaOfInterest,
        date_range: Optional[DateRange],
    ) -> Iterator[TimestampedRaster]:
        source = self.store.get_source(source_id)
        try:
            for image in self.store.load(source_id, aoi, date_range):
                try:
                    raster = self._prepare(image, source, satellite)
                except ScaleFactorMissing as e:
                    self.skipped += 1
                    self.logger.warning(f"Skipping {image.path}: {e}")
                    continue
                self.observations[(satellite, raster.year)] += 1
                yield raster
        except DataUnavailable as e:
            self.unavailable.append(source_id)
            self.logger.warning(str(e))

    def _prepare(
        self, image: RasterImage, source: RasterSourceConfig, satellite: str
    ) -> TimestampedRaster:
        if image.missing_bands:
            raise ScaleFactorMissing(
                f"Image lacks declared band(s) {list(image.missing_bands)}",
                parameter="band",
                value=image.missing_bands[0],
            )
        value = image.bands[source.value_band]
        layer = value.with_data(
            value.data.astype("float64") * source.scale_factor, name=source.value_band
        )
        if source.qa_band:
            layer = self.quality_mask.apply(layer, image.bands[source.qa_band])

        return TimestampedRaster(
            layer=layer,
            date=image.date,
            satellite=satellite,
            source_id=source.source_id,
            doy_origin=self.doy_origin,
        )

    def observation_summary(self) -> pd.DataFrame:
        """
        Per-year observation counts for each satellite plus the combined count
        and data density (combined observations / 23 sixteen-day periods).
        """
        satellites = [satellite for _, satellite in self.sources]
        if not self.observations:
            return pd.DataFrame(columns=["year", *satellites, "combined", "data_density"])

        df = (
            pd.Series(self.observations)
            .rename_axis(["satellite", "year"])
            .unstack("satellite", fill_value=0)
            .reindex(columns=satellites, fill_value=0)
            .sort_index()
        )
        df["combined"] = df[satellites].sum(axis=1)
        df["data_density"] = (df["combined"] / PERIODS_PER_YEAR).round(2)
        return df.reset_index()
