import datetime as dt
import re
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import rasterio
import rasterio.windows
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.dataclasses import dataclass
from rasterio.features import geometry_mask
from rasterio.mask import mask

from phenozonal.config import config
from phenozonal.core.io.data_store import DataStore
from phenozonal.core.io.local_data_store import LocalDataStore
from phenozonal.core.schemas.aoi import AreaOfInterest
from phenozonal.core.schemas.raster import RasterImage, RasterLayer
from phenozonal.exceptions import DataUnavailable, GridMismatch, ResourceExceeded
from phenozonal.processing.geo import geometry_to_shapes, scale_to_crs_units
from phenozonal.processing.statistics import RunningStats

# ISO date or the MODIS "AYYYYDDD" acquisition token
DEFAULT_DATE_PATTERN = r"(?:(?P<date>\d{4}-\d{2}-\d{2})|A(?P<year>\d{4})(?P<doy>\d{3}))"

REDUCERS = ("mean", "stdDev", "count", "min", "max", "percentile")

DateRange = Tuple[Optional[dt.date], Optional[dt.date]]


class RasterSourceConfig(BaseModel):
    """Describes one directory of dated multi-band GeoTIFFs."""

    source_id: str = Field(..., min_length=1)
    directory: str = Field(..., description="Directory inside the data store")
    value_band: str = Field("EVI", description="Band holding the index values")
    qa_band: Optional[str] = Field("SummaryQA", description="Pixel reliability band")
    scale_factor: float = Field(0.0001, description="Linear rescale applied to values")
    bands: Optional[Dict[str, int]] = Field(
        None,
        description="Explicit band name -> 1-based index mapping. "
        "When unset, bands are located by their GeoTIFF descriptions.",
    )
    file_pattern: str = "*.tif"
    date_pattern: str = DEFAULT_DATE_PATTERN

    @field_validator("date_pattern")
    @classmethod
    def validate_date_pattern(cls, value: str) -> str:
        groups = re.compile(value).groupindex
        if "date" not in groups and not {"year", "doy"} <= set(groups):
            raise ValueError(
                "date_pattern must define a 'date' group or 'year' and 'doy' groups"
            )
        return value

    @property
    def requested_bands(self) -> List[str]:
        return [b for b in (self.value_band, self.qa_band) if b]

    def parse_date(self, filename: str) -> Optional[dt.date]:
        """Observation date encoded in a file name, or None."""
        match = re.search(self.date_pattern, filename)
        if not match:
            return None
        found = match.groupdict()
        if found.get("date"):
            return dt.date.fromisoformat(found["date"])
        if found.get("year") and found.get("doy"):
            return dt.date(int(found["year"]), 1, 1) + dt.timedelta(
                days=int(found["doy"]) - 1
            )
        return None


@dataclass(config=ConfigDict(arbitrary_types_allowed=True))
class RasterStore:
    """
    Reads dated raster collections and single rasters through a DataStore,
    clips them to an area of interest and runs regional reductions.

    Collections are streamed: `load` opens one file at a time and only reads
    the window covering the AOI.
    """

    data_store: Optional[DataStore] = None
    max_samples: Optional[int] = None
    best_effort: Optional[bool] = None
    tile_scale: Optional[int] = None

    def __post_init__(self):
        self.data_store = self.data_store or LocalDataStore()
        self.logger = config.get_logger(self.__class__.__name__)
        if self.max_samples is None:
            self.max_samples = config.MAX_SAMPLES
        if self.best_effort is None:
            self.best_effort = config.BEST_EFFORT
        if self.tile_scale is None:
            self.tile_scale = config.TILE_SCALE
        self._sources: Dict[str, RasterSourceConfig] = {}

    def register_source(self, source: RasterSourceConfig) -> None:
        if source.source_id in self._sources:
            self.logger.warning(f"Replacing registered source '{source.source_id}'")
        self._sources[source.source_id] = source

    def get_source(self, source_id: str) -> RasterSourceConfig:
        try:
            return self._sources[source_id]
        except KeyError:
            raise ValueError(
                f"Unknown source '{source_id}'. Registered: {sorted(self._sources)}"
            ) from None

    @property
    def sources(self) -> List[str]:
        return list(self._sources)

    @contextmanager
    def open_dataset(self, path: Union[str, Path]):
        """Context manager yielding an open rasterio dataset for `path`."""
        if isinstance(self.data_store, LocalDataStore):
            with rasterio.open(self.data_store.resolve_path(path)) as src:
                yield src
        else:
            with self.data_store.open(str(path), "rb") as f:
                with rasterio.MemoryFile(f.read()) as memfile:
                    with memfile.open() as src:
                        yield src

    def list_images(
        self, source_id: str, date_range: Optional[DateRange] = None
    ) -> List[Tuple[dt.date, str]]:
        """
        Dated files of a source, oldest first. `date_range` is `(start, end)`
        with `start` included and `end` excluded; either bound may be None.
        """
        source = self.get_source(source_id)
        start, end = date_range or (None, None)

        images = []
        for path in self.data_store.glob(source.directory, source.file_pattern):
            name = Path(path).name
            date = source.parse_date(name)
            if date is None:
                self.logger.debug(f"Ignoring {name}: no date in file name")
                continue
            if (start and date < start) or (end and date >= end):
                continue
            images.append((date, path))

        return sorted(images)

    def load(
        self,
        source_id: str,
        aoi: AreaOfInterest,
        date_range: Optional[DateRange] = None,
    ) -> Iterator[RasterImage]:
        """
        Lazily yield the source images that intersect `aoi` within `date_range`,
        in date order, each clipped to the AOI window.

        Raises:
            DataUnavailable: When iteration finds no intersecting image.
        """
        source = self.get_source(source_id)
        found = 0

        for date, path in self.list_images(source_id, date_range):
            image = self._read_image(source, date, path, aoi)
            if image is None:
                self.logger.debug(f"{path} does not intersect the AOI, skipping")
                continue
            found += 1
            yield image

        if found == 0:
            window = (
                f"[{date_range[0]}, {date_range[1]})" if date_range else "any date"
            )
            raise DataUnavailable(
                f"No '{source_id}' image intersects the AOI for {window}",
                parameter="source_id",
                value=source_id,
            )

    def _resolve_bands(self, src, source: RasterSourceConfig) -> Dict[str, int]:
        if source.bands:
            available = {
                name: index
                for name, index in source.bands.items()
                if 1 <= index <= src.count
            }
        else:
            available = {
                desc: i + 1 for i, desc in enumerate(src.descriptions) if desc
            }
        return {b: available[b] for b in source.requested_bands if b in available}

    def _read_image(
        self, source: RasterSourceConfig, date: dt.date, path: str, aoi: AreaOfInterest
    ) -> Optional[RasterImage]:
        with self.open_dataset(path) as src:
            band_indexes = self._resolve_bands(src, source)
            indexes = list(band_indexes.values()) or [1]
            clipped = self._read_window(src, aoi, indexes)
            if clipped is None:
                return None
            data, transform = clipped
            crs = src.crs.to_string()
            nodata = src.nodata

        bands = {
            name: _masked_to_layer(data[i], transform, crs, nodata, name)
            for i, name in enumerate(band_indexes)
        }
        missing = tuple(b for b in source.requested_bands if b not in band_indexes)
        return RasterImage(
            source_id=source.source_id,
            date=date,
            path=str(path),
            bands=bands,
            missing_bands=missing,
        )

    def _read_window(self, src, aoi: AreaOfInterest, indexes: List[int]):
        if src.crs is None:
            raise ValueError(f"Raster {src.name} has no coordinate reference system")
        geometry = aoi.to_crs(src.crs.to_string()).geometry
        if geometry.is_empty:
            return None
        try:
            return mask(
                dataset=src,
                shapes=geometry_to_shapes(geometry),
                crop=True,
                all_touched=False,
                filled=False,
                indexes=indexes,
            )
        except ValueError as e:
            if "do not overlap" in str(e):
                return None
            raise

    def load_layer(
        self,
        path: Union[str, Path],
        aoi: Optional[AreaOfInterest] = None,
        band: int = 1,
        name: Optional[str] = None,
    ) -> RasterLayer:
        """Read one band of a single raster, cropped to `aoi` when given."""
        with self.open_dataset(path) as src:
            if not 1 <= band <= src.count:
                raise ValueError(f"Band {band} out of range for {path} ({src.count} bands)")
            name = name or src.descriptions[band - 1] or Path(str(path)).stem
            if aoi is None:
                data, transform = src.read(band, masked=True), src.transform
            else:
                clipped = self._read_window(src, aoi, [band])
                if clipped is None:
                    raise DataUnavailable(
                        f"Raster {path} does not intersect the AOI", parameter="aoi"
                    )
                data, transform = clipped[0][0], clipped[1]
            crs = src.crs.to_string() if src.crs else None
            nodata = src.nodata

        if crs is None:
            raise ValueError(f"Raster {path} has no coordinate reference system")
        return _masked_to_layer(data, transform, crs, nodata, name)

    def coverage_mask(self, layer: RasterLayer, aoi: AreaOfInterest) -> np.ndarray:
        """Boolean grid, True where the cell centre lies inside `aoi`."""
        geometry = aoi.to_crs(layer.crs).geometry
        if geometry.is_empty:
            return np.zeros(layer.shape, dtype=bool)
        return geometry_mask(
            geometry_to_shapes(geometry),
            out_shape=layer.shape,
            transform=layer.transform,
            invert=True,
        )

    def clip(self, layer: RasterLayer, aoi: AreaOfInterest) -> RasterLayer:
        """Crop `layer` to the AOI window and mask the cells outside the polygon."""
        inside = self.coverage_mask(layer, aoi)
        rows = np.flatnonzero(inside.any(axis=1))
        cols = np.flatnonzero(inside.any(axis=0))
        if rows.size == 0:
            return layer.with_mask(inside)

        window = rasterio.windows.Window(
            col_off=int(cols[0]),
            row_off=int(rows[0]),
            width=int(cols[-1] - cols[0] + 1),
            height=int(rows[-1] - rows[0] + 1),
        )
        row_slice, col_slice = window.toslices()
        return RasterLayer(
            data=layer.data[row_slice, col_slice],
            transform=rasterio.windows.transform(window, layer.transform),
            crs=layer.crs,
            nodata=layer.nodata,
            mask=(layer.valid_mask & inside)[row_slice, col_slice],
            name=layer.name,
        )

    def _stride(self, layer: RasterLayer, scale: Optional[float]) -> int:
        if scale is None:
            return 1
        native = min(layer.resolution)
        return max(1, int(round(scale_to_crs_units(scale, layer.crs) / native)))

    def reduce_region(
        self,
        layer: RasterLayer,
        aoi: Optional[AreaOfInterest] = None,
        reducers: Union[str, Sequence[str]] = ("mean",),
        scale: Optional[float] = None,
        max_samples: Optional[int] = None,
        best_effort: Optional[bool] = None,
        tile_scale: Optional[int] = None,
        percentiles: Sequence[float] = (33, 67),
        group_by: Optional[RasterLayer] = None,
    ) -> Dict[str, Any]:
        """
        Reduce the unmasked pixels of `layer` inside `aoi` to summary statistics.

        Args:
            layer: Layer to reduce.
            aoi: Region to reduce over. The whole layer when None.
            reducers: Any of "mean", "stdDev", "count", "min", "max", "percentile".
            scale: Nominal sampling scale in meters. Coarser than the native
                resolution decimates the grid.
            max_samples: Pixel cap; defaults to the store setting.
            best_effort: Coarsen the scale instead of failing when the cap is hit.
            tile_scale: Number of row tiles the reduction is split into.
            percentiles: Percentiles reported by the "percentile" reducer.
            group_by: Categorical layer on the same grid. Ids <= 0 are ignored.

        Returns:
            ``{"<layer>_<stat>": value}`` or, with `group_by`,
            ``{"groups": [{"group": id, "<stat>": value, ...}, ...]}`` for the
            non-empty groups in ascending id order. Percentile keys are
            ``p<q>`` (``elevation_p33``).

        Raises:
            ResourceExceeded: If the pixel count exceeds `max_samples` and
                `best_effort` is off.
            GridMismatch: If `group_by` is not on the layer's grid.
        """
        reducers = [reducers] if isinstance(reducers, str) else list(reducers)
        unknown = set(reducers) - set(REDUCERS)
        if unknown:
            raise ValueError(f"Unknown reducer(s) {sorted(unknown)}. Use {REDUCERS}")
        max_samples = max_samples or self.max_samples
        best_effort = self.best_effort if best_effort is None else best_effort
        tile_scale = tile_scale or self.tile_scale

        valid = layer.valid_mask
        if aoi is not None:
            valid &= self.coverage_mask(layer, aoi)

        groups = None
        if group_by is not None:
            if not group_by.same_grid(layer):
                raise GridMismatch(
                    f"group_by layer '{group_by.name}' is not on the grid of '{layer.name}'",
                    parameter="group_by",
                )
            groups = np.asarray(group_by.data, dtype=np.int64)
            valid &= group_by.valid_mask & (groups > 0)

        stride = self._stride(layer, scale)
        n_pixels = int(valid[::stride, ::stride].sum())
        while n_pixels > max_samples:
            if not best_effort:
                raise ResourceExceeded(
                    f"Reduction over {n_pixels} pixels exceeds the configured limit",
                    parameter="max_samples",
                    value=max_samples,
                )
            stride *= 2
            n_pixels = int(valid[::stride, ::stride].sum())
            self.logger.warning(
                f"Too many pixels for '{layer.name}', coarsening to every {stride}th cell"
            )

        values = layer.data[::stride, ::stride]
        valid = valid[::stride, ::stride]
        if groups is not None:
            groups = groups[::stride, ::stride]
            n_groups = int(groups[valid].max()) + 1 if n_pixels else 1
        else:
            n_groups = 1

        stats = RunningStats(n_groups)
        want_percentiles = "percentile" in reducers
        kept_values, kept_groups = [], []
        n_tiles = max(1, min(tile_scale, values.shape[0]))
        for rows in np.array_split(np.arange(values.shape[0]), n_tiles):
            tile_valid = valid[rows]
            tile_values = values[rows][tile_valid].astype(np.float64)
            tile_groups = groups[rows][tile_valid] if groups is not None else None
            stats.update(tile_values, tile_groups)
            if want_percentiles:
                kept_values.append(tile_values)
                if tile_groups is not None:
                    kept_groups.append(tile_groups)

        all_values = np.concatenate(kept_values) if kept_values else np.empty(0)
        all_groups = np.concatenate(kept_groups) if kept_groups else None
        stds = stats.std(ddof=1)

        def summarize(index: int, selector: Optional[np.ndarray]) -> Dict[str, Any]:
            count = int(stats.count[index])
            result: Dict[str, Any] = {}
            for reducer in reducers:
                if reducer == "count":
                    result["count"] = count
                elif reducer == "mean":
                    result["mean"] = float(stats.mean[index]) if count else None
                elif reducer == "stdDev":
                    result["stdDev"] = float(stds[index]) if count else None
                elif reducer == "min":
                    result["min"] = float(stats.min[index]) if count else None
                elif reducer == "max":
                    result["max"] = float(stats.max[index]) if count else None
                elif reducer == "percentile":
                    subset = all_values if selector is None else all_values[selector]
                    cuts = (
                        np.percentile(subset, list(percentiles))
                        if subset.size
                        else [None] * len(percentiles)
                    )
                    for q, cut in zip(percentiles, cuts):
                        result[f"p{q:g}"] = None if cut is None else float(cut)
            return result

        if groups is None:
            return {f"{layer.name}_{k}": v for k, v in summarize(0, None).items()}

        return {
            "groups": [
                {
                    "group": g,
                    **summarize(
                        g, (all_groups == g) if all_groups is not None else None
                    ),
                }
                for g in range(1, n_groups)
                if stats.count[g] > 0
            ]
        }

    def write_layer(self, layer: RasterLayer, path: Union[str, Path]) -> None:
        """Persist a layer as a single-band GeoTIFF, masked cells set to nodata."""
        data = layer.data
        if data.dtype == bool:
            data = data.astype(np.uint8)
        nodata = layer.nodata
        if nodata is None:
            nodata = np.nan if data.dtype.kind == "f" else 0
        filled = np.where(layer.valid_mask, data, nodata).astype(data.dtype)

        profile = {
            "driver": "GTiff",
            "height": layer.height,
            "width": layer.width,
            "count": 1,
            "dtype": str(filled.dtype),
            "crs": layer.crs,
            "transform": layer.transform,
            "nodata": nodata,
        }
        with rasterio.MemoryFile() as memfile:
            with memfile.open(**profile) as dst:
                dst.write(filled, 1)
                dst.set_band_description(1, layer.name)
            self.data_store.write_file(str(path), memfile.read())
        self.logger.info(f"Wrote {layer.name} layer to {path}")


def _masked_to_layer(band, transform, crs: str, nodata, name: str) -> RasterLayer:
    return RasterLayer(
        data=np.ma.getdata(band),
        transform=transform,
        crs=crs,
        nodata=nodata,
        mask=~np.ma.getmaskarray(band),
        name=name,
    )
