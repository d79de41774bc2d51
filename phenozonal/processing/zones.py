import math
from typing import List, Optional, Sequence

import numpy as np
from rasterio.transform import from_origin

from phenozonal.config import config
from phenozonal.core.schemas.aoi import AreaOfInterest
from phenozonal.core.schemas.raster import RESOLUTION_RTOL, RasterLayer, ZoneMap
from phenozonal.exceptions import DataUnavailable
from phenozonal.processing.geo import scale_to_crs_units
from phenozonal.processing.raster_store import RasterStore

ZONE_NODATA = 0


def validate_percentiles(percentiles: Sequence[float]) -> List[float]:
    """Cut points must be strictly ascending and inside [0, 100]."""
    percentiles = [float(p) for p in percentiles]
    if not percentiles:
        raise ValueError("At least one percentile cut point is required")
    if any(p < 0 or p > 100 for p in percentiles):
        raise ValueError(f"Percentiles must lie in [0, 100], got {percentiles}")
    if any(b <= a for a, b in zip(percentiles, percentiles[1:])):
        raise ValueError(f"Percentiles must be strictly ascending, got {percentiles}")
    return percentiles


def assign_zones(values: np.ndarray, thresholds: Sequence[float]) -> np.ndarray:
    """
    Zone ids 1..k for k-1 ascending thresholds.

    Zone 1 takes values <= t1, zone i takes (t(i-1), ti], the last zone takes
    values above the last threshold. A value equal to a threshold lands in the
    lower zone.
    """
    return np.digitize(values, np.asarray(thresholds, dtype=float), right=True) + 1


def _cell_count(extent: float, size: float) -> int:
    cells = extent / size
    nearest = round(cells)
    # a whole number of cells up to pixel size rounding
    if abs(cells - nearest) <= RESOLUTION_RTOL * max(cells, 1.0):
        return max(1, nearest)
    return max(1, math.ceil(cells))


def _target_grid(layer: RasterLayer, size: float):
    west, south, east, north = layer.bounds
    width = _cell_count(east - west, size)
    height = _cell_count(north - south, size)
    template = RasterLayer(
        data=np.zeros((height, width), dtype=np.uint8),
        transform=from_origin(west, north, size, size),
        crs=layer.crs,
        nodata=ZONE_NODATA,
        name=layer.name,
    )
    return template


def resample_zones(layer: RasterLayer, target_scale: float) -> RasterLayer:
    """
    Resample a categorical zone layer to square cells of `target_scale` meters.

    Coarser grids take the most frequent zone among the native cells whose
    centres fall in each output cell (ties go to the lowest zone id, cells
    without any zoned native cell become nodata). Equal or finer grids take
    the zone of the native cell under each output cell centre.
    """
    size = scale_to_crs_units(target_scale, layer.crs)
    template = _target_grid(layer, size)
    valid = layer.valid_mask & (layer.data > ZONE_NODATA)

    if size <= max(layer.resolution) * (1 + RESOLUTION_RTOL):
        xs, ys = template.cell_centers()
        rows, cols = layer.index(xs, ys)
        inside = rows >= 0
        zones = np.zeros(template.shape, dtype=np.uint8)
        hit = inside.copy()
        hit[inside] = valid[rows[inside], cols[inside]]
        zones[hit] = layer.data[rows[hit], cols[hit]]
    else:
        src_rows, src_cols = np.nonzero(valid)
        xs, ys = layer.xy(src_rows, src_cols)
        rows, cols = template.index(xs, ys)
        inside = rows >= 0
        zone_ids = layer.data[src_rows, src_cols][inside].astype(np.int64)
        n_zones = int(zone_ids.max()) + 1 if zone_ids.size else 1
        cells = rows[inside] * template.width + cols[inside]
        votes = np.bincount(
            cells * n_zones + zone_ids, minlength=template.data.size * n_zones
        ).reshape(template.data.size, n_zones)
        votes[:, ZONE_NODATA] = 0
        # argmax returns the first maximum, i.e. the lowest zone id; empty cells give 0
        zones = votes.argmax(axis=1).astype(np.uint8).reshape(template.shape)

    return RasterLayer(
        data=zones,
        transform=template.transform,
        crs=layer.crs,
        nodata=ZONE_NODATA,
        mask=zones > ZONE_NODATA,
        name=layer.name,
    )


class ZoneClassifier:
    """Splits an elevation layer into percentile zones within an AOI."""

    def __init__(self, store: Optional[RasterStore] = None):
        self.store = store or RasterStore()
        self.logger = config.get_logger(self.__class__.__name__)

    def classify(
        self,
        elevation: RasterLayer,
        aoi: AreaOfInterest,
        percentiles: Sequence[float] = (33, 67),
        target_scale: Optional[float] = None,
    ) -> ZoneMap:
        """
        Build a ZoneMap from `elevation` inside `aoi`.

        Cut points are computed at native resolution; zones are assigned at
        native resolution and only then resampled to `target_scale` (meters).

        Raises:
            ValueError: If percentiles are not ascending within [0, 100].
            DataUnavailable: If the AOI holds no valid elevation pixel.
        """
        percentiles = validate_percentiles(percentiles)
        stats = self.store.reduce_region(
            elevation, aoi, reducers="percentile", percentiles=percentiles
        )
        thresholds = [stats[f"{elevation.name}_p{q:g}"] for q in percentiles]
        if any(t is None for t in thresholds):
            raise DataUnavailable(
                f"No valid '{elevation.name}' pixels inside the AOI", parameter="aoi"
            )

        clipped = self.store.clip(elevation, aoi)
        inside = clipped.valid_mask
        zones = np.where(inside, assign_zones(clipped.data, thresholds), ZONE_NODATA)
        layer = RasterLayer(
            data=zones.astype(np.uint8),
            transform=clipped.transform,
            crs=clipped.crs,
            nodata=ZONE_NODATA,
            mask=inside,
            name="zone",
        )
        if target_scale is not None:
            layer = resample_zones(layer, target_scale)

        self.logger.info(
            f"Elevation thresholds: {describe_thresholds(thresholds, percentiles)}"
        )
        return ZoneMap(layer=layer, thresholds=thresholds, percentiles=percentiles)


def classify(
    elevation: RasterLayer,
    aoi: AreaOfInterest,
    percentiles: Sequence[float] = (33, 67),
    target_scale: Optional[float] = None,
    store: Optional[RasterStore] = None,
) -> ZoneMap:
    """Shortcut for ``ZoneClassifier(store).classify(...)``."""
    return ZoneClassifier(store).classify(elevation, aoi, percentiles, target_scale)


def describe_thresholds(
    thresholds: Sequence[float], percentiles: Sequence[float]
) -> str:
    """Human readable zone legend, e.g. ``1=Low(<=812.0), 2=Mid, 3=High(>1034.5)``."""
    cuts = ", ".join(f"p{q:g}={t:.1f}" for q, t in zip(percentiles, thresholds))
    if len(thresholds) == 2:
        legend = (
            f"1=Low(<={thresholds[0]:.1f}), 2=Mid, 3=High(>{thresholds[1]:.1f})"
        )
    else:
        legend = ", ".join(
            f"{i + 1}=(..{t:.1f}]" for i, t in enumerate(thresholds)
        ) + f", {len(thresholds) + 1}=(>{thresholds[-1]:.1f})"
    return f"{cuts} | {legend}"
