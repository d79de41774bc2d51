import threading
from collections import OrderedDict
from typing import Iterable, Iterator, List, Optional, Tuple

import numpy as np

from phenozonal.config import config as global_config
from phenozonal.core.schemas.raster import (
    RasterLayer,
    TimestampedRaster,
    ZoneMap,
    transform_coefficients,
)
from phenozonal.core.schemas.records import StatRecord
from phenozonal.exceptions import GridMismatch
from phenozonal.processing.raster_store import RasterStore
from phenozonal.processing.utils import CancellationToken, run_per_raster

# zone layers kept for off-grid rasters; each is one byte per raster cell
MAX_CACHED_GRIDS = 8


class ZonalAggregator:
    """Per-zone statistics of a raster time series over a fixed ZoneMap.

    Each raster is reduced independently: its unmasked pixels are grouped by
    the zone under their cell centre and summarised as mean, sample standard
    deviation and pixel count. Zones without any unmasked pixel produce no
    record.

    Attributes:
        zone_map (ZoneMap): Shared, read-only zone layer.
        store (RasterStore): Store whose reduction settings are used.
    """

    REDUCERS = ("mean", "stdDev", "count")

    def __init__(self, zone_map: ZoneMap, store: Optional[RasterStore] = None):
        self.zone_map = zone_map
        self.store = store or RasterStore()
        self.logger = global_config.get_logger(self.__class__.__name__)
        self._group_layers: "OrderedDict[Tuple, RasterLayer]" = OrderedDict()
        self._lock = threading.Lock()

    def _zones_for(self, layer: RasterLayer) -> RasterLayer:
        zone_layer = self.zone_map.layer
        if not (layer.same_crs(zone_layer) and layer.same_resolution(zone_layer)):
            raise GridMismatch(
                f"Raster '{layer.name}' ({layer.crs}, {layer.resolution}) does not share "
                f"the zone map grid ({zone_layer.crs}, {zone_layer.resolution})",
                parameter="zone_map",
            )
        if layer.same_grid(zone_layer):
            return zone_layer

        key = (layer.shape, transform_coefficients(layer.transform), layer.crs)
        with self._lock:
            groups = self._group_layers.get(key)
            if groups is not None:
                self._group_layers.move_to_end(key)
                return groups

        xs, ys = layer.cell_centers()
        zones = self.zone_map.zones_at(xs, ys)
        groups = RasterLayer(
            data=zones.astype(np.uint8),
            transform=layer.transform,
            crs=layer.crs,
            nodata=0,
            mask=zones > 0,
            name="zone",
        )
        with self._lock:
            self._group_layers[key] = groups
            while len(self._group_layers) > MAX_CACHED_GRIDS:
                self._group_layers.popitem(last=False)
        return groups

    def aggregate_one(self, raster: TimestampedRaster) -> List[StatRecord]:
        """Statistics records for one raster, ordered by zone id."""
        groups = self._zones_for(raster.layer)
        result = self.store.reduce_region(
            raster.layer, reducers=self.REDUCERS, group_by=groups
        )
        return [
            StatRecord(
                date=raster.date,
                year=raster.year,
                doy=raster.doy,
                satellite=raster.satellite,
                zone_id=group["group"],
                mean=group["mean"],
                stddev=group["stdDev"],
                pixel_count=group["count"],
            )
            for group in result["groups"]
        ]

    def aggregate(
        self,
        series: Iterable[TimestampedRaster],
        n_workers: int = 1,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Iterator[StatRecord]:
        """Lazily aggregate every raster of `series` (completion order when n_workers > 1)."""
        for records in run_per_raster(
            self.aggregate_one,
            series,
            n_workers=n_workers,
            cancel_token=cancel_token,
            desc="Zonal statistics",
            logger=self.logger,
        ):
            yield from records
