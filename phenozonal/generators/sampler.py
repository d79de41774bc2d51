from typing import Iterable, Iterator, List, Optional, Sequence

import numpy as np

from phenozonal.config import config as global_config
from phenozonal.core.schemas.aoi import AreaOfInterest
from phenozonal.core.schemas.raster import TimestampedRaster, ZoneMap
from phenozonal.core.schemas.records import SamplePoint, SampleRecord
from phenozonal.exceptions import InsufficientArea
from phenozonal.processing.geo import from_lonlat, is_geographic, to_lonlat
from phenozonal.processing.utils import CancellationToken, run_per_raster


class SpatialSampler:
    """
    Seeded uniform point sampling inside an AOI and per-raster value extraction.

    Random numbers come from numpy's PCG64 bit generator, so a given
    (seed, AOI, count) produces the same points on every platform and numpy
    release that keeps the PCG64 stream stable.
    """

    def __init__(
        self,
        seed: int = 0,
        batch_size: int = 1024,
        max_draws: int = 10_000_000,
        min_area: float = 0.0,
    ):
        self.seed = seed
        self.batch_size = batch_size
        self.max_draws = max_draws
        self.min_area = min_area
        self.logger = global_config.get_logger(self.__class__.__name__)

    def draw_sample(self, aoi: AreaOfInterest, count: int) -> List[SamplePoint]:
        """
        Draw `count` points uniformly inside `aoi` by rejection sampling over
        its bounding box. Points on the boundary count as inside.

        Raises:
            ValueError: If `count` is not positive.
            InsufficientArea: If the AOI is empty or no larger than `min_area`,
                or if the draw budget runs out before `count` points are accepted.
        """
        if count <= 0:
            raise ValueError(f"Sample count must be positive, got {count}")
        geometry = aoi.geometry
        if geometry.is_empty or geometry.area <= self.min_area:
            raise InsufficientArea(
                f"AOI area {geometry.area} is too small to sample from",
                parameter="aoi",
            )

        rng = np.random.Generator(np.random.PCG64(self.seed))
        minx, miny, maxx, maxy = geometry.bounds
        kept_x, kept_y = [], []
        accepted = drawn = 0
        while accepted < count:
            if drawn >= self.max_draws:
                raise InsufficientArea(
                    f"Only {accepted} of {count} points fell inside the AOI "
                    f"after {drawn} draws",
                    parameter="count",
                    value=count,
                )
            size = max(self.batch_size, 2 * (count - accepted))
            xs = rng.uniform(minx, maxx, size)
            ys = rng.uniform(miny, maxy, size)
            drawn += size
            inside = aoi.covers_xy(xs, ys)
            kept_x.append(xs[inside])
            kept_y.append(ys[inside])
            accepted += int(inside.sum())

        xs = np.concatenate(kept_x)[:count]
        ys = np.concatenate(kept_y)[:count]
        lons, lats = to_lonlat(xs, ys, aoi.crs)
        projected = not is_geographic(aoi.crs)

        self.logger.info(f"Drew {count} sample points from {drawn} candidates")
        return [
            SamplePoint(
                id=i,
                longitude=float(lons[i]),
                latitude=float(lats[i]),
                x=float(xs[i]) if projected else None,
                y=float(ys[i]) if projected else None,
            )
            for i in range(count)
        ]

    def extract_one(
        self,
        points: Sequence[SamplePoint],
        raster: TimestampedRaster,
        zone_map: Optional[ZoneMap] = None,
    ) -> List[SampleRecord]:
        """
        Value under each point for one raster.

        A record is produced only when the point's cell is unmasked, and, with
        a zone map, only when the point also falls on a zoned cell.
        """
        if not points:
            return []
        layer = raster.layer
        lons = np.array([p.longitude for p in points])
        lats = np.array([p.latitude for p in points])

        xs, ys = from_lonlat(lons, lats, layer.crs)
        rows, cols = layer.index(xs, ys)
        keep = rows >= 0
        valid = layer.valid_mask
        keep[keep] = valid[rows[keep], cols[keep]]

        zones = None
        if zone_map is not None:
            zx, zy = from_lonlat(lons, lats, zone_map.layer.crs)
            zones = zone_map.zones_at(zx, zy)
            keep &= zones > 0

        return [
            SampleRecord(
                date=raster.date,
                year=raster.year,
                doy=raster.doy,
                satellite=raster.satellite,
                zone_id=int(zones[i]) if zones is not None else None,
                value=float(layer.data[rows[i], cols[i]]),
                longitude=points[i].longitude,
                latitude=points[i].latitude,
                point_id=points[i].id,
            )
            for i in np.flatnonzero(keep)
        ]

    def extract(
        self,
        points: Sequence[SamplePoint],
        series: Iterable[TimestampedRaster],
        zone_map: Optional[ZoneMap] = None,
        n_workers: int = 1,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Iterator[SampleRecord]:
        for records in run_per_raster(
            lambda raster: self.extract_one(points, raster, zone_map),
            series,
            n_workers=n_workers,
            cancel_token=cancel_token,
            desc="Point sampling",
            logger=self.logger,
        ):
            yield from records
