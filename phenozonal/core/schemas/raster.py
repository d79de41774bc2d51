import datetime as dt
from typing import Any, Dict, List, Optional, Tuple
import numpy as np
from pydantic import ConfigDict
from pydantic.dataclasses import dataclass
from rasterio.crs import CRS
from rasterio.transform import Affine, array_bounds

# pixel sizes closer than this fraction are the same resolution
RESOLUTION_RTOL = 1e-4


def _apply_transform(transform: Affine, xs: np.ndarray, ys: np.ndarray):
    t = transform
    return t.a * xs + t.b * ys + t.c, t.d * xs + t.e * ys + t.f


def transform_coefficients(transform: Affine) -> Tuple[float, ...]:
    return (transform.a, transform.b, transform.c, transform.d, transform.e, transform.f)


@dataclass(config=ConfigDict(arbitrary_types_allowed=True))
class RasterLayer:
    """
    A single 2D band on a georeferenced grid.

    Validity combines the explicit `mask` (True = valid), the `nodata` value
    and NaN samples. The data array is made read-only on construction; derive
    new layers with `with_mask` / `with_data` instead of editing in place.
    """

    data: np.ndarray
    transform: Any
    crs: str
    nodata: Optional[float] = None
    mask: Optional[np.ndarray] = None
    name: str = "band"

    def __post_init__(self):
        if not isinstance(self.transform, Affine):
            raise TypeError(f"transform must be an Affine, got {type(self.transform)}")
        if self.data.ndim != 2:
            raise ValueError(f"RasterLayer expects a 2D array, got {self.data.ndim}D")
        if self.mask is not None:
            if self.mask.shape != self.data.shape:
                raise ValueError(
                    f"Mask shape {self.mask.shape} does not match data shape {self.data.shape}"
                )
            self.mask = self.mask.astype(bool).view()
            self.mask.flags.writeable = False
        self.data = self.data.view()
        self.data.flags.writeable = False

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape

    @property
    def resolution(self) -> Tuple[float, float]:
        """Pixel width and height in CRS units."""
        return (abs(self.transform.a), abs(self.transform.e))

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(west, south, east, north) in CRS units."""
        return array_bounds(self.height, self.width, self.transform)

    @property
    def valid_mask(self) -> np.ndarray:
        valid = (
            np.ones(self.data.shape, dtype=bool)
            if self.mask is None
            else np.array(self.mask, dtype=bool)
        )
        if self.nodata is not None and not np.isnan(self.nodata):
            valid &= self.data != self.nodata
        if self.data.dtype.kind == "f":
            valid &= ~np.isnan(self.data)
        return valid

    @property
    def valid_count(self) -> int:
        return int(self.valid_mask.sum())

    def values(self) -> np.ndarray:
        """Flattened array of the valid samples."""
        return self.data[self.valid_mask]

    def xy(self, rows, cols) -> Tuple[np.ndarray, np.ndarray]:
        """Cell centre coordinates for row/col indices."""
        rows = np.asarray(rows, dtype=float)
        cols = np.asarray(cols, dtype=float)
        return _apply_transform(self.transform, cols + 0.5, rows + 0.5)

    def cell_centers(self) -> Tuple[np.ndarray, np.ndarray]:
        rows, cols = np.meshgrid(
            np.arange(self.height), np.arange(self.width), indexing="ij"
        )
        return self.xy(rows, cols)

    def index(self, xs, ys) -> Tuple[np.ndarray, np.ndarray]:
        """
        Nearest cell (the cell containing each coordinate).

        Returns row and column arrays; coordinates outside the grid get -1 in both.
        """
        xs = np.asarray(xs, dtype=float)
        ys = np.asarray(ys, dtype=float)
        fcols, frows = _apply_transform(~self.transform, xs, ys)
        rows = np.floor(frows).astype(np.int64)
        cols = np.floor(fcols).astype(np.int64)
        outside = (rows < 0) | (rows >= self.height) | (cols < 0) | (cols >= self.width)
        rows[outside] = -1
        cols[outside] = -1
        return rows, cols

    def with_mask(self, mask: np.ndarray) -> "RasterLayer":
        """Copy of this layer whose validity is narrowed by `mask`."""
        return RasterLayer(
            data=self.data,
            transform=self.transform,
            crs=self.crs,
            nodata=self.nodata,
            mask=self.valid_mask & mask,
            name=self.name,
        )

    def with_data(
        self,
        data: np.ndarray,
        name: Optional[str] = None,
        nodata: Optional[float] = None,
    ) -> "RasterLayer":
        """New layer on the same grid, keeping the current validity."""
        return RasterLayer(
            data=data,
            transform=self.transform,
            crs=self.crs,
            nodata=nodata,
            mask=self.valid_mask,
            name=name or self.name,
        )

    def same_crs(self, other: "RasterLayer") -> bool:
        return CRS.from_user_input(self.crs) == CRS.from_user_input(other.crs)

    def same_resolution(
        self, other: "RasterLayer", rtol: float = RESOLUTION_RTOL
    ) -> bool:
        return bool(np.allclose(self.resolution, other.resolution, rtol=rtol, atol=0))

    def same_grid(self, other: "RasterLayer", rtol: float = 1e-6) -> bool:
        return (
            self.shape == other.shape
            and self.same_crs(other)
            and np.allclose(
                transform_coefficients(self.transform),
                transform_coefficients(other.transform),
                rtol=rtol,
            )
        )


@dataclass(config=ConfigDict(arbitrary_types_allowed=True))
class RasterImage:
    """All requested bands of one source file, clipped to a common window."""

    source_id: str
    date: dt.date
    path: str
    bands: Dict[str, RasterLayer]
    missing_bands: Tuple[str, ...] = ()


@dataclass(config=ConfigDict(arbitrary_types_allowed=True))
class TimestampedRaster:
    """A RasterLayer bound to an observation date and source satellite."""

    layer: RasterLayer
    date: dt.date
    satellite: str
    source_id: str
    doy_origin: int = 0

    @property
    def year(self) -> int:
        return self.date.year

    @property
    def doy(self) -> int:
        return self.date.timetuple().tm_yday - 1 + self.doy_origin

    @property
    def timestamp(self) -> dt.datetime:
        return dt.datetime.combine(self.date, dt.time(), tzinfo=dt.timezone.utc)

    @property
    def sort_key(self) -> Tuple[dt.date, str]:
        return (self.date, self.satellite)


@dataclass(config=ConfigDict(arbitrary_types_allowed=True))
class ZoneMap:
    """
    Categorical zone layer (ids 1..k, 0 = no zone) plus the cut values used
    to build it. Built once per AOI and shared read-only afterwards.
    """

    layer: RasterLayer
    thresholds: List[float]
    percentiles: List[float]

    @property
    def n_zones(self) -> int:
        return len(self.thresholds) + 1

    @property
    def zone_ids(self) -> List[int]:
        return list(range(1, self.n_zones + 1))

    def zones_at(self, xs, ys) -> np.ndarray:
        """Zone id at each coordinate (0 outside the grid or on masked cells)."""
        rows, cols = self.layer.index(xs, ys)
        inside = rows >= 0
        zones = np.zeros(rows.shape, dtype=np.int64)
        valid = self.layer.valid_mask
        hit = inside.copy()
        hit[inside] = valid[rows[inside], cols[inside]]
        zones[hit] = self.layer.data[rows[hit], cols[hit]]
        return zones
