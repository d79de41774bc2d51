import math
import numpy as np
import geopandas as gpd
from typing import List, Tuple, Union
from pyproj import CRS
from shapely.geometry import MultiPolygon, Polygon

# length of one degree along the WGS84 equator (semi-major axis 6378137 m)
METERS_PER_DEGREE = 2 * math.pi * 6378137 / 360


def is_geographic(crs: Union[str, CRS]) -> bool:
    """True when `crs` uses angular (degree) units."""
    return CRS.from_user_input(crs).is_geographic


def scale_to_crs_units(scale: float, crs: Union[str, CRS]) -> float:
    """
    Convert a nominal scale in meters to the linear units of `crs`.

    Geographic CRSs divide by the equatorial length of one degree, so a
    250 m scale gives the 0.002245788 degree pixel of Earth Engine exports.
    """
    if scale <= 0:
        raise ValueError(f"Scale must be positive, got {scale}")
    crs = CRS.from_user_input(crs)
    if crs.is_geographic:
        return scale / METERS_PER_DEGREE
    unit_factor = crs.axis_info[0].unit_conversion_factor if crs.axis_info else 1.0
    return scale / unit_factor


def to_lonlat(
    xs: np.ndarray, ys: np.ndarray, crs: Union[str, CRS]
) -> Tuple[np.ndarray, np.ndarray]:
    """Reproject coordinate arrays to EPSG:4326 longitude/latitude."""
    xs = np.asarray(xs, dtype=float)
    ys = np.asarray(ys, dtype=float)
    if CRS.from_user_input(crs) == CRS.from_epsg(4326) or xs.size == 0:
        return xs, ys
    points = gpd.GeoSeries(gpd.points_from_xy(xs, ys), crs=crs).to_crs("EPSG:4326")
    return points.x.to_numpy(), points.y.to_numpy()


def from_lonlat(
    lons: np.ndarray, lats: np.ndarray, crs: Union[str, CRS]
) -> Tuple[np.ndarray, np.ndarray]:
    """Project EPSG:4326 longitude/latitude arrays into `crs`."""
    lons = np.asarray(lons, dtype=float)
    lats = np.asarray(lats, dtype=float)
    if CRS.from_user_input(crs) == CRS.from_epsg(4326) or lons.size == 0:
        return lons, lats
    points = gpd.GeoSeries(gpd.points_from_xy(lons, lats), crs="EPSG:4326").to_crs(crs)
    return points.x.to_numpy(), points.y.to_numpy()


def geometry_to_shapes(geometry: Union[Polygon, MultiPolygon]) -> List[dict]:
    """GeoJSON-like mappings for rasterio masking routines."""
    if not isinstance(geometry, (Polygon, MultiPolygon)):
        raise TypeError(
            f"Unsupported geometry type: {type(geometry)}. "
            "Supported types: Polygon, MultiPolygon."
        )
    return [geometry.__geo_interface__]
