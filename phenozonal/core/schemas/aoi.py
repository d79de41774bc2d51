from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import geopandas as gpd
import numpy as np
import shapely
from pydantic import BaseModel, ConfigDict, Field, field_validator
from shapely.geometry import MultiPolygon, Polygon, shape

from phenozonal.core.io.data_store import DataStore
from phenozonal.core.io.local_data_store import LocalDataStore
from phenozonal.core.io.readers import read_dataset


class AreaOfInterest(BaseModel):
    """Polygon bounding the analysis region. Immutable once loaded."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    geometry: Union[Polygon, MultiPolygon] = Field(
        ..., description="AOI polygon in `crs` coordinates"
    )
    crs: str = Field("EPSG:4326", description="Coordinate reference system of the AOI")

    @field_validator("geometry")
    @classmethod
    def repair_geometry(cls, value):
        if not value.is_empty and not value.is_valid:
            value = shapely.make_valid(value)
            if not isinstance(value, (Polygon, MultiPolygon)):
                polygons = [
                    g for g in getattr(value, "geoms", []) if isinstance(g, Polygon)
                ]
                value = MultiPolygon(polygons)
        return value

    @property
    def bounds(self):
        return self.geometry.bounds

    @property
    def area(self) -> float:
        """Planar area in CRS units."""
        return float(self.geometry.area)

    @property
    def area_m2(self) -> float:
        """Area in square meters, computed in an estimated UTM zone."""
        if self.geometry.is_empty or self.geometry.area == 0:
            return 0.0
        series = self.to_geoseries()
        try:
            utm_crs = series.estimate_utm_crs()
        except Exception:
            utm_crs = "EPSG:6933"
        return float(series.to_crs(utm_crs).area.iloc[0])

    def to_geoseries(self) -> gpd.GeoSeries:
        return gpd.GeoSeries([self.geometry], crs=self.crs)

    def to_crs(self, crs: str) -> "AreaOfInterest":
        """Reprojected copy (self when the CRS already matches)."""
        if gpd.GeoSeries([], crs=self.crs).crs == gpd.GeoSeries([], crs=crs).crs:
            return self
        geometry = self.to_geoseries().to_crs(crs).iloc[0]
        return AreaOfInterest(geometry=geometry, crs=crs)

    def covers_xy(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        """True for coordinates inside the polygon or on its boundary."""
        return shapely.intersects_xy(self.geometry, xs, ys)

    @classmethod
    def from_rings(
        cls, rings: Sequence[Sequence[Sequence[float]]], crs: str = "EPSG:4326"
    ) -> "AreaOfInterest":
        """Build from GeoJSON-style rings: exterior first, then holes."""
        if not rings:
            raise ValueError("At least one coordinate ring is required")
        return cls(geometry=Polygon(rings[0], rings[1:]), crs=crs)

    @classmethod
    def from_geojson(
        cls, geojson: Dict[str, Any], crs: str = "EPSG:4326"
    ) -> "AreaOfInterest":
        """Build from a GeoJSON geometry, Feature or FeatureCollection mapping."""
        geo_type = geojson.get("type", "")
        if geo_type == "FeatureCollection":
            geometries = [shape(f["geometry"]) for f in geojson.get("features", [])]
            geometry = shapely.union_all(geometries)
        elif geo_type == "Feature":
            geometry = shape(geojson["geometry"])
        else:
            geometry = shape(geojson)
        return cls(geometry=_as_polygonal(geometry), crs=crs)

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        data_store: Optional[DataStore] = None,
        **kwargs,
    ) -> "AreaOfInterest":
        """Load every feature of a vector file and union them into one AOI."""
        data_store = data_store or LocalDataStore()
        gdf = read_dataset(data_store, str(path), **kwargs)
        if not isinstance(gdf, gpd.GeoDataFrame) or gdf.empty:
            raise ValueError(f"No features found in AOI file {path}")
        crs = gdf.crs.to_string() if gdf.crs is not None else "EPSG:4326"
        return cls(geometry=_as_polygonal(gdf.geometry.union_all()), crs=crs)


def _as_polygonal(geometry) -> Union[Polygon, MultiPolygon]:
    if isinstance(geometry, (Polygon, MultiPolygon)):
        return geometry
    polygons: List[Polygon] = [
        g for g in getattr(geometry, "geoms", []) if isinstance(g, Polygon)
    ]
    if not polygons:
        raise ValueError(
            f"AOI must be a Polygon or MultiPolygon, got {geometry.geom_type}"
        )
    return MultiPolygon(polygons)
