import datetime as dt
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class SamplePoint(BaseModel):
    """A sample location drawn once per run, in WGS84 longitude/latitude."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., ge=0, description="Sequential point identifier")
    longitude: float = Field(..., ge=-180, le=180)
    latitude: float = Field(..., ge=-90, le=90)
    x: Optional[float] = Field(
        None, description="Easting in the AOI CRS when it is not geographic", exclude=True
    )
    y: Optional[float] = Field(
        None, description="Northing in the AOI CRS when it is not geographic", exclude=True
    )


class ObservationRecord(BaseModel):
    """Fields shared by every per-date output row."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    date: dt.date
    year: int
    doy: int = Field(..., ge=0, le=366)
    satellite: str


class StatRecord(ObservationRecord):
    """One zone's statistics for one raster. Empty zones are never emitted."""

    zone_id: int = Field(..., ge=1)
    mean: float = Field(..., alias="value_mean")
    stddev: float = Field(..., ge=0, alias="value_std")
    pixel_count: int = Field(..., ge=1, alias="n_pixels")


class SampleRecord(ObservationRecord):
    """One point's value on one raster, emitted only for unmasked cells."""

    zone_id: Optional[int] = Field(None, ge=1)
    value: float
    longitude: float
    latitude: float
    point_id: Optional[int] = Field(None, ge=0, description="Sample point id, used for ordering only")
