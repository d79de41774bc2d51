import datetime as dt

import numpy as np
import pytest
import rasterio
from rasterio.transform import from_origin

from phenozonal.core.schemas.aoi import AreaOfInterest
from phenozonal.core.schemas.raster import RasterLayer, TimestampedRaster

RES = 0.01
UNIT_SQUARE = [[(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0), (0.0, 0.0)]]


def _layer(
    data,
    res=RES,
    west=0.0,
    north=1.0,
    crs="EPSG:4326",
    nodata=None,
    mask=None,
    name="band",
):
    return RasterLayer(
        data=np.asarray(data),
        transform=from_origin(west, north, res, res),
        crs=crs,
        nodata=nodata,
        mask=mask,
        name=name,
    )


def _write_tif(
    path,
    bands,
    res=RES,
    west=0.0,
    north=1.0,
    crs="EPSG:4326",
    nodata=None,
    dtype=None,
    describe=True,
):
    arrays = list(bands.values())
    height, width = arrays[0].shape
    dtype = dtype or arrays[0].dtype
    path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=height,
        width=width,
        count=len(arrays),
        dtype=dtype,
        crs=crs,
        transform=from_origin(west, north, res, res),
        nodata=nodata,
    ) as dst:
        for i, (name, array) in enumerate(bands.items(), start=1):
            dst.write(np.asarray(array).astype(dtype), i)
            if describe:
                dst.set_band_description(i, name)
    return path


@pytest.fixture
def make_layer():
    return _layer


@pytest.fixture
def write_tif():
    return _write_tif


@pytest.fixture
def unit_aoi():
    return AreaOfInterest.from_rings(UNIT_SQUARE)


@pytest.fixture
def ramp_elevation():
    """100x100 grid over the unit square, values rising 0.5..99.5 west to east."""
    values = np.tile(np.arange(100, dtype=np.float64) + 0.5, (100, 1))
    return _layer(values, name="elevation")


@pytest.fixture
def make_raster():
    def factory(data, date=dt.date(2020, 1, 1), satellite="Terra", mask=None, **kwargs):
        return TimestampedRaster(
            layer=_layer(data, mask=mask, name="EVI", **kwargs),
            date=date,
            satellite=satellite,
            source_id=satellite.lower(),
        )

    return factory


def write_modis_image(write_tif, directory, date, evi=5000, qa=0, shape=(100, 100), bands=None):
    """One MOD13Q1-like file: int16 EVI (x10000) and SummaryQA, named by acquisition day."""
    token = f"A{date.year}{date.timetuple().tm_yday:03d}"
    evi_band = np.full(shape, evi, dtype=np.int16) if np.isscalar(evi) else evi
    qa_band = np.full(shape, qa, dtype=np.int16) if np.isscalar(qa) else qa
    layers = {"EVI": evi_band, "SummaryQA": qa_band}
    if bands is not None:
        layers = {k: v for k, v in layers.items() if k in bands}
    return write_tif(
        directory / f"MOD13Q1.{token}.tif", layers, nodata=-3000, dtype="int16"
    )


@pytest.fixture
def modis_image():
    def factory(directory, date, **kwargs):
        return write_modis_image(_write_tif, directory, date, **kwargs)

    return factory
