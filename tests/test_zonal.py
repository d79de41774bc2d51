import datetime as dt

import numpy as np
import pytest
from shapely.geometry import box

from phenozonal.core.schemas.aoi import AreaOfInterest
from phenozonal.exceptions import GridMismatch
from phenozonal.generators.zonal import MAX_CACHED_GRIDS, ZonalAggregator
from phenozonal.processing.geo import METERS_PER_DEGREE
from phenozonal.processing.raster_store import RasterStore
from phenozonal.processing.utils import CancellationToken
from phenozonal.processing.zones import ZoneClassifier


@pytest.fixture
def zone_map(ramp_elevation, unit_aoi):
    return ZoneClassifier(RasterStore()).classify(ramp_elevation, unit_aoi, percentiles=(33, 67))


def test_uniform_raster_over_ramp_zones(zone_map, make_raster):
    raster = make_raster(np.ones((100, 100)))

    records = ZonalAggregator(zone_map).aggregate_one(raster)

    assert [r.zone_id for r in records] == [1, 2, 3]
    for record in records:
        assert record.mean == pytest.approx(1.0)
        assert record.stddev == pytest.approx(0.0)
        assert record.pixel_count > 0
    assert sum(r.pixel_count for r in records) <= raster.layer.valid_count


def test_empty_zones_are_omitted(zone_map, make_raster):
    mask = np.ones((100, 100), dtype=bool)
    mask[:, 67:] = False
    raster = make_raster(np.ones((100, 100)), mask=mask)

    records = ZonalAggregator(zone_map).aggregate_one(raster)

    assert [r.zone_id for r in records] == [1, 2]
    assert all(r.pixel_count >= 1 for r in records)


def test_statistics_per_zone(zone_map, make_raster):
    # value equals the column index
    values = np.tile(np.arange(100, dtype=float), (100, 1))
    (low, mid, high) = ZonalAggregator(zone_map).aggregate_one(make_raster(values))

    assert low.mean == pytest.approx(16.0)
    assert low.pixel_count == 3300
    assert low.stddev == pytest.approx(np.repeat(np.arange(33.0), 100).std(ddof=1))
    assert mid.mean == pytest.approx(49.5)
    assert high.mean == pytest.approx(83.0)


def test_records_carry_raster_metadata(zone_map, make_raster):
    raster = make_raster(np.ones((100, 100)), date=dt.date(2021, 3, 6), satellite="Aqua")

    record = ZonalAggregator(zone_map).aggregate_one(raster)[0]

    assert (record.date, record.year, record.doy, record.satellite) == (
        dt.date(2021, 3, 6),
        2021,
        64,
        "Aqua",
    )


def test_shifted_grid_is_aligned_by_cell_centre(zone_map, make_raster):
    raster = make_raster(np.ones((100, 100)), west=0.013)

    records = ZonalAggregator(zone_map).aggregate_one(raster)

    assert [r.zone_id for r in records] == [1, 2, 3]
    # each cell centre lands one zone cell east; the last column falls off the grid
    assert sum(r.pixel_count for r in records) == 9900


def test_resolution_mismatch(zone_map, make_raster):
    with pytest.raises(GridMismatch):
        ZonalAggregator(zone_map).aggregate_one(make_raster(np.ones((50, 50)), res=0.02))


def test_crs_mismatch(zone_map, make_raster):
    with pytest.raises(GridMismatch):
        ZonalAggregator(zone_map).aggregate_one(make_raster(np.ones((100, 100)), crs="EPSG:3857"))


def test_parallel_matches_sequential(zone_map, make_raster):
    series = [
        make_raster(np.full((100, 100), float(i)), date=dt.date(2020, 1, 1) + dt.timedelta(days=16 * i))
        for i in range(6)
    ]
    aggregator = ZonalAggregator(zone_map)

    sequential = list(aggregator.aggregate(series))
    parallel = list(aggregator.aggregate(iter(series), n_workers=3))

    key = lambda r: (r.date, r.zone_id)
    assert sorted(parallel, key=key) == sorted(sequential, key=key)
    assert len(sequential) == 18


def test_cancelled_token_stops_work(zone_map, make_raster):
    token = CancellationToken()
    token.cancel()

    records = list(ZonalAggregator(zone_map).aggregate([make_raster(np.ones((100, 100)))], cancel_token=token))

    assert records == []


@pytest.mark.parametrize("raster_res", [250 / 111319.49079327357, 250 / 111320.0])
def test_250m_zone_map_accepts_250m_exports(make_layer, make_raster, raster_res):
    # Earth Engine exports scale=250 in EPSG:4326 as 250 / 111319.49 degree pixels
    res = 250 / METERS_PER_DEGREE
    size = 40 * res
    elevation = make_layer(
        np.tile(np.arange(40, dtype=float) + 0.5, (40, 1)), res=res, north=size, name="elevation"
    )
    aoi = AreaOfInterest(geometry=box(0, 0, size, size))
    zone_map = ZoneClassifier(RasterStore()).classify(elevation, aoi, target_scale=250)

    records = ZonalAggregator(zone_map).aggregate_one(
        make_raster(np.ones((40, 40)), res=raster_res, north=40 * raster_res)
    )

    assert zone_map.layer.shape == (40, 40)
    assert [r.zone_id for r in records] == [1, 2, 3]
    assert sum(r.pixel_count for r in records) == 1600


def test_off_grid_zone_layers_are_cached_up_to_a_bound(zone_map, make_raster):
    series = [
        make_raster(
            np.ones((100, 100)),
            date=dt.date(2020, 1, 1) + dt.timedelta(days=i),
            west=0.0003 + 0.002 * i,
        )
        for i in range(MAX_CACHED_GRIDS + 4)
    ]
    aggregator = ZonalAggregator(zone_map)

    records = list(aggregator.aggregate(series, n_workers=4))

    assert {r.date for r in records} == {raster.date for raster in series}
    assert {r.zone_id for r in records} == {1, 2, 3}
    assert len(aggregator._group_layers) == MAX_CACHED_GRIDS
