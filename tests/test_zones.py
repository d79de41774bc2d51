import numpy as np
import pytest

from phenozonal.exceptions import DataUnavailable
from phenozonal.processing.geo import METERS_PER_DEGREE
from phenozonal.processing.raster_store import RasterStore
from phenozonal.processing.zones import (
    ZoneClassifier,
    assign_zones,
    classify,
    describe_thresholds,
    resample_zones,
    validate_percentiles,
)


@pytest.fixture
def classifier():
    return ZoneClassifier(RasterStore())


def test_ramp_over_unit_square(classifier, ramp_elevation, unit_aoi):
    zone_map = classifier.classify(ramp_elevation, unit_aoi, percentiles=(33, 67))
    zones = zone_map.layer.data

    assert zone_map.zone_ids == [1, 2, 3]
    assert zone_map.thresholds[0] < zone_map.thresholds[1]
    # columns are 0.01 wide: x in [0, 0.33), [0.33, 0.67), [0.67, 1.0]
    assert np.all(zones[:, :33] == 1)
    assert np.all(zones[:, 33:67] == 2)
    assert np.all(zones[:, 67:] == 3)


def test_zones_cover_every_unmasked_pixel(classifier, ramp_elevation, unit_aoi):
    zone_map = classifier.classify(ramp_elevation, unit_aoi)
    layer = zone_map.layer

    assert layer.valid_count == ramp_elevation.valid_count
    assert set(np.unique(layer.values())) == {1, 2, 3}


def test_values_on_a_cut_point_fall_in_the_lower_zone():
    zones = assign_zones(np.array([1.0, 2.0, 2.0001, 3.0, 3.5]), [2.0, 3.0])

    assert zones.tolist() == [1, 1, 2, 2, 3]


def test_generalizes_to_k_zones(classifier, ramp_elevation, unit_aoi):
    zone_map = classifier.classify(ramp_elevation, unit_aoi, percentiles=(25, 50, 75))

    assert zone_map.n_zones == 4
    assert set(np.unique(zone_map.layer.values())) == {1, 2, 3, 4}
    assert zone_map.thresholds == sorted(zone_map.thresholds)


@pytest.mark.parametrize("percentiles", [(67, 33), (33, 33), (-1, 50), (50, 101), ()])
def test_invalid_percentiles(percentiles):
    with pytest.raises(ValueError):
        validate_percentiles(percentiles)


def test_no_valid_elevation(classifier, make_layer, unit_aoi):
    empty = make_layer(np.full((10, 10), -9999.0), res=0.1, nodata=-9999.0, name="elevation")

    with pytest.raises(DataUnavailable):
        classifier.classify(empty, unit_aoi)


def test_mode_downsampling(make_layer):
    data = np.array(
        [
            [1, 2, 2, 3],
            [2, 1, 3, 3],
            [2, 2, 0, 0],
            [3, 2, 0, 0],
        ],
        dtype=np.uint8,
    )
    layer = make_layer(data, res=1.0, west=0.0, north=4.0, crs="EPSG:32633", nodata=0, name="zone")

    coarse = resample_zones(layer, target_scale=2.0)

    # top-left block is a 2-2 tie and goes to the lower id; bottom-right is empty
    assert coarse.data.tolist() == [[1, 3], [2, 0]]
    assert coarse.resolution == (2.0, 2.0)
    assert coarse.valid_count == 3


def test_finer_grid_uses_nearest_cell(make_layer):
    data = np.array([[1, 2], [3, 0]], dtype=np.uint8)
    layer = make_layer(data, res=1.0, west=0.0, north=2.0, crs="EPSG:32633", nodata=0, name="zone")

    fine = resample_zones(layer, target_scale=0.5)

    assert fine.shape == (4, 4)
    assert fine.data[:2, :2].tolist() == [[1, 1], [1, 1]]
    assert fine.data[:2, 2:].tolist() == [[2, 2], [2, 2]]
    assert np.all(fine.data[2:, 2:] == 0)
    assert not fine.valid_mask[3, 3]


def test_classify_then_downsample(ramp_elevation, unit_aoi):
    # 10x coarser than the 0.01 degree elevation grid
    zone_map = classify(ramp_elevation, unit_aoi, target_scale=0.1 * METERS_PER_DEGREE)
    zones = zone_map.layer.data

    assert zones.shape == (10, 10)
    assert np.all(zones[:, 0] == 1)
    assert np.all(zones[:, -1] == 3)
    assert np.all(np.diff(zones.astype(int), axis=1) >= 0)


def test_describe_thresholds():
    text = describe_thresholds([812.0, 1034.5], [33, 67])

    assert "p33=812.0" in text
    assert "1=Low(<=812.0), 2=Mid, 3=High(>1034.5)" in text
