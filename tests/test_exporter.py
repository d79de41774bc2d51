import datetime as dt

import pytest

from phenozonal.core.io import POINTS_COLUMNS, ZONES_COLUMNS, LocalDataStore, TableExporter
from phenozonal.core.schemas.records import SampleRecord, StatRecord
from phenozonal.exceptions import SchemaMismatch


@pytest.fixture
def exporter(tmp_path):
    return TableExporter(LocalDataStore(tmp_path))


def stat(day, satellite, zone_id, mean=0.5, stddev=0.25, n=10):
    date = dt.date(2020, 1, day)
    return StatRecord(
        date=date,
        year=date.year,
        doy=date.timetuple().tm_yday,
        satellite=satellite,
        zone_id=zone_id,
        mean=mean,
        stddev=stddev,
        pixel_count=n,
    )


def sample(day, satellite, point_id, zone_id=1, value=0.31):
    date = dt.date(2020, 1, day)
    return SampleRecord(
        date=date,
        year=date.year,
        doy=day,
        satellite=satellite,
        zone_id=zone_id,
        value=value,
        longitude=10.5,
        latitude=-3.5,
        point_id=point_id,
    )


def test_zone_records_round_trip(exporter):
    records = [stat(1, "Terra", 1, mean=0.125), stat(1, "Terra", 2), stat(9, "Aqua", 3, n=1, stddev=0.0)]

    rows = exporter.write_csv(records, "out/zones.csv", ZONES_COLUMNS)

    assert rows == 3
    assert exporter.read_csv("out/zones.csv", StatRecord) == records


def test_sample_records_round_trip_without_point_id(exporter):
    records = [sample(1, "Terra", 0), sample(1, "Terra", 1, zone_id=None), sample(9, "Aqua", 2)]

    exporter.write_csv(records, "points.csv", POINTS_COLUMNS)
    loaded = exporter.read_csv("points.csv", SampleRecord)

    assert [r.model_dump(exclude={"point_id"}) for r in loaded] == [
        r.model_dump(exclude={"point_id"}) for r in records
    ]


def test_header_and_date_format(exporter, tmp_path):
    exporter.write_csv([stat(5, "Terra", 1)], "zones.csv", ZONES_COLUMNS)

    lines = (tmp_path / "zones.csv").read_text().splitlines()

    assert lines[0] == ",".join(ZONES_COLUMNS)
    assert lines[1].startswith("2020-01-05,2020,5,Terra,1,")


def test_arrival_order_is_kept_without_sort(exporter):
    records = [stat(17, "Terra", 1), stat(1, "Terra", 1)]

    exporter.write_csv(records, "zones.csv", ZONES_COLUMNS)

    assert [r.date.day for r in exporter.read_csv("zones.csv", StatRecord)] == [17, 1]


def test_sort_by_date_satellite_and_hidden_point_id(exporter):
    records = [
        sample(9, "Terra", 3),
        sample(1, "Terra", 2),
        sample(1, "Aqua", 5),
        sample(1, "Terra", 0),
    ]

    exporter.write_csv(records, "points.csv", POINTS_COLUMNS, sort_by=["date", "satellite", "point_id"])
    loaded = exporter.read_csv("points.csv", SampleRecord)

    assert [(r.date.day, r.satellite) for r in loaded] == [
        (1, "Aqua"),
        (1, "Terra"),
        (1, "Terra"),
        (9, "Terra"),
    ]


def test_mappings_are_accepted(exporter, tmp_path):
    exporter.write_csv([{"a": 1, "b": "x", "extra": 0}], "plain.csv", ["b", "a"])

    assert (tmp_path / "plain.csv").read_text().splitlines() == ["b,a", "x,1"]


def test_missing_column(exporter):
    with pytest.raises(SchemaMismatch) as excinfo:
        exporter.write_csv([{"date": "2020-01-01"}], "bad.csv", ZONES_COLUMNS)

    assert excinfo.value.parameter == "column_order"
    assert "SchemaMismatch" in str(excinfo.value)


def test_empty_stream_writes_header_only(exporter, tmp_path):
    assert exporter.write_csv(iter([]), "empty.csv", POINTS_COLUMNS) == 0
    assert (tmp_path / "empty.csv").read_text().splitlines() == [",".join(POINTS_COLUMNS)]
