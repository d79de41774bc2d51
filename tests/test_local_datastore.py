import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import box

from phenozonal.config import config
from phenozonal.core.io import LocalDataStore, read_dataset, write_dataset


@pytest.fixture
def store(tmp_path):
    return LocalDataStore(tmp_path)


def test_text_io_and_exists(store):
    content = "Hello from LocalDataStore\nLine 2.\n"

    store.write_file("nested/simple_text.txt", content)

    assert store.file_exists("nested/simple_text.txt") is True
    assert store.is_dir("nested") is True
    assert store.read_file("nested/simple_text.txt") == content.encode("utf-8")


def test_binary_io(store):
    data = b"\x00\x01\x02\x03\xff\xfe"

    store.write_file("binary_file.bin", data)

    assert store.read_file("binary_file.bin") == data


def test_open_creates_parent_directories(store, tmp_path):
    with store.open("a/b/c.csv", "w") as f:
        f.write("x,y\r\n1,2\r\n")

    # no newline translation on write
    assert (tmp_path / "a" / "b" / "c.csv").read_bytes() == b"x,y\r\n1,2\r\n"


def test_list_files_is_sorted_and_relative(store):
    for name in ("b.tif", "a.tif", "c.tif"):
        store.write_file(f"images/{name}", b"")
    store.mkdir("images/sub", exist_ok=True)

    assert store.list_files("images") == ["images/a.tif", "images/b.tif", "images/c.tif"]
    assert store.list_files("missing") == []


def test_absolute_paths_pass_through(store, tmp_path):
    outside = tmp_path.parent / "outside.txt"
    store.write_file(str(outside), "x")

    assert outside.read_text() == "x"
    assert store.file_exists(str(outside))


def test_glob_matches_base_names(store):
    for name in ("MOD13Q1.A2020001.tif", "MOD13Q1.A2020017.tif", "notes.txt"):
        store.write_file(f"terra/{name}", b"")

    assert store.glob("terra", "*.tif") == [
        "terra/MOD13Q1.A2020001.tif",
        "terra/MOD13Q1.A2020017.tif",
    ]


def test_vector_round_trip(store):
    gdf = gpd.GeoDataFrame({"name": ["aoi"]}, geometry=[box(0, 0, 1, 1)], crs="EPSG:4326")

    write_dataset(gdf, store, "vectors/aoi.geojson")
    loaded = read_dataset(store, "vectors/aoi.geojson")

    assert isinstance(loaded, gpd.GeoDataFrame)
    assert loaded["name"].tolist() == ["aoi"]
    assert loaded.geometry.iloc[0].equals(box(0, 0, 1, 1))


def test_table_round_trip(store):
    df = pd.DataFrame({"zone_id": [1, 2], "value_mean": [0.5, 0.25]})

    write_dataset(df, store, "tables/zones.csv", index=False)

    pd.testing.assert_frame_equal(read_dataset(store, "tables/zones.csv"), df)


def test_unsupported_suffixes(store):
    store.write_file("table.xlsx", b"")

    with pytest.raises(ValueError):
        read_dataset(store, "table.xlsx")
    with pytest.raises(ValueError):
        write_dataset(pd.DataFrame({"a": [1]}), store, "table.xlsx")
    with pytest.raises(TypeError):
        write_dataset(pd.DataFrame({"a": [1]}), store, "table.geojson")


def test_missing_file(store):
    with pytest.raises(FileNotFoundError):
        read_dataset(store, "nowhere.csv")


def test_default_base_is_root_data_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "ROOT_DATA_DIR", tmp_path / "data")

    store = LocalDataStore()
    store.write_file("aoi.geojson", "{}")

    assert store.base_path == (tmp_path / "data").resolve()
    assert (tmp_path / "data" / "aoi.geojson").read_text() == "{}"
