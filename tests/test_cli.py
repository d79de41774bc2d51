import datetime as dt
import json

import numpy as np
import pytest
from click.testing import CliRunner

from phenozonal.cli import CONFIG_ERROR_EXIT_CODE, cli
from phenozonal.exceptions import DataUnavailable
from phenozonal.processing.geo import METERS_PER_DEGREE


@pytest.fixture
def inputs(tmp_path, write_tif, modis_image):
    aoi = tmp_path / "aoi.geojson"
    aoi.write_text(
        json.dumps(
            {
                "type": "FeatureCollection",
                "features": [
                    {
                        "type": "Feature",
                        "properties": {"name": "unit"},
                        "geometry": {
                            "type": "Polygon",
                            "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]],
                        },
                    }
                ],
            }
        )
    )
    dem = write_tif(
        tmp_path / "dem.tif",
        {"elevation": np.tile(np.arange(100, dtype=np.float32), (100, 1))},
    )
    terra = tmp_path / "terra"
    for day in (1, 17):
        modis_image(terra, dt.date(2020, 1, day))
    return {"aoi": str(aoi), "dem": str(dem), "terra": str(terra), "out": str(tmp_path / "out")}


def run_args(inputs, start="2020-01-01", end="2020-12-31"):
    return [
        "run",
        "--aoi", inputs["aoi"],
        "--elevation", inputs["dem"],
        "--source", f"Terra={inputs['terra']}",
        "--start", start,
        "--end", end,
        "--sample-count", "10",
        "--target-scale", str(0.01 * METERS_PER_DEGREE),
        "--output-dir", inputs["out"],
    ]


def test_run(inputs, tmp_path):
    result = CliRunner().invoke(cli, run_args(inputs))

    assert result.exit_code == 0, result.output
    assert "points: 20 rows" in result.output
    assert "zones: 6 rows" in result.output
    assert (tmp_path / "out" / "points.csv").exists()
    assert (tmp_path / "out" / "zones.tif").exists()


def test_inverted_window_is_a_configuration_error(inputs):
    result = CliRunner().invoke(cli, run_args(inputs, start="2021-01-01", end="2020-01-01"))

    assert result.exit_code == CONFIG_ERROR_EXIT_CODE


def test_empty_window(inputs):
    result = CliRunner().invoke(cli, run_args(inputs, start="2019-01-01", end="2019-12-31"))

    assert result.exit_code == DataUnavailable.exit_code
    assert "DataUnavailable:" in result.output


def test_malformed_source(inputs):
    args = run_args(inputs)
    args[args.index("--source") + 1] = inputs["terra"]

    result = CliRunner().invoke(cli, args)

    assert result.exit_code == 2
    assert "SATELLITE=DIRECTORY" in result.output


def test_zones_command(inputs, tmp_path):
    output = tmp_path / "zones.tif"

    result = CliRunner().invoke(
        cli,
        ["zones", "--aoi", inputs["aoi"], "--elevation", inputs["dem"], "--output", str(output)],
    )

    assert result.exit_code == 0, result.output
    assert "1=Low(<=" in result.output
    assert output.exists()
