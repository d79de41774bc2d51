import io
from pathlib import Path

import geopandas as gpd
import pandas as pd

from .data_store import DataStore

VECTOR_DRIVERS = {
    ".geojson": "GeoJSON",
    ".gpkg": "GPKG",
}


def write_dataset(data, data_store: DataStore, path, **kwargs):
    """
    Write a table as CSV, or a GeoDataFrame as a vector file.

    Parameters:
    ----------
    data : pandas.DataFrame or geopandas.GeoDataFrame
        ``.csv`` accepts either (geometries are written as WKT);
        ``.geojson`` and ``.gpkg`` need a GeoDataFrame.
    data_store : DataStore
        Store receiving the file.
    path : str
        Destination path in the store.
    **kwargs : dict
        Passed on to ``DataFrame.to_csv`` or ``GeoDataFrame.to_file``.

    Raises:
    ------
    TypeError
        If `data` is not a DataFrame, or a vector format gets a plain DataFrame.
    ValueError
        If the suffix is not supported or writing fails.
    """
    if not isinstance(data, pd.DataFrame):
        raise TypeError(f"Expected a pandas DataFrame, got {type(data).__name__}")

    path = str(path)
    suffix = Path(path).suffix.lower()

    if suffix in VECTOR_DRIVERS and not isinstance(data, gpd.GeoDataFrame):
        raise TypeError(f"Writing {suffix} requires a GeoDataFrame")
    if suffix != ".csv" and suffix not in VECTOR_DRIVERS:
        supported = sorted({".csv", *VECTOR_DRIVERS})
        raise ValueError(
            f"Unsupported file type: {suffix} (supported: {', '.join(supported)})"
        )

    try:
        if suffix == ".csv":
            with data_store.open(path, "w") as f:
                data.to_csv(f, **kwargs)
        else:
            buffer = io.BytesIO()
            data.to_file(buffer, driver=VECTOR_DRIVERS[suffix], **kwargs)
            data_store.write_file(path, buffer.getvalue())
    except Exception as e:
        raise ValueError(f"Error writing {path}: {str(e)}") from e
