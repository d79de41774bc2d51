from pathlib import Path

import geopandas as gpd
import pandas as pd

from .data_store import DataStore

TABLE_READERS = {
    ".csv": pd.read_csv,
}

# GeoJSON AOIs are often saved with a plain .json suffix
VECTOR_SUFFIXES = {".geojson", ".json", ".gpkg", ".shp", ".zip", ".fgb"}


def read_dataset(data_store: DataStore, path: str, **kwargs):
    """
    Read an exported table or an AOI vector file from a DataStore.

    Parameters:
    ----------
    data_store : DataStore
        Store holding the file.
    path : str, Path
        Path to the file in the store.
    **kwargs : dict
        Passed on to ``pandas.read_csv`` or ``geopandas.read_file``.

    Returns:
    -------
    pandas.DataFrame for ``.csv``, geopandas.GeoDataFrame for vector formats.

    Raises:
    ------
    FileNotFoundError
        If the file is not in the store.
    ValueError
        If the suffix is not supported or the file cannot be parsed.
    """
    path = str(path)
    if not data_store.file_exists(path):
        raise FileNotFoundError(f"File '{path}' not found in data store")

    suffix = Path(path).suffix.lower()
    if suffix not in TABLE_READERS and suffix not in VECTOR_SUFFIXES:
        supported = sorted(set(TABLE_READERS) | VECTOR_SUFFIXES)
        raise ValueError(
            f"Unsupported file type: {suffix} (supported: {', '.join(supported)})"
        )

    try:
        if suffix in TABLE_READERS:
            with data_store.open(path, "r") as f:
                return TABLE_READERS[suffix](f, **kwargs)
        with data_store.open(path, "rb") as f:
            return gpd.read_file(f, **kwargs)
    except Exception as e:
        raise ValueError(f"Error reading {path}: {str(e)}") from e
