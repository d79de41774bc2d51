from .data_store import DataStore
from .local_data_store import LocalDataStore
from .readers import read_dataset
from .writers import write_dataset
from .exporter import TableExporter, POINTS_COLUMNS, ZONES_COLUMNS
