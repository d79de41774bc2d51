import datetime as dt
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Type, Union

import pandas as pd
from pydantic import BaseModel

from phenozonal.config import config
from phenozonal.core.io.data_store import DataStore
from phenozonal.core.io.local_data_store import LocalDataStore
from phenozonal.core.io.readers import read_dataset
from phenozonal.core.io.writers import write_dataset
from phenozonal.exceptions import SchemaMismatch

POINTS_COLUMNS = [
    "date",
    "year",
    "doy",
    "value",
    "zone_id",
    "satellite",
    "longitude",
    "latitude",
]

ZONES_COLUMNS = [
    "date",
    "year",
    "doy",
    "satellite",
    "zone_id",
    "value_mean",
    "value_std",
    "n_pixels",
]

Record = Union[BaseModel, Mapping[str, Any]]


class TableExporter:
    """
    Writes record streams as CSV tables with a fixed column contract.

    Records are written in arrival order unless `sort_by` is given, in which
    case rows are stably sorted on those keys before writing. Sort keys may
    name fields that are not exported (e.g. `point_id`).
    """

    def __init__(self, data_store: Optional[DataStore] = None):
        self.data_store = data_store or LocalDataStore()
        self.logger = config.get_logger(self.__class__.__name__)

    @staticmethod
    def _as_row(record: Record) -> Dict[str, Any]:
        if isinstance(record, BaseModel):
            row = record.model_dump(by_alias=True)
        else:
            row = dict(record)
        for key, value in row.items():
            if isinstance(value, (dt.date, dt.datetime)):
                row[key] = value.strftime("%Y-%m-%d")
        return row

    def write_csv(
        self,
        records: Iterable[Record],
        path: str,
        column_order: Sequence[str],
        sort_by: Optional[Sequence[str]] = None,
    ) -> int:
        """
        Write records to `path` as CSV.

        Args:
            records: Pydantic records (dumped with their export aliases) or mappings.
            path: Destination path inside the data store.
            column_order: Columns to write, in order.
            sort_by: Optional keys for a stable sort applied before writing.

        Returns:
            Number of data rows written.

        Raises:
            SchemaMismatch: If a record lacks one of the declared columns.
        """
        column_order = list(column_order)
        required = set(column_order) | set(sort_by or [])
        rows: List[Dict[str, Any]] = []

        for index, record in enumerate(records):
            row = self._as_row(record)
            missing = [c for c in column_order if c not in row]
            if missing:
                raise SchemaMismatch(
                    f"Record {index} is missing declared column(s) {missing}",
                    parameter="column_order",
                    value=missing[0],
                )
            rows.append({k: row.get(k) for k in required})

        df = pd.DataFrame(rows, columns=sorted(required))
        if sort_by and not df.empty:
            df = df.sort_values(list(sort_by), kind="mergesort", na_position="first")

        write_dataset(df[column_order], self.data_store, path, index=False)
        self.logger.info(f"Wrote {len(df)} rows to {path}")
        return len(df)

    def read_csv(self, path: str, record_type: Type[BaseModel]) -> List[BaseModel]:
        """Read a table written by `write_csv` back into `record_type` instances."""
        df = read_dataset(self.data_store, path)
        df = df.astype(object).where(df.notna(), None)
        return [
            record_type.model_validate(row) for row in df.to_dict(orient="records")
        ]
