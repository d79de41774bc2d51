from pathlib import Path
from typing import List, Optional, Union, IO

from phenozonal.config import config

from .data_store import DataStore


class LocalDataStore(DataStore):
    """Implementation for local filesystem storage."""

    def __init__(self, base_path: Optional[Union[str, Path]] = None):
        """Relative paths resolve against `base_path`, by default `config.ROOT_DATA_DIR`."""
        super().__init__()
        if base_path is None:
            base_path = config.ROOT_DATA_DIR
        self.base_path = Path(base_path).resolve()

    def resolve_path(self, path: Union[str, Path]) -> Path:
        """Resolve path relative to base directory. Absolute paths pass through."""
        return self.base_path / path

    def read_file(self, path: str) -> bytes:
        with open(self.resolve_path(path), "rb") as f:
            return f.read()

    def write_file(self, path: str, data: Union[bytes, str]) -> None:
        full_path = self.resolve_path(path)
        self.mkdir(str(full_path.parent), exist_ok=True)

        if isinstance(data, str):
            mode = "w"
            encoding = "utf-8"
        else:
            mode = "wb"
            encoding = None

        with open(full_path, mode, encoding=encoding) as f:
            f.write(data)

    def file_exists(self, path: str) -> bool:
        return self.resolve_path(path).is_file()

    def list_files(self, path: str) -> List[str]:
        full_path = self.resolve_path(path)
        if not full_path.is_dir():
            return []
        return sorted(
            str(f.relative_to(self.base_path))
            if f.is_relative_to(self.base_path)
            else str(f)
            for f in full_path.iterdir()
            if f.is_file()
        )

    def open(self, path: str, mode: str = "r") -> IO:
        full_path = self.resolve_path(path)
        if any(flag in mode for flag in ("w", "a")):
            self.mkdir(str(full_path.parent), exist_ok=True)
        # newline="" keeps the csv module and pandas in charge of line endings
        if "b" not in mode:
            return open(full_path, mode, encoding="utf-8", newline="")
        return open(full_path, mode)

    def is_dir(self, path: str) -> bool:
        return self.resolve_path(path).is_dir()

    def mkdir(self, path: str, exist_ok: bool = False) -> None:
        self.resolve_path(path).mkdir(parents=True, exist_ok=exist_ok)
