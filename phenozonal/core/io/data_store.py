import fnmatch
from abc import ABC, abstractmethod
from pathlib import PurePath
from typing import Any, IO, List


class DataStore(ABC):
    """
    Storage backend for every file the engine touches: AOI vector files,
    elevation and vegetation index GeoTIFFs, exported tables and the zone
    raster. Paths are backend-relative strings.
    """

    @abstractmethod
    def read_file(self, path: str) -> Any:
        """Return the raw bytes stored at `path`."""

    @abstractmethod
    def write_file(self, path: str, data: Any) -> None:
        """
        Store `data` at `path`, creating parent directories as needed.

        Args:
            path: Destination path.
            data: ``str`` (written as UTF-8 text) or ``bytes``.
        """

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        pass

    @abstractmethod
    def list_files(self, path: str) -> List[str]:
        """
        Files directly under the directory `path`, sorted by name.
        A missing directory yields an empty list.
        """

    @abstractmethod
    def open(self, file: str, mode: str = "r") -> IO:
        """File object for `file`; writing modes create parent directories."""

    @abstractmethod
    def is_dir(self, path: str) -> bool:
        pass

    @abstractmethod
    def mkdir(self, path: str, exist_ok: bool = False) -> None:
        pass

    def glob(self, path: str, pattern: str) -> List[str]:
        """Files under `path` whose base name matches the shell `pattern`."""
        return [
            f for f in self.list_files(path) if fnmatch.fnmatch(PurePath(f).name, pattern)
        ]
