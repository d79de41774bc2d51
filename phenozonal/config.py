from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Union, Literal, Any
import io
from functools import lru_cache
import logging


class Config(BaseSettings):
    """
    Unified configuration with environment variable loading.
    Holds the data/output directories and the default execution limits used
    by the raster engine. All values can be overridden through environment
    variables or a `.env` file.
    """

    ROOT_DATA_DIR: Path = Field(
        default=Path("."),
        description="Directory that relative data paths resolve against",
        alias="ROOT_DATA_DIR",
    )
    OUTPUT_DIR: Path = Field(
        default=Path("output"),
        description="Directory where exported tables and zone rasters are written",
        alias="OUTPUT_DIR",
    )

    N_WORKERS: int = Field(
        default=1, ge=1, description="Per-raster worker pool size", alias="N_WORKERS"
    )
    MAX_SAMPLES: int = Field(
        default=1_000_000_000,
        gt=0,
        description="Pixel cap for a single regional reduction",
        alias="MAX_SAMPLES",
    )
    BEST_EFFORT: bool = Field(
        default=True,
        description="Degrade reduction scale instead of failing when MAX_SAMPLES is exceeded",
        alias="BEST_EFFORT",
    )
    TILE_SCALE: int = Field(
        default=2, ge=1, le=16, description="Row tiles per reduction", alias="TILE_SCALE"
    )
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", alias="LOG_LEVEL"
    )

    def get_logger(self, name="PhenoZonal", console_level=None):
        logger = logging.getLogger(name)
        logger.setLevel(self.LOG_LEVEL)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(console_level or self.LOG_LEVEL)

        LOG_FORMAT = "%(levelname) -10s  %(name) -10s %(asctime) " "-30s: %(message)s"

        formatter = logging.Formatter(LOG_FORMAT)
        console_handler.setFormatter(formatter)

        if not logger.hasHandlers():
            logger.addHandler(console_handler)

        return logger

    def get_tqdm_logger_stream(self, logger: logging.Logger, level=logging.INFO):
        return TqdmToLogger(logger, level=level)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        validate_assignment=True,
        case_sensitive=True,
        extra="allow",
    )

    @field_validator("ROOT_DATA_DIR", "OUTPUT_DIR", mode="before")
    def validate_paths(cls, value: Union[str, Path]) -> Union[Path, Any]:
        """Accept strings or paths; anything else is a configuration bug."""
        if isinstance(value, str):
            return Path(value).expanduser()
        elif isinstance(value, Path):
            return value.expanduser()
        raise ValueError(f"Invalid path type: {type(value)}")


class TqdmToLogger(io.StringIO):
    """
    File-like object to redirect tqdm output to a logger.
    """

    def __init__(self, logger, level=logging.INFO):
        super().__init__()
        self.logger = logger
        self.level = level
        self.buf = ""

    def write(self, buf):
        # tqdm writes partial lines and finishes a refresh with \r
        self.buf += buf
        if "\r" in buf or "\n" in buf:
            self.logger.log(self.level, self.buf.strip("\r\n"))
            self.buf = ""

    def flush(self):
        if self.buf:
            self.logger.log(self.level, self.buf.strip("\r\n"))
            self.buf = ""


@lru_cache()
def get_default_config() -> Config:
    """Returns a singleton instance of Config."""
    return Config()


# Singleton instance
config = get_default_config()
