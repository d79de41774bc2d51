__version__ = "0.1.0"

import phenozonal.core.io as io

from .core.schemas import (
    AreaOfInterest,
    RasterLayer,
    TimestampedRaster,
    ZoneMap,
    SamplePoint,
    StatRecord,
    SampleRecord,
)

from .processing import (
    RasterStore,
    RasterSourceConfig,
    ZoneClassifier,
    QualityMask,
    CancellationToken,
    classify,
)

from .handlers import CollectionFuser

from .generators import ZonalAggregator, SpatialSampler

from .pipeline import PhenologyPipeline, PipelineConfig, PipelineContext

import phenozonal.processing.geo as geo_processing

__all__ = [
    "__version__",
    "io",
    # data model
    "AreaOfInterest",
    "RasterLayer",
    "TimestampedRaster",
    "ZoneMap",
    "SamplePoint",
    "StatRecord",
    "SampleRecord",
    # processing
    "RasterStore",
    "RasterSourceConfig",
    "ZoneClassifier",
    "QualityMask",
    "CancellationToken",
    "classify",
    "geo_processing",
    # handlers / generators
    "CollectionFuser",
    "ZonalAggregator",
    "SpatialSampler",
    # pipeline
    "PhenologyPipeline",
    "PipelineConfig",
    "PipelineContext",
]
