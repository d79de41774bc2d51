from phenozonal.processing.raster_store import RasterStore, RasterSourceConfig
from phenozonal.processing.zones import ZoneClassifier, classify
from phenozonal.processing.quality import QualityMask
from phenozonal.processing.statistics import RunningStats
from phenozonal.processing.utils import CancellationToken, run_per_raster
