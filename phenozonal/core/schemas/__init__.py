from .records import SamplePoint, StatRecord, SampleRecord
from .raster import RasterLayer, RasterImage, TimestampedRaster, ZoneMap
from .aoi import AreaOfInterest
