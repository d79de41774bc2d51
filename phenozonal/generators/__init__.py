from phenozonal.generators.zonal import ZonalAggregator
from phenozonal.generators.sampler import SpatialSampler
