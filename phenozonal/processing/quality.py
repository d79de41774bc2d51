from typing import Callable

import numpy as np

from phenozonal.core.schemas.raster import RasterLayer
from phenozonal.exceptions import GridMismatch

KeepPredicate = Callable[[np.ndarray], np.ndarray]


class QualityMask:
    """
    Pixel-wise quality screening driven by a QA band.

    `keep` receives the QA array and returns a boolean array of the same
    shape, True for pixels to keep. Pixels failing the predicate, and pixels
    whose QA value is itself nodata, become invalid in the output layer.
    """

    def __init__(self, keep: KeepPredicate):
        self.keep = keep

    @classmethod
    def from_threshold(cls, threshold: float, minimum: float = 0) -> "QualityMask":
        """
        Keep pixels with ``minimum <= qa <= threshold``.

        For MODIS SummaryQA (0 good, 1 marginal, 2 snow/ice, 3 cloudy, -1 fill)
        a threshold of 1 keeps good and marginal retrievals.
        """
        if threshold < minimum:
            raise ValueError(
                f"Quality threshold {threshold} is below the minimum {minimum}"
            )
        return cls(lambda qa: (qa >= minimum) & (qa <= threshold))

    def apply(self, layer: RasterLayer, qa_layer: RasterLayer) -> RasterLayer:
        if layer.shape != qa_layer.shape:
            raise GridMismatch(
                f"QA layer shape {qa_layer.shape} does not match value layer shape {layer.shape}",
                parameter="qa_layer",
            )
        keep = np.asarray(self.keep(qa_layer.data), dtype=bool)
        return layer.with_mask(keep & qa_layer.valid_mask)
