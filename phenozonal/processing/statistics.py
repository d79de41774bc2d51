import numpy as np
from typing import Optional


class RunningStats:
    """
    Streaming count / mean / variance / min / max, kept separately per group id.

    Chunks are folded in with the pairwise combination of Chan et al., so
    feeding the same pixels in any tiling gives the same result (up to
    floating point rounding). Group ids are integers in [0, n_groups).
    """

    def __init__(self, n_groups: int = 1):
        if n_groups < 1:
            raise ValueError(f"n_groups must be >= 1, got {n_groups}")
        self.n_groups = n_groups
        self.count = np.zeros(n_groups, dtype=np.int64)
        self.mean = np.zeros(n_groups, dtype=np.float64)
        self.m2 = np.zeros(n_groups, dtype=np.float64)
        self.min = np.full(n_groups, np.inf)
        self.max = np.full(n_groups, -np.inf)

    def update(
        self, values: np.ndarray, groups: Optional[np.ndarray] = None
    ) -> "RunningStats":
        values = np.asarray(values, dtype=np.float64).ravel()
        if values.size == 0:
            return self
        if groups is None:
            groups = np.zeros(values.size, dtype=np.int64)
        else:
            groups = np.asarray(groups, dtype=np.int64).ravel()
            if groups.size != values.size:
                raise ValueError("values and groups must have the same length")

        counts = np.bincount(groups, minlength=self.n_groups)
        sums = np.bincount(groups, weights=values, minlength=self.n_groups)
        means = np.zeros(self.n_groups)
        present = counts > 0
        means[present] = sums[present] / counts[present]
        deviations = values - means[groups]
        m2 = np.bincount(groups, weights=deviations * deviations, minlength=self.n_groups)

        self._combine(counts, means, m2)
        np.minimum.at(self.min, groups, values)
        np.maximum.at(self.max, groups, values)
        return self

    def merge(self, other: "RunningStats") -> "RunningStats":
        if other.n_groups != self.n_groups:
            raise ValueError("Cannot merge accumulators with different group counts")
        self._combine(other.count, other.mean, other.m2)
        self.min = np.minimum(self.min, other.min)
        self.max = np.maximum(self.max, other.max)
        return self

    def _combine(self, counts: np.ndarray, means: np.ndarray, m2: np.ndarray):
        total = self.count + counts
        safe_total = np.where(total > 0, total, 1)
        delta = means - self.mean
        self.mean = np.where(total > 0, self.mean + delta * counts / safe_total, 0.0)
        self.m2 = self.m2 + m2 + delta * delta * self.count * counts / safe_total
        self.count = total

    def variance(self, ddof: int = 1) -> np.ndarray:
        """Per-group variance; groups with count <= ddof report 0."""
        denom = self.count - ddof
        return np.where(denom > 0, self.m2 / np.where(denom > 0, denom, 1), 0.0)

    def std(self, ddof: int = 1) -> np.ndarray:
        return np.sqrt(np.maximum(self.variance(ddof), 0.0))
