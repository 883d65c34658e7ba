"""Handling coordinate normalizations"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
from numpy.typing import NDArray

from bezfit.common import PointsLike, as_points


###############################################################################
# AxisNormalization
###############################################################################
@dataclass(frozen=True)
class AxisNormalization:
    """
    Per-axis affine normalization of a point set.

    Points are shifted to zero mean and both axes are divided by their standard
    deviation relative to the smaller of the two, i.e. the axis with the larger
    spread is scaled down to match the other one:
        x' = (x - mean_x) / scale_x
        y' = (y - mean_y) / scale_y
    with min(scale_x, scale_y) == 1.

    Attributes:
        mean (Tuple[float, float]): Per-axis mean of the original points.
        scale (Tuple[float, float]): Per-axis divisor applied after centering.
    """

    mean: Tuple[float, float] = (0.0, 0.0)
    scale: Tuple[float, float] = (1.0, 1.0)

    @classmethod
    def identity(cls) -> AxisNormalization:
        """Normalization that leaves coordinates unchanged."""
        return cls()

    @classmethod
    def from_points(cls, points: PointsLike) -> AxisNormalization:
        """
        Compute the normalization for the given points.

        An axis without spread keeps a scale of 1; if both axes have no spread,
        the normalization only centers the points.

        Args:
            points: Points of shape (N, 2).

        Returns:
            AxisNormalization: The normalization of the points.
        """
        xy = as_points(points, min_count=1)
        mean = xy.mean(axis=0)
        std = xy.std(axis=0)

        positive = std[std > 0.0]
        if positive.size == 0:
            return cls(mean=(float(mean[0]), float(mean[1])))

        min_std = float(positive.min())
        scale = np.where(std > 0.0, std / min_std, 1.0)
        return cls(mean=(float(mean[0]), float(mean[1])), scale=(float(scale[0]), float(scale[1])))

    def apply(self, points: PointsLike) -> NDArray[np.float64]:
        """Transform points into the normalized frame."""
        xy = as_points(points)
        return (xy - np.asarray(self.mean)) / np.asarray(self.scale)

    def invert(self, points: PointsLike) -> NDArray[np.float64]:
        """Transform points from the normalized frame back to the original frame."""
        xy = as_points(points)
        return xy * np.asarray(self.scale) + np.asarray(self.mean)
