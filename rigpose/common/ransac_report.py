"""Container for the result of one robust estimation call.

In the spirit of COLMAP's Report class:
https://github.com/colmap/colmap/blob/dev/src/colmap/optim/ransac.h
"""

from dataclasses import dataclass
from typing import Any, NamedTuple

import numpy as np


class InlierSupport(NamedTuple):
    """Support of a model, measured by its number of inliers.

    Args:
        num_inliers: #correspondences with a residual below the error threshold.
        residual_sum: sum of the residuals of the inliers.
    """

    num_inliers: int = 0
    residual_sum: float = 0.0

    def is_better_than(self, other: "InlierSupport") -> bool:
        """Only strictly more inliers count as better, so that the first model found wins ties."""
        return self.num_inliers > other.num_inliers


@dataclass(frozen=True)
class RansacReport:
    """Information about the robust estimation result.

    Args:
        success: whether a model with sufficient support was found.
        model: best model. On failure it is the best-effort model for diagnostics, or the estimator's identity
            model if no candidate was ever generated. For rig relative pose it is the Rigid3d rig2_from_rig1, whose
            finalized 3x4 form is `model.matrix()`.
        support: support of the best model.
        num_trials: number of minimal samples drawn.
        inlier_mask: boolean array of shape (N,) marking the inliers of the best model.
    """

    success: bool
    model: Any
    support: InlierSupport
    num_trials: int
    inlier_mask: np.ndarray

    @property
    def num_inliers(self) -> int:
        return self.support.num_inliers

    @property
    def inlier_ratio(self) -> float:
        """#inliers / #correspondences, 0 for an empty correspondence set."""
        if self.inlier_mask.size == 0:
            return 0.0
        return self.support.num_inliers / self.inlier_mask.size
