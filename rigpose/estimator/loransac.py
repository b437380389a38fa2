"""Locally optimized RANSAC.

Whenever a minimal sample yields a new best model, the model is re-estimated from its inliers with a (possibly
different) local estimator. This is repeated while the inlier set keeps growing, for a bounded number of
iterations.

LORANSAC paper:
ftp://cmp.felk.cvut.cz/pub/cmp/articles/matas/chum-dagm03.pdf

Based upon COLMAP's LORANSAC class: https://github.com/colmap/colmap/blob/dev/src/colmap/optim/loransac.h
"""

from typing import Any, Optional, Sequence, Tuple

import numpy as np

import rigpose.utils.logger as logger_utils
from rigpose.common.ransac_report import InlierSupport
from rigpose.estimator.estimator_base import EstimatorBase
from rigpose.estimator.ransac import Ransac, RansacOptions
from rigpose.estimator.sampler import SamplerBase

logger = logger_utils.get_logger()


class LoRansac(Ransac):
    """RANSAC with local optimization of every improved model.

    Args:
        options: options for robust estimation.
        estimator: estimator used on minimal samples.
        local_estimator: estimator used on inlier sets, defaults to `estimator`. It must accept more than
            `min_num_samples` correspondences.
    """

    def __init__(
        self, options: RansacOptions, estimator: EstimatorBase, local_estimator: Optional[EstimatorBase] = None
    ) -> None:
        super().__init__(options, estimator)
        self._local_estimator = local_estimator if local_estimator is not None else estimator

    @property
    def local_estimator(self) -> EstimatorBase:
        return self._local_estimator

    def _locally_optimize(
        self,
        points1: Sequence[Any],
        points2: Sequence[Any],
        model: Any,
        support: InlierSupport,
        inlier_mask: np.ndarray,
        sampler: SamplerBase,
    ) -> Tuple[Any, InlierSupport, np.ndarray]:
        """Refines a new best model from its inliers.

        Args:
            points1: all observations at the first view.
            points2: all observations at the second view.
            model: new best model, estimated from a minimal sample.
            support: support of `model`.
            inlier_mask: inlier mask of `model`.
            sampler: sampler of the current estimation call, used to subsample large inlier sets.

        Returns:
            Best model found, with its support and inlier mask.
        """
        options = self._options
        if not options.local_optimization or options.max_num_local_trials == 0:
            return model, support, inlier_mask

        best_model, best_support, best_inlier_mask = model, support, inlier_mask
        if (
            best_support.num_inliers <= self._estimator.min_num_samples
            or best_support.num_inliers < self._local_estimator.min_num_samples
        ):
            return best_model, best_support, best_inlier_mask

        for local_trial in range(options.max_num_local_trials):
            inlier_idxs = np.flatnonzero(best_inlier_mask)
            if options.max_local_sample_size is not None:
                sample_size = max(options.max_local_sample_size, self._local_estimator.min_num_samples)
                inlier_idxs = sampler.sample_from(inlier_idxs, sample_size)

            prev_num_inliers = best_support.num_inliers
            local_models = self._local_estimator.estimate(
                [points1[i] for i in inlier_idxs], [points2[i] for i in inlier_idxs]
            )
            for local_model in local_models:
                local_support, local_inlier_mask = self.evaluate(points1, points2, local_model)
                if local_support.is_better_than(best_support):
                    best_model, best_support, best_inlier_mask = local_model, local_support, local_inlier_mask

            # Only continue while the inlier set expands.
            if best_support.num_inliers <= prev_num_inliers:
                break

        logger.debug(
            "[LORANSAC] Local optimization: %d -> %d inliers after %d iterations.",
            support.num_inliers,
            best_support.num_inliers,
            local_trial + 1,
        )
        return best_model, best_support, best_inlier_mask
