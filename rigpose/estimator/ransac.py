"""Generic RANSAC estimator.

The engine is generic over any estimator implementing rigpose.estimator.estimator_base.EstimatorBase. Based upon
COLMAP's RANSAC class: https://github.com/colmap/colmap/blob/dev/src/colmap/optim/ransac.h

See the following slides for a derivation of the #req'd trials: http://www.cse.psu.edu/~rtc12/CSE486/lecture15.pdf
"""

import math
from typing import Any, NamedTuple, Optional, Sequence, Tuple

import numpy as np

import rigpose.utils.logger as logger_utils
from rigpose.common.ransac_report import InlierSupport, RansacReport
from rigpose.estimator.estimator_base import EstimatorBase
from rigpose.estimator.sampler import SamplerBase, SamplerType, create_sampler

logger = logger_utils.get_logger()


class RansacOptions(NamedTuple):
    """Options for robust estimation.

    Args:
        max_error: maximum residual for a correspondence to be an inlier, in the estimator's residual units.
        min_inlier_ratio: minimum fraction of inliers for a successful estimate. Also the a priori pessimistic
            inlier ratio used to compute the initial trial budget.
        confidence: desired probability of having drawn at least one outlier-free sample.
        dyn_num_trials_multiplier: multiplication factor for the dynamically computed number of trials.
        min_num_trials: minimum number of trials.
        max_num_trials: hard upper bound on the number of trials.
        random_seed: seed of the sampler. A fixed seed makes estimation reproducible.
        sampler_type: sampling strategy.
        local_optimization: whether LoRansac refines improved models from their inliers.
        max_num_local_trials: maximum number of local optimization iterations per improvement.
        max_local_sample_size: maximum number of inliers used for a local optimization step, None to use all.
    """

    max_error: float
    min_inlier_ratio: float = 0.1
    confidence: float = 0.9999
    dyn_num_trials_multiplier: float = 3.0
    min_num_trials: int = 0
    max_num_trials: int = 10000
    random_seed: Optional[int] = 0
    sampler_type: SamplerType = SamplerType.RANDOM
    local_optimization: bool = True
    max_num_local_trials: int = 10
    max_local_sample_size: Optional[int] = None

    def validate(self) -> None:
        """Raises ValueError if the options are out of range."""
        if not self.max_error > 0:
            raise ValueError(f"max_error must be positive, got {self.max_error}.")
        if not 0 <= self.min_inlier_ratio <= 1:
            raise ValueError(f"min_inlier_ratio must be in [0, 1], got {self.min_inlier_ratio}.")
        if not 0 < self.confidence <= 1:
            raise ValueError(f"confidence must be in (0, 1], got {self.confidence}.")
        if not self.dyn_num_trials_multiplier > 0:
            raise ValueError(f"dyn_num_trials_multiplier must be positive, got {self.dyn_num_trials_multiplier}.")
        if not 0 <= self.min_num_trials <= self.max_num_trials:
            raise ValueError(
                f"Expected 0 <= min_num_trials <= max_num_trials, got {self.min_num_trials}, {self.max_num_trials}."
            )
        if self.max_num_local_trials < 0:
            raise ValueError(f"max_num_local_trials must be non-negative, got {self.max_num_local_trials}.")
        if self.max_local_sample_size is not None and self.max_local_sample_size <= 0:
            raise ValueError(f"max_local_sample_size must be positive, got {self.max_local_sample_size}.")
        # Raises ValueError for unknown sampler types.
        SamplerType(self.sampler_type)

    def num_trials(self, num_inliers: int, num_samples: int, sample_size: int) -> int:
        """Computes the number of trials needed to draw an outlier-free sample with the desired confidence.

        trials = log(1 - confidence) / log(1 - inlier_ratio^sample_size) * dyn_num_trials_multiplier

        Args:
            num_inliers: #inliers of the best model.
            num_samples: #correspondences.
            sample_size: size of the minimal sample.

        Returns:
            Number of trials, capped by max_num_trials.
        """
        if num_samples == 0:
            return self.max_num_trials
        inlier_ratio = num_inliers / num_samples

        nom = 1 - self.confidence
        if nom <= 0:
            return self.max_num_trials

        denom = 1 - inlier_ratio**sample_size
        if denom <= 0:
            return 1
        # The log would vanish, i.e. no sample would ever be expected to be outlier-free.
        if abs(denom - 1) < 1e-10:
            return self.max_num_trials

        num_trials = math.ceil(math.log(nom) / math.log(denom) * self.dyn_num_trials_multiplier)
        return int(min(num_trials, self.max_num_trials))


class Ransac:
    """RANSAC over a generic estimator.

    Instances only hold read-only options and estimators, so concurrent `estimate` calls do not interact.

    Args:
        options: options for robust estimation.
        estimator: estimator producing candidate models from minimal samples and scoring them.
    """

    def __init__(self, options: RansacOptions, estimator: EstimatorBase) -> None:
        options.validate()
        self._options = options
        self._estimator = estimator

    def __repr__(self) -> str:
        return f"{type(self).__name__}__{self._estimator}_{self._options.max_error}"

    @property
    def options(self) -> RansacOptions:
        return self._options

    @property
    def estimator(self) -> EstimatorBase:
        return self._estimator

    def evaluate(self, points1: Sequence[Any], points2: Sequence[Any], model: Any) -> Tuple[InlierSupport, np.ndarray]:
        """Scores a model against all correspondences.

        Non-finite residuals never count as inliers.

        Returns:
            Support of the model.
            Boolean inlier mask of shape (N,).
        """
        residuals = np.asarray(self._estimator.residuals(points1, points2, model), dtype=np.float64)
        inlier_mask = np.isfinite(residuals) & (residuals <= self._options.max_error)
        support = InlierSupport(
            num_inliers=int(np.count_nonzero(inlier_mask)), residual_sum=float(residuals[inlier_mask].sum())
        )
        return support, inlier_mask

    def min_num_inliers(self, num_samples: int) -> int:
        """Minimum support for a successful estimate."""
        return max(self._estimator.min_num_samples, math.ceil(self._options.min_inlier_ratio * num_samples))

    def _failure_report(self, num_samples: int, num_trials: int = 0) -> RansacReport:
        return RansacReport(
            success=False,
            model=self._estimator.identity_model(),
            support=InlierSupport(),
            num_trials=num_trials,
            inlier_mask=np.zeros(num_samples, dtype=bool),
        )

    def _locally_optimize(
        self,
        points1: Sequence[Any],
        points2: Sequence[Any],
        model: Any,
        support: InlierSupport,
        inlier_mask: np.ndarray,
        sampler: SamplerBase,
    ) -> Tuple[Any, InlierSupport, np.ndarray]:
        """Hook called whenever a sample yields a new best model. Plain RANSAC keeps the model as is."""
        return model, support, inlier_mask

    def estimate(self, points1: Sequence[Any], points2: Sequence[Any]) -> RansacReport:
        """Robustly estimates a model from index-aligned correspondences.

        Args:
            points1: N observations at the first view.
            points2: N corresponding observations at the second view.

        Returns:
            Report with the best model and its support.
        """
        if len(points1) != len(points2):
            raise ValueError(f"Correspondence sequences differ in length: {len(points1)} vs. {len(points2)}.")
        num_samples = len(points1)
        sample_size = self._estimator.min_num_samples
        name = type(self).__name__.upper()

        if num_samples < sample_size:
            logger.debug("[%s] Not enough correspondences for estimation: %d < %d.", name, num_samples, sample_size)
            return self._failure_report(num_samples)

        options = self._options
        sampler = create_sampler(options.sampler_type, num_samples, sample_size, options.random_seed)

        best_model = None
        best_support: Optional[InlierSupport] = None
        best_inlier_mask = np.zeros(num_samples, dtype=bool)

        # Start from the pessimistic inlier ratio, and only ever shrink the budget.
        dyn_max_num_trials = options.num_trials(
            math.ceil(options.min_inlier_ratio * num_samples), num_samples, sample_size
        )

        num_trials = 0
        while num_trials < options.max_num_trials:
            if num_trials >= dyn_max_num_trials and num_trials >= options.min_num_trials:
                break

            sample = sampler.sample()
            if sample is None:
                logger.debug("[%s] Sampler exhausted after %d trials.", name, num_trials)
                break
            num_trials += 1

            sample_points1 = [points1[i] for i in sample]
            sample_points2 = [points2[i] for i in sample]
            for model in self._estimator.estimate(sample_points1, sample_points2):
                support, inlier_mask = self.evaluate(points1, points2, model)
                if best_support is not None and not support.is_better_than(best_support):
                    continue

                best_model, best_support, best_inlier_mask = self._locally_optimize(
                    points1, points2, model, support, inlier_mask, sampler
                )
                dyn_max_num_trials = min(
                    dyn_max_num_trials, options.num_trials(best_support.num_inliers, num_samples, sample_size)
                )

        if best_support is None:
            logger.debug("[%s] No model could be estimated in %d trials.", name, num_trials)
            return self._failure_report(num_samples, num_trials)

        success = best_support.num_inliers >= self.min_num_inliers(num_samples)
        if not success:
            logger.debug(
                "[%s] Best model has %d / %d inliers, below the required minimum.",
                name,
                best_support.num_inliers,
                num_samples,
            )

        return RansacReport(
            success=success,
            model=best_model,
            support=best_support,
            num_trials=num_trials,
            inlier_mask=best_inlier_mask,
        )
