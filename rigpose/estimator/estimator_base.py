"""Base class for estimators that can be plugged into the robust estimation engine.

An estimator solves a geometric problem from a small subset of correspondences and scores a model against any set
of correspondences. The engine in rigpose.estimator.ransac is generic over this interface.
"""

import abc
from typing import Any, List, Sequence

import numpy as np


class EstimatorBase(metaclass=abc.ABCMeta):
    """Base class for all estimators.

    Subclasses set `min_num_samples`, the number of correspondence pairs required by `estimate`.
    """

    min_num_samples: int

    def __repr__(self) -> str:
        return f"{type(self).__name__}__min_num_samples{self.min_num_samples}"

    @abc.abstractmethod
    def estimate(self, points1: Sequence[Any], points2: Sequence[Any]) -> List[Any]:
        """Estimates candidate models from index-aligned correspondences.

        Args:
            points1: observations at the first view, at least `min_num_samples` of them.
            points2: corresponding observations at the second view.

        Returns:
            Zero, one or several candidate models. An empty list signals a degenerate sample.
        """

    @abc.abstractmethod
    def residuals(self, points1: Sequence[Any], points2: Sequence[Any], model: Any) -> np.ndarray:
        """Computes the residual of every correspondence pair under a model.

        Args:
            points1: observations at the first view.
            points2: corresponding observations at the second view.
            model: model to score.

        Returns:
            Finite residuals, of shape (N,).
        """

    def identity_model(self) -> Any:
        """Model reported when estimation fails before any candidate is generated."""
        return None
