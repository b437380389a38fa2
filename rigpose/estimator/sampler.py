"""Samplers drawing subsets of correspondence indices for robust estimation.

Samplers are seeded, so that a fixed seed yields a reproducible sequence of samples.
"""

import abc
import itertools
import math
from enum import Enum
from typing import Iterator, Optional, Tuple

import numpy as np


class SamplerType(str, Enum):
    """Sampling strategies.

    RANDOM: uniform random subsets, drawn without replacement within each subset.
    COMBINATION: exhaustive enumeration of all subsets in lexicographic order.
    """

    RANDOM = "RANDOM"
    COMBINATION = "COMBINATION"


class SamplerBase(metaclass=abc.ABCMeta):
    """Base class for samplers.

    Args:
        num_total: number of correspondences N to draw from.
        sample_size: number of distinct indices per sample.
        random_seed: seed of the random generator.
    """

    def __init__(self, num_total: int, sample_size: int, random_seed: Optional[int] = None) -> None:
        if sample_size <= 0:
            raise ValueError(f"Sample size must be positive, got {sample_size}.")
        self._num_total = num_total
        self._sample_size = sample_size
        self._rng = np.random.default_rng(random_seed)

    @property
    def sample_size(self) -> int:
        return self._sample_size

    @property
    @abc.abstractmethod
    def max_num_samples(self) -> float:
        """Maximum number of samples this sampler can draw, math.inf if unbounded."""

    @abc.abstractmethod
    def sample(self) -> Optional[np.ndarray]:
        """Draws the next sample.

        Returns:
            Sorted array of `sample_size` distinct indices in [0, N), or None if the sampler is exhausted.
        """

    def sample_from(self, indices: np.ndarray, sample_size: int) -> np.ndarray:
        """Draws `sample_size` distinct entries of `indices` with this sampler's generator."""
        if sample_size >= len(indices):
            return np.asarray(indices)
        return np.sort(self._rng.choice(indices, size=sample_size, replace=False))


class RandomSampler(SamplerBase):
    """Draws uniform random subsets without replacement."""

    @property
    def max_num_samples(self) -> float:
        return math.inf if self._num_total >= self._sample_size else 0

    def sample(self) -> Optional[np.ndarray]:
        if self._num_total < self._sample_size:
            return None
        return np.sort(self._rng.choice(self._num_total, size=self._sample_size, replace=False))


class CombinationSampler(SamplerBase):
    """Enumerates all C(N, k) subsets exactly once."""

    def __init__(self, num_total: int, sample_size: int, random_seed: Optional[int] = None) -> None:
        super().__init__(num_total, sample_size, random_seed)
        self._combinations: Iterator[Tuple[int, ...]] = itertools.combinations(range(num_total), sample_size)

    @property
    def max_num_samples(self) -> float:
        return math.comb(self._num_total, self._sample_size) if self._num_total >= self._sample_size else 0

    def sample(self) -> Optional[np.ndarray]:
        combination = next(self._combinations, None)
        if combination is None:
            return None
        return np.array(combination)


def create_sampler(
    sampler_type: SamplerType, num_total: int, sample_size: int, random_seed: Optional[int] = None
) -> SamplerBase:
    """Creates a sampler of the requested type, given as SamplerType or its string value."""
    sampler_type = SamplerType(sampler_type)
    if sampler_type == SamplerType.RANDOM:
        return RandomSampler(num_total, sample_size, random_seed)
    if sampler_type == SamplerType.COMBINATION:
        return CombinationSampler(num_total, sample_size, random_seed)
    raise ValueError(f"Unknown sampler type {sampler_type}.")
