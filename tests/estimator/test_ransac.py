"""Tests for the generic RANSAC engine, using a 2D line estimator as a toy problem.

The correspondences of the toy problem are x coordinates (first view) and y coordinates (second view) of 2D points.
"""

import math
import unittest
from typing import List, Sequence

import numpy as np

from rigpose.estimator.estimator_base import EstimatorBase
from rigpose.estimator.ransac import Ransac, RansacOptions
from rigpose.estimator.sampler import SamplerType

RANDOM_SEED = 0


class LineEstimator(EstimatorBase):
    """Fits y = a * x + b, models are arrays [a, b]."""

    min_num_samples = 2

    def estimate(self, points1: Sequence[float], points2: Sequence[float]) -> List[np.ndarray]:
        x = np.asarray(points1, dtype=np.float64)
        y = np.asarray(points2, dtype=np.float64)
        if len(x) < self.min_num_samples or np.ptp(x) == 0:
            return []
        return [np.polyfit(x, y, deg=1)]

    def residuals(self, points1: Sequence[float], points2: Sequence[float], model: np.ndarray) -> np.ndarray:
        return np.abs(np.asarray(points2, dtype=np.float64) - np.polyval(model, np.asarray(points1, dtype=np.float64)))


def generate_line_problem(
    num_inliers: int, num_outliers: int, noise_sigma: float, rng: np.random.Generator, a: float = 2.0, b: float = 1.0
):
    """Points on y = a * x + b with gaussian noise, followed by outliers at least 5 units off the line."""
    x = rng.uniform(-10, 10, size=num_inliers + num_outliers)
    y = a * x + b
    if noise_sigma > 0:
        y += rng.normal(scale=noise_sigma, size=x.shape)
    offsets = rng.choice([-1.0, 1.0], size=num_outliers) * rng.uniform(5, 50, size=num_outliers)
    y[num_inliers:] = a * x[num_inliers:] + b + offsets
    outlier_mask = np.zeros(len(x), dtype=bool)
    outlier_mask[num_inliers:] = True
    return list(x), list(y), outlier_mask


class TestRansacOptions(unittest.TestCase):
    def test_num_trials_all_inliers(self) -> None:
        options = RansacOptions(max_error=1.0)
        self.assertEqual(options.num_trials(num_inliers=100, num_samples=100, sample_size=2), 1)

    def test_num_trials_no_inliers(self) -> None:
        options = RansacOptions(max_error=1.0, max_num_trials=1234)
        self.assertEqual(options.num_trials(num_inliers=0, num_samples=100, sample_size=2), 1234)

    def test_num_trials_no_samples(self) -> None:
        options = RansacOptions(max_error=1.0, max_num_trials=1234)
        self.assertEqual(options.num_trials(num_inliers=0, num_samples=0, sample_size=2), 1234)

    def test_num_trials_full_confidence(self) -> None:
        options = RansacOptions(max_error=1.0, confidence=1.0, max_num_trials=1234)
        self.assertEqual(options.num_trials(num_inliers=50, num_samples=100, sample_size=2), 1234)

    def test_num_trials_formula(self) -> None:
        """log(1 - 0.99) / log(1 - 0.5^2) = 16.008..."""
        options = RansacOptions(max_error=1.0, confidence=0.99, dyn_num_trials_multiplier=1.0)
        self.assertEqual(options.num_trials(num_inliers=50, num_samples=100, sample_size=2), 17)

        options = options._replace(dyn_num_trials_multiplier=3.0)
        expected = math.ceil(math.log(0.01) / math.log(0.75) * 3.0)
        self.assertEqual(options.num_trials(num_inliers=50, num_samples=100, sample_size=2), expected)

    def test_num_trials_capped(self) -> None:
        options = RansacOptions(max_error=1.0, confidence=0.99, max_num_trials=10)
        self.assertEqual(options.num_trials(num_inliers=50, num_samples=100, sample_size=2), 10)

    def test_num_trials_monotonic_in_inliers(self) -> None:
        options = RansacOptions(max_error=1.0)
        trials = [options.num_trials(num_inliers, 100, 5) for num_inliers in range(10, 101, 10)]
        self.assertTrue(all(t1 >= t2 for t1, t2 in zip(trials[:-1], trials[1:])))

    def test_validate(self) -> None:
        invalid_options = [
            RansacOptions(max_error=0.0),
            RansacOptions(max_error=-1.0),
            RansacOptions(max_error=1.0, min_inlier_ratio=1.5),
            RansacOptions(max_error=1.0, confidence=0.0),
            RansacOptions(max_error=1.0, dyn_num_trials_multiplier=0.0),
            RansacOptions(max_error=1.0, min_num_trials=10, max_num_trials=5),
            RansacOptions(max_error=1.0, max_num_local_trials=-1),
            RansacOptions(max_error=1.0, max_local_sample_size=0),
            RansacOptions(max_error=1.0, sampler_type="PROSAC"),
        ]
        for options in invalid_options:
            with self.assertRaises(ValueError, msg=str(options)):
                options.validate()

        RansacOptions(max_error=1.0, sampler_type="COMBINATION").validate()


class TestRansac(unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.rng = np.random.default_rng(RANDOM_SEED)
        self.options = RansacOptions(max_error=0.5, confidence=0.999, local_optimization=False)
        self.ransac = Ransac(self.options, LineEstimator())

    def test_invalid_options_raise_on_construction(self) -> None:
        with self.assertRaises(ValueError):
            Ransac(RansacOptions(max_error=0.0), LineEstimator())

    def test_mismatched_lengths(self) -> None:
        with self.assertRaises(ValueError):
            self.ransac.estimate([0.0, 1.0, 2.0], [0.0, 1.0])

    def test_insufficient_data(self) -> None:
        report = self.ransac.estimate([1.0], [3.0])

        self.assertFalse(report.success)
        self.assertIsNone(report.model)
        self.assertEqual(report.num_inliers, 0)
        self.assertEqual(report.num_trials, 0)
        self.assertEqual(report.inlier_mask.shape, (1,))

    def test_empty_input(self) -> None:
        report = self.ransac.estimate([], [])
        self.assertFalse(report.success)
        self.assertEqual(report.inlier_ratio, 0.0)

    def test_all_samples_degenerate(self) -> None:
        """Identical x coordinates never yield a model, the combination sampler runs out of subsets."""
        ransac = Ransac(self.options._replace(sampler_type=SamplerType.COMBINATION), LineEstimator())
        report = ransac.estimate([1.0] * 5, [1.0, 2.0, 3.0, 4.0, 5.0])

        self.assertFalse(report.success)
        self.assertIsNone(report.model)
        self.assertEqual(report.num_inliers, 0)
        self.assertEqual(report.num_trials, 10)
        self.assertFalse(np.any(report.inlier_mask))

    def test_noiseless_stops_after_first_sample(self) -> None:
        points1, points2, _ = generate_line_problem(50, 0, 0.0, self.rng)
        report = self.ransac.estimate(points1, points2)

        self.assertTrue(report.success)
        self.assertEqual(report.num_trials, 1)
        self.assertEqual(report.num_inliers, 50)
        np.testing.assert_allclose(report.model, [2.0, 1.0])

    def test_min_num_trials(self) -> None:
        points1, points2, _ = generate_line_problem(50, 0, 0.0, self.rng)
        ransac = Ransac(self.options._replace(min_num_trials=5), LineEstimator())
        self.assertEqual(ransac.estimate(points1, points2).num_trials, 5)

    def test_max_num_trials(self) -> None:
        points1, points2, _ = generate_line_problem(10, 90, 0.1, self.rng)
        ransac = Ransac(self.options._replace(max_num_trials=7), LineEstimator())
        self.assertLessEqual(ransac.estimate(points1, points2).num_trials, 7)

    def test_recovers_line_with_outliers(self) -> None:
        points1, points2, outlier_mask = generate_line_problem(80, 20, 0.05, self.rng)
        report = self.ransac.estimate(points1, points2)

        self.assertTrue(report.success)
        np.testing.assert_allclose(report.model, [2.0, 1.0], atol=0.5)
        self.assertFalse(np.any(report.inlier_mask & outlier_mask))
        self.assertGreaterEqual(report.num_inliers, 70)
        self.assertAlmostEqual(report.inlier_ratio, report.num_inliers / 100)

    def test_inliers_respect_max_error(self) -> None:
        points1, points2, _ = generate_line_problem(80, 20, 0.2, self.rng)
        report = self.ransac.estimate(points1, points2)

        residuals = LineEstimator().residuals(points1, points2, report.model)
        self.assertTrue(np.all(residuals[report.inlier_mask] <= self.options.max_error))
        self.assertTrue(np.all(residuals[~report.inlier_mask] > self.options.max_error))
        self.assertEqual(report.num_inliers, np.count_nonzero(report.inlier_mask))
        self.assertAlmostEqual(report.support.residual_sum, residuals[report.inlier_mask].sum())

    def test_insufficient_support_reports_best_effort_model(self) -> None:
        points1, points2, _ = generate_line_problem(50, 50, 0.05, self.rng)
        ransac = Ransac(self.options._replace(min_inlier_ratio=0.9), LineEstimator())
        report = ransac.estimate(points1, points2)

        self.assertFalse(report.success)
        self.assertIsNotNone(report.model)
        self.assertGreater(report.num_inliers, 0)
        self.assertLess(report.num_inliers, 90)

    def test_is_reproducible(self) -> None:
        points1, points2, _ = generate_line_problem(60, 40, 0.1, self.rng)
        report1 = self.ransac.estimate(points1, points2)
        report2 = self.ransac.estimate(points1, points2)

        np.testing.assert_array_equal(report1.model, report2.model)
        np.testing.assert_array_equal(report1.inlier_mask, report2.inlier_mask)
        self.assertEqual(report1.num_trials, report2.num_trials)

    def test_non_finite_residuals_are_outliers(self) -> None:
        support, inlier_mask = self.ransac.evaluate([0.0, 1.0, 2.0], [1.0, np.nan, np.inf], np.array([2.0, 1.0]))

        np.testing.assert_array_equal(inlier_mask, [True, False, False])
        self.assertEqual(support.num_inliers, 1)

    def test_min_num_inliers(self) -> None:
        self.assertEqual(self.ransac.min_num_inliers(5), 2)
        self.assertEqual(self.ransac.min_num_inliers(100), 10)
        self.assertEqual(self.ransac.min_num_inliers(101), 11)


if __name__ == "__main__":
    unittest.main()
