"""Utilities for epipolar geometry between sub-cameras of generalized cameras."""

import numpy as np

MAX_RESIDUAL = np.finfo(np.float64).max
EPS = 1e-12  # constant used to prevent division by zero error.


def cross_product_matrix(v: np.ndarray) -> np.ndarray:
    """Returns the skew-symmetric matrix [v]x such that [v]x @ u = v x u.

    Args:
        v: vector(s) of shape (3,) or (N, 3).

    Returns:
        Matrix of shape (3, 3), or (N, 3, 3) for batched input.
    """
    v = np.asarray(v, dtype=np.float64)
    skew = np.zeros(v.shape[:-1] + (3, 3))
    skew[..., 0, 1] = -v[..., 2]
    skew[..., 0, 2] = v[..., 1]
    skew[..., 1, 0] = v[..., 2]
    skew[..., 1, 2] = -v[..., 0]
    skew[..., 2, 0] = -v[..., 1]
    skew[..., 2, 1] = v[..., 0]
    return skew


def vector_from_cross_product_matrix(skew: np.ndarray) -> np.ndarray:
    """Recovers v from a (nearly) skew-symmetric matrix [v]x, averaging the two entries for each coordinate."""
    return 0.5 * np.array(
        [skew[2, 1] - skew[1, 2], skew[0, 2] - skew[2, 0], skew[1, 0] - skew[0, 1]],
    )


def essential_matrices_from_poses(i2Ri1: np.ndarray, i2ti1: np.ndarray) -> np.ndarray:
    """Computes E = [t]x R for one or more relative poses.

    Args:
        i2Ri1: rotation(s) of shape (3, 3) or (N, 3, 3).
        i2ti1: translation(s) of shape (3,) or (N, 3).

    Returns:
        Essential matrices, of shape (3, 3) or (N, 3, 3).
    """
    return cross_product_matrix(i2ti1) @ i2Ri1


def compute_sampson_errors_sq(xy_i1: np.ndarray, xy_i2: np.ndarray, i2Ei1: np.ndarray) -> np.ndarray:
    """Computes the squared Sampson error for correspondences, each with its own essential matrix.

    The squared Sampson distance is the first order approximation of the squared reprojection error, computed as in
    COLMAP: https://github.com/colmap/colmap/blob/dev/src/colmap/estimators/utils.cc

    Algorithm:
    - l2 = E @ x1
    - l1 = E.T @ x2
    - Sampson^2 = (x2.T @ E @ x1)^2 / (l2[0]^2 + l2[1]^2 + l1[0]^2 + l1[1]^2)

    Args:
        xy_i1: normalized coordinates in camera i1, of shape (N, 2).
        xy_i2: normalized coordinates in camera i2, of shape (N, 2).
        i2Ei1: essential matrices, of shape (N, 3, 3).

    Returns:
        Finite squared Sampson errors, of shape (N,). Correspondences with a vanishing denominator, or with
        non-finite values, are assigned MAX_RESIDUAL.
    """
    num_points = xy_i1.shape[0]
    if num_points == 0:
        return np.zeros(0)

    x1 = np.hstack([xy_i1, np.ones((num_points, 1))])
    x2 = np.hstack([xy_i2, np.ones((num_points, 1))])

    Ex1 = np.einsum("nij,nj->ni", i2Ei1, x1)
    Etx2 = np.einsum("nji,nj->ni", i2Ei1, x2)
    x2tEx1 = np.sum(x2 * Ex1, axis=1)

    numerator = np.square(x2tEx1)
    denominator = np.sum(np.square(Ex1[:, :2]), axis=1) + np.sum(np.square(Etx2[:, :2]), axis=1)

    errors = np.full(num_points, MAX_RESIDUAL)
    valid = np.isfinite(numerator) & np.isfinite(denominator) & (denominator > EPS)
    errors[valid] = numerator[valid] / denominator[valid]
    errors[~np.isfinite(errors)] = MAX_RESIDUAL
    return errors
