"""Relative pose estimators for two generalized cameras.

Each observation is lifted to a Plücker ray (d, m) in the reference frame of its rig. For the relative pose
rig2_from_rig1 = (R, t), corresponding rays intersect, which gives the generalized epipolar constraint

    d2^T E d1 + d2^T R m1 + m2^T R d1 = 0,    with E = [t]x R.

Unlike for a central camera, the constraint is not homogeneous in t, so the metric translation is recovered as well.

Two solvers are provided:
- GeneralizedRelativePoseEstimator solves the 6-dof problem from 8 correspondences. The rotation is initialized from
  the essential matrix of the rays' directions (i.e. treating the rig as a central camera), and the pose is then
  refined with Gauss-Newton on the generalized epipolar constraint.
- LinearGeneralizedRelativePoseEstimator treats the constraint as linear in the 18 entries of (E, R), so 17
  correspondences determine them up to scale. It needs no initialization, which makes it a good local estimator on
  large inlier sets.

References:
- R. Pless. Using many cameras as one. CVPR, 2003.
- H. Li, R. Hartley, J. Kim. A linear approach to motion estimation using generalized camera models. CVPR, 2008.
- L. Kneip, H. Li. Efficient computation of relative pose for multi-camera systems. CVPR, 2014.
"""

from typing import List, Sequence, Tuple

import numpy as np
from gtsam import Rot3  # type: ignore

import rigpose.utils.geometry as geometry_utils
import rigpose.utils.logger as logger_utils
from rigpose.common.rig_correspondence import RigCorrespondence, check_aligned, rig_rays, stack_correspondences
from rigpose.common.rigid3 import Rigid3d
from rigpose.estimator.estimator_base import EstimatorBase

NUM_SAMPLES_REQ_GENERALIZED_POSE = 8
NUM_SAMPLES_REQ_GENERALIZED_E = 17
NULLSPACE_RANK_TOL = 1e-10
JACOBIAN_RANK_TOL = 1e-10
MIN_ROTATION_SCALE = 1e-12

MAX_REFINEMENT_ITERATIONS = 20
MAX_STEP_HALVINGS = 8
MIN_STEP_NORM = 1e-12

logger = logger_utils.get_logger()


def _epipolar_residuals(
    R: np.ndarray, t: np.ndarray, d1: np.ndarray, m1: np.ndarray, d2: np.ndarray, m2: np.ndarray
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Evaluates the generalized epipolar constraint for every ray pair.

    Returns:
        Algebraic residuals, of shape (N,).
        Rotated directions R d1, of shape (N, 3).
        Rotated moments R m1, of shape (N, 3).
        Coefficients of t in the residuals, (R d1) x d2, of shape (N, 3).
    """
    Rd1 = d1 @ R.T
    Rm1 = m1 @ R.T
    t_coeffs = np.cross(Rd1, d2)
    residuals = t_coeffs @ t + np.sum(d2 * Rm1, axis=1) + np.sum(m2 * Rd1, axis=1)
    return residuals, Rd1, Rm1, t_coeffs


def _solve_translation(R: np.ndarray, d1: np.ndarray, m1: np.ndarray, d2: np.ndarray, m2: np.ndarray) -> np.ndarray:
    """Least-squares translation for a fixed rotation, the constraint being affine in t."""
    _, Rd1, Rm1, t_coeffs = _epipolar_residuals(R, np.zeros(3), d1, m1, d2, m2)
    rhs = -(np.sum(d2 * Rm1, axis=1) + np.sum(m2 * Rd1, axis=1))
    return np.linalg.lstsq(t_coeffs, rhs, rcond=None)[0]


def _jacobian(
    t: np.ndarray, d2: np.ndarray, m2: np.ndarray, Rd1: np.ndarray, Rm1: np.ndarray, t_coeffs: np.ndarray
) -> np.ndarray:
    """Jacobian of the residuals w.r.t. (w, t), for the rotation update R <- Exp(w) R."""
    J_rotation = np.cross(Rm1, d2) + np.cross(Rd1, m2) + np.cross(Rd1, np.cross(d2, t))
    return np.hstack([J_rotation, t_coeffs])


def _refine_pose(
    R: np.ndarray, d1: np.ndarray, m1: np.ndarray, d2: np.ndarray, m2: np.ndarray
) -> Tuple[np.ndarray, np.ndarray, float]:
    """Minimizes the squared algebraic residuals over (R, t) with Gauss-Newton, starting from rotation R.

    Steps that do not decrease the cost are halved, and the iteration stops once no decrease is possible.

    Returns:
        Refined rotation and translation, and the final cost.
    """
    t = _solve_translation(R, d1, m1, d2, m2)
    residuals, Rd1, Rm1, t_coeffs = _epipolar_residuals(R, t, d1, m1, d2, m2)
    cost = float(residuals @ residuals)

    for _ in range(MAX_REFINEMENT_ITERATIONS):
        J = _jacobian(t, d2, m2, Rd1, Rm1, t_coeffs)
        step = np.linalg.lstsq(J, -residuals, rcond=None)[0]
        if not np.all(np.isfinite(step)):
            break

        for _ in range(MAX_STEP_HALVINGS):
            R_new = Rot3.Expmap(step[:3]).matrix() @ R
            t_new = t + step[3:]
            new_residuals, new_Rd1, new_Rm1, new_t_coeffs = _epipolar_residuals(R_new, t_new, d1, m1, d2, m2)
            new_cost = float(new_residuals @ new_residuals)
            if new_cost < cost:
                break
            step = 0.5 * step
        else:
            break

        R, t, cost = R_new, t_new, new_cost
        residuals, Rd1, Rm1, t_coeffs = new_residuals, new_Rd1, new_Rm1, new_t_coeffs
        if np.linalg.norm(step) < MIN_STEP_NORM:
            break

    return R, t, cost


def _central_rotation_candidates(d1: np.ndarray, d2: np.ndarray) -> List[np.ndarray]:
    """Rotations of the essential matrix fit to the ray directions only, i.e. ignoring the camera offsets.

    Returns:
        The two rotations of the twisted pair, U W V^T and U W^T V^T.
    """
    A = np.einsum("ni,nj->nij", d2, d1).reshape(-1, 9)
    _, _, vh = np.linalg.svd(A)
    E = vh[-1].reshape(3, 3)

    U, _, Vt = np.linalg.svd(E)
    if np.linalg.det(U) < 0:
        U = -U
    if np.linalg.det(Vt) < 0:
        Vt = -Vt
    W = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    return [U @ W @ Vt, U @ W.T @ Vt]


class GeneralizedRelativePoseEstimator(EstimatorBase):
    """Estimates rig2_from_rig1 from correspondences between two generalized cameras.

    Models are Rigid3d instances. `estimate` accepts the 8-point sample, or more correspondences for a least-squares
    solution.
    """

    min_num_samples = NUM_SAMPLES_REQ_GENERALIZED_POSE

    def estimate(self, points1: Sequence[RigCorrespondence], points2: Sequence[RigCorrespondence]) -> List[Rigid3d]:
        """Solves the generalized epipolar constraint for the relative pose.

        The refinement is started from the better rotation of the central approximation, and from the identity,
        which covers rigs moving with a negligible translation. The start reaching the lowest cost wins.

        Args:
            points1: N >= 8 correspondences at the first rig instant.
            points2: N corresponding correspondences at the second rig instant.

        Returns:
            List with the estimated rig2_from_rig1, or an empty list for degenerate configurations.
        """
        check_aligned(points1, points2)
        if len(points1) < self.min_num_samples:
            return []

        d1, m1 = rig_rays(points1)
        d2, m2 = rig_rays(points2)
        if not all(np.all(np.isfinite(x)) for x in (d1, m1, d2, m2)):
            return []

        central_rotations = _central_rotation_candidates(d1, d2)
        central_costs = []
        for R in central_rotations:
            t = _solve_translation(R, d1, m1, d2, m2)
            residuals = _epipolar_residuals(R, t, d1, m1, d2, m2)[0]
            central_costs.append(residuals @ residuals)
        initial_rotations = [central_rotations[int(np.argmin(central_costs))], np.eye(3)]

        best_R, best_t, best_cost = None, None, np.inf
        for R_init in initial_rotations:
            R, t, cost = _refine_pose(R_init, d1, m1, d2, m2)
            if np.isfinite(cost) and cost < best_cost:
                best_R, best_t, best_cost = R, t, cost
        if best_R is None or not (np.all(np.isfinite(best_R)) and np.all(np.isfinite(best_t))):
            return []

        # The pose is only determined if the constraints are independent around the solution.
        residuals, Rd1, Rm1, t_coeffs = _epipolar_residuals(best_R, best_t, d1, m1, d2, m2)
        singular_values = np.linalg.svd(_jacobian(best_t, d2, m2, Rd1, Rm1, t_coeffs), compute_uv=False)
        if singular_values[-1] <= JACOBIAN_RANK_TOL * singular_values[0]:
            logger.debug("[GeneralizedRelativePose] Degenerate sample, the pose is not locally unique.")
            return []

        # Project onto SO(3) to remove the drift of the iterated updates.
        u, _, vt = np.linalg.svd(best_R)
        R = u @ np.diag([1.0, 1.0, np.linalg.det(u @ vt)]) @ vt
        return [Rigid3d.from_rotation_matrix(R, best_t)]

    def residuals(
        self, points1: Sequence[RigCorrespondence], points2: Sequence[RigCorrespondence], model: Rigid3d
    ) -> np.ndarray:
        """Computes the squared Sampson error of every correspondence under a relative pose.

        For each pair, the relative pose between the two observing sub-cameras is
        cam2_from_cam1 = cam2_from_rig2 * rig2_from_rig1 * cam1_from_rig1^-1, whose essential matrix scores the pair.

        Args:
            points1: N correspondences at the first rig instant.
            points2: N corresponding correspondences at the second rig instant.
            model: rig2_from_rig1.

        Returns:
            Finite squared Sampson errors, of shape (N,).
        """
        check_aligned(points1, points2)
        if len(points1) == 0:
            return np.zeros(0)

        R1, t1, xy1 = stack_correspondences(points1)
        R2, t2, xy2 = stack_correspondences(points2)
        R = model.rotation_matrix()
        t = model.translation

        # rig1_from_cam1 = (R1^T, -R1^T t1)
        R1t = np.transpose(R1, (0, 2, 1))
        rig1_t_cam1 = -np.einsum("nij,nj->ni", R1t, t1)

        cam2_R_cam1 = R2 @ R @ R1t
        cam2_t_cam1 = np.einsum("nij,nj->ni", R2, rig1_t_cam1 @ R.T + t) + t2

        cam2_E_cam1 = geometry_utils.essential_matrices_from_poses(cam2_R_cam1, cam2_t_cam1)
        return geometry_utils.compute_sampson_errors_sq(xy1, xy2, cam2_E_cam1)

    def identity_model(self) -> Rigid3d:
        return Rigid3d()


class LinearGeneralizedRelativePoseEstimator(GeneralizedRelativePoseEstimator):
    """Linear 17-point solver, used as local estimator on inlier sets.

    The linear formulation ignores that R is a rotation, which makes it degenerate for locally-central samples,
    where every point is observed by the same sub-camera at both instants.
    """

    min_num_samples = NUM_SAMPLES_REQ_GENERALIZED_E

    def estimate(self, points1: Sequence[RigCorrespondence], points2: Sequence[RigCorrespondence]) -> List[Rigid3d]:
        """Solves the linear system in (E, R) for the relative pose.

        Args:
            points1: N >= 17 correspondences at the first rig instant.
            points2: N corresponding correspondences at the second rig instant.

        Returns:
            List with the estimated rig2_from_rig1, or an empty list for degenerate configurations.
        """
        check_aligned(points1, points2)
        if len(points1) < self.min_num_samples:
            return []

        d1, m1 = rig_rays(points1)
        d2, m2 = rig_rays(points2)

        # Coefficients of vec(E) and vec(R), with row-major vectorization.
        A = np.hstack(
            [
                np.einsum("ni,nj->nij", d2, d1).reshape(-1, 9),
                (np.einsum("ni,nj->nij", d2, m1) + np.einsum("ni,nj->nij", m2, d1)).reshape(-1, 9),
            ]
        )
        if not np.all(np.isfinite(A)):
            return []

        # For N > 17 the last right singular vector is the least-squares solution.
        _, singular_values, vh = np.linalg.svd(A)
        # The solution must be unique up to scale, i.e. the second smallest singular value must not vanish.
        if singular_values[16] <= NULLSPACE_RANK_TOL * singular_values[0]:
            logger.debug("[GeneralizedRelativePose] Degenerate sample, nullspace has dimension > 1.")
            return []

        solution = vh[-1]
        E = solution[:9].reshape(3, 3)
        R = solution[9:].reshape(3, 3)

        # Fix the scale (and sign) such that R has unit determinant.
        scale = np.cbrt(np.linalg.det(R))
        if abs(scale) < MIN_ROTATION_SCALE:
            logger.debug("[GeneralizedRelativePose] Degenerate sample, rotation block is singular.")
            return []
        E = E / scale
        R = R / scale

        # Project onto SO(3).
        u, _, vt = np.linalg.svd(R)
        R = u @ np.diag([1.0, 1.0, np.linalg.det(u @ vt)]) @ vt

        t = geometry_utils.vector_from_cross_product_matrix(E @ R.T)
        if not (np.all(np.isfinite(R)) and np.all(np.isfinite(t))):
            return []

        return [Rigid3d.from_rotation_matrix(R, t)]
