"""Utilities for generating synthetic generalized camera (rig) scenes."""

from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial.transform import Rotation

from rigpose.common.rig_correspondence import RigCorrespondence
from rigpose.common.rigid3 import Rigid3d


def sample_points_in_front(
    num_points: int,
    rng: np.random.Generator,
    range_xy: Tuple[float, float] = (-1.0, 1.0),
    range_z: Tuple[float, float] = (1.0, 3.0),
) -> np.ndarray:
    """Sample random 3D points in a box in front of the rig reference frame.

    Args:
        num_points: number of points to sample.
        rng: random generator.
        range_xy: range of the x and y coordinates.
        range_z: range of the z (depth) coordinates.

    Returns:
        3d points of shape (num_points, 3).
    """
    xy = rng.uniform(low=range_xy[0], high=range_xy[1], size=(num_points, 2))
    z = rng.uniform(low=range_z[0], high=range_z[1], size=(num_points, 1))
    return np.hstack([xy, z])


def sample_random_rigid3d(rng: np.random.Generator, max_angle_rad: float, max_translation: float) -> Rigid3d:
    """Sample a random rigid transform with bounded rotation angle and translation norm."""
    axis = rng.normal(size=3)
    axis /= np.linalg.norm(axis)
    angle = rng.uniform(0, max_angle_rad)
    x, y, z, w = Rotation.from_rotvec(angle * axis).as_quat()

    direction = rng.normal(size=3)
    direction /= np.linalg.norm(direction)
    translation = rng.uniform(0, max_translation) * direction
    return Rigid3d(np.array([w, x, y, z]), translation)


def project_to_rig(
    points3d: np.ndarray,
    cam_from_rig1: Sequence[Rigid3d],
    cam_from_rig2: Sequence[Rigid3d],
    rig2_from_rig1: Rigid3d,
    camera_offset: int = 1,
) -> Tuple[List[RigCorrespondence], List[RigCorrespondence]]:
    """Projects points into the sub-cameras of a rig at two instants.

    Point i is observed by camera i % C at the first instant, and by camera (i + camera_offset) % C at the second.
    Points behind either camera are skipped.

    Args:
        points3d: points in the rig reference frame at the first instant, of shape (N, 3).
        cam_from_rig1: poses of the C sub-cameras relative to the rig at the first instant.
        cam_from_rig2: poses of the C sub-cameras relative to the rig at the second instant.
        rig2_from_rig1: relative pose of the rig between the two instants.
        camera_offset: offset between the observing cameras, 0 makes each point observed by the same camera.

    Returns:
        Index-aligned correspondences at the first and the second instant.
    """
    num_cameras = len(cam_from_rig1)
    points1: List[RigCorrespondence] = []
    points2: List[RigCorrespondence] = []
    for i, point3d in enumerate(points3d):
        cam1_from_rig1 = cam_from_rig1[i % num_cameras]
        cam2_from_rig2 = cam_from_rig2[(i + camera_offset) % num_cameras]

        point_cam1 = cam1_from_rig1 * point3d
        point_cam2 = (cam2_from_rig2 * rig2_from_rig1) * point3d
        if point_cam1[2] <= 0 or point_cam2[2] <= 0:
            continue

        points1.append(RigCorrespondence(rel_tform=cam1_from_rig1, xy=point_cam1[:2] / point_cam1[2]))
        points2.append(RigCorrespondence(rel_tform=cam2_from_rig2, xy=point_cam2[:2] / point_cam2[2]))
    return points1, points2


def add_noise(
    points: Sequence[RigCorrespondence], noise_sigma: float, rng: np.random.Generator
) -> List[RigCorrespondence]:
    """Adds isotropic gaussian noise to the normalized image coordinates."""
    return [point._replace(xy=point.xy + rng.normal(scale=noise_sigma, size=2)) for point in points]


def add_outliers(
    points: Sequence[RigCorrespondence],
    outlier_ratio: float,
    rng: np.random.Generator,
    range_xy: Tuple[float, float] = (-1.0, 1.0),
    num_outliers: Optional[int] = None,
) -> Tuple[List[RigCorrespondence], np.ndarray]:
    """Replaces the coordinates of a random subset of correspondences by uniformly random coordinates.

    Args:
        points: correspondences to corrupt.
        outlier_ratio: fraction of correspondences to corrupt.
        rng: random generator.
        range_xy: range of the random coordinates.
        num_outliers: number of outliers, overrides outlier_ratio if provided.

    Returns:
        Corrupted correspondences.
        Boolean mask of shape (N,) marking the outliers.
    """
    num_points = len(points)
    if num_outliers is None:
        num_outliers = int(round(outlier_ratio * num_points))
    outlier_idxs = rng.choice(num_points, size=num_outliers, replace=False)

    outlier_mask = np.zeros(num_points, dtype=bool)
    outlier_mask[outlier_idxs] = True

    corrupted = list(points)
    for i in outlier_idxs:
        corrupted[i] = points[i]._replace(xy=rng.uniform(low=range_xy[0], high=range_xy[1], size=2))
    return corrupted, outlier_mask
