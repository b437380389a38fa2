"""Observation of a 3D point by one sub-camera of a generalized camera (rig).

Two index-aligned sequences of RigCorrespondence, points1 and points2, represent matched observations between two
instants of the rig: points1[i] and points2[i] observe the same 3D point, possibly from different sub-cameras.
"""

from typing import NamedTuple, Sequence, Tuple

import numpy as np

from rigpose.common.rigid3 import Rigid3d, quaternions_to_rotation_matrices


class RigCorrespondence(NamedTuple):
    """A 2D observation with the pose of the sub-camera that captured it.

    Args:
        rel_tform: cam_from_rig, the pose of the sub-camera relative to the rig reference frame at capture time.
        xy: normalized image coordinates of shape (2,), i.e. the camera-frame 3D point divided by its depth.
    """

    rel_tform: Rigid3d
    xy: np.ndarray


def check_aligned(points1: Sequence[RigCorrespondence], points2: Sequence[RigCorrespondence]) -> None:
    """Raises ValueError if the two correspondence sequences are not index-aligned."""
    if len(points1) != len(points2):
        raise ValueError(f"Correspondence sequences differ in length: {len(points1)} vs. {len(points2)}.")


def stack_correspondences(points: Sequence[RigCorrespondence]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Stacks correspondences into arrays for vectorized computation.

    Args:
        points: N rig correspondences.

    Returns:
        cam_from_rig rotations, of shape (N, 3, 3).
        cam_from_rig translations, of shape (N, 3).
        Normalized image coordinates, of shape (N, 2).
    """
    tforms = [point.rel_tform for point in points]
    rotations = quaternions_to_rotation_matrices(np.array([tform.rotation for tform in tforms]))
    translations = np.array([tform.translation for tform in tforms], dtype=np.float64).reshape(-1, 3)
    xy = np.array([point.xy for point in points], dtype=np.float64).reshape(-1, 2)
    return rotations, translations, xy


def rig_rays(points: Sequence[RigCorrespondence]) -> Tuple[np.ndarray, np.ndarray]:
    """Computes the Plücker coordinates of the observation rays in the rig reference frame.

    The ray of an observation passes through the sub-camera center c = -R^T t with direction d = R^T [x, y, 1]. Its
    moment is m = c x d.

    Args:
        points: N rig correspondences.

    Returns:
        Ray directions, of shape (N, 3).
        Ray moments, of shape (N, 3).
    """
    rotations, translations, xy = stack_correspondences(points)
    xy_h = np.hstack([xy, np.ones((len(points), 1))])
    directions = np.einsum("nji,nj->ni", rotations, xy_h)
    centers = -np.einsum("nji,nj->ni", rotations, translations)
    moments = np.cross(centers, directions)
    return directions, moments
