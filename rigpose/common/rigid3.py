"""3D rigid transform with 6 degrees of freedom.

A transform bFromA maps a point from frame a to frame b as: x_in_b = R * x_in_a + t. Transforms are concatenated
such that one can write expressions like dFromA = dFromC * cFromB * bFromA.

The rotation is stored as a unit quaternion with (w, x, y, z) coefficient ordering, the same ordering as
gtsam.Rot3.Quaternion().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

import numpy as np
from gtsam import Pose3, Rot3  # type: ignore
from scipy.spatial.transform import Rotation

IDENTITY_QUATERNION = np.array([1.0, 0.0, 0.0, 0.0])


def normalize_quaternion(q: np.ndarray) -> np.ndarray:
    """Normalizes a (w, x, y, z) quaternion to unit norm."""
    q = np.asarray(q, dtype=np.float64)
    norm = np.linalg.norm(q)
    if norm == 0 or not np.isfinite(norm):
        raise ValueError(f"Cannot normalize quaternion {q}.")
    return q / norm


def quaternion_multiply(q1: np.ndarray, q2: np.ndarray) -> np.ndarray:
    """Hamilton product q1 * q2 of two (w, x, y, z) quaternions."""
    w1, x1, y1, z1 = q1
    w2, x2, y2, z2 = q2
    return np.array(
        [
            w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
            w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
            w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
            w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
        ]
    )


def quaternion_to_rotation_matrix(q: np.ndarray) -> np.ndarray:
    """Converts a unit (w, x, y, z) quaternion to a 3x3 rotation matrix."""
    w, x, y, z = q
    return Rot3.Quaternion(w, x, y, z).matrix()


def quaternions_to_rotation_matrices(quaternions: np.ndarray) -> np.ndarray:
    """Converts unit (w, x, y, z) quaternions of shape (N, 4) to rotation matrices of shape (N, 3, 3)."""
    quaternions = np.asarray(quaternions, dtype=np.float64).reshape(-1, 4)
    if len(quaternions) == 0:
        return np.zeros((0, 3, 3))
    # scipy orders the coefficients as (x, y, z, w).
    return Rotation.from_quat(quaternions[:, [1, 2, 3, 0]]).as_matrix()


def rotation_matrix_to_quaternion(R: np.ndarray) -> np.ndarray:
    """Converts a 3x3 rotation matrix to a unit (w, x, y, z) quaternion."""
    x, y, z, w = Rot3(np.asarray(R, dtype=np.float64)).toQuaternion().coeffs()
    return np.array([w, x, y, z])


@dataclass(frozen=True, eq=False)
class Rigid3d:
    """Rigid transform bFromA.

    Args:
        rotation: unit quaternion (w, x, y, z). Normalized on construction.
        translation: translation vector of shape (3,).
    """

    rotation: np.ndarray = field(default_factory=IDENTITY_QUATERNION.copy)
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        rotation = normalize_quaternion(np.asarray(self.rotation, dtype=np.float64).reshape(4))
        translation = np.asarray(self.translation, dtype=np.float64).reshape(3)
        rotation.setflags(write=False)
        translation.setflags(write=False)
        object.__setattr__(self, "rotation", rotation)
        object.__setattr__(self, "translation", translation)

    @classmethod
    def from_rotation_matrix(cls, R: np.ndarray, t: np.ndarray) -> Rigid3d:
        """Creates the transform from a 3x3 rotation matrix and a translation."""
        return cls(rotation_matrix_to_quaternion(R), t)

    @classmethod
    def from_matrix(cls, matrix: np.ndarray) -> Rigid3d:
        """Creates the transform from a 3x4 [R | t] matrix, or a 4x4 homogeneous matrix."""
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.shape not in ((3, 4), (4, 4)):
            raise ValueError(f"Expected a 3x4 or 4x4 matrix, got shape {matrix.shape}.")
        return cls.from_rotation_matrix(matrix[:3, :3], matrix[:3, 3])

    @classmethod
    def from_pose3(cls, aTb: Pose3) -> Rigid3d:
        """Creates aFromB from a gtsam Pose3 aTb, which maps points with pose.transformFrom()."""
        return cls.from_matrix(aTb.matrix())

    def to_pose3(self) -> Pose3:
        """Returns the transform as a gtsam Pose3."""
        return Pose3(Rot3(self.rotation_matrix()), self.translation)

    def rotation_matrix(self) -> np.ndarray:
        """Returns the rotation as a 3x3 matrix."""
        return quaternion_to_rotation_matrix(self.rotation)

    def matrix(self) -> np.ndarray:
        """Returns the 3x4 matrix [R | t]."""
        matrix = np.empty((3, 4))
        matrix[:, :3] = self.rotation_matrix()
        matrix[:, 3] = self.translation
        return matrix

    def inverse(self) -> Rigid3d:
        """Returns aFromB for this bFromA."""
        w, x, y, z = self.rotation
        inverse_rotation = np.array([w, -x, -y, -z])
        return Rigid3d(inverse_rotation, -(quaternion_to_rotation_matrix(inverse_rotation) @ self.translation))

    def __mul__(self, other: Union[Rigid3d, np.ndarray]) -> Union[Rigid3d, np.ndarray]:
        """Applies the transform to points of shape (3,) or (N, 3), or concatenates cFromB * bFromA."""
        if isinstance(other, Rigid3d):
            rotation = normalize_quaternion(quaternion_multiply(self.rotation, other.rotation))
            translation = self.translation + self.rotation_matrix() @ other.translation
            return Rigid3d(rotation, translation)

        points = np.asarray(other, dtype=np.float64)
        if points.shape == (3,):
            return self.rotation_matrix() @ points + self.translation
        if points.ndim == 2 and points.shape[1] == 3:
            return points @ self.rotation_matrix().T + self.translation
        return NotImplemented

    def __repr__(self) -> str:
        return f"Rigid3d(rotation={self.rotation.tolist()}, translation={self.translation.tolist()})"
