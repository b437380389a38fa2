"""Unit tests for rig correspondences and their Plücker rays."""

import unittest

import numpy as np

from rigpose.common.rig_correspondence import RigCorrespondence, check_aligned, rig_rays, stack_correspondences
from rigpose.common.rigid3 import Rigid3d


class TestRigCorrespondence(unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.cam_from_rig = Rigid3d(np.array([1.0, 0.1, -0.2, 0.05]), np.array([0.3, -0.1, 0.2]))
        self.point_rig = np.array([0.4, -0.3, 2.5])
        point_cam = self.cam_from_rig * self.point_rig
        self.correspondence = RigCorrespondence(rel_tform=self.cam_from_rig, xy=point_cam[:2] / point_cam[2])

    def test_check_aligned(self) -> None:
        check_aligned([self.correspondence], [self.correspondence])
        with self.assertRaises(ValueError):
            check_aligned([self.correspondence], [])

    def test_stack_correspondences(self) -> None:
        rotations, translations, xy = stack_correspondences([self.correspondence] * 2)

        self.assertEqual(rotations.shape, (2, 3, 3))
        self.assertEqual(translations.shape, (2, 3))
        self.assertEqual(xy.shape, (2, 2))
        np.testing.assert_allclose(rotations[1], self.cam_from_rig.rotation_matrix())
        np.testing.assert_allclose(translations[1], self.cam_from_rig.translation)

    def test_stack_correspondences_empty(self) -> None:
        rotations, translations, xy = stack_correspondences([])

        self.assertEqual(rotations.shape, (0, 3, 3))
        self.assertEqual(translations.shape, (0, 3))
        self.assertEqual(xy.shape, (0, 2))

    def test_stack_correspondences_mixed_cameras(self) -> None:
        other = RigCorrespondence(rel_tform=Rigid3d(), xy=np.array([0.1, -0.2]))
        rotations, translations, xy = stack_correspondences([self.correspondence, other])

        np.testing.assert_allclose(rotations[0], self.cam_from_rig.rotation_matrix(), atol=1e-12)
        np.testing.assert_allclose(rotations[1], np.eye(3), atol=1e-12)
        np.testing.assert_allclose(translations[1], np.zeros(3))
        np.testing.assert_allclose(xy[1], [0.1, -0.2])

    def test_ray_passes_through_camera_center_and_point(self) -> None:
        directions, moments = rig_rays([self.correspondence])
        d, m = directions[0], moments[0]

        camera_center = self.cam_from_rig.inverse().translation
        # A point p lies on the line (d, m) iff p x d = m.
        np.testing.assert_allclose(np.cross(camera_center, d), m, atol=1e-12)
        np.testing.assert_allclose(np.cross(self.point_rig, d), m, atol=1e-12)
        self.assertAlmostEqual(float(d @ m), 0.0)


if __name__ == "__main__":
    unittest.main()
