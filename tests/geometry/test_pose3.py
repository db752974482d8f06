"""
Unit tests for Pose3 and manifold numerical differentiation.

Run with: python -m pytest tests/geometry/test_pose3.py -v
"""

import numpy as np
import pytest

from imu_preint.geometry import Pose3, Rot3, numerical_derivative


@pytest.fixture
def pose():
    return Pose3(Rot3.from_rpy(0.1, -0.2, 0.3), np.array([1.0, 2.0, 3.0]))


class TestPose3:
    """Test Pose3 group operations and retraction."""

    def test_identity(self):
        T = Pose3.identity()
        np.testing.assert_allclose(T.matrix(), np.eye(4), atol=0)

    def test_compose_with_inverse_is_identity(self, pose):
        assert (pose * pose.inverse()).equals(Pose3.identity())
        assert pose.between(pose).equals(Pose3.identity())

    def test_matrix_matches_compose(self, pose):
        other = Pose3(Rot3.expmap(np.array([0.3, 0.0, -0.1])), np.array([-1.0, 0.5, 0.2]))
        np.testing.assert_allclose((pose * other).matrix(), pose.matrix() @ other.matrix(), atol=1e-12)

    def test_retract_translation_in_body_frame(self, pose):
        xi = np.array([0.0, 0.0, 0.0, 1.0, 0.0, 0.0])
        moved = pose.retract(xi)
        np.testing.assert_allclose(
            moved.translation - pose.translation,
            pose.rotation.rotate(np.array([1.0, 0.0, 0.0])),
            atol=1e-12,
        )
        assert moved.rotation.equals(pose.rotation)

    def test_retract_local_roundtrip(self, pose):
        xi = np.array([0.01, -0.02, 0.03, 0.4, -0.5, 0.6])
        np.testing.assert_allclose(pose.local(pose.retract(xi)), xi, atol=1e-12)

    def test_translation_returns_copy(self, pose):
        t = pose.translation
        t[:] = 0.0
        np.testing.assert_allclose(pose.translation, [1.0, 2.0, 3.0])

    def test_rejects_wrong_translation_shape(self):
        with pytest.raises(ValueError):
            Pose3(Rot3(), np.zeros(2))

    def test_retract_rejects_wrong_shape(self, pose):
        with pytest.raises(ValueError):
            pose.retract(np.zeros(3))


class TestNumericalDerivative:
    """Test finite differences on vectors and manifolds."""

    def test_vector_argument(self):
        J = numerical_derivative(lambda v: np.array([v[0] * v[1], v[1] ** 2]), np.array([2.0, 3.0]))
        np.testing.assert_allclose(J, [[3.0, 2.0], [0.0, 6.0]], atol=1e-8)

    def test_pose_argument_uses_retraction(self, pose):
        J = numerical_derivative(lambda T: T.translation, pose)
        expected = np.hstack([np.zeros((3, 3)), pose.rotation.matrix()])
        np.testing.assert_allclose(J, expected, atol=1e-8)
