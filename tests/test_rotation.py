import math

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from bagraph.rotation import (
    angle_axis_rotate_point,
    angle_axis_to_quaternion,
    cross_product,
    dot_product,
    quaternion_to_angle_axis,
)

ANGLE_AXES = [
    [0.1, -0.2, 0.3],
    [1.0, 0.5, -0.25],
    [-2.0, 0.3, 1.1],
    [0.0, 0.0, 3.0],
]


def test_dot_product_matches_numpy():
    x, y = [1.5, -2.0, 0.25], [4.0, 0.5, -8.0]
    assert dot_product(x, y) == pytest.approx(float(np.dot(x, y)))


def test_cross_product_matches_numpy():
    x, y = [1.5, -2.0, 0.25], [4.0, 0.5, -8.0]
    assert np.allclose(cross_product(x, y), np.cross(x, y))


def test_cross_product_is_orthogonal_to_inputs():
    x, y = [0.3, 0.7, -1.2], [2.0, -0.4, 0.9]
    c = cross_product(x, y)
    assert dot_product(c, x) == pytest.approx(0.0, abs=1e-12)
    assert dot_product(c, y) == pytest.approx(0.0, abs=1e-12)


def test_zero_angle_axis_gives_identity_quaternion():
    assert np.allclose(angle_axis_to_quaternion([0.0, 0.0, 0.0]), [1.0, 0.0, 0.0, 0.0])


@pytest.mark.parametrize("aa", ANGLE_AXES)
def test_quaternion_matches_reference(aa):
    q = angle_axis_to_quaternion(aa)
    x, y, z, w = Rotation.from_rotvec(aa).as_quat()
    ref = np.array([w, x, y, z])
    assert np.allclose(q, ref) or np.allclose(q, -ref)


@pytest.mark.parametrize("aa", ANGLE_AXES)
def test_quaternion_is_unit(aa):
    assert np.linalg.norm(angle_axis_to_quaternion(aa)) == pytest.approx(1.0)


@pytest.mark.parametrize("aa", ANGLE_AXES)
def test_angle_axis_quaternion_round_trip(aa):
    back = quaternion_to_angle_axis(angle_axis_to_quaternion(aa))
    assert np.allclose(back, aa)


def test_negative_scalar_quaternion_keeps_angle_within_pi():
    q = -angle_axis_to_quaternion([0.0, 0.0, 0.5])
    aa = quaternion_to_angle_axis(q)
    assert np.linalg.norm(aa) <= math.pi + 1e-12
    assert np.allclose(angle_axis_rotate_point(aa, [1.0, 0.0, 0.0]),
                       angle_axis_rotate_point([0.0, 0.0, 0.5], [1.0, 0.0, 0.0]))


def test_small_quaternion_uses_linear_branch():
    q = [1.0, 1e-10, -2e-10, 3e-10]
    assert np.allclose(quaternion_to_angle_axis(q), [2e-10, -4e-10, 6e-10])


@pytest.mark.parametrize("aa", ANGLE_AXES)
def test_rotate_point_matches_reference(aa):
    pt = [0.4, -1.3, 2.2]
    expected = Rotation.from_rotvec(aa).apply(pt)
    assert np.allclose(angle_axis_rotate_point(aa, pt), expected)


def test_quarter_turn_about_z():
    result = angle_axis_rotate_point([0.0, 0.0, math.pi / 2], [1.0, 0.0, 0.0])
    assert np.allclose(result, [0.0, 1.0, 0.0])


@pytest.mark.parametrize("aa", ANGLE_AXES)
def test_rotation_preserves_norm_and_inverts(aa):
    pt = np.array([3.0, -1.0, 0.5])
    rotated = angle_axis_rotate_point(aa, pt)
    assert np.linalg.norm(rotated) == pytest.approx(np.linalg.norm(pt))
    back = angle_axis_rotate_point(-np.asarray(aa), rotated)
    assert np.allclose(back, pt)


def test_rotate_near_zero_is_first_order():
    aa = [1e-9, 0.0, 0.0]
    pt = [1.0, 2.0, 3.0]
    expected = np.asarray(pt) + np.cross(aa, pt)
    assert np.allclose(angle_axis_rotate_point(aa, pt), expected, atol=0.0, rtol=1e-15)


def test_wrong_shape_raises():
    with pytest.raises(ValueError):
        angle_axis_rotate_point([1.0, 2.0], [1.0, 2.0, 3.0])
    with pytest.raises(ValueError):
        quaternion_to_angle_axis([1.0, 0.0, 0.0])