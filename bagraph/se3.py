"""Rigid-body transforms and their Lie-algebra maps.

Tangent vectors of SE(3) are ordered translation first:
``(upsilon_x, upsilon_y, upsilon_z, omega_x, omega_y, omega_z)``.
Quaternions are stored scalar first: ``(w, x, y, z)``.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

_SMALL_EPS = 1e-10
_ORTHONORMAL_TOLERANCE = 1e-6


def _vector(values: Sequence[float], size: int, what: str) -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.shape != (size,):
        raise ValueError(f"{what} must have {size} components, got shape {array.shape}")
    return array


def _matrix3(values) -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.shape != (3, 3):
        raise ValueError(f"rotation must be a 3x3 matrix, got shape {array.shape}")
    return array


def hat(v: Sequence[float]) -> np.ndarray:
    """Return the skew-symmetric matrix with ``hat(v) @ w == v × w``."""
    x, y, z = _vector(v, 3, "v")
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def _quaternion_to_matrix(q: np.ndarray) -> np.ndarray:
    w, x, y, z = q
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ]
    )


def _matrix_to_quaternion(m: np.ndarray) -> np.ndarray:
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0.0:
        s = math.sqrt(trace + 1.0)
        w = 0.5 * s
        s = 0.5 / s
        q = np.array(
            [w, (m[2, 1] - m[1, 2]) * s, (m[0, 2] - m[2, 0]) * s, (m[1, 0] - m[0, 1]) * s]
        )
    else:
        i = 0
        if m[1, 1] > m[0, 0]:
            i = 1
        if m[2, 2] > m[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        s = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        vec = np.zeros(3)
        vec[i] = 0.5 * s
        s = 0.5 / s
        vec[j] = (m[j, i] + m[i, j]) * s
        vec[k] = (m[k, i] + m[i, k]) * s
        q = np.array([(m[k, j] - m[j, k]) * s, *vec])
    return q / np.linalg.norm(q)


def _exp_quaternion(omega: np.ndarray) -> np.ndarray:
    theta_sq = float(omega @ omega)
    theta = math.sqrt(theta_sq)
    if theta < _SMALL_EPS:
        theta_po4 = theta_sq * theta_sq
        imag_factor = 0.5 - theta_sq / 48.0 + theta_po4 / 3840.0
        real_factor = 1.0 - theta_sq / 8.0 + theta_po4 / 384.0
    else:
        half_theta = 0.5 * theta
        imag_factor = math.sin(half_theta) / theta
        real_factor = math.cos(half_theta)
    q = np.array([real_factor, *(imag_factor * omega)])
    return q / np.linalg.norm(q)


def _log_quaternion(q: np.ndarray) -> np.ndarray:
    w = float(q[0])
    vec = q[1:]
    n = float(np.linalg.norm(vec))
    if n < _SMALL_EPS:
        factor = 2.0 / w - 2.0 * n * n / (w * w * w)
    elif abs(w) < _SMALL_EPS:
        factor = math.pi / n if w > 0 else -math.pi / n
    else:
        factor = 2.0 * math.atan(n / w) / n
    return factor * vec


def so3_exp(omega: Sequence[float]) -> np.ndarray:
    """Return the rotation matrix of the rotation vector ``omega``."""
    return _quaternion_to_matrix(_exp_quaternion(_vector(omega, 3, "omega")))


def so3_log(rotation) -> np.ndarray:
    """Return the rotation vector of a rotation matrix."""
    return _log_quaternion(_matrix_to_quaternion(_matrix3(rotation)))


class SE3:
    """A rigid-body transform ``x -> R x + t``."""

    __slots__ = ("rotation", "translation")

    def __init__(self, rotation=None, translation=None) -> None:
        if rotation is None:
            rotation = np.eye(3)
        rotation = _matrix3(rotation).copy()
        if not np.allclose(rotation.T @ rotation, np.eye(3), atol=_ORTHONORMAL_TOLERANCE):
            raise ValueError("rotation matrix is not orthonormal")
        if np.linalg.det(rotation) < 0.0:
            raise ValueError("rotation matrix has a negative determinant")
        self.rotation = rotation
        self.translation = (
            np.zeros(3) if translation is None else _vector(translation, 3, "translation").copy()
        )

    @classmethod
    def from_quaternion(cls, quaternion: Sequence[float], translation: Sequence[float]) -> "SE3":
        """Build a transform from a quaternion ``(w, x, y, z)``, normalised first."""
        q = _vector(quaternion, 4, "quaternion")
        norm = float(np.linalg.norm(q))
        if norm == 0.0 or not math.isfinite(norm):
            raise ValueError("quaternion must have a finite, non-zero norm")
        return cls(_quaternion_to_matrix(q / norm), translation)

    @classmethod
    def exp(cls, xi: Sequence[float]) -> "SE3":
        """Return the transform of a tangent vector ``(upsilon, omega)``."""
        xi = _vector(xi, 6, "xi")
        upsilon, omega = xi[:3], xi[3:]
        rotation = so3_exp(omega)
        theta = float(np.linalg.norm(omega))
        if theta < _SMALL_EPS:
            v = rotation
        else:
            big_omega = hat(omega)
            v = (
                np.eye(3)
                + (1.0 - math.cos(theta)) / (theta * theta) * big_omega
                + (theta - math.sin(theta)) / theta**3 * (big_omega @ big_omega)
            )
        return cls(rotation, v @ upsilon)

    def log(self) -> np.ndarray:
        """Return the tangent vector ``(upsilon, omega)`` of this transform."""
        omega = so3_log(self.rotation)
        theta = float(np.linalg.norm(omega))
        big_omega = hat(omega)
        omega_sq = big_omega @ big_omega
        if theta < _SMALL_EPS:
            v_inv = np.eye(3) - 0.5 * big_omega + omega_sq / 12.0
        else:
            half_theta = 0.5 * theta
            v_inv = (
                np.eye(3)
                - 0.5 * big_omega
                + (1.0 - (math.cos(half_theta) * theta) / (2.0 * math.sin(half_theta)))
                / (theta * theta)
                * omega_sq
            )
        return np.concatenate([v_inv @ self.translation, omega])

    def inverse(self) -> "SE3":
        """Return the inverse transform."""
        rotation_t = self.rotation.T
        return SE3(rotation_t, -(rotation_t @ self.translation))

    def __matmul__(self, other):
        if isinstance(other, SE3):
            return SE3(
                self.rotation @ other.rotation,
                self.rotation @ other.translation + self.translation,
            )
        try:
            point = _vector(other, 3, "point")
        except (TypeError, ValueError):
            return NotImplemented
        return self.rotation @ point + self.translation

    def adjoint(self) -> np.ndarray:
        """Return the 6x6 adjoint matrix ``[[R, hat(t) R], [0, R]]``."""
        result = np.zeros((6, 6))
        result[:3, :3] = self.rotation
        result[:3, 3:] = hat(self.translation) @ self.rotation
        result[3:, 3:] = self.rotation
        return result

    def unit_quaternion(self) -> np.ndarray:
        """Return the rotation as a unit quaternion ``(w, x, y, z)``."""
        return _matrix_to_quaternion(self.rotation)

    @property
    def matrix(self) -> np.ndarray:
        """The homogeneous 4x4 matrix of this transform."""
        result = np.eye(4)
        result[:3, :3] = self.rotation
        result[:3, 3] = self.translation
        return result

    def __repr__(self) -> str:
        return f"SE3(rotation={self.rotation.tolist()!r}, translation={self.translation.tolist()!r})"


def jr_inv(error: SE3) -> np.ndarray:
    """Approximate the inverse right Jacobian of SE(3) at ``error``."""
    phi_hat = hat(so3_log(error.rotation))
    j = np.zeros((6, 6))
    j[:3, :3] = phi_hat
    j[:3, 3:] = hat(error.translation)
    j[3:, 3:] = phi_hat
    return 0.5 * j + np.eye(6)