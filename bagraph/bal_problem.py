"""Bundle adjustment problems in the BAL text format."""

from __future__ import annotations

from dataclasses import dataclass
from os import PathLike
from typing import Callable, Iterable, Iterator, TypeVar

import numpy as np

from .rotation import (
    angle_axis_rotate_point,
    angle_axis_to_quaternion,
    quaternion_to_angle_axis,
)
from .sampling import RandomSource

_T = TypeVar("_T")


class BALFormatError(ValueError):
    """Raised when a BAL file cannot be parsed."""


def median(data: Iterable[float]) -> float:
    """Return the element at position n // 2 of the sorted data."""
    values = sorted(data)
    if not values:
        raise ValueError("median of empty data")
    return values[len(values) // 2]


def _take(tokens: Iterator[str], convert: Callable[[str], _T], what: str) -> _T:
    try:
        token = next(tokens)
    except StopIteration:
        raise BALFormatError(f"unexpected end of file while reading {what}") from None
    try:
        return convert(token)
    except ValueError:
        raise BALFormatError(f"invalid {what}: {token!r}") from None


@dataclass
class BALProblem:
    """Cameras, points and observations of a bundle adjustment problem.

    Parameters are stored flat: all camera blocks followed by all points.
    Camera blocks hold an angle-axis rotation, or a quaternion when
    ``use_quaternions`` is set, then translation, focal length and two
    distortion coefficients.
    """

    num_cameras: int
    num_points: int
    camera_index: np.ndarray
    point_index: np.ndarray
    observations: np.ndarray
    parameters: np.ndarray
    use_quaternions: bool = False

    @classmethod
    def from_file(cls, filename: str | PathLike, use_quaternions: bool = False) -> "BALProblem":
        """Read a problem from a BAL text file."""
        with open(filename, encoding="ascii") as handle:
            tokens = iter(handle.read().split())

        num_cameras = _take(tokens, int, "camera count")
        num_points = _take(tokens, int, "point count")
        num_observations = _take(tokens, int, "observation count")
        if min(num_cameras, num_points, num_observations) < 0:
            raise BALFormatError("counts in the header must not be negative")

        camera_index = np.empty(num_observations, dtype=int)
        point_index = np.empty(num_observations, dtype=int)
        observations = np.empty((num_observations, 2))
        for i in range(num_observations):
            camera_index[i] = _take(tokens, int, "camera index")
            point_index[i] = _take(tokens, int, "point index")
            observations[i, 0] = _take(tokens, float, "observation")
            observations[i, 1] = _take(tokens, float, "observation")

        count = 9 * num_cameras + 3 * num_points
        raw = np.array([_take(tokens, float, "parameter") for _ in range(count)], dtype=float)

        if use_quaternions:
            cameras = raw[: 9 * num_cameras].reshape(num_cameras, 9)
            blocks = [
                np.concatenate([angle_axis_to_quaternion(cam[:3]), cam[3:]]) for cam in cameras
            ]
            parameters = np.concatenate([*blocks, raw[9 * num_cameras :]])
        else:
            parameters = raw

        return cls(
            num_cameras=num_cameras,
            num_points=num_points,
            camera_index=camera_index,
            point_index=point_index,
            observations=observations,
            parameters=parameters,
            use_quaternions=use_quaternions,
        )

    @property
    def camera_block_size(self) -> int:
        return 10 if self.use_quaternions else 9

    @property
    def point_block_size(self) -> int:
        return 3

    @property
    def num_observations(self) -> int:
        return len(self.observations)

    @property
    def num_parameters(self) -> int:
        return len(self.parameters)

    def cameras(self) -> np.ndarray:
        """Return a writable (num_cameras, block) view of the camera parameters."""
        size = self.camera_block_size * self.num_cameras
        return self.parameters[:size].reshape(self.num_cameras, self.camera_block_size)

    def points(self) -> np.ndarray:
        """Return a writable (num_points, 3) view of the point coordinates."""
        start = self.camera_block_size * self.num_cameras
        return self.parameters[start:].reshape(self.num_points, self.point_block_size)

    def camera_for_observation(self, i: int) -> np.ndarray:
        """Return a view of the camera seen in observation ``i``."""
        return self.cameras()[self.camera_index[i]]

    def point_for_observation(self, i: int) -> np.ndarray:
        """Return a view of the point seen in observation ``i``."""
        return self.points()[self.point_index[i]]

    def write_to_file(self, filename: str | PathLike) -> None:
        """Write the problem in BAL format, cameras in angle-axis form."""
        lines = [f"{self.num_cameras} {self.num_points} {self.num_observations}"]
        for cam, pt, (x, y) in zip(self.camera_index, self.point_index, self.observations):
            lines.append(f"{cam} {pt} {x:g} {y:g}")
        for camera in self.cameras():
            if self.use_quaternions:
                rotation = quaternion_to_angle_axis(camera[:4])
            else:
                rotation = camera[:3]
            lines.extend(f"{v:.16g}" for v in np.concatenate([rotation, camera[-6:]]))
        lines.extend(f"{v:.16g}" for v in self.points().ravel())
        with open(filename, "w", encoding="ascii") as handle:
            handle.write("\n".join(lines) + "\n")

    def write_to_ply_file(self, filename: str | PathLike) -> None:
        """Write camera centres (green) and points (white) as an ASCII PLY cloud."""
        header = [
            "ply",
            "format ascii 1.0",
            f"element vertex {self.num_cameras + self.num_points}",
            "property float x",
            "property float y",
            "property float z",
            "property uchar red",
            "property uchar green",
            "property uchar blue",
            "end_header",
        ]
        with open(filename, "w", encoding="ascii") as handle:
            handle.write("\n".join(header) + "\n")
            for camera in self.cameras():
                _, center = self.camera_to_angle_axis_and_center(camera)
                handle.write(" ".join(f"{c:g}" for c in center) + " 0 255 0\n")
            for point in self.points():
                handle.write("".join(f"{c:g} " for c in point) + "255 255 255\n")

    def camera_to_angle_axis_and_center(self, camera) -> tuple[np.ndarray, np.ndarray]:
        """Return the camera's angle-axis rotation and its centre ``c = -R^T t``."""
        cam = np.asarray(camera, dtype=float)
        size = self.camera_block_size
        if cam.shape != (size,):
            raise ValueError(f"camera must have {size} parameters, got shape {cam.shape}")
        if self.use_quaternions:
            angle_axis = quaternion_to_angle_axis(cam[:4])
        else:
            angle_axis = cam[:3].copy()
        center = -angle_axis_rotate_point(-angle_axis, cam[size - 6 : size - 3])
        return angle_axis, center

    def angle_axis_and_center_to_camera(self, angle_axis, center) -> np.ndarray:
        """Return the camera's rotation and translation ``t = -R c``.

        The result covers the first ``camera_block_size - 3`` entries of a
        camera block; the intrinsics that follow are left to the caller.
        """
        aa = np.asarray(angle_axis, dtype=float)
        rotation = angle_axis_to_quaternion(aa) if self.use_quaternions else aa.copy()
        translation = -angle_axis_rotate_point(aa, center)
        return np.concatenate([rotation, translation])

    def normalize(self) -> None:
        """Centre the points on their median and scale their median L1 spread to 100."""
        points = self.points()
        centre = np.array([median(points[:, axis]) for axis in range(3)])
        deviation = median(float(np.abs(p - centre).sum()) for p in points)
        scale = 100.0 / deviation
        points[:] = scale * (points - centre)

        extrinsic = self.camera_block_size - 3
        for camera in self.cameras():
            angle_axis, center = self.camera_to_angle_axis_and_center(camera)
            center = scale * (center - centre)
            camera[:extrinsic] = self.angle_axis_and_center_to_camera(angle_axis, center)

    def perturb(
        self,
        rotation_sigma: float,
        translation_sigma: float,
        point_sigma: float,
        rng: RandomSource | None = None,
    ) -> None:
        """Add Gaussian noise to points, camera rotations and translations."""
        if point_sigma < 0.0 or rotation_sigma < 0.0 or translation_sigma < 0.0:
            raise ValueError("standard deviations must not be negative")
        if rng is None:
            rng = RandomSource()

        def noise(sigma: float) -> np.ndarray:
            return np.array([rng.normal() * sigma for _ in range(3)])

        if point_sigma > 0.0:
            for point in self.points():
                point += noise(point_sigma)

        size = self.camera_block_size
        for camera in self.cameras():
            angle_axis, center = self.camera_to_angle_axis_and_center(camera)
            if rotation_sigma > 0.0:
                angle_axis = angle_axis + noise(rotation_sigma)
            camera[: size - 3] = self.angle_axis_and_center_to_camera(angle_axis, center)
            if translation_sigma > 0.0:
                camera[size - 6 : size - 3] += noise(translation_sigma)