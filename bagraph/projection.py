"""Pinhole projection with radial distortion for BAL cameras.

A camera is 9 values: angle-axis rotation (0-2), translation (3-5),
focal length (6) and second and fourth order radial distortion (7-8).
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from .rotation import angle_axis_rotate_point


def project_with_distortion(camera: Sequence[float], point: Sequence[float]) -> np.ndarray:
    """Project a 3D point through a camera, returning image coordinates."""
    cam = np.asarray(camera, dtype=float)
    if cam.shape != (9,):
        raise ValueError(f"camera must have 9 parameters, got shape {cam.shape}")
    p = angle_axis_rotate_point(cam[:3], point) + cam[3:6]
    depth = float(p[2])
    if depth == 0.0:
        raise ZeroDivisionError("point lies in the camera's focal plane")
    xp = -float(p[0]) / depth
    yp = -float(p[1]) / depth
    l1, l2 = float(cam[7]), float(cam[8])
    r2 = xp * xp + yp * yp
    distortion = 1.0 + r2 * (l1 + l2 * r2)
    focal = float(cam[6])
    return np.array([focal * distortion * xp, focal * distortion * yp])