"""Pinhole projection with radial distortion for bundle-adjustment cameras.

A camera is 9 numbers: angle-axis rotation ``[0:3]``, translation ``[3:6]``,
focal length ``[6]`` and the second and fourth order radial distortion
coefficients ``[7:9]``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .rotation import angle_axis_rotate_point

CAMERA_BLOCK_SIZE = 9
POINT_BLOCK_SIZE = 3


def cam_projection_with_distortion(camera: Sequence[float], point: Sequence[float]) -> np.ndarray:
    """Project a 3D point into the image of ``camera``.

    Returns the 2D prediction relative to the image centre. Raises
    ``ZeroDivisionError`` if the point lies in the camera's focal plane.
    """
    cam = np.asarray(camera, dtype=float)
    pt = np.asarray(point, dtype=float)
    if cam.shape != (CAMERA_BLOCK_SIZE,):
        raise ValueError(f"camera must have {CAMERA_BLOCK_SIZE} parameters, got shape {cam.shape}")
    if pt.shape != (POINT_BLOCK_SIZE,):
        raise ValueError(f"point must have {POINT_BLOCK_SIZE} coordinates, got shape {pt.shape}")

    p = angle_axis_rotate_point(cam[0:3], pt) + cam[3:6]
    depth = float(p[2])
    if depth == 0.0:
        raise ZeroDivisionError("point lies in the camera's focal plane")

    xp = -p[0] / depth
    yp = -p[1] / depth
    l1, l2 = cam[7], cam[8]
    r2 = xp * xp + yp * yp
    distortion = 1.0 + r2 * (l1 + l2 * r2)
    focal = cam[6]
    return np.array([focal * distortion * xp, focal * distortion * yp])


@dataclass(frozen=True)
class SnavelyReprojectionError:
    """Residual between an observed image point and a camera's prediction."""

    observed_x: float
    observed_y: float

    def __call__(self, camera: Sequence[float], point: Sequence[float]) -> np.ndarray:
        """Return the 2D residual ``prediction - observation``."""
        prediction = cam_projection_with_distortion(camera, point)
        return prediction - np.array([self.observed_x, self.observed_y])