"""Angle-axis and quaternion rotation helpers for 3-vectors.

Quaternions are stored scalar first: ``(w, x, y, z)``.
"""

from __future__ import annotations

import math
import sys
from typing import Sequence

import numpy as np

_EPSILON = sys.float_info.epsilon


def _vector(values: Sequence[float], size: int, name: str) -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.shape != (size,):
        raise ValueError(f"{name} must have exactly {size} components, got shape {array.shape}")
    return array


def dot_product(x: Sequence[float], y: Sequence[float]) -> float:
    """Return the dot product of two 3-vectors."""
    a = _vector(x, 3, "x")
    b = _vector(y, 3, "y")
    return float(a[0] * b[0] + a[1] * b[1] + a[2] * b[2])


def cross_product(x: Sequence[float], y: Sequence[float]) -> np.ndarray:
    """Return the cross product ``x × y`` of two 3-vectors."""
    a = _vector(x, 3, "x")
    b = _vector(y, 3, "y")
    return np.array(
        [
            a[1] * b[2] - a[2] * b[1],
            a[2] * b[0] - a[0] * b[2],
            a[0] * b[1] - a[1] * b[0],
        ]
    )


def angle_axis_to_quaternion(angle_axis: Sequence[float]) -> np.ndarray:
    """Convert an angle-axis vector to a quaternion ``(w, x, y, z)``.

    For rotations whose squared angle is below machine epsilon a first-order
    approximation is used.
    """
    a = _vector(angle_axis, 3, "angle_axis")
    theta_squared = float(a @ a)
    if theta_squared > _EPSILON:
        theta = math.sqrt(theta_squared)
        half_theta = 0.5 * theta
        k = math.sin(half_theta) / theta
        return np.array([math.cos(half_theta), a[0] * k, a[1] * k, a[2] * k])
    return np.array([1.0, a[0] * 0.5, a[1] * 0.5, a[2] * 0.5])


def quaternion_to_angle_axis(quaternion: Sequence[float]) -> np.ndarray:
    """Convert a quaternion ``(w, x, y, z)`` to an angle-axis vector.

    The returned rotation angle never exceeds pi.
    """
    q = _vector(quaternion, 4, "quaternion")
    vector_part = q[1:]
    sin_squared_theta = float(vector_part @ vector_part)
    if sin_squared_theta > _EPSILON:
        sin_theta = math.sqrt(sin_squared_theta)
        cos_theta = float(q[0])
        if cos_theta < 0.0:
            two_theta = 2.0 * math.atan2(-sin_theta, -cos_theta)
        else:
            two_theta = 2.0 * math.atan2(sin_theta, cos_theta)
        k = two_theta / sin_theta
    else:
        k = 2.0
    return vector_part * k


def angle_axis_rotate_point(angle_axis: Sequence[float], pt: Sequence[float]) -> np.ndarray:
    """Rotate ``pt`` by the rotation given as an angle-axis vector.

    Uses Rodrigues' formula, or ``pt + angle_axis × pt`` near the identity.
    """
    a = _vector(angle_axis, 3, "angle_axis")
    p = _vector(pt, 3, "pt")
    theta2 = float(a @ a)
    if theta2 > _EPSILON:
        theta = math.sqrt(theta2)
        cos_theta = math.cos(theta)
        sin_theta = math.sin(theta)
        w = a / theta
        w_cross_pt = cross_product(w, p)
        tmp = dot_product(w, p) * (1.0 - cos_theta)
        return p * cos_theta + w_cross_pt * sin_theta + w * tmp
    return p + cross_product(a, p)