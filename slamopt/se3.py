"""Rotations and rigid motions with their Lie-algebra maps.

Tangent vectors of SE(3) are ordered translation part first, then rotation:
``(upsilon, omega)``. Quaternions are scalar first: ``(w, x, y, z)``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

SMALL_EPS = 1e-10


def _vector(values: Sequence[float], size: int, name: str) -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.shape != (size,):
        raise ValueError(f"{name} must have {size} components, got shape {array.shape}")
    return array


def hat(v: Sequence[float]) -> np.ndarray:
    """Return the skew-symmetric matrix with ``hat(v) @ w == v × w``."""
    x, y, z = _vector(v, 3, "v")
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def _identity_quaternion() -> np.ndarray:
    return np.array([1.0, 0.0, 0.0, 0.0])


@dataclass(frozen=True, eq=False)
class SO3:
    """A 3D rotation stored as a unit quaternion."""

    unit_quaternion: np.ndarray = field(default_factory=_identity_quaternion)

    def __post_init__(self) -> None:
        q = _vector(self.unit_quaternion, 4, "quaternion")
        norm = float(np.linalg.norm(q))
        if norm == 0.0:
            raise ValueError("quaternion must not be zero")
        object.__setattr__(self, "unit_quaternion", q / norm)

    @classmethod
    def exp(cls, omega: Sequence[float]) -> SO3:
        """Return the rotation for the rotation vector ``omega``."""
        return cls._exp_and_theta(omega)[0]

    @classmethod
    def _exp_and_theta(cls, omega: Sequence[float]) -> tuple[SO3, float]:
        w = _vector(omega, 3, "omega")
        theta_sq = float(w @ w)
        theta = math.sqrt(theta_sq)
        half_theta = 0.5 * theta
        if theta < SMALL_EPS:
            theta_po4 = theta_sq * theta_sq
            imag_factor = 0.5 - theta_sq / 48.0 + theta_po4 / 3840.0
            real_factor = 1.0 - 0.5 * theta_sq + theta_po4 / 384.0
        else:
            imag_factor = math.sin(half_theta) / theta
            real_factor = math.cos(half_theta)
        return cls(np.concatenate([[real_factor], imag_factor * w])), theta

    @classmethod
    def from_quaternion(cls, w: float, x: float, y: float, z: float) -> SO3:
        """Build a rotation from quaternion coefficients, normalising them."""
        return cls(np.array([w, x, y, z], dtype=float))

    def _log_and_theta(self) -> tuple[np.ndarray, float]:
        q = self.unit_quaternion
        vec = q[1:]
        n = float(np.linalg.norm(vec))
        w = float(q[0])
        if n < SMALL_EPS:
            factor = 2.0 / w - 2.0 * n * n / (w * w * w)
        elif abs(w) < SMALL_EPS:
            factor = math.pi / n if w > 0 else -math.pi / n
        else:
            factor = 2.0 * math.atan(n / w) / n
        return factor * vec, factor * n

    def log(self) -> np.ndarray:
        """Return the rotation vector of this rotation."""
        return self._log_and_theta()[0]

    def quaternion(self) -> np.ndarray:
        """Return the unit quaternion ``(w, x, y, z)``."""
        return self.unit_quaternion.copy()

    def matrix(self) -> np.ndarray:
        """Return the 3x3 rotation matrix."""
        w, x, y, z = self.unit_quaternion
        return np.array(
            [
                [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
                [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
                [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
            ]
        )

    def inverse(self) -> SO3:
        """Return the inverse rotation."""
        w, x, y, z = self.unit_quaternion
        return SO3(np.array([w, -x, -y, -z]))

    def __matmul__(self, other):
        """Compose with another rotation, or rotate a 3-vector."""
        if isinstance(other, SO3):
            w1, v1 = self.unit_quaternion[0], self.unit_quaternion[1:]
            w2, v2 = other.unit_quaternion[0], other.unit_quaternion[1:]
            w = w1 * w2 - float(v1 @ v2)
            v = w1 * v2 + w2 * v1 + np.cross(v1, v2)
            return SO3(np.concatenate([[w], v]))
        if isinstance(other, SE3):
            return NotImplemented
        return self.matrix() @ _vector(other, 3, "point")


def _zero_translation() -> np.ndarray:
    return np.zeros(3)


@dataclass(frozen=True, eq=False)
class SE3:
    """A rigid motion: rotation followed by translation."""

    rotation: SO3 = field(default_factory=SO3)
    translation: np.ndarray = field(default_factory=_zero_translation)

    def __post_init__(self) -> None:
        if not isinstance(self.rotation, SO3):
            raise TypeError("rotation must be an SO3")
        object.__setattr__(self, "translation", _vector(self.translation, 3, "translation"))

    @classmethod
    def exp(cls, xi: Sequence[float]) -> SE3:
        """Return the motion for the tangent vector ``(upsilon, omega)``."""
        v = _vector(xi, 6, "xi")
        upsilon, omega = v[:3], v[3:]
        rotation, theta = SO3._exp_and_theta(omega)
        omega_hat = hat(omega)
        omega_sq = omega_hat @ omega_hat
        if theta < SMALL_EPS:
            jacobian = rotation.matrix()
        else:
            jacobian = (
                np.eye(3)
                + (1.0 - math.cos(theta)) / (theta * theta) * omega_hat
                + (theta - math.sin(theta)) / (theta ** 3) * omega_sq
            )
        return cls(rotation, jacobian @ upsilon)

    def log(self) -> np.ndarray:
        """Return the tangent vector ``(upsilon, omega)`` of this motion."""
        omega, theta = self.rotation._log_and_theta()
        omega_hat = hat(omega)
        omega_sq = omega_hat @ omega_hat
        if abs(theta) < SMALL_EPS:
            v_inv = np.eye(3) - 0.5 * omega_hat + omega_sq / 12.0
        else:
            half_theta = 0.5 * theta
            v_inv = (
                np.eye(3)
                - 0.5 * omega_hat
                + (1.0 - theta / (2.0 * math.tan(half_theta))) / (theta * theta) * omega_sq
            )
        return np.concatenate([v_inv @ self.translation, omega])

    def inverse(self) -> SE3:
        """Return the inverse motion."""
        inv_rotation = self.rotation.inverse()
        return SE3(inv_rotation, -(inv_rotation @ self.translation))

    def adjoint(self) -> np.ndarray:
        """Return the 6x6 adjoint matrix acting on ``(upsilon, omega)``."""
        r = self.rotation.matrix()
        adj = np.zeros((6, 6))
        adj[:3, :3] = r
        adj[:3, 3:] = hat(self.translation) @ r
        adj[3:, 3:] = r
        return adj

    def __matmul__(self, other):
        """Compose with another motion, or transform a 3D point."""
        if isinstance(other, SE3):
            return SE3(
                self.rotation @ other.rotation,
                self.rotation @ other.translation + self.translation,
            )
        return self.rotation @ _vector(other, 3, "point") + self.translation