"""Bundle-adjustment problems in the BAL text format.

The file holds a header ``num_cameras num_points num_observations``, then one
``camera_index point_index x y`` line per observation, then nine parameters
per camera (angle-axis rotation, translation, focal length, two radial
distortion terms) and three coordinates per point.
"""

from __future__ import annotations

from os import PathLike
from pathlib import Path
from typing import Callable, Iterator, Sequence, TypeVar

import numpy as np

from .rotation import (
    angle_axis_rotate_point,
    angle_axis_to_quaternion,
    quaternion_to_angle_axis,
)
from .sampling import NormalSampler

_T = TypeVar("_T")


class BALFormatError(ValueError):
    """Raised when a BAL file cannot be read."""


def median(values: Sequence[float]) -> float:
    """Return the element at position ``n // 2`` of the sorted values (the upper median)."""
    ordered = sorted(values)
    if not ordered:
        raise ValueError("median of an empty sequence")
    return float(ordered[len(ordered) // 2])


def perturb_point3(sigma: float, point: Sequence[float], sampler: NormalSampler) -> np.ndarray:
    """Return ``point`` with Gaussian noise of deviation ``sigma`` added to each coordinate."""
    base = np.asarray(point, dtype=float)
    if base.shape != (3,):
        raise ValueError(f"point must have 3 coordinates, got shape {base.shape}")
    noise = np.array([sampler.rand_normal() for _ in range(3)])
    return base + noise * sigma


def _take(tokens: Iterator[str], convert: Callable[[str], _T], what: str) -> _T:
    try:
        token = next(tokens)
    except StopIteration:
        raise BALFormatError(f"unexpected end of file while reading {what}") from None
    try:
        return convert(token)
    except ValueError:
        raise BALFormatError(f"invalid {what}: {token!r}") from None


class BALProblem:
    """Cameras, points and observations of a bundle-adjustment problem.

    ``parameters`` is one flat array holding all camera blocks followed by all
    point blocks; ``cameras`` and ``points`` are writable views onto it.
    With ``use_quaternions`` each camera's rotation is kept as a quaternion
    ``(w, x, y, z)`` and camera blocks have ten values instead of nine.
    """

    point_block_size = 3

    def __init__(self, filename: str | PathLike[str], use_quaternions: bool = False) -> None:
        tokens = iter(Path(filename).read_text().split())

        self.num_cameras = _take(tokens, int, "camera count")
        self.num_points = _take(tokens, int, "point count")
        self.num_observations = _take(tokens, int, "observation count")
        if min(self.num_cameras, self.num_points, self.num_observations) < 0:
            raise BALFormatError("negative count in header")

        camera_index = []
        point_index = []
        observations = []
        for _ in range(self.num_observations):
            camera_index.append(_take(tokens, int, "camera index"))
            point_index.append(_take(tokens, int, "point index"))
            observations.append(
                (_take(tokens, float, "observation"), _take(tokens, float, "observation"))
            )

        self.camera_index = np.array(camera_index, dtype=int)
        self.point_index = np.array(point_index, dtype=int)
        self.observations = np.array(observations, dtype=float).reshape(-1, 2)

        if np.any((self.camera_index < 0) | (self.camera_index >= self.num_cameras)):
            raise BALFormatError("camera index out of range")
        if np.any((self.point_index < 0) | (self.point_index >= self.num_points)):
            raise BALFormatError("point index out of range")

        count = 9 * self.num_cameras + 3 * self.num_points
        raw = np.array([_take(tokens, float, "parameter") for _ in range(count)], dtype=float)

        self.use_quaternions = use_quaternions
        if use_quaternions:
            cameras = raw[: 9 * self.num_cameras].reshape(self.num_cameras, 9)
            rotations = np.array(
                [angle_axis_to_quaternion(camera[:3]) for camera in cameras]
            ).reshape(self.num_cameras, 4)
            converted = np.hstack([rotations, cameras[:, 3:]])
            raw = np.concatenate([converted.ravel(), raw[9 * self.num_cameras:]])
        self.parameters = raw

    @property
    def camera_block_size(self) -> int:
        return 10 if self.use_quaternions else 9

    @property
    def num_parameters(self) -> int:
        return int(self.parameters.size)

    @property
    def cameras(self) -> np.ndarray:
        """Writable ``(num_cameras, camera_block_size)`` view of the camera parameters."""
        end = self.camera_block_size * self.num_cameras
        return self.parameters[:end].reshape(self.num_cameras, self.camera_block_size)

    @property
    def points(self) -> np.ndarray:
        """Writable ``(num_points, 3)`` view of the point coordinates."""
        start = self.camera_block_size * self.num_cameras
        return self.parameters[start:].reshape(self.num_points, self.point_block_size)

    def camera_for_observation(self, i: int) -> np.ndarray:
        """Writable view of the camera seen in observation ``i``."""
        return self.cameras[self.camera_index[i]]

    def point_for_observation(self, i: int) -> np.ndarray:
        """Writable view of the point seen in observation ``i``."""
        return self.points[self.point_index[i]]

    def _rotation_as_angle_axis(self, camera: np.ndarray) -> np.ndarray:
        if self.use_quaternions:
            return quaternion_to_angle_axis(camera[:4])
        return np.array(camera[:3], dtype=float)

    def _translation_slice(self) -> slice:
        start = self.camera_block_size - 6
        return slice(start, start + 3)

    def _camera_to_angle_axis_and_center(self, camera: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        angle_axis = self._rotation_as_angle_axis(camera)
        # c = -R^T t
        center = -angle_axis_rotate_point(-angle_axis, camera[self._translation_slice()])
        return angle_axis, center

    def _angle_axis_and_center_to_camera(
        self, angle_axis: np.ndarray, center: np.ndarray, camera: np.ndarray
    ) -> np.ndarray:
        updated = np.array(camera, dtype=float)
        if self.use_quaternions:
            updated[:4] = angle_axis_to_quaternion(angle_axis)
        else:
            updated[:3] = angle_axis
        # t = -R c
        updated[self._translation_slice()] = -angle_axis_rotate_point(angle_axis, center)
        return updated

    def write_to_file(self, filename: str | PathLike[str]) -> None:
        """Write the problem in BAL layout, rotations as angle-axis vectors.

        The header repeats the camera count, giving four numbers.
        """
        lines = [f"{self.num_cameras} {self.num_cameras} {self.num_points} {self.num_observations}"]
        for cam, pt, (x, y) in zip(self.camera_index, self.point_index, self.observations):
            lines.append(f"{cam} {pt} {x:g} {y:g}")
        for camera in self.cameras:
            if self.use_quaternions:
                values = np.concatenate([quaternion_to_angle_axis(camera[:4]), camera[4:]])
            else:
                values = camera
            lines.extend(f"{v:.16g}" for v in values)
        lines.extend(f"{v:.16g}" for v in self.points.ravel())
        Path(filename).write_text("\n".join(lines) + "\n")

    def write_to_ply_file(self, filename: str | PathLike[str]) -> None:
        """Write camera centres and points as an ASCII PLY point cloud."""
        lines = [
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
        for camera in self.cameras:
            _, center = self._camera_to_angle_axis_and_center(camera)
            lines.append(f"{center[0]:g} {center[1]:g} {center[2]:g}0 255 0")
        for point in self.points:
            lines.append("".join(f"{v:g} " for v in point) + "255 255 255")
        Path(filename).write_text("\n".join(lines) + "\n")

    def normalize(self) -> None:
        """Centre the points on their median and scale them so the median
        L1 deviation is 100; camera centres follow the same transform."""
        points = self.points
        center_of_mass = np.array([median(points[:, axis]) for axis in range(3)])
        deviation = median(np.abs(points - center_of_mass).sum(axis=1))
        scale = 100.0 / deviation

        points[:] = scale * (points - center_of_mass)

        for camera in self.cameras:
            angle_axis, center = self._camera_to_angle_axis_and_center(camera)
            center = scale * (center - center_of_mass)
            camera[:] = self._angle_axis_and_center_to_camera(angle_axis, center, camera)

    def perturb(
        self,
        rotation_sigma: float,
        translation_sigma: float,
        point_sigma: float,
        sampler: NormalSampler | None = None,
    ) -> None:
        """Add Gaussian noise to points, camera rotations and translations.

        Rotations are perturbed about the camera centre. All deviations must
        be non-negative.
        """
        if point_sigma < 0.0 or rotation_sigma < 0.0 or translation_sigma < 0.0:
            raise ValueError("standard deviations must be non-negative")
        rng = sampler if sampler is not None else NormalSampler()

        points = self.points
        if point_sigma > 0:
            for point in points:
                point[:] = perturb_point3(point_sigma, point, rng)

        translation = self._translation_slice()
        for camera in self.cameras:
            angle_axis, center = self._camera_to_angle_axis_and_center(camera)
            if rotation_sigma > 0.0:
                angle_axis = perturb_point3(rotation_sigma, angle_axis, rng)
            camera[:] = self._angle_axis_and_center_to_camera(angle_axis, center, camera)
            if translation_sigma > 0.0:
                camera[translation] = perturb_point3(translation_sigma, camera[translation], rng)