"""Loading, saving and conditioning Bundle Adjustment in the Large problems."""

from __future__ import annotations

import random
from dataclasses import dataclass

import numpy as np

from slamkit.rotation import (
    angle_axis_rotate_point,
    angle_axis_to_quaternion,
    quaternion_to_angle_axis,
)
from slamkit.sampling import rand_normal


class BALFormatError(ValueError):
    """Raised when a BAL data file cannot be parsed."""


def median(data) -> float:
    """Return the element at position n // 2 of the sorted data."""
    values = sorted(float(v) for v in data)
    if not values:
        raise ValueError("median of empty data")
    return values[len(values) // 2]


def perturb_point3(sigma: float, point, rng: random.Random | None = None) -> np.ndarray:
    """Return a copy of a 3-vector with Gaussian noise of deviation sigma added."""
    noise = np.array([rand_normal(rng) for _ in range(3)])
    return np.asarray(point, dtype=float) + noise * sigma


@dataclass
class BALProblem:
    """Cameras, points and observations of a bundle adjustment problem."""

    num_cameras: int
    num_points: int
    camera_index: np.ndarray
    point_index: np.ndarray
    observations: np.ndarray
    parameters: np.ndarray
    use_quaternions: bool = False

    @classmethod
    def read(cls, filename, use_quaternions: bool = False) -> "BALProblem":
        """Load a problem from a BAL text file."""
        with open(filename, encoding="ascii") as handle:
            tokens = iter(handle.read().split())

        def take(convert, what):
            try:
                token = next(tokens)
            except StopIteration:
                raise BALFormatError(f"Invalid BAL data file: missing {what}") from None
            try:
                return convert(token)
            except ValueError:
                raise BALFormatError(
                    f"Invalid BAL data file: bad {what} {token!r}"
                ) from None

        num_cameras = take(int, "camera count")
        num_points = take(int, "point count")
        num_observations = take(int, "observation count")
        if min(num_cameras, num_points, num_observations) < 0:
            raise BALFormatError("Invalid BAL data file: negative count in header")

        camera_index = np.empty(num_observations, dtype=int)
        point_index = np.empty(num_observations, dtype=int)
        observations = np.empty((num_observations, 2))
        for i in range(num_observations):
            camera_index[i] = take(int, "camera index")
            point_index[i] = take(int, "point index")
            observations[i] = (take(float, "observation"), take(float, "observation"))

        parameters = np.array(
            [take(float, "parameter") for _ in range(9 * num_cameras + 3 * num_points)]
        )

        if use_quaternions:
            cameras = parameters[: 9 * num_cameras].reshape(num_cameras, 9)
            quaternion_cameras = [
                np.concatenate([angle_axis_to_quaternion(cam[:3]), cam[3:]]) for cam in cameras
            ]
            parameters = np.concatenate(
                [np.array(quaternion_cameras).reshape(-1), parameters[9 * num_cameras :]]
            )

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
        return len(self.camera_index)

    @property
    def num_parameters(self) -> int:
        return len(self.parameters)

    @property
    def cameras(self) -> np.ndarray:
        """Writable view of the camera blocks, one row per camera."""
        end = self.camera_block_size * self.num_cameras
        return self.parameters[:end].reshape(self.num_cameras, self.camera_block_size)

    @property
    def points(self) -> np.ndarray:
        """Writable view of the points, one row per point."""
        start = self.camera_block_size * self.num_cameras
        return self.parameters[start:].reshape(self.num_points, self.point_block_size)

    def camera_for_observation(self, i: int) -> np.ndarray:
        """Writable view of the camera block seen in observation i."""
        return self.cameras[self.camera_index[i]]

    def point_for_observation(self, i: int) -> np.ndarray:
        """Writable view of the point seen in observation i."""
        return self.points[self.point_index[i]]

    def write_to_file(self, filename) -> None:
        """Save the problem as BAL text, with rotations in angle-axis form."""
        lines = [
            f"{self.num_cameras} {self.num_cameras} {self.num_points} {self.num_observations}"
        ]
        for cam, pt, (u, v) in zip(self.camera_index, self.point_index, self.observations):
            lines.append(f"{cam} {pt} {u:g} {v:g}")
        for camera in self.cameras:
            if self.use_quaternions:
                values = np.concatenate([quaternion_to_angle_axis(camera[:4]), camera[4:]])
            else:
                values = camera
            lines.extend(f"{value:.16g}" for value in values)
        lines.extend(f"{value:.16g}" for value in self.points.reshape(-1))
        with open(filename, "w", encoding="ascii") as handle:
            handle.write("\n".join(lines) + "\n")

    def write_to_ply_file(self, filename) -> None:
        """Save camera centres (green) and points (white) as an ASCII PLY cloud."""
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
            for camera in self.cameras:
                _, center = self._camera_to_angle_axis_and_center(camera)
                handle.write(f"{center[0]:g} {center[1]:g} {center[2]:g} 0 255 0\n")
            for point in self.points:
                coords = "".join(f"{value:g} " for value in point)
                handle.write(f"{coords} 255 255 255\n")

    def _camera_to_angle_axis_and_center(self, camera):
        if self.use_quaternions:
            angle_axis = quaternion_to_angle_axis(camera[:4])
        else:
            angle_axis = np.array(camera[:3], dtype=float)
        offset = self.camera_block_size - 6
        center = -angle_axis_rotate_point(-angle_axis, camera[offset : offset + 3])
        return angle_axis, center

    def _camera_from_angle_axis_and_center(self, camera, angle_axis, center) -> np.ndarray:
        updated = np.array(camera, dtype=float)
        if self.use_quaternions:
            updated[:4] = angle_axis_to_quaternion(angle_axis)
        else:
            updated[:3] = angle_axis
        offset = self.camera_block_size - 6
        updated[offset : offset + 3] = -angle_axis_rotate_point(angle_axis, center)
        return updated

    def normalize(self) -> None:
        """Centre the points on their median and scale the median absolute deviation to 100."""
        points = self.points
        centre = np.array([median(points[:, k]) for k in range(3)])
        deviation = median(np.abs(points - centre).sum(axis=1))
        if deviation == 0.0:
            raise ValueError("cannot normalize: median absolute deviation is zero")
        scale = 100.0 / deviation
        points[...] = scale * (points - centre)

        cameras = self.cameras
        for i, camera in enumerate(cameras):
            angle_axis, center = self._camera_to_angle_axis_and_center(camera)
            cameras[i] = self._camera_from_angle_axis_and_center(
                camera, angle_axis, scale * (center - centre)
            )

    def perturb(
        self,
        rotation_sigma: float,
        translation_sigma: float,
        point_sigma: float,
        rng: random.Random | None = None,
    ) -> None:
        """Add Gaussian noise to the points, camera rotations and camera translations."""
        if min(rotation_sigma, translation_sigma, point_sigma) < 0.0:
            raise ValueError("noise deviations must be non-negative")

        points = self.points
        if point_sigma > 0:
            for i in range(self.num_points):
                points[i] = perturb_point3(point_sigma, points[i], rng)

        cameras = self.cameras
        offset = self.camera_block_size - 6
        for i, camera in enumerate(cameras):
            angle_axis, center = self._camera_to_angle_axis_and_center(camera)
            if rotation_sigma > 0.0:
                angle_axis = perturb_point3(rotation_sigma, angle_axis, rng)
            cameras[i] = self._camera_from_angle_axis_and_center(camera, angle_axis, center)
            if translation_sigma > 0.0:
                cameras[i, offset : offset + 3] = perturb_point3(
                    translation_sigma, cameras[i, offset : offset + 3], rng
                )