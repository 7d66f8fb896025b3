"""Triangulation of matched keypoints from two calibrated views."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from slamkit.matching import camera_matrix, pixel2cam
from slamkit.orb import Match

_UPPER_DEPTH = 50.0
_LOWER_DEPTH = 10.0


def get_color(depth: float) -> tuple[float, float, float]:
    """BGR plotting colour for a depth, clamped to the range 10 to 50."""
    depth_range = _UPPER_DEPTH - _LOWER_DEPTH
    d = min(max(float(depth), _LOWER_DEPTH), _UPPER_DEPTH)
    return (255.0 * d / depth_range, 0.0, 255.0 * (1.0 - d / depth_range))


def _projection(matrix, name: str) -> np.ndarray:
    array = np.asarray(matrix, dtype=float)
    if array.shape != (3, 4):
        raise ValueError(f"{name} must be 3x4, got shape {array.shape}")
    return array


def _as_2d(values, name: str) -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.size == 0:
        return array.reshape(0, 2)
    if array.ndim != 2 or array.shape[1] != 2:
        raise ValueError(f"{name} must have shape (N, 2), got {array.shape}")
    return array


def triangulate_points(T1, T2, pts1, pts2) -> np.ndarray:
    """Linear (DLT) triangulation; returns an (N, 4) array of homogeneous points."""
    p1 = _projection(T1, "T1")
    p2 = _projection(T2, "T2")
    a = _as_2d(pts1, "pts1")
    b = _as_2d(pts2, "pts2")
    if len(a) != len(b):
        raise ValueError(f"point counts differ: {len(a)} and {len(b)}")
    result = np.empty((len(a), 4))
    for i, ((x1, y1), (x2, y2)) in enumerate(zip(a, b)):
        system = np.array(
            [
                x1 * p1[2] - p1[0],
                y1 * p1[2] - p1[1],
                x2 * p2[2] - p2[0],
                y2 * p2[2] - p2[1],
            ]
        )
        _, _, vt = np.linalg.svd(system)
        result[i] = vt[-1]
    return result


def triangulation(
    keypoints_1: Sequence[Sequence[float]],
    keypoints_2: Sequence[Sequence[float]],
    matches: Sequence[Match],
    R,
    t,
    K=None,
) -> np.ndarray:
    """3D points, in the first camera's frame, of matched keypoints.

    The second camera is related to the first by x2 = R @ x1 + t.
    """
    k = camera_matrix() if K is None else np.asarray(K, dtype=float)
    rotation = np.asarray(R, dtype=float)
    translation = np.asarray(t, dtype=float).reshape(3, 1)
    t1 = np.hstack([np.eye(3), np.zeros((3, 1))])
    t2 = np.hstack([rotation, translation])
    pts1 = [pixel2cam(keypoints_1[m.query_idx], k) for m in matches]
    pts2 = [pixel2cam(keypoints_2[m.train_idx], k) for m in matches]
    homogeneous = triangulate_points(t1, t2, pts1, pts2)
    return homogeneous[:, :3] / homogeneous[:, 3:]