"""Camera intrinsics helpers, match filtering and the epipolar constraint."""

from __future__ import annotations

from typing import Iterable, Sequence

import numpy as np

from slamkit.lie import hat
from slamkit.orb import Match

MIN_DISTANCE_FLOOR = 30.0


def camera_matrix() -> np.ndarray:
    """Intrinsic matrix of the TUM Freiburg2 camera."""
    return np.array([[520.9, 0.0, 325.1], [0.0, 521.0, 249.7], [0.0, 0.0, 1.0]])


def pixel2cam(p: Sequence[float], K) -> np.ndarray:
    """Convert a pixel position to normalised camera coordinates."""
    k = np.asarray(K, dtype=float)
    return np.array([(p[0] - k[0, 2]) / k[0, 0], (p[1] - k[1, 2]) / k[1, 1]])


def filter_matches(matches: Iterable[Match]) -> list[Match]:
    """Keep matches no farther than twice the smallest distance, or 30 at least."""
    candidates = list(matches)
    if not candidates:
        return []
    min_dist = min(m.distance for m in candidates)
    threshold = max(2.0 * min_dist, MIN_DISTANCE_FLOOR)
    return [m for m in candidates if m.distance <= threshold]


def epipolar_constraint(p1, p2, R, t, K) -> float:
    """Value of y2^T t^ R y1 for a pixel correspondence; zero for a perfect match."""
    y1 = np.append(pixel2cam(p1, K), 1.0)
    y2 = np.append(pixel2cam(p2, K), 1.0)
    t_x = hat(np.asarray(t, dtype=float).reshape(3))
    return float(y2 @ t_x @ np.asarray(R, dtype=float) @ y1)