"""Lucas-Kanade optical flow by Gauss-Newton, single level and coarse to fine."""

from __future__ import annotations

import logging
import time

import numpy as np

from slamkit.imaging import build_pyramid, pixel_value_clamped

logger = logging.getLogger(__name__)

HALF_PATCH_SIZE = 4
ITERATIONS = 10
PYRAMID_LEVELS = 4
PYRAMID_SCALE = 0.5
_CONVERGENCE = 1e-2

_OFFSETS = np.array(
    [
        (x, y)
        for x in range(-HALF_PATCH_SIZE, HALF_PATCH_SIZE)
        for y in range(-HALF_PATCH_SIZE, HALF_PATCH_SIZE)
    ],
    dtype=float,
)


def _solve(hessian: np.ndarray, bias: np.ndarray) -> np.ndarray:
    try:
        return np.linalg.solve(hessian, bias)
    except np.linalg.LinAlgError:
        return np.linalg.lstsq(hessian, bias, rcond=None)[0]


def _as_keypoints(values, name: str) -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.size == 0:
        return array.reshape(0, 2)
    if array.ndim != 2 or array.shape[1] != 2:
        raise ValueError(f"{name} must have shape (N, 2), got {array.shape}")
    return array


def _gradient(image, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    return 0.5 * np.column_stack(
        [
            pixel_value_clamped(image, xs + 1, ys) - pixel_value_clamped(image, xs - 1, ys),
            pixel_value_clamped(image, xs, ys + 1) - pixel_value_clamped(image, xs, ys - 1),
        ]
    )


def _track(img1, img2, keypoint: np.ndarray, initial: np.ndarray, inverse: bool):
    xs = _OFFSETS[:, 0] + keypoint[0]
    ys = _OFFSETS[:, 1] + keypoint[1]
    dx, dy = float(initial[0]), float(initial[1])
    reference = pixel_value_clamped(img1, xs, ys)

    if inverse:
        # The template gradient does not depend on the displacement.
        jacobian = -_gradient(img1, xs, ys)
        hessian = jacobian.T @ jacobian

    last_cost = 0.0
    succeeded = True
    for iteration in range(ITERATIONS):
        error = reference - pixel_value_clamped(img2, xs + dx, ys + dy)
        if not inverse:
            jacobian = -_gradient(img2, xs + dx, ys + dy)
            hessian = jacobian.T @ jacobian
        bias = -(error @ jacobian)
        cost = float(error @ error)

        update = _solve(hessian, bias)
        if np.isnan(update[0]):
            logger.warning("update is nan")
            succeeded = False
            break
        if iteration > 0 and cost > last_cost:
            break

        dx += float(update[0])
        dy += float(update[1])
        last_cost = cost
        succeeded = True
        if np.linalg.norm(update) < _CONVERGENCE:
            break

    return keypoint[0] + dx, keypoint[1] + dy, succeeded


def optical_flow_single_level(
    img1, img2, kp1, kp2=None, inverse: bool = False, has_initial: bool = False
) -> tuple[np.ndarray, np.ndarray]:
    """Track keypoints kp1 of img1 into img2.

    With has_initial, kp2 holds the starting guesses. Returns the tracked
    (N, 2) positions and a boolean array telling which tracks succeeded.
    """
    p1 = _as_keypoints(kp1, "kp1")
    if has_initial:
        if kp2 is None:
            raise ValueError("an initial guess needs kp2")
        p2 = _as_keypoints(kp2, "kp2")
        if len(p2) != len(p1):
            raise ValueError(f"keypoint counts differ: {len(p1)} and {len(p2)}")
        initial = p2 - p1
    else:
        initial = np.zeros_like(p1)

    results = [
        _track(img1, img2, keypoint, guess, inverse) for keypoint, guess in zip(p1, initial)
    ]
    tracked = np.array([(x, y) for x, y, _ in results], dtype=float).reshape(-1, 2)
    success = np.array([ok for _, _, ok in results], dtype=bool)
    return tracked, success


def optical_flow_multi_level(img1, img2, kp1, inverse: bool = False):
    """Track keypoints coarse to fine over a four-level half-scale pyramid."""
    p1 = _as_keypoints(kp1, "kp1")
    start = time.perf_counter()
    pyr1 = build_pyramid(img1, PYRAMID_LEVELS, PYRAMID_SCALE)
    pyr2 = build_pyramid(img2, PYRAMID_LEVELS, PYRAMID_SCALE)
    logger.debug("build pyramid time: %s", time.perf_counter() - start)

    top_scale = PYRAMID_SCALE ** (PYRAMID_LEVELS - 1)
    kp1_pyr = p1 * top_scale
    kp2_pyr = kp1_pyr.copy()
    success = np.zeros(len(p1), dtype=bool)

    for level in reversed(range(PYRAMID_LEVELS)):
        start = time.perf_counter()
        kp2_pyr, success = optical_flow_single_level(
            pyr1[level], pyr2[level], kp1_pyr, kp2_pyr, inverse, True
        )
        logger.debug("track pyr %d cost time: %s", level, time.perf_counter() - start)
        if level > 0:
            kp1_pyr = kp1_pyr / PYRAMID_SCALE
            kp2_pyr = kp2_pyr / PYRAMID_SCALE

    return kp2_pyr, success