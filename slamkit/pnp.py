"""Camera pose from 3D-2D correspondences by Gauss-Newton bundle adjustment."""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from slamkit.lie import SE3
from slamkit.matching import pixel2cam
from slamkit.orb import Match

logger = logging.getLogger(__name__)

DEPTH_SCALE = 5000.0
_CONVERGENCE = 1e-6


def build_3d2d_pairs(
    keypoints_1: Sequence[Sequence[float]],
    keypoints_2: Sequence[Sequence[float]],
    matches: Sequence[Match],
    depth,
    K,
) -> tuple[np.ndarray, np.ndarray]:
    """Lift matched keypoints of the first image to 3D using its depth map.

    Returns an (N, 3) array of points and the (N, 2) array of their pixel
    positions in the second image. Matches with zero depth are dropped.
    """
    depth_map = np.asarray(depth)
    points_3d = []
    points_2d = []
    for m in matches:
        x, y = keypoints_1[m.query_idx][0], keypoints_1[m.query_idx][1]
        d = int(depth_map[int(y), int(x)])
        if d == 0:
            continue
        dd = d / DEPTH_SCALE
        p1 = pixel2cam((x, y), K)
        points_3d.append((p1[0] * dd, p1[1] * dd, dd))
        points_2d.append((keypoints_2[m.train_idx][0], keypoints_2[m.train_idx][1]))
    return (
        np.array(points_3d, dtype=float).reshape(-1, 3),
        np.array(points_2d, dtype=float).reshape(-1, 2),
    )


def reprojection_jacobian(point_cam, K) -> np.ndarray:
    """Jacobian (2x6) of the reprojection error w.r.t. a left pose perturbation."""
    k = np.asarray(K, dtype=float)
    fx, fy = k[0, 0], k[1, 1]
    x, y, z = np.asarray(point_cam, dtype=float)
    inv_z = 1.0 / z
    inv_z2 = inv_z * inv_z
    return np.array(
        [
            [
                -fx * inv_z,
                0.0,
                fx * x * inv_z2,
                fx * x * y * inv_z2,
                -fx - fx * x * x * inv_z2,
                fx * y * inv_z,
            ],
            [
                0.0,
                -fy * inv_z,
                fy * y * inv_z2,
                fy + fy * y * y * inv_z2,
                -fy * x * y * inv_z2,
                -fy * x * inv_z,
            ],
        ]
    )


def bundle_adjustment_gauss_newton(
    points_3d,
    points_2d,
    K,
    pose: SE3 | None = None,
    iterations: int = 10,
) -> SE3:
    """Refine the pose mapping points_3d onto their observations points_2d."""
    pts3 = np.asarray(points_3d, dtype=float).reshape(-1, 3)
    pts2 = np.asarray(points_2d, dtype=float).reshape(-1, 2)
    if len(pts3) != len(pts2):
        raise ValueError(
            f"point counts differ: {len(pts3)} 3D points and {len(pts2)} observations"
        )
    k = np.asarray(K, dtype=float)
    fx, fy, cx, cy = k[0, 0], k[1, 1], k[0, 2], k[1, 2]
    current = pose if pose is not None else SE3.identity()
    last_cost = 0.0

    for iteration in range(iterations):
        hessian = np.zeros((6, 6))
        bias = np.zeros(6)
        cost = 0.0
        for pc, observed in zip(current.transform(pts3), pts2):
            projection = np.array([fx * pc[0] / pc[2] + cx, fy * pc[1] / pc[2] + cy])
            error = observed - projection
            cost += float(error @ error)
            jacobian = reprojection_jacobian(pc, k)
            hessian += jacobian.T @ jacobian
            bias += -jacobian.T @ error

        try:
            dx = np.linalg.solve(hessian, bias)
        except np.linalg.LinAlgError:
            dx = np.full(6, np.nan)
        if np.isnan(dx[0]):
            logger.warning("result is nan")
            break

        if iteration > 0 and cost >= last_cost:
            logger.debug("cost: %s, last cost: %s", cost, last_cost)
            break

        current = SE3.exp(dx) @ current
        last_cost = cost
        logger.debug("iteration %d cost=%.12g", iteration, cost)
        if np.linalg.norm(dx) < _CONVERGENCE:
            break

    return current