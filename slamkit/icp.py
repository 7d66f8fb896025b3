"""Relative pose from 3D-3D correspondences: SVD alignment and iterative refinement."""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from slamkit.lie import SE3, hat
from slamkit.matching import pixel2cam
from slamkit.orb import Match
from slamkit.pnp import DEPTH_SCALE

logger = logging.getLogger(__name__)

_LAMBDA_TAU = 1e-5
_MAX_TRIALS = 10
_CONVERGENCE = 1e-10


def _as_points(values, name: str) -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.size == 0:
        return array.reshape(0, 3)
    if array.ndim != 2 or array.shape[1] != 3:
        raise ValueError(f"{name} must have shape (N, 3), got {array.shape}")
    return array


def _paired(pts1, pts2) -> tuple[np.ndarray, np.ndarray]:
    p1 = _as_points(pts1, "pts1")
    p2 = _as_points(pts2, "pts2")
    if len(p1) != len(p2):
        raise ValueError(f"point counts differ: {len(p1)} and {len(p2)}")
    if len(p1) == 0:
        raise ValueError("at least one point pair is needed")
    return p1, p2


def build_3d3d_pairs(
    keypoints_1: Sequence[Sequence[float]],
    keypoints_2: Sequence[Sequence[float]],
    matches: Sequence[Match],
    depth1,
    depth2,
    K,
) -> tuple[np.ndarray, np.ndarray]:
    """Lift matched keypoints of both images to 3D using their depth maps.

    Returns two (N, 3) arrays of corresponding points. Matches where either
    depth is zero are dropped.
    """
    depth_map_1 = np.asarray(depth1)
    depth_map_2 = np.asarray(depth2)
    pts1 = []
    pts2 = []
    for m in matches:
        x1, y1 = keypoints_1[m.query_idx][0], keypoints_1[m.query_idx][1]
        x2, y2 = keypoints_2[m.train_idx][0], keypoints_2[m.train_idx][1]
        d1 = int(depth_map_1[int(y1), int(x1)])
        d2 = int(depth_map_2[int(y2), int(x2)])
        if d1 == 0 or d2 == 0:
            continue
        c1 = pixel2cam((x1, y1), K)
        c2 = pixel2cam((x2, y2), K)
        dd1 = d1 / DEPTH_SCALE
        dd2 = d2 / DEPTH_SCALE
        pts1.append((c1[0] * dd1, c1[1] * dd1, dd1))
        pts2.append((c2[0] * dd2, c2[1] * dd2, dd2))
    return (
        np.array(pts1, dtype=float).reshape(-1, 3),
        np.array(pts2, dtype=float).reshape(-1, 3),
    )


def pose_estimation_3d3d(pts1, pts2) -> tuple[np.ndarray, np.ndarray]:
    """Find R and t with pts1 ≈ R @ pts2 + t by SVD of the cross-covariance."""
    p1, p2 = _paired(pts1, pts2)
    centre1 = p1.mean(axis=0)
    centre2 = p2.mean(axis=0)
    q1 = p1 - centre1
    q2 = p2 - centre2
    w = q1.T @ q2
    logger.debug("W=%s", w)
    u, _, vt = np.linalg.svd(w)
    rotation = u @ vt
    if np.linalg.det(rotation) < 0:
        rotation = -rotation
    translation = centre1 - rotation @ centre2
    return rotation, translation


def _linearize(pose: SE3, p1: np.ndarray, p2: np.ndarray):
    transformed = pose.transform(p2)
    errors = p1 - transformed
    hessian = np.zeros((6, 6))
    bias = np.zeros(6)
    for error, point in zip(errors, transformed):
        jacobian = np.hstack([-np.eye(3), hat(point)])
        hessian += jacobian.T @ jacobian
        bias += jacobian.T @ error
    return hessian, bias, float(np.sum(errors * errors))


def _cost(pose: SE3, p1: np.ndarray, p2: np.ndarray) -> float:
    errors = p1 - pose.transform(p2)
    return float(np.sum(errors * errors))


def bundle_adjustment_3d3d(pts1, pts2, pose: SE3 | None = None, iterations: int = 10) -> SE3:
    """Refine the pose T with pts1 ≈ T(pts2) by Levenberg-Marquardt."""
    p1, p2 = _paired(pts1, pts2)
    current = pose if pose is not None else SE3.identity()
    damping = None
    growth = 2.0

    for iteration in range(iterations):
        hessian, bias, cost = _linearize(current, p1, p2)
        if cost == 0.0:
            break
        if damping is None:
            damping = _LAMBDA_TAU * float(np.max(np.diag(hessian)))
        accepted = False
        for _ in range(_MAX_TRIALS):
            try:
                dx = np.linalg.solve(hessian + damping * np.eye(6), -bias)
            except np.linalg.LinAlgError:
                damping *= growth
                growth *= 2.0
                continue
            candidate = SE3.exp(dx) @ current
            new_cost = _cost(candidate, p1, p2)
            predicted = float(dx @ (damping * dx - bias))
            rho = (cost - new_cost) / predicted if predicted > 0 else -1.0
            if rho > 0 and np.isfinite(new_cost):
                current = candidate
                damping *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                growth = 2.0
                accepted = True
                break
            damping *= growth
            growth *= 2.0
        logger.debug("iteration %d cost=%.12g", iteration, cost)
        if not accepted or float(np.linalg.norm(dx)) < _CONVERGENCE:
            break

    return current