"""Sparse direct camera pose estimation by photometric Gauss-Newton."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace

import numpy as np

from slamkit.imaging import build_pyramid, pixel_value_direct
from slamkit.lie import SE3

logger = logging.getLogger(__name__)

BASELINE = 0.573
HALF_PATCH_SIZE = 1
ITERATIONS = 10
PYRAMID_LEVELS = 4
PYRAMID_SCALE = 0.5
_CONVERGENCE = 1e-3

_PATCH = np.array(
    [
        (x, y)
        for x in range(-HALF_PATCH_SIZE, HALF_PATCH_SIZE + 1)
        for y in range(-HALF_PATCH_SIZE, HALF_PATCH_SIZE + 1)
    ],
    dtype=float,
)


@dataclass(frozen=True)
class Intrinsics:
    """Pinhole camera focal lengths and principal point, in pixels."""

    fx: float = 718.856
    fy: float = 718.856
    cx: float = 607.1928
    cy: float = 185.2157

    def scaled(self, factor: float) -> "Intrinsics":
        """Intrinsics of the same camera with images scaled by factor."""
        return replace(
            self,
            fx=self.fx * factor,
            fy=self.fy * factor,
            cx=self.cx * factor,
            cy=self.cy * factor,
        )


def disparity_to_depth(disparity, camera: Intrinsics | None = None, baseline: float = BASELINE):
    """Depth of a stereo disparity; a zero disparity gives infinity."""
    cam = camera or Intrinsics()
    d = np.asarray(disparity, dtype=float)
    with np.errstate(divide="ignore"):
        depth = cam.fx * baseline / d
    return float(depth) if depth.ndim == 0 else depth


def _solve(hessian: np.ndarray, bias: np.ndarray) -> np.ndarray:
    try:
        return np.linalg.solve(hessian, bias)
    except np.linalg.LinAlgError:
        return np.linalg.lstsq(hessian, bias, rcond=None)[0]


class JacobianAccumulator:
    """Sums the photometric Hessian, bias and mean cost for a pose guess.

    After accumulate, hessian, bias and cost hold the sums and projection
    the positions in the second image of the points that last projected
    inside it; others keep their previous value, initially (0, 0).
    """

    def __init__(self, img1, img2, px_ref, depth_ref, camera: Intrinsics | None = None):
        self.img1 = np.asarray(img1)
        self.img2 = np.asarray(img2)
        if self.img1.ndim != 2 or self.img2.ndim != 2:
            raise ValueError("images must be two-dimensional")
        px = np.asarray(px_ref, dtype=float)
        self.px_ref = px.reshape(0, 2) if px.size == 0 else px
        if self.px_ref.ndim != 2 or self.px_ref.shape[1] != 2:
            raise ValueError(f"px_ref must have shape (N, 2), got {self.px_ref.shape}")
        self.depth_ref = np.asarray(depth_ref, dtype=float).reshape(-1)
        if len(self.depth_ref) != len(self.px_ref):
            raise ValueError(
                f"{len(self.px_ref)} pixels but {len(self.depth_ref)} depths"
            )
        self.camera = camera or Intrinsics()
        self.projection = np.zeros((len(self.px_ref), 2))
        self._reset()

    def _reset(self) -> None:
        self.hessian = np.zeros((6, 6))
        self.bias = np.zeros(6)
        self.cost = 0.0

    def accumulate(self, T21: SE3) -> None:
        """Linearise the photometric error of every reference point at T21."""
        self._reset()
        if len(self.px_ref) == 0:
            return
        cam = self.camera
        rows, cols = self.img2.shape
        px = self.px_ref
        bearings = np.column_stack(
            [(px[:, 0] - cam.cx) / cam.fx, (px[:, 1] - cam.cy) / cam.fy, np.ones(len(px))]
        )
        current = T21.transform(self.depth_ref[:, None] * bearings)
        with np.errstate(divide="ignore", invalid="ignore"):
            u = cam.fx * current[:, 0] / current[:, 2] + cam.cx
            v = cam.fy * current[:, 1] / current[:, 2] + cam.cy
        good = (
            (current[:, 2] >= 0)
            & np.isfinite(u)
            & np.isfinite(v)
            & (u >= HALF_PATCH_SIZE)
            & (u <= cols - HALF_PATCH_SIZE)
            & (v >= HALF_PATCH_SIZE)
            & (v <= rows - HALF_PATCH_SIZE)
        )
        count = int(good.sum())
        if count == 0:
            return

        u, v = u[good], v[good]
        self.projection[good] = np.column_stack([u, v])
        x, y, z = current[good].T
        z_inv = 1.0 / z
        z2_inv = z_inv * z_inv
        fx, fy = cam.fx, cam.fy

        j_pixel = np.zeros((count, 2, 6))
        j_pixel[:, 0, 0] = fx * z_inv
        j_pixel[:, 0, 2] = -fx * x * z2_inv
        j_pixel[:, 0, 3] = -fx * x * y * z2_inv
        j_pixel[:, 0, 4] = fx + fx * x * x * z2_inv
        j_pixel[:, 0, 5] = -fx * y * z_inv
        j_pixel[:, 1, 1] = fy * z_inv
        j_pixel[:, 1, 2] = -fy * y * z2_inv
        j_pixel[:, 1, 3] = -fy - fy * y * y * z2_inv
        j_pixel[:, 1, 4] = fy * x * y * z2_inv
        j_pixel[:, 1, 5] = fy * x * z_inv

        ox, oy = _PATCH[:, 0], _PATCH[:, 1]
        ux = u[:, None] + ox
        vy = v[:, None] + oy
        rx = px[good, 0][:, None] + ox
        ry = px[good, 1][:, None] + oy

        img1, img2 = self.img1, self.img2
        error = pixel_value_direct(img1, rx, ry) - pixel_value_direct(img2, ux, vy)
        gradient = 0.5 * np.stack(
            [
                pixel_value_direct(img2, ux + 1, vy) - pixel_value_direct(img2, ux - 1, vy),
                pixel_value_direct(img2, ux, vy + 1) - pixel_value_direct(img2, ux, vy - 1),
            ],
            axis=-1,
        )
        jacobian = -np.einsum("mkp,mpi->mki", gradient, j_pixel)

        self.hessian = np.einsum("mki,mkj->ij", jacobian, jacobian)
        self.bias = -np.einsum("mk,mki->i", error, jacobian)
        self.cost = float(np.sum(error * error)) / count


def direct_pose_estimation_single_layer(
    img1, img2, px_ref, depth_ref, T21: SE3 | None = None, camera: Intrinsics | None = None
) -> SE3:
    """Refine the pose T21 taking the reference points of img1 into img2."""
    pose = T21 if T21 is not None else SE3.identity()
    start = time.perf_counter()
    accumulator = JacobianAccumulator(img1, img2, px_ref, depth_ref, camera)
    last_cost = 0.0

    for iteration in range(ITERATIONS):
        accumulator.accumulate(pose)
        update = _solve(accumulator.hessian, accumulator.bias)
        pose = SE3.exp(update) @ pose
        cost = accumulator.cost

        if np.isnan(update[0]):
            logger.warning("update is nan")
            break
        if iteration > 0 and cost > last_cost:
            logger.debug("cost increased: %s, %s", cost, last_cost)
            break
        if np.linalg.norm(update) < _CONVERGENCE:
            break

        last_cost = cost
        logger.debug("iteration: %d, cost: %s", iteration, cost)

    logger.debug("T21 =\n%s", pose.matrix())
    logger.debug("direct method for single layer: %s", time.perf_counter() - start)
    return pose


def direct_pose_estimation_multi_layer(
    img1, img2, px_ref, depth_ref, T21: SE3 | None = None, camera: Intrinsics | None = None
) -> SE3:
    """Refine T21 coarse to fine over a four-level half-scale pyramid."""
    cam = camera or Intrinsics()
    pose = T21 if T21 is not None else SE3.identity()
    pyr1 = build_pyramid(img1, PYRAMID_LEVELS, PYRAMID_SCALE)
    pyr2 = build_pyramid(img2, PYRAMID_LEVELS, PYRAMID_SCALE)
    px = np.asarray(px_ref, dtype=float)

    for level in reversed(range(PYRAMID_LEVELS)):
        factor = PYRAMID_SCALE**level
        pose = direct_pose_estimation_single_layer(
            pyr1[level], pyr2[level], px * factor, depth_ref, pose, cam.scaled(factor)
        )
    return pose