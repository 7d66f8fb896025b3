"""Bundle adjustment of BAL problems with a robust (Huber) least-squares solver."""

from __future__ import annotations

import logging
import sys

import numpy as np
from scipy.optimize import least_squares
from scipy.sparse import lil_matrix

from slamkit.bal import BALProblem
from slamkit.rotation import angle_axis_to_quaternion, quaternion_to_angle_axis

logger = logging.getLogger(__name__)

CAMERA_PARAMETERS = 9
POINT_PARAMETERS = 3
HUBER_DELTA = 1.0
DEFAULT_ITERATIONS = 40
_EPSILON = sys.float_info.epsilon


def _rotate(angle_axis: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Rotate each row of points by the matching row of angle_axis."""
    theta2 = np.sum(angle_axis * angle_axis, axis=1)
    large = theta2 > _EPSILON
    theta = np.sqrt(np.where(large, theta2, 1.0))
    w = angle_axis / theta[:, None]
    cos_theta = np.cos(theta)[:, None]
    sin_theta = np.sin(theta)[:, None]
    w_dot_p = np.sum(w * points, axis=1)[:, None]
    rodrigues = (
        points * cos_theta
        + np.cross(w, points) * sin_theta
        + w * w_dot_p * (1.0 - cos_theta)
    )
    first_order = points + np.cross(angle_axis, points)
    return np.where(large[:, None], rodrigues, first_order)


def _project(cameras: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Project points through 9-parameter cameras, one pair per row."""
    p = _rotate(cameras[:, :3], points) + cameras[:, 3:6]
    xp = -p[:, 0] / p[:, 2]
    yp = -p[:, 1] / p[:, 2]
    r2 = xp * xp + yp * yp
    distortion = 1.0 + r2 * (cameras[:, 7] + cameras[:, 8] * r2)
    scale = cameras[:, 6] * distortion
    return np.column_stack([scale * xp, scale * yp])


def _angle_axis_cameras(problem: BALProblem) -> np.ndarray:
    cameras = np.array(problem.cameras, dtype=float)
    if not problem.use_quaternions:
        return cameras
    return np.array(
        [np.concatenate([quaternion_to_angle_axis(cam[:4]), cam[4:]]) for cam in cameras]
    ).reshape(-1, CAMERA_PARAMETERS)


def _sparsity(problem: BALProblem):
    n_cam = problem.num_cameras
    rows = 2 * problem.num_observations
    cols = CAMERA_PARAMETERS * n_cam + POINT_PARAMETERS * problem.num_points
    structure = lil_matrix((rows, cols), dtype=int)
    for i, (cam, pt) in enumerate(zip(problem.camera_index, problem.point_index)):
        cam_start = CAMERA_PARAMETERS * int(cam)
        pt_start = CAMERA_PARAMETERS * n_cam + POINT_PARAMETERS * int(pt)
        for row in (2 * i, 2 * i + 1):
            structure[row, cam_start : cam_start + CAMERA_PARAMETERS] = 1
            structure[row, pt_start : pt_start + POINT_PARAMETERS] = 1
    return structure


def solve_ba(problem: BALProblem, max_iterations: int = DEFAULT_ITERATIONS):
    """Jointly refine the cameras and points of a problem in place.

    Minimises the Huber-robustified reprojection error of every observation
    and writes the estimate back into the problem. Returns the solver result,
    whose cost and fun fields hold the final cost and residuals.
    """
    if max_iterations < 1:
        raise ValueError(f"max_iterations must be at least 1, got {max_iterations}")
    if problem.num_observations == 0:
        raise ValueError("the problem has no observations")
    camera_index = np.asarray(problem.camera_index, dtype=int)
    point_index = np.asarray(problem.point_index, dtype=int)
    if camera_index.min() < 0 or camera_index.max() >= problem.num_cameras:
        raise ValueError("an observation refers to a camera that does not exist")
    if point_index.min() < 0 or point_index.max() >= problem.num_points:
        raise ValueError("an observation refers to a point that does not exist")

    n_cam = problem.num_cameras
    camera_end = CAMERA_PARAMETERS * n_cam
    observations = np.asarray(problem.observations, dtype=float)

    def residuals(x: np.ndarray) -> np.ndarray:
        cameras = x[:camera_end].reshape(n_cam, CAMERA_PARAMETERS)
        points = x[camera_end:].reshape(-1, POINT_PARAMETERS)
        predictions = _project(cameras[camera_index], points[point_index])
        return (predictions - observations).ravel()

    logger.info(
        "bal problem have %d cameras and %d points, forming %d observations",
        n_cam,
        problem.num_points,
        problem.num_observations,
    )
    x0 = np.concatenate(
        [_angle_axis_cameras(problem).ravel(), np.asarray(problem.points, dtype=float).ravel()]
    )
    result = least_squares(
        residuals,
        x0,
        jac_sparsity=_sparsity(problem),
        method="trf",
        loss="huber",
        f_scale=HUBER_DELTA,
        x_scale="jac",
        max_nfev=max_iterations,
    )
    logger.info("solver finished: %s, cost %.6g", result.message, result.cost)

    cameras = result.x[:camera_end].reshape(n_cam, CAMERA_PARAMETERS)
    if problem.use_quaternions:
        for i, camera in enumerate(cameras):
            problem.cameras[i] = np.concatenate(
                [angle_axis_to_quaternion(camera[:3]), camera[3:]]
            )
    else:
        problem.cameras[...] = cameras
    problem.points[...] = result.x[camera_end:].reshape(-1, POINT_PARAMETERS)
    return result


def main(argv=None) -> int:
    """Load a BAL file, perturb it, optimise it and write before/after point clouds."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 1:
        print("usage: bundle_adjustment bal_data.txt")
        return 1

    problem = BALProblem.read(args[0])
    print(
        f"Header: {problem.num_cameras} {problem.num_points} {problem.num_observations}"
    )
    problem.normalize()
    problem.perturb(0.1, 0.5, 0.5)
    problem.write_to_ply_file("initial.ply")
    print("bal problem file loaded...")
    print(
        f"bal problem have {problem.num_cameras} cameras and "
        f"{problem.num_points} points. "
    )
    print(f"Forming {problem.num_observations} observations. ")
    print("Solving BA ... ")
    result = solve_ba(problem)
    print(f"final cost: {result.cost:g} after {result.nfev} evaluations")
    problem.write_to_ply_file("final.ply")
    return 0


if __name__ == "__main__":
    sys.exit(main())